from datetime import datetime, timezone
from typing import Annotated
from pydantic import AfterValidator, PlainSerializer

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def ensure_utc(value: datetime) -> datetime:
    # naive values are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def serialize_timestamp(value: datetime) -> str:
    """Fixed width ISO-8601 so stored timestamps sort lexically in time order"""
    return ensure_utc(value).isoformat(timespec="microseconds")

Timestamp = Annotated[
    datetime,
    AfterValidator(ensure_utc),
    PlainSerializer(serialize_timestamp, return_type=str, when_used="json"),
]
