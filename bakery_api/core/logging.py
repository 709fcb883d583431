import logging
from typing import Optional
from bakery_api.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once; module loggers inherit from it"""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format=LOG_FORMAT
    )
    # asyncpg and uvicorn access logs are noisy at INFO
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
