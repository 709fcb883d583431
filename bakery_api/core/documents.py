"""
Tenant-scoped document store contract.

Documents live at slash separated paths, always an even number of segments:
``bakeries/{bakeryId}/recipes/{recipeId}`` and, for sub-collections,
``bakeries/{bakeryId}/recipes/{recipeId}/history/{entryId}``.

Transactions follow read-then-write semantics: reads go straight to the
backing store while writes are buffered and applied in order when the
transaction body returns. A read issued after a write is rejected with
``TransactionOrderError``. Conflicts between concurrent transactions are
reported by the backend as ``TransactionConflict`` and retried by
``DocumentStore.run_transaction``.
"""
import logging
import secrets
import string
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from bakery_api.core.exceptions import TransactionConflictError, TransactionOrderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

FILTER_OPERATORS = ("==", "array-contains", "<", "<=", ">", ">=")

_ID_ALPHABET = string.ascii_letters + string.digits

def new_document_id(length: int = 20) -> str:
    """Random document id in the same shape as Firestore auto ids"""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))

def bakery_collection(bakery_id: str, name: str) -> str:
    if not bakery_id:
        raise ValueError("bakery_id is required for bakery scoped collections")
    return f"bakeries/{bakery_id}/{name}"

def document_path(collection: str, document_id: str) -> str:
    return f"{collection}/{document_id}"

def split_path(path: str) -> Tuple[str, str]:
    """Split a document path into (collection path, document id)"""
    segments = path.strip("/").split("/")
    if len(segments) < 2 or len(segments) % 2 != 0:
        raise ValueError(f"Not a document path: {path}")
    return "/".join(segments[:-1]), segments[-1]

@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

@dataclass
class DocumentSnapshot:
    path: str
    data: Dict[str, Any]

    @property
    def id(self) -> str:
        return split_path(self.path)[1]

@dataclass
class WriteOp:
    kind: str  # set | update | delete | array_union | array_remove
    path: str
    data: Dict[str, Any] = field(default_factory=dict)
    array_field: Optional[str] = None
    values: List[Any] = field(default_factory=list)

class TransactionConflict(Exception):
    """Raised by a backend when a transaction lost a race and may be retried"""

class DocumentTransaction(ABC):
    """One atomic unit of work. Obtain it through DocumentStore.run_transaction."""

    def __init__(self):
        self._writes: List[WriteOp] = []
        self._committed = False

    # Reads

    async def get(self, path: str) -> Optional[DocumentSnapshot]:
        self._ensure_reads_allowed(path)
        return await self._read(path)

    async def get_all(self, paths: Sequence[str]) -> Dict[str, Optional[DocumentSnapshot]]:
        results = {}
        for path in paths:
            results[path] = await self.get(path)
        return results

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[Tuple[str, str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[DocumentSnapshot]:
        self._ensure_reads_allowed(collection)
        return await self._query(collection, list(filters), order_by, limit, offset)

    # Buffered writes

    def set(self, path: str, data: Dict[str, Any]) -> None:
        self._stage(WriteOp("set", path, data=dict(data)))

    def update(self, path: str, data: Dict[str, Any]) -> None:
        self._stage(WriteOp("update", path, data=dict(data)))

    def delete(self, path: str) -> None:
        self._stage(WriteOp("delete", path))

    def array_union(self, path: str, array_field: str, values: Sequence[Any], extra: Optional[Dict[str, Any]] = None) -> None:
        """Append each value to the array field unless already present"""
        self._stage(WriteOp("array_union", path, data=dict(extra or {}), array_field=array_field, values=list(values)))

    def array_remove(self, path: str, array_field: str, values: Sequence[Any], extra: Optional[Dict[str, Any]] = None) -> None:
        self._stage(WriteOp("array_remove", path, data=dict(extra or {}), array_field=array_field, values=list(values)))

    @property
    def pending_writes(self) -> List[WriteOp]:
        return list(self._writes)

    async def commit(self) -> None:
        if self._committed:
            raise RuntimeError("Transaction already committed")
        self._committed = True
        if self._writes:
            await self._apply(self._writes)

    def _stage(self, op: WriteOp) -> None:
        if self._committed:
            raise RuntimeError("Cannot write to a committed transaction")
        split_path(op.path)
        self._writes.append(op)

    def _ensure_reads_allowed(self, target: str) -> None:
        if self._writes:
            raise TransactionOrderError(
                f"Read of '{target}' issued after {len(self._writes)} write(s); "
                "all reads must precede all writes in a transaction"
            )

    # Backend hooks

    @abstractmethod
    async def _read(self, path: str) -> Optional[DocumentSnapshot]:
        ...

    @abstractmethod
    async def _query(
        self,
        collection: str,
        filters: List[Filter],
        order_by: Optional[Tuple[str, str]],
        limit: Optional[int],
        offset: Optional[int]
    ) -> List[DocumentSnapshot]:
        ...

    @abstractmethod
    async def _apply(self, writes: List[WriteOp]) -> None:
        """Apply all writes atomically, raising NotFoundError for updates of missing documents"""

class DocumentStore(ABC):
    def __init__(self, max_attempts: int = 5):
        self.max_attempts = max_attempts

    @abstractmethod
    async def get(self, path: str) -> Optional[DocumentSnapshot]:
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[Tuple[str, str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[DocumentSnapshot]:
        ...

    @abstractmethod
    def transaction(self) -> AsyncContextManager[DocumentTransaction]:
        """Open a backend transaction; exiting without error commits it"""

    async def run_transaction(self, body: Callable[[DocumentTransaction], Awaitable[T]]) -> T:
        last_conflict: Optional[TransactionConflict] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self.transaction() as txn:
                    result = await body(txn)
                    await txn.commit()
                return result
            except TransactionConflict as e:
                last_conflict = e
                logger.warning(f"Transaction conflict (attempt {attempt}/{self.max_attempts}): {e}")
        raise TransactionConflictError(
            "The resource was modified concurrently, please retry",
            details={"attempts": self.max_attempts, "reason": str(last_conflict)}
        )
