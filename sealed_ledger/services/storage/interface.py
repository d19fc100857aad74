"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the ledger store.
The real store is an external document database; the ledger only relies on:
1. Per-owner collections of entry records
2. Ordered range queries and equality filters
3. Full-snapshot change subscriptions
4. Atomic multi-record batch writes (all succeed or none do)

Records are plain dicts using the persisted (camelCase) field names.
Description and amount inside a record are ciphertext envelopes; the store
never sees plaintext.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional
from uuid import UUID, uuid4

from sealed_ledger.models.audit import AuditEvent


ORDERABLE_FIELDS = frozenset({"date", "dueDate", "createdAt"})


class WriteOperation:
    """One staged write inside a WriteBatch."""

    __slots__ = ("kind", "owner_id", "entry_id", "fields")

    def __init__(
        self,
        kind: str,
        owner_id: str,
        entry_id: str,
        fields: Optional[dict[str, Any]] = None,
    ):
        self.kind = kind
        self.owner_id = owner_id
        self.entry_id = entry_id
        self.fields = fields or {}

    def __repr__(self) -> str:
        return f"WriteOperation({self.kind!r}, {self.owner_id!r}, {self.entry_id!r})"


class WriteBatch:
    """
    A set of writes committed atomically by `LedgerStoreInterface.commit`.

    Entry ids for created records are assigned client-side so that callers
    know them before the commit, the same way document stores hand out ids.
    """

    def __init__(self):
        self._operations: list[WriteOperation] = []

    def create(self, owner_id: str, record: dict[str, Any]) -> str:
        entry_id = uuid4().hex
        self._operations.append(WriteOperation("create", owner_id, entry_id, dict(record)))
        return entry_id

    def update(self, owner_id: str, entry_id: str, fields: dict[str, Any]) -> None:
        self._operations.append(WriteOperation("update", owner_id, entry_id, dict(fields)))

    def delete(self, owner_id: str, entry_id: str) -> None:
        self._operations.append(WriteOperation("delete", owner_id, entry_id))

    @property
    def operations(self) -> list[WriteOperation]:
        return list(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def __bool__(self) -> bool:
        return bool(self._operations)


class LedgerStoreInterface(ABC):
    """
    Abstract interface for the ledger entry store.

    Any storage implementation (document database, in-memory, etc.)
    must implement these methods.
    """

    def new_batch(self) -> WriteBatch:
        """Start a new atomic batch."""
        return WriteBatch()

    @abstractmethod
    async def get(self, owner_id: str, entry_id: str) -> Optional[dict[str, Any]]:
        """
        Retrieve one record by id.

        Returns:
            The record (including its "id" key) if found, None otherwise
        """
        pass

    @abstractmethod
    async def query(
        self,
        owner_id: str,
        *,
        group_id: Optional[str] = None,
        due_date_after: Optional[str] = None,
        order_by: str = "dueDate",
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        """
        List an owner's records with optional filters.

        Args:
            owner_id: Ledger owner
            group_id: Only records with this groupId
            due_date_after: Only records whose dueDate is strictly greater
            order_by: Persisted field to order by (date, dueDate, createdAt)
            descending: Sort direction

        Returns:
            Matching records in the requested order
        """
        pass

    @abstractmethod
    def watch(
        self,
        owner_id: str,
        order_by: str = "dueDate",
        descending: bool = True,
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """
        Subscribe to an owner's records.

        Yields the full ordered result set immediately, then again after
        every committed change to that owner's records.
        """
        pass

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        """
        Apply every operation in the batch, or none of them.

        Raises:
            NotFoundError: An update/delete targets a missing record
            ConnectionError: The backend is unreachable (transient)
            StorageError: Any other failure; nothing was written
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_owner(
        self,
        owner_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get an owner's most recent events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class BatchCommitError(StorageError):
    """A batch was rejected as a whole; no operation in it was applied."""
    pass
