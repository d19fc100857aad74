"""Services package."""

from sealed_ledger.services.storage import (
    AuditStorageInterface,
    BatchCommitError,
    ConnectionError,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    WriteBatch,
)

__all__ = [
    "AuditStorageInterface",
    "BatchCommitError",
    "ConnectionError",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "LedgerStoreInterface",
    "NotFoundError",
    "StorageError",
    "WriteBatch",
]
