"""
Storage Services Package

Provides the abstract store contract and an in-memory implementation.
The production store is an external document database that honours the
same contract.
"""

from sealed_ledger.services.storage.interface import (
    AuditStorageInterface,
    BatchCommitError,
    ConnectionError,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    WriteBatch,
    WriteOperation,
)
from sealed_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStoreInterface",
    "WriteBatch",
    "WriteOperation",
    # Exceptions
    "BatchCommitError",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
]
