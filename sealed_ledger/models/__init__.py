"""
Data Models Package

This package contains all Pydantic models used in Sealed Ledger.
All data flowing through the system must conform to these schemas.
"""

from sealed_ledger.models.ledger import (
    CENT,
    EntryKind,
    EntryPatch,
    EntryStatus,
    KeyMaterial,
    LedgerOverview,
    LedgerEntry,
    PaymentMethod,
    TransactionRequest,
    round2,
)
from sealed_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "CENT",
    "EntryKind",
    "EntryPatch",
    "EntryStatus",
    "KeyMaterial",
    "LedgerOverview",
    "LedgerEntry",
    "PaymentMethod",
    "TransactionRequest",
    "round2",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
