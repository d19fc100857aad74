"""
Audit Models for Sealed Ledger

Every mutation of the ledger is logged for audit purposes.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
Audit events NEVER carry plaintext descriptions or amounts - only ids,
counts and categorical fields. The whole point of the ledger is that
sensitive fields stay encrypted outside the owner's process.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Creation
    ENTRIES_CREATED = "entries_created"

    # Updates
    ENTRY_UPDATED = "entry_updated"
    GROUP_UPDATED = "group_updated"
    STATUS_TOGGLED = "status_toggled"

    # Deletion
    ENTRY_DELETED = "entry_deleted"
    GROUP_DELETED = "group_deleted"
    INSTALLMENTS_CANCELLED = "installments_cancelled"

    # Encryption lifecycle
    MIGRATION_COMPLETED = "migration_completed"
    MIGRATION_FAILED = "migration_failed"
    ENCRYPTION_FALLBACK = "encryption_fallback"

    # System events
    COMMIT_FAILED = "commit_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every ledger mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - whose ledger, which entity?
    owner_id: Optional[str] = Field(
        default=None,
        description="Owner of the ledger the event relates to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'entry', 'group', 'ledger')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one user action)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_record(self) -> dict:
        """
        Convert to a flat record suitable for a document store.

        Details are JSON-serialized so the record holds only scalars.
        """
        return {
            "eventId": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "eventType": self.event_type.value,
            "severity": self.severity.value,
            "ownerId": self.owner_id or "",
            "entityType": self.entity_type or "",
            "entityId": self.entity_id or "",
            "correlationId": str(self.correlation_id) if self.correlation_id else "",
            "description": self.description,
            "detailsJson": json.dumps(self.details, default=str) if self.details else "",
            "errorMessage": self.error_message or "",
            "isUserAction": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entries_created(owner_id, entry_ids, group_id)
        event = AuditEventBuilder.status_toggled(owner_id, entry_id, "paid")
    """

    @staticmethod
    def entries_created(
        owner_id: str,
        entry_ids: list[str],
        group_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRIES_CREATED,
            owner_id=owner_id,
            entity_type="group" if group_id else "entry",
            entity_id=group_id or (entry_ids[0] if entry_ids else None),
            correlation_id=correlation_id,
            description=f"{len(entry_ids)} ledger entries created",
            details={
                "entry_ids": entry_ids,
                "group_id": group_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def entry_updated(
        owner_id: str,
        entry_id: str,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_UPDATED,
            owner_id=owner_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Entry updated: {', '.join(sorted(fields))}",
            details={"fields": sorted(fields)},
            is_user_action=True,
        )

    @staticmethod
    def group_updated(
        owner_id: str,
        group_id: str,
        target_id: str,
        member_count: int,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_UPDATED,
            owner_id=owner_id,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"Installment group updated across {member_count} entries",
            details={
                "target_id": target_id,
                "member_count": member_count,
                "fields": sorted(fields),
            },
            is_user_action=True,
        )

    @staticmethod
    def status_toggled(
        owner_id: str,
        entry_id: str,
        new_status: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATUS_TOGGLED,
            owner_id=owner_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Entry marked as {new_status}",
            details={"status": new_status},
            is_user_action=True,
        )

    @staticmethod
    def entries_deleted(
        owner_id: str,
        entry_ids: list[str],
        group_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.GROUP_DELETED if group_id else AuditEventType.ENTRY_DELETED
        )
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type="group" if group_id else "entry",
            entity_id=group_id or (entry_ids[0] if entry_ids else None),
            correlation_id=correlation_id,
            description=f"{len(entry_ids)} ledger entries deleted",
            details={"entry_ids": entry_ids, "group_id": group_id},
            is_user_action=True,
        )

    @staticmethod
    def installments_cancelled(
        owner_id: str,
        group_id: str,
        keep_until: str,
        entry_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSTALLMENTS_CANCELLED,
            owner_id=owner_id,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"{len(entry_ids)} future installments cancelled after {keep_until}",
            details={"keep_until": keep_until, "entry_ids": entry_ids},
            is_user_action=True,
        )

    @staticmethod
    def migration_completed(
        owner_id: str,
        scanned: int,
        migrated: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_COMPLETED,
            owner_id=owner_id,
            entity_type="ledger",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description=f"Encryption migration touched {migrated} of {scanned} entries",
            details={"scanned": scanned, "migrated": migrated},
        )

    @staticmethod
    def migration_failed(
        owner_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="ledger",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description="Encryption migration aborted before commit",
            error_message=error_message,
        )

    @staticmethod
    def encryption_fallback(
        owner_id: str,
        fallbacks: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENCRYPTION_FALLBACK,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="ledger",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description="Crypto provider unavailable: values stored as plaintext",
            details={"plaintext_fallbacks": fallbacks},
        )

    @staticmethod
    def commit_failed(
        owner_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMIT_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="ledger",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description=f"Batch commit failed during {operation}",
            details={"operation": operation},
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
        owner_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            owner_id=owner_id,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
