"""
Ledger Entry Codec

Maps logical LedgerEntry objects to persisted records and back.

On the way out, description and amount are encrypted (amount as its
two-decimal string). On the way in they are decrypted, and two failure
modes are absorbed instead of raised:

- A description that comes back unchanged from decryption and is longer
  than the failure threshold is shown as a fixed "protected" placeholder
  instead of raw ciphertext. This is a heuristic, kept as-is: a short
  legitimate plaintext can never trigger it, a long one stored under a
  set isEncrypted flag can.
- An amount that does not parse as a finite number becomes zero, so one
  unreadable entry never takes down a whole list view.

Income records whose date and dueDate differ (written before income had a
single credit date) are read with the credit date for both.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog

from sealed_ledger.config import CryptoSettings, get_settings
from sealed_ledger.crypto import CryptoEnvelope
from sealed_ledger.models.ledger import (
    EntryKind,
    EntryStatus,
    LedgerEntry,
    PaymentMethod,
    round2,
)


logger = structlog.get_logger(__name__)

# Logical field name -> persisted field name
FIELD_NAMES = {
    "owner_id": "ownerId",
    "description": "description",
    "amount": "amount",
    "kind": "type",
    "category": "category",
    "payment_method": "paymentMethod",
    "status": "status",
    "date": "date",
    "due_date": "dueDate",
    "created_at": "createdAt",
    "is_encrypted": "isEncrypted",
    "group_id": "groupId",
    "installment_current": "installmentCurrent",
    "installment_total": "installmentTotal",
}

SENSITIVE_FIELDS = ("description", "amount")


def format_amount(value: Any) -> str:
    """Two-decimal, non-scientific string form of an amount."""
    return format(round2(Decimal(str(value))), "f")


def parse_amount(value: Any) -> Decimal:
    """Parse a decrypted amount; anything unparseable or non-finite is zero."""
    if isinstance(value, bool) or value is None:
        return Decimal("0")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not amount.is_finite():
        return Decimal("0")
    return amount


def _serialize(value: Any) -> Any:
    if isinstance(value, (EntryKind, EntryStatus, PaymentMethod)):
        return value.value
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    return value


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


class LedgerEntryCodec:
    """Encrypting codec between LedgerEntry and persisted records."""

    def __init__(
        self,
        envelope: CryptoEnvelope,
        settings: Optional[CryptoSettings] = None,
    ):
        self._envelope = envelope
        self._settings = settings or get_settings().crypto

    @property
    def envelope(self) -> CryptoEnvelope:
        return self._envelope

    @staticmethod
    def serialize_changes(changes: dict[str, Any]) -> dict[str, Any]:
        """
        Map non-sensitive logical changes to persisted names and values.

        Sensitive fields are skipped; use `encrypt_fields` for those.
        """
        return {
            FIELD_NAMES[name]: _serialize(value)
            for name, value in changes.items()
            if name not in SENSITIVE_FIELDS
        }

    async def encrypt_fields(self, owner_id: str, values: dict[str, Any]) -> dict[str, str]:
        """
        Encrypt sensitive values concurrently.

        Args:
            owner_id: Owner whose key is used
            values: Subset of {"description": ..., "amount": ...}

        Returns:
            Persisted field name -> envelope (or plaintext on fallback)
        """
        names = [name for name in SENSITIVE_FIELDS if name in values]
        plaintexts = [
            format_amount(values[name]) if name == "amount" else values[name]
            for name in names
        ]
        encrypted = await asyncio.gather(
            *(self._envelope.encrypt_field(text, owner_id) for text in plaintexts)
        )
        return {FIELD_NAMES[name]: value for name, value in zip(names, encrypted)}

    async def to_storage(self, entry: LedgerEntry) -> dict[str, Any]:
        """
        Build the persisted record for an entry.

        `isEncrypted` is only set when both sensitive fields really are
        envelopes; a plaintext fallback leaves the record readable as-is.
        """
        encrypted = await self.encrypt_fields(
            entry.owner_id,
            {"description": entry.description, "amount": entry.amount},
        )
        record = {
            "ownerId": entry.owner_id,
            "description": encrypted["description"],
            "amount": encrypted["amount"],
            "type": entry.kind.value,
            "category": entry.category,
            "paymentMethod": entry.payment_method.value,
            "status": entry.status.value,
            "date": entry.date.isoformat(),
            "dueDate": entry.due_date.isoformat(),
            "isEncrypted": all(
                self._envelope.is_envelope(value) for value in encrypted.values()
            ),
        }
        if entry.group_id is not None:
            record["groupId"] = entry.group_id
            record["installmentCurrent"] = entry.installment_current
            record["installmentTotal"] = entry.installment_total
        return record

    def is_unreadable(self, stored: Any, decrypted: Any) -> bool:
        """Heuristic: decryption left a long stored value unchanged."""
        return (
            isinstance(stored, str)
            and decrypted == stored
            and len(stored) > self._settings.decryption_failure_threshold
        )

    async def from_storage(self, record: dict[str, Any]) -> LedgerEntry:
        """Decode a persisted record into a logical entry."""
        owner_id = record["ownerId"]
        stored_description = record.get("description", "")
        stored_amount = record.get("amount")
        is_encrypted = bool(record.get("isEncrypted", False))

        # Unflagged records can still hold one envelope after a partial
        # plaintext fallback; non-envelopes pass through decrypt_field as-is.
        description, amount = await asyncio.gather(
            self._envelope.decrypt_field(stored_description, owner_id),
            self._envelope.decrypt_field(stored_amount, owner_id),
        )
        if is_encrypted and self.is_unreadable(stored_description, description):
            logger.warning(
                "decryption_failed_placeholder",
                owner_id=owner_id,
                entry_id=record.get("id"),
            )
            description = self._settings.protected_placeholder

        kind = EntryKind(record["type"])
        entry_date = date.fromisoformat(record["date"])
        due_date = date.fromisoformat(record["dueDate"])
        if kind == EntryKind.INCOME and entry_date != due_date:
            # Older writers advanced only dueDate on income installments
            entry_date = due_date

        return LedgerEntry(
            id=record.get("id"),
            owner_id=owner_id,
            description=str(description) if description is not None else "",
            amount=parse_amount(amount),
            kind=kind,
            category=record["category"],
            payment_method=PaymentMethod(record["paymentMethod"]),
            status=EntryStatus(record.get("status", EntryStatus.PENDING.value)),
            date=entry_date,
            due_date=due_date,
            created_at=_parse_timestamp(record.get("createdAt")),
            is_encrypted=is_encrypted,
            group_id=record.get("groupId"),
            installment_current=record.get("installmentCurrent"),
            installment_total=record.get("installmentTotal"),
        )
