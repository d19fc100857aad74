"""
Core Data Models for Sealed Ledger

These models define the logical shape of ledger data. The persisted shape
(camelCase records with encrypted description/amount) is produced by
LedgerEntryCodec; nothing here knows about ciphertext.

DESIGN DECISION: Entry invariants are enforced on the model itself.
A draft that violates installment or income-date rules never reaches
the encryption layer, let alone the store.
"""

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import ClassVar, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretBytes,
    field_validator,
    model_validator,
)


CENT = Decimal("0.01")


def round2(value: Decimal) -> Decimal:
    """Round to cents, half away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EntryKind(str, Enum):
    """Direction of money movement."""
    INCOME = "income"
    EXPENSE = "expense"


class EntryStatus(str, Enum):
    """
    Settlement state of a single entry.

    CRITICAL: Status is per entry. Group membership never implies it.
    """
    PAID = "paid"
    PENDING = "pending"

    def toggled(self) -> "EntryStatus":
        return EntryStatus.PENDING if self is EntryStatus.PAID else EntryStatus.PAID


class PaymentMethod(str, Enum):
    """Supported payment methods."""
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PIX = "pix"
    CASH = "cash"
    BOLETO = "boleto"
    TRANSFER = "transfer"


# =============================================================================
# LEDGER ENTRY
# =============================================================================

class LedgerEntry(BaseModel):
    """
    A single dated financial obligation or receipt.

    `date` is the competency date (when the obligation originated);
    `due_date` is when value actually moves. Drafts produced by the
    recurrence generator have no `id` or `created_at` yet.
    """

    # Identity (store-assigned)
    id: Optional[str] = None
    owner_id: str = Field(..., min_length=1)

    # Sensitive fields (encrypted at rest)
    description: str = Field(..., description="Plaintext description")
    amount: Decimal = Field(..., description="Amount in the ledger currency")

    kind: EntryKind
    category: str = Field(..., min_length=1, max_length=100)
    payment_method: PaymentMethod
    status: EntryStatus = EntryStatus.PENDING

    date: dt.date
    due_date: dt.date
    created_at: Optional[dt.datetime] = None
    is_encrypted: bool = False

    # Installment group
    group_id: Optional[str] = None
    installment_current: Optional[int] = None
    installment_total: Optional[int] = None

    @model_validator(mode='after')
    def validate_entry(self) -> 'LedgerEntry':
        """Validate installment and income-date invariants."""
        if self.group_id is not None:
            if self.installment_total is None or self.installment_total < 2:
                raise ValueError("Grouped entries need an installment total of at least 2")
            if (
                self.installment_current is None
                or not 1 <= self.installment_current <= self.installment_total
            ):
                raise ValueError("Installment index must be between 1 and the installment total")
        elif self.installment_current is not None or self.installment_total is not None:
            raise ValueError("Installment index/total require a group id")

        if self.kind == EntryKind.INCOME and self.date != self.due_date:
            raise ValueError("Income entries must have date equal to due date")

        return self

    @property
    def is_grouped(self) -> bool:
        return self.group_id is not None


class TransactionRequest(BaseModel):
    """
    A user request to record one logical transaction.

    For installment purchases `amount` is the TOTAL; the generator splits
    it (or repeats it, for recurring categories).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., description="Total amount")
    kind: EntryKind
    category: str = Field(..., min_length=1, max_length=100)
    payment_method: PaymentMethod
    date: dt.date = Field(..., description="Purchase date (or credit date for income)")
    due_date: Optional[dt.date] = Field(
        default=None,
        description="First due/credit date; defaults to `date`"
    )
    is_installment: bool = False
    installment_count: int = Field(
        default=1,
        description="Number of installments; values below 1 are clamped to 1"
    )

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("Amount must be a finite number")
        return v

    @model_validator(mode='after')
    def default_due_date(self) -> 'TransactionRequest':
        if self.due_date is None:
            self.due_date = self.date
        return self

    @property
    def count(self) -> int:
        """Effective number of entries to generate."""
        if not self.is_installment:
            return 1
        return max(1, int(self.installment_count))


class EntryPatch(BaseModel):
    """
    Partial update for one entry (or a whole group).

    Only fields explicitly set are applied; use `model_dump(exclude_unset=True)`.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = None
    kind: Optional[EntryKind] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    payment_method: Optional[PaymentMethod] = None
    status: Optional[EntryStatus] = None
    date: Optional[dt.date] = None
    due_date: Optional[dt.date] = None

    # Fields every member of a group shares; the rest are per-installment.
    GROUP_FIELDS: ClassVar[frozenset] = frozenset({"category", "payment_method", "amount", "description"})
    SENSITIVE_FIELDS: ClassVar[frozenset] = frozenset({"description", "amount"})

    def changes(self) -> dict:
        """Fields explicitly set on this patch."""
        return self.model_dump(exclude_unset=True)

    def group_changes(self) -> dict:
        """Subset of changes that may be applied to non-target group members."""
        return {k: v for k, v in self.changes().items() if k in self.GROUP_FIELDS}


# =============================================================================
# KEY MATERIAL
# =============================================================================

class KeyMaterial(BaseModel):
    """
    A derived per-owner symmetric key.

    CRITICAL: Never persisted. SecretBytes keeps the raw bytes out of
    reprs and logs.
    """
    model_config = ConfigDict(frozen=True)

    owner_id: str
    raw: SecretBytes

    def secret(self) -> bytes:
        return self.raw.get_secret_value()


# =============================================================================
# OVERVIEW
# =============================================================================

class LedgerOverview(BaseModel):
    """Balances for one owner as of a given day and month."""
    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    current_balance: Decimal
    projected_balance: Decimal
    pending_checkins: list[LedgerEntry] = Field(default_factory=list)
    entry_count: int = 0
