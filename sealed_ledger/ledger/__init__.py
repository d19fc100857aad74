"""
Ledger Package

Business logic on top of the crypto and storage layers: encoding entries,
generating installments, coordinating atomic mutations, migrating legacy
ciphertext, streaming decoded snapshots and summarising balances.
"""

from sealed_ledger.ledger.codec import (
    FIELD_NAMES,
    LedgerEntryCodec,
    format_amount,
    parse_amount,
)
from sealed_ledger.ledger.coordinator import GroupMutationCoordinator
from sealed_ledger.ledger.feed import LedgerFeed, Subscription
from sealed_ledger.ledger.migration import MigrationInProgressError, MigrationService
from sealed_ledger.ledger.recurrence import (
    RecurrenceGenerator,
    add_months_clamped,
    resolve_dates,
    strip_installment_suffix,
    with_installment_suffix,
)
from sealed_ledger.ledger.summary import (
    can_settle,
    current_balance,
    entries_for_month,
    month_end,
    monthly_net,
    pending_checkins,
    projected_balance,
)

__all__ = [
    # Codec
    "FIELD_NAMES",
    "LedgerEntryCodec",
    "format_amount",
    "parse_amount",
    # Generation
    "RecurrenceGenerator",
    "add_months_clamped",
    "resolve_dates",
    "strip_installment_suffix",
    "with_installment_suffix",
    # Mutations
    "GroupMutationCoordinator",
    "MigrationInProgressError",
    "MigrationService",
    # Reads
    "LedgerFeed",
    "Subscription",
    # Summaries
    "can_settle",
    "current_balance",
    "entries_for_month",
    "month_end",
    "monthly_net",
    "pending_checkins",
    "projected_balance",
]
