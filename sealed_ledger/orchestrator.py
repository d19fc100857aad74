"""
Main Orchestrator for Sealed Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Recording (request -> drafts -> encrypt -> one atomic batch)
2. Reading (store snapshot -> decode -> ordered entries -> summaries)
3. Editing (single entry or whole installment group, atomically)
4. Migration (legacy/plaintext entries -> current encryption scheme)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Only the migration path ever sees legacy keys
- Every mutation is audited
- Nothing reaches the store unencrypted unless the fallback is logged

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

import datetime as dt
from typing import AsyncIterator, Optional
from uuid import UUID

from sealed_ledger.audit import AuditLogger, configure_logging, create_correlation_id
from sealed_ledger.config import Settings, get_settings
from sealed_ledger.crypto import (
    CryptoEnvelope,
    CryptographyProvider,
    CryptoProvider,
    DirectoryLegacyKeySource,
    LegacyKeySource,
)
from sealed_ledger.ledger import (
    GroupMutationCoordinator,
    LedgerEntryCodec,
    LedgerFeed,
    MigrationService,
    RecurrenceGenerator,
    Subscription,
    can_settle,
    current_balance,
    pending_checkins,
    projected_balance,
)
from sealed_ledger.ledger.feed import ChangeCallback, ErrorCallback
from sealed_ledger.models.ledger import (
    EntryPatch,
    EntryStatus,
    LedgerEntry,
    LedgerOverview,
    TransactionRequest,
)
from sealed_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
    NotFoundError,
)


class InsufficientBalanceError(Exception):
    """An expense cannot be marked paid: the current balance does not cover it."""
    pass


class LedgerService:
    """
    Facade over the ledger components.

    Flow for a new transaction:
    1. Generate → N drafts (installments split, recurring charges repeated)
    2. Encrypt → description and amount per draft, concurrently
    3. Commit → one atomic batch
    4. Audit → entries_created

    Reads go through the feed, so callers always get fully decoded,
    store-ordered snapshots.
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        provider: Optional[CryptoProvider] = None,
        legacy_keys: Optional[LegacyKeySource] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        provider = provider or CryptographyProvider()
        crypto_settings = settings.crypto
        ledger_settings = settings.ledger

        self._store = store
        self._audit = audit_logger or AuditLogger()

        # Day-to-day path: no legacy keys
        self._envelope = CryptoEnvelope(provider=provider, settings=crypto_settings)
        self._codec = LedgerEntryCodec(self._envelope, crypto_settings)
        self._generator = RecurrenceGenerator(ledger_settings)
        self._coordinator = GroupMutationCoordinator(
            store, self._codec, self._audit, ledger_settings
        )
        self._feed = LedgerFeed(store, self._codec, ledger_settings, self._audit)

        # Migration path: the only holder of the legacy key source
        migration_envelope = CryptoEnvelope(
            provider=provider,
            legacy_keys=legacy_keys,
            settings=crypto_settings,
        )
        self._migration = MigrationService(
            store, migration_envelope, self._audit, ledger_settings
        )

    @property
    def envelope(self) -> CryptoEnvelope:
        return self._envelope

    @property
    def codec(self) -> LedgerEntryCodec:
        return self._codec

    # =========================================================================
    # RECORDING
    # =========================================================================

    async def add_transaction(
        self,
        owner_id: str,
        request: TransactionRequest,
        correlation_id: Optional[UUID] = None,
    ) -> list[LedgerEntry]:
        """
        Record a transaction (one entry, or a whole installment group).

        Returns:
            The persisted entries, in installment order
        """
        correlation_id = correlation_id or create_correlation_id()
        drafts = self._generator.generate(owner_id, request)
        return await self._coordinator.create_entries(owner_id, drafts, correlation_id)

    # =========================================================================
    # READING
    # =========================================================================

    async def list_entries(self, owner_id: str) -> list[LedgerEntry]:
        """One decoded snapshot, ordered by due date (newest first)."""
        records = await self._store.query(owner_id)
        return await self._feed.decode_all(records)

    def snapshots(self, owner_id: str) -> AsyncIterator[list[LedgerEntry]]:
        return self._feed.snapshots(owner_id)

    def subscribe(
        self,
        owner_id: str,
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        return self._feed.subscribe(owner_id, on_change, on_error)

    async def overview(
        self,
        owner_id: str,
        month: str,
        today: Optional[dt.date] = None,
    ) -> LedgerOverview:
        """Current and projected balances plus the due-but-pending entries."""
        entries = await self.list_entries(owner_id)
        return LedgerOverview(
            month=month,
            current_balance=current_balance(entries),
            projected_balance=projected_balance(entries, month),
            pending_checkins=pending_checkins(entries, today or dt.date.today()),
            entry_count=len(entries),
        )

    async def fingerprint(self, owner_id: str) -> str:
        return await self._envelope.fingerprint(owner_id)

    # =========================================================================
    # EDITING
    # =========================================================================

    async def update_entry(
        self,
        owner_id: str,
        entry_id: str,
        patch: EntryPatch,
        apply_to_group: bool = False,
    ) -> LedgerEntry:
        return await self._coordinator.update_entry(
            owner_id, entry_id, patch, apply_to_group, create_correlation_id()
        )

    async def delete_entry(
        self,
        owner_id: str,
        entry_id: str,
        cascade_group: bool = False,
    ) -> int:
        return await self._coordinator.delete_entry(
            owner_id, entry_id, cascade_group, create_correlation_id()
        )

    async def cancel_future_installments(
        self,
        owner_id: str,
        group_id: str,
        keep_until_due_date: dt.date,
    ) -> int:
        return await self._coordinator.cancel_future_installments(
            owner_id, group_id, keep_until_due_date, create_correlation_id()
        )

    async def toggle_status(
        self,
        owner_id: str,
        entry_id: str,
        current_status: EntryStatus,
    ) -> EntryStatus:
        return await self._coordinator.toggle_status(
            owner_id, entry_id, current_status, create_correlation_id()
        )

    async def check_in(self, owner_id: str, entry_id: str, mark_paid: bool) -> EntryStatus:
        """
        Confirm (or undo) settlement of a due entry.

        Raises:
            NotFoundError: The entry does not exist
            InsufficientBalanceError: Paying this expense would overdraw the balance
        """
        entries = await self.list_entries(owner_id)
        entry = next((e for e in entries if e.id == entry_id), None)
        if entry is None:
            raise NotFoundError(f"Entry not found: {entry_id}")

        if mark_paid and not can_settle(entries, entry):
            raise InsufficientBalanceError(
                f"Current balance {current_balance(entries)} does not cover {entry.amount}"
            )

        current = EntryStatus.PENDING if mark_paid else EntryStatus.PAID
        return await self.toggle_status(owner_id, entry_id, current)

    # =========================================================================
    # MIGRATION
    # =========================================================================

    async def migrate(self, owner_id: str) -> int:
        """Re-encrypt legacy and plaintext entries; returns entries rewritten."""
        return await self._migration.migrate(owner_id, create_correlation_id())


def create_app_components(
    store: Optional[LedgerStoreInterface] = None,
    settings: Optional[Settings] = None,
) -> tuple[LedgerService, AuditLogger]:
    """
    Factory function to create all application components.

    Args:
        store: Ledger store to use. Defaults to the in-memory store
               (for local runs and tests).
        settings: Settings to use. Defaults to the cached environment settings.

    Returns:
        (ledger_service, audit_logger)
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)

    audit_logger = AuditLogger(InMemoryAuditStorage())

    legacy_keys = None
    legacy_dir = settings.crypto.legacy_key_dir
    if legacy_dir:
        legacy_keys = DirectoryLegacyKeySource(legacy_dir)

    service = LedgerService(
        store=store or InMemoryLedgerStore(),
        legacy_keys=legacy_keys,
        audit_logger=audit_logger,
        settings=settings,
    )
    return service, audit_logger
