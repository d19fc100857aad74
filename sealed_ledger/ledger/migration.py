"""
Encryption Migration

Moves an owner's ledger onto the deterministic-key scheme.

Entries can be in one of three states:
1. Encrypted with a device-local legacy key -> decrypt with it, re-encrypt
2. Stored as plaintext (written before encryption existed) -> encrypt
3. Already on the current scheme -> leave alone

DESIGN DECISIONS:
1. The whole sweep commits as ONE batch at the end. A crypto failure part
   way through aborts before anything is written; the work done so far is
   discarded and redone on the next run.
2. Encryption here is strict. Falling back to plaintext during a migration
   would silently undo what the migration is for.
3. Running twice is safe: after a successful run no legacy key decrypts
   anything and every entry is flagged, so the second run touches nothing.
4. Two sweeps for the same owner must not overlap (a race could encrypt an
   already-migrated value twice). This is guarded per owner within one
   process; separate processes are NOT coordinated.
"""

import asyncio
from collections import defaultdict
from typing import Any, Optional
from uuid import UUID

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from sealed_ledger.audit import AuditLogger
from sealed_ledger.config import LedgerSettings, get_settings
from sealed_ledger.crypto import CryptoEnvelope, CryptoError
from sealed_ledger.models.audit import AuditEventBuilder
from sealed_ledger.services.storage import (
    ConnectionError,
    LedgerStoreInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)


class MigrationInProgressError(Exception):
    """A migration for this owner is already running in this process."""
    pass


class MigrationService:
    """Re-encrypts legacy and plaintext entries under the derived key."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        envelope: CryptoEnvelope,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._envelope = envelope
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

        self._commit_with_retry = retry(
            stop=stop_after_attempt(self._settings.commit_retry_attempts),
            wait=wait_exponential(multiplier=0.1, max=2),
            retry=retry_if_exception_type(ConnectionError),
            reraise=True,
        )(self._store.commit)

    def is_running(self, owner_id: str) -> bool:
        return owner_id in self._locks and self._locks[owner_id].locked()

    async def _migrated_fields(self, record: dict[str, Any], owner_id: str) -> Optional[dict[str, Any]]:
        """
        New persisted fields for one record, or None if it needs no work.
        """
        stored_description = record.get("description", "")
        stored_amount = record.get("amount", "")

        legacy_description, legacy_amount = await asyncio.gather(
            self._envelope.legacy_decrypt(stored_description, owner_id),
            self._envelope.legacy_decrypt(stored_amount, owner_id),
        )

        if legacy_description is not None or legacy_amount is not None:
            # The field that did not legacy-decrypt may already be current
            # ciphertext; decrypt it so it is not encrypted twice.
            description = (
                legacy_description if legacy_description is not None
                else await self._envelope.decrypt_field(stored_description, owner_id)
            )
            amount = (
                legacy_amount if legacy_amount is not None
                else await self._envelope.decrypt_field(stored_amount, owner_id)
            )
        elif not record.get("isEncrypted", False):
            # A partial plaintext fallback leaves one field already on the
            # current scheme under an unset flag.
            description, amount = await asyncio.gather(
                self._envelope.decrypt_field(stored_description, owner_id),
                self._envelope.decrypt_field(stored_amount, owner_id),
            )
        else:
            return None

        encrypted_description, encrypted_amount = await asyncio.gather(
            self._envelope.encrypt_field(description, owner_id, strict=True),
            self._envelope.encrypt_field(amount, owner_id, strict=True),
        )
        return {
            "description": encrypted_description,
            "amount": encrypted_amount,
            "isEncrypted": True,
        }

    async def migrate(self, owner_id: str, correlation_id: Optional[UUID] = None) -> int:
        """
        Sweep an owner's entries and re-encrypt whatever needs it.

        Returns:
            Number of entries rewritten (0 when nothing needed migrating)

        Raises:
            MigrationInProgressError: A sweep for this owner is already running
            CryptoError: Encryption failed; nothing was committed
            StorageError: The final batch was rejected; nothing was committed
        """
        lock = self._locks[owner_id]
        if lock.locked():
            raise MigrationInProgressError(f"Migration already running for owner {owner_id}")

        async with lock:
            try:
                records = await self._store.query(owner_id)
                batch = self._store.new_batch()
                for record in records:
                    fields = await self._migrated_fields(record, owner_id)
                    if fields is not None:
                        batch.update(owner_id, record["id"], fields)

                if batch:
                    await self._commit_with_retry(batch)
            except (CryptoError, StorageError) as e:
                logger.error("migration_failed", owner_id=owner_id, error=str(e))
                await self._audit.log(AuditEventBuilder.migration_failed(
                    owner_id=owner_id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                ))
                raise

        logger.info(
            "migration_completed",
            owner_id=owner_id,
            scanned=len(records),
            migrated=len(batch),
        )
        await self._audit.log(AuditEventBuilder.migration_completed(
            owner_id=owner_id,
            scanned=len(records),
            migrated=len(batch),
            correlation_id=correlation_id,
        ))
        return len(batch)
