"""
Group Mutation Coordinator

Every write to the ledger goes through here. The coordinator turns a
logical mutation (create a group, edit one installment, cascade a delete)
into ONE atomic store batch.

DESIGN DECISIONS:
1. One mutation, one batch. A group edit or cascade delete is never
   split across commits, so a failure leaves the ledger exactly as it was.
2. Group edits only propagate group-invariant fields (category, payment
   method, amount, description). Date, due date and status belong to each
   installment and are only ever written on the entry the user targeted.
3. Payment status is per installment. Toggling never cascades.
4. Transient store outages are retried (tenacity); any other storage
   error propagates on the first attempt.
"""

import asyncio
import datetime as dt
from typing import Any, Optional
from uuid import UUID

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from sealed_ledger.audit import AuditLogger
from sealed_ledger.config import LedgerSettings, get_settings
from sealed_ledger.ledger.codec import SENSITIVE_FIELDS, LedgerEntryCodec, parse_amount
from sealed_ledger.ledger.recurrence import resolve_dates, with_installment_suffix
from sealed_ledger.models.audit import AuditEventBuilder
from sealed_ledger.models.ledger import (
    EntryKind,
    EntryPatch,
    EntryStatus,
    LedgerEntry,
)
from sealed_ledger.services.storage import (
    ConnectionError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    WriteBatch,
)


logger = structlog.get_logger(__name__)

# Changes to any of these re-run the date model on the target entry
DATE_MODEL_FIELDS = frozenset({"date", "due_date", "kind", "payment_method"})


class GroupMutationCoordinator:
    """Atomic create/update/delete of ledger entries and installment groups."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        codec: LedgerEntryCodec,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._codec = codec
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger

        self._commit_with_retry = retry(
            stop=stop_after_attempt(self._settings.commit_retry_attempts),
            wait=wait_exponential(multiplier=0.1, max=2),
            retry=retry_if_exception_type(ConnectionError),
            reraise=True,
        )(self._store.commit)

    async def _commit(
        self,
        owner_id: str,
        batch: WriteBatch,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Commit a batch, auditing (and re-raising) any failure."""
        try:
            await self._commit_with_retry(batch)
        except StorageError as e:
            logger.error(
                "batch_commit_failed",
                owner_id=owner_id,
                operation=operation,
                operations=len(batch),
                error=str(e),
            )
            await self._audit.log_commit_failed(
                owner_id=owner_id,
                operation=operation,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise

    async def _report_fallbacks(
        self,
        owner_id: str,
        before: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        fallbacks = self._codec.envelope.plaintext_fallbacks - before
        if fallbacks > 0:
            await self._audit.log(AuditEventBuilder.encryption_fallback(
                owner_id=owner_id,
                fallbacks=fallbacks,
                correlation_id=correlation_id,
            ))

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_entries(
        self,
        owner_id: str,
        drafts: list[LedgerEntry],
        correlation_id: Optional[UUID] = None,
    ) -> list[LedgerEntry]:
        """
        Encrypt and persist drafts in one atomic batch.

        All encryptions are awaited before anything is submitted, so a
        group is either fully created or not at all.

        Returns:
            The drafts with their store-assigned ids
        """
        if not drafts:
            return []

        fallbacks_before = self._codec.envelope.plaintext_fallbacks
        records = await asyncio.gather(*(self._codec.to_storage(d) for d in drafts))

        batch = self._store.new_batch()
        entry_ids = [batch.create(owner_id, record) for record in records]
        await self._commit(owner_id, batch, "create_entries", correlation_id)

        group_id = drafts[0].group_id
        logger.info(
            "entries_created",
            owner_id=owner_id,
            count=len(entry_ids),
            group_id=group_id,
        )
        await self._report_fallbacks(owner_id, fallbacks_before, correlation_id)
        await self._audit.log(AuditEventBuilder.entries_created(
            owner_id=owner_id,
            entry_ids=entry_ids,
            group_id=group_id,
            correlation_id=correlation_id,
        ))

        return [
            draft.model_copy(update={"id": entry_id, "is_encrypted": record["isEncrypted"]})
            for draft, entry_id, record in zip(drafts, entry_ids, records)
        ]

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_entry(
        self,
        owner_id: str,
        entry_id: str,
        cascade_group: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Delete one entry, or its whole installment group.

        A missing entry is a no-op.

        Returns:
            Number of entries deleted
        """
        record = await self._store.get(owner_id, entry_id)
        if record is None:
            logger.debug("delete_missing_entry", owner_id=owner_id, entry_id=entry_id)
            return 0

        group_id = record.get("groupId") if cascade_group else None
        if group_id:
            members = await self._store.query(owner_id, group_id=group_id)
            entry_ids = [member["id"] for member in members]
        else:
            entry_ids = [entry_id]

        batch = self._store.new_batch()
        for member_id in entry_ids:
            batch.delete(owner_id, member_id)
        await self._commit(owner_id, batch, "delete_entry", correlation_id)

        logger.info(
            "entries_deleted",
            owner_id=owner_id,
            count=len(entry_ids),
            group_id=group_id,
        )
        await self._audit.log(AuditEventBuilder.entries_deleted(
            owner_id=owner_id,
            entry_ids=entry_ids,
            group_id=group_id,
            correlation_id=correlation_id,
        ))
        return len(entry_ids)

    async def cancel_future_installments(
        self,
        owner_id: str,
        group_id: str,
        keep_until_due_date: dt.date,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Delete every group member due strictly after `keep_until_due_date`.

        Members due on the boundary date itself are kept. Irreversible.

        Returns:
            Number of installments cancelled
        """
        keep_until = keep_until_due_date.isoformat()
        members = await self._store.query(
            owner_id,
            group_id=group_id,
            due_date_after=keep_until,
        )
        if not members:
            return 0

        entry_ids = [member["id"] for member in members]
        batch = self._store.new_batch()
        for member_id in entry_ids:
            batch.delete(owner_id, member_id)
        await self._commit(owner_id, batch, "cancel_future_installments", correlation_id)

        logger.info(
            "installments_cancelled",
            owner_id=owner_id,
            group_id=group_id,
            keep_until=keep_until,
            count=len(entry_ids),
        )
        await self._audit.log(AuditEventBuilder.installments_cancelled(
            owner_id=owner_id,
            group_id=group_id,
            keep_until=keep_until,
            entry_ids=entry_ids,
            correlation_id=correlation_id,
        ))
        return len(entry_ids)

    # =========================================================================
    # UPDATE
    # =========================================================================

    def _normalized_dates(self, target: LedgerEntry, changes: dict[str, Any]) -> tuple[dt.date, dt.date]:
        kind = changes.get("kind", target.kind)
        date = changes.get("date", target.date)
        if "due_date" in changes:
            due_date = changes["due_date"]
        elif kind == EntryKind.INCOME and "date" in changes:
            # Income has one date; editing it moves the credit date
            due_date = None
        else:
            due_date = target.due_date

        return resolve_dates(
            kind,
            changes.get("payment_method", target.payment_method),
            date,
            due_date,
            self._settings,
        )

    async def _encode_update(
        self,
        owner_id: str,
        record: dict[str, Any],
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Persisted fields for applying `changes` to `record`.

        A record that is still plaintext gets BOTH sensitive fields
        encrypted, so it never ends up flagged encrypted with one
        plaintext field left behind.
        """
        fields = self._codec.serialize_changes(changes)
        sensitive = {name: changes[name] for name in SENSITIVE_FIELDS if name in changes}
        if not sensitive:
            return fields

        was_encrypted = bool(record.get("isEncrypted", False))
        if not was_encrypted:
            envelope = self._codec.envelope
            if "description" not in sensitive:
                sensitive["description"] = await envelope.decrypt_field(
                    record.get("description", ""), owner_id
                )
            if "amount" not in sensitive:
                sensitive["amount"] = parse_amount(
                    await envelope.decrypt_field(record.get("amount"), owner_id)
                )

        encrypted = await self._codec.encrypt_fields(owner_id, sensitive)
        fields.update(encrypted)
        fields["isEncrypted"] = was_encrypted or all(
            self._codec.envelope.is_envelope(value) for value in encrypted.values()
        )
        return fields

    async def update_entry(
        self,
        owner_id: str,
        entry_id: str,
        patch: EntryPatch,
        apply_to_group: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEntry:
        """
        Apply a patch to one entry, optionally propagating it to its group.

        The target receives the full patch. With `apply_to_group`, every other
        member receives only the group-invariant fields, with the description
        re-suffixed using that member's own installment position.

        Returns:
            The updated target entry

        Raises:
            NotFoundError: The entry does not exist
            pydantic.ValidationError: The patched entry would be invalid
        """
        record = await self._store.get(owner_id, entry_id)
        if record is None:
            raise NotFoundError(f"Entry not found: {entry_id}")

        target = await self._codec.from_storage(record)
        changes = patch.changes()
        if not changes:
            return target

        target_changes = dict(changes)
        if target.is_grouped and "description" in target_changes:
            target_changes["description"] = with_installment_suffix(
                target_changes["description"],
                target.installment_current,
                target.installment_total,
            )
        if DATE_MODEL_FIELDS & changes.keys():
            target_changes["date"], target_changes["due_date"] = self._normalized_dates(
                target, changes
            )

        # Validate the merged entry before any encryption or write
        updated = LedgerEntry.model_validate({**target.model_dump(), **target_changes})

        members: list[dict[str, Any]] = []
        member_changes = patch.group_changes()
        if apply_to_group and target.is_grouped and member_changes:
            members = [
                member
                for member in await self._store.query(owner_id, group_id=target.group_id)
                if member["id"] != entry_id
            ]

        def changes_for(member: dict[str, Any]) -> dict[str, Any]:
            own = dict(member_changes)
            if "description" in own:
                own["description"] = with_installment_suffix(
                    own["description"],
                    member["installmentCurrent"],
                    member["installmentTotal"],
                )
            return own

        fallbacks_before = self._codec.envelope.plaintext_fallbacks
        target_fields, *member_fields = await asyncio.gather(
            self._encode_update(owner_id, record, target_changes),
            *(self._encode_update(owner_id, m, changes_for(m)) for m in members),
        )

        batch = self._store.new_batch()
        batch.update(owner_id, entry_id, target_fields)
        for member, fields in zip(members, member_fields):
            batch.update(owner_id, member["id"], fields)

        operation = "update_group" if members else "update_entry"
        await self._commit(owner_id, batch, operation, correlation_id)
        await self._report_fallbacks(owner_id, fallbacks_before, correlation_id)

        if members:
            logger.info(
                "group_updated",
                owner_id=owner_id,
                group_id=target.group_id,
                members=len(members) + 1,
                fields=sorted(changes),
            )
            await self._audit.log(AuditEventBuilder.group_updated(
                owner_id=owner_id,
                group_id=target.group_id,
                target_id=entry_id,
                member_count=len(members) + 1,
                fields=list(changes),
                correlation_id=correlation_id,
            ))
        else:
            logger.info("entry_updated", owner_id=owner_id, entry_id=entry_id, fields=sorted(changes))
            await self._audit.log(AuditEventBuilder.entry_updated(
                owner_id=owner_id,
                entry_id=entry_id,
                fields=list(changes),
                correlation_id=correlation_id,
            ))

        return updated.model_copy(
            update={"is_encrypted": target_fields.get("isEncrypted", target.is_encrypted)}
        )

    async def toggle_status(
        self,
        owner_id: str,
        entry_id: str,
        current_status: EntryStatus,
        correlation_id: Optional[UUID] = None,
    ) -> EntryStatus:
        """
        Flip one entry between paid and pending. Never cascades.

        Raises:
            NotFoundError: The entry does not exist
        """
        new_status = EntryStatus(current_status).toggled()

        batch = self._store.new_batch()
        batch.update(owner_id, entry_id, {"status": new_status.value})
        await self._commit(owner_id, batch, "toggle_status", correlation_id)

        await self._audit.log(AuditEventBuilder.status_toggled(
            owner_id=owner_id,
            entry_id=entry_id,
            new_status=new_status.value,
            correlation_id=correlation_id,
        ))
        return new_status
