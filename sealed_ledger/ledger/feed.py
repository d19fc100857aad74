"""
Ledger Feed

Turns the store's raw snapshot stream into decoded, ordered entry lists.

Pipeline per snapshot:
    records -> decode each (bounded concurrency) -> reassemble in store order -> emit once

A subscriber never sees a half-decoded snapshot or entries out of order.
"""

import asyncio
import inspect
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

import structlog

from sealed_ledger.audit import AuditLogger
from sealed_ledger.config import LedgerSettings, get_settings
from sealed_ledger.ledger.codec import LedgerEntryCodec
from sealed_ledger.models.ledger import LedgerEntry
from sealed_ledger.services.storage import LedgerStoreInterface


logger = structlog.get_logger(__name__)

ChangeCallback = Callable[[list[LedgerEntry]], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Exception], Union[None, Awaitable[None]]]


async def _call(callback: Callable, arg: Any) -> None:
    result = callback(arg)
    if inspect.isawaitable(result):
        await result


class Subscription:
    """Handle for a running feed subscription."""

    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        """Stop delivering snapshots."""
        self._task.cancel()

    async def wait(self) -> None:
        """Wait until the subscription ends (cancelled or failed)."""
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class LedgerFeed:
    """Decoded, ordered snapshots of an owner's ledger."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        codec: LedgerEntryCodec,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._codec = codec
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger or AuditLogger()

    async def decode_all(self, records: list[dict[str, Any]]) -> list[LedgerEntry]:
        """
        Decode records concurrently; the result keeps the input order.

        A malformed record (missing field, unknown enum value, failed model
        validation) is logged and left out rather than failing the snapshot.
        """
        semaphore = asyncio.Semaphore(self._settings.decode_concurrency)

        async def decode(record: dict[str, Any]) -> Optional[LedgerEntry]:
            async with semaphore:
                try:
                    return await self._codec.from_storage(record)
                except (KeyError, ValueError) as e:
                    logger.warning(
                        "record_skipped",
                        owner_id=record.get("ownerId"),
                        entry_id=record.get("id"),
                        error=str(e),
                    )
                    return None

        decoded = await asyncio.gather(*(decode(r) for r in records))
        return [entry for entry in decoded if entry is not None]

    async def snapshots(
        self,
        owner_id: str,
        order_by: str = "dueDate",
        descending: bool = True,
    ) -> AsyncIterator[list[LedgerEntry]]:
        """
        Yield the decoded ledger now, then again after every change.
        """
        async for records in self._store.watch(owner_id, order_by, descending):
            entries = await self.decode_all(records)
            logger.debug("snapshot_decoded", owner_id=owner_id, entries=len(entries))
            yield entries

    def subscribe(
        self,
        owner_id: str,
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Deliver every snapshot to `on_change` until cancelled.

        Callbacks may be plain functions or coroutines. An exception from the
        store or the decoder ends the subscription, is audited as a system error
        and goes to `on_error`.
        Must be called from a running event loop.
        """
        async def run() -> None:
            try:
                async for entries in self.snapshots(owner_id):
                    await _call(on_change, entries)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("subscription_failed", owner_id=owner_id, error=str(e))
                await self._audit.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    owner_id=owner_id,
                    details={"stage": "subscription"},
                )
                if on_error is None:
                    raise
                await _call(on_error, e)

        return Subscription(asyncio.create_task(run()))
