"""
In-Memory Storage Implementation

Reference implementation of the store contract, used by tests and local
runs. It honours the parts of the contract the ledger depends on:

- commit() validates the WHOLE batch before touching state, then swaps in
  the new state in one step, so a failed batch leaves nothing behind
- watch() delivers the full ordered snapshot first, then again after every
  commit that touches the owner's records
- createdAt is assigned by the store, like a server timestamp
"""

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import structlog

from sealed_ledger.models.audit import AuditEvent
from sealed_ledger.services.storage.interface import (
    ORDERABLE_FIELDS,
    AuditStorageInterface,
    BatchCommitError,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    WriteBatch,
)


logger = structlog.get_logger(__name__)


def _sort_key(order_by: str):
    def key(record: dict[str, Any]):
        value = record.get(order_by)
        return (value is not None, value if value is not None else "")
    return key


def _order(records: list[dict[str, Any]], order_by: str, descending: bool) -> list[dict[str, Any]]:
    if order_by not in ORDERABLE_FIELDS:
        raise StorageError(f"Cannot order by {order_by!r}")
    return sorted(records, key=_sort_key(order_by), reverse=descending)


class InMemoryLedgerStore(LedgerStoreInterface):
    """
    Dict-backed ledger store.

    State is {owner_id: {entry_id: record}}. Records are copied on the way
    in and out so callers can never mutate stored state directly.
    """

    def __init__(self):
        self._data: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._watchers: dict[str, list[tuple[asyncio.Queue, str, bool]]] = defaultdict(list)
        self._pending_failures: list[Exception] = []
        self._lock = asyncio.Lock()
        self.commit_count = 0

    def inject_failure(self, exc: Exception, times: int = 1) -> None:
        """Make the next `times` commits raise `exc` without applying anything."""
        self._pending_failures.extend([exc] * times)

    def _snapshot(self, owner_id: str, order_by: str, descending: bool) -> list[dict[str, Any]]:
        records = [
            {"id": entry_id, **record}
            for entry_id, record in self._data.get(owner_id, {}).items()
        ]
        return _order(records, order_by, descending)

    async def get(self, owner_id: str, entry_id: str) -> Optional[dict[str, Any]]:
        record = self._data.get(owner_id, {}).get(entry_id)
        if record is None:
            return None
        return {"id": entry_id, **record}

    async def query(
        self,
        owner_id: str,
        *,
        group_id: Optional[str] = None,
        due_date_after: Optional[str] = None,
        order_by: str = "dueDate",
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        records = self._snapshot(owner_id, order_by, descending)
        if group_id is not None:
            records = [r for r in records if r.get("groupId") == group_id]
        if due_date_after is not None:
            records = [
                r for r in records
                if r.get("dueDate") is not None and r["dueDate"] > due_date_after
            ]
        return records

    async def watch(
        self,
        owner_id: str,
        order_by: str = "dueDate",
        descending: bool = True,
    ) -> AsyncIterator[list[dict[str, Any]]]:
        queue: asyncio.Queue = asyncio.Queue()
        watcher = (queue, order_by, descending)
        self._watchers[owner_id].append(watcher)
        try:
            yield self._snapshot(owner_id, order_by, descending)
            while True:
                yield await queue.get()
        finally:
            self._watchers[owner_id].remove(watcher)

    async def commit(self, batch: WriteBatch) -> None:
        async with self._lock:
            if self._pending_failures:
                raise self._pending_failures.pop(0)

            staged = {owner: dict(entries) for owner, entries in self._data.items()}
            touched: set[str] = set()
            now = datetime.now(timezone.utc)

            for op in batch.operations:
                entries = staged.setdefault(op.owner_id, {})
                if op.kind == "create":
                    if op.entry_id in entries:
                        raise DuplicateError(f"Entry already exists: {op.entry_id}")
                    entries[op.entry_id] = {**op.fields, "createdAt": now}
                elif op.kind == "update":
                    if op.entry_id not in entries:
                        raise NotFoundError(f"Entry not found: {op.entry_id}")
                    entries[op.entry_id] = {**entries[op.entry_id], **op.fields}
                elif op.kind == "delete":
                    if op.entry_id not in entries:
                        raise NotFoundError(f"Entry not found: {op.entry_id}")
                    del entries[op.entry_id]
                else:
                    raise BatchCommitError(f"Unknown operation: {op.kind}")
                touched.add(op.owner_id)

            self._data = defaultdict(dict, staged)
            self.commit_count += 1

        logger.debug("batch_committed", operations=len(batch), owners=len(touched))
        for owner_id in touched:
            for queue, order_by, descending in list(self._watchers.get(owner_id, [])):
                queue.put_nowait(self._snapshot(owner_id, order_by, descending))


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        matches = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(matches, key=lambda e: e.timestamp)

    async def get_events_by_owner(
        self,
        owner_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        matches = [e for e in self._events if e.owner_id == owner_id]
        return sorted(matches, key=lambda e: e.timestamp, reverse=True)[:limit]
