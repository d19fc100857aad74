"""
Ledger Summaries

Pure functions over decoded entries; nothing here touches the store or
the crypto layer.

- Current balance: only what has actually settled (status paid).
- Projected balance: current balance plus everything still pending that
  falls due up to the end of a given month.
"""

import calendar
import datetime as dt
from collections import defaultdict
from decimal import Decimal
from typing import Iterable

from sealed_ledger.models.ledger import EntryKind, EntryStatus, LedgerEntry


def _signed(entry: LedgerEntry) -> Decimal:
    return entry.amount if entry.kind == EntryKind.INCOME else -entry.amount


def month_key(day: dt.date) -> str:
    return day.strftime("%Y-%m")


def month_end(month: str) -> dt.date:
    """
    Last day of a "YYYY-MM" month.

    Raises:
        ValueError: Malformed month
    """
    year, month_number = (int(part) for part in month.split("-"))
    return dt.date(year, month_number, calendar.monthrange(year, month_number)[1])


def current_balance(entries: Iterable[LedgerEntry]) -> Decimal:
    """Paid income minus paid expenses."""
    return sum(
        (_signed(e) for e in entries if e.status == EntryStatus.PAID),
        Decimal("0"),
    )


def projected_balance(entries: Iterable[LedgerEntry], month: str) -> Decimal:
    """Current balance plus pending net due on or before the end of `month`."""
    entries = list(entries)
    end = month_end(month)
    pending_net = sum(
        (
            _signed(e) for e in entries
            if e.status == EntryStatus.PENDING and e.due_date <= end
        ),
        Decimal("0"),
    )
    return current_balance(entries) + pending_net


def pending_checkins(entries: Iterable[LedgerEntry], today: dt.date) -> list[LedgerEntry]:
    """Pending entries already due (due date on or before `today`)."""
    return [
        e for e in entries
        if e.status == EntryStatus.PENDING and e.due_date <= today
    ]


def can_settle(entries: Iterable[LedgerEntry], entry: LedgerEntry) -> bool:
    """
    Whether marking `entry` as paid keeps the current balance covered.

    Income can always be settled; an expense needs a current balance of at
    least its amount.
    """
    if entry.kind == EntryKind.INCOME:
        return True
    return current_balance(entries) >= entry.amount


def entries_for_month(entries: Iterable[LedgerEntry], month: str) -> list[LedgerEntry]:
    """Entries whose due date falls in `month` ("YYYY-MM")."""
    return [e for e in entries if month_key(e.due_date) == month]


def monthly_net(entries: Iterable[LedgerEntry]) -> dict[str, Decimal]:
    """Net amount (income minus expense, any status) per due-date month, sorted."""
    totals: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for entry in entries:
        totals[month_key(entry.due_date)] += _signed(entry)
    return dict(sorted(totals.items()))
