"""
Recurrence Generator

Expands one TransactionRequest into N LedgerEntry drafts.

Two distinct business rules share the same shape:
- Installment purchase: the total is SPLIT across N monthly due dates.
- Recurring charge (subscription categories): the FULL amount repeats on
  each of the N due dates.

The competency date (`date`) never moves for expenses; only the due date
advances. Income has a single date: the credit date.
"""

import calendar
import datetime as dt
import re
from decimal import Decimal
from typing import Optional
from uuid import uuid4

import structlog

from sealed_ledger.config import LedgerSettings, get_settings
from sealed_ledger.models.ledger import (
    EntryKind,
    EntryStatus,
    LedgerEntry,
    PaymentMethod,
    TransactionRequest,
    round2,
)


logger = structlog.get_logger(__name__)

_SUFFIX_PATTERN = re.compile(r"\s*\(\d+/\d+\)\s*$")


def add_months_clamped(start: dt.date, months: int) -> dt.date:
    """
    Add calendar months, clamping the day to the destination month's end.

    >>> add_months_clamped(dt.date(2025, 1, 31), 1)
    datetime.date(2025, 2, 28)
    """
    total = start.month - 1 + months
    year = start.year + total // 12
    month = total % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return dt.date(year, month, day)


def strip_installment_suffix(description: str) -> str:
    """Remove a trailing "(i/N)" marker, if any."""
    return _SUFFIX_PATTERN.sub("", description)


def with_installment_suffix(description: str, current: int, total: int) -> str:
    return f"{strip_installment_suffix(description)} ({current}/{total})"


def resolve_dates(
    kind: EntryKind,
    payment_method: PaymentMethod,
    date: dt.date,
    due_date: Optional[dt.date],
    settings: Optional[LedgerSettings] = None,
) -> tuple[dt.date, dt.date]:
    """
    Apply the date model to a (date, due_date) pair.

    - income: a single date, the credit date (`due_date` when given)
    - expense by a method with a separate due date: both kept
    - any other expense: due date collapses to the competency date
    """
    settings = settings or get_settings().ledger

    if kind == EntryKind.INCOME:
        credit = due_date or date
        return credit, credit

    if payment_method.value in settings.due_date_payment_methods_set:
        return date, due_date or date

    return date, date


class RecurrenceGenerator:
    """Builds installment/recurrence drafts from a transaction request."""

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def is_recurring(self, category: str) -> bool:
        """Recurring categories repeat the full amount instead of splitting it."""
        return category in self._settings.recurring_categories_set

    def installment_amount(self, total: Decimal, count: int, category: str) -> Decimal:
        if self.is_recurring(category):
            return total
        return round2(total / count)

    def generate(self, owner_id: str, request: TransactionRequest) -> list[LedgerEntry]:
        """
        Expand a request into drafts (no id, no created_at yet).

        Args:
            owner_id: Ledger owner
            request: The user's transaction

        Returns:
            `request.count` drafts, in installment order
        """
        count = request.count
        base_date, base_due = resolve_dates(
            request.kind,
            request.payment_method,
            request.date,
            request.due_date,
            self._settings,
        )
        amount = self.installment_amount(request.amount, count, request.category)
        group_id = uuid4().hex if count > 1 else None

        drafts = []
        for i in range(count):
            due = add_months_clamped(base_due, i)
            date = due if request.kind == EntryKind.INCOME else base_date
            drafts.append(LedgerEntry(
                owner_id=owner_id,
                description=(
                    with_installment_suffix(request.description, i + 1, count)
                    if count > 1 else request.description
                ),
                amount=amount,
                kind=request.kind,
                category=request.category,
                payment_method=request.payment_method,
                status=EntryStatus.PENDING,
                date=date,
                due_date=due,
                group_id=group_id,
                installment_current=i + 1 if group_id else None,
                installment_total=count if group_id else None,
            ))

        logger.debug(
            "drafts_generated",
            owner_id=owner_id,
            count=count,
            grouped=group_id is not None,
            recurring=self.is_recurring(request.category),
        )
        return drafts
