"""
Spending Aggregator

DESIGN DECISION: Aggregation is DETERMINISTIC and split in two:
1. One joined read of the window's receipts (items and category names
   embedded), scoped by the account.
2. summarize_receipts(), a pure function of those rows.

A failed read is a SummaryLoadError, never an empty summary. A zero
summary means the window really has no receipts.
"""

from calendar import monthrange
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel

from familyspend.audit import AuditLogger
from familyspend.errors import InputRejectedError, SummaryLoadError
from familyspend.models.account import Account
from familyspend.models.audit import AuditEventBuilder
from familyspend.models.finance import (
    UNCATEGORIZED,
    CategorySpend,
    DailySpend,
    DateRange,
    Receipt,
    SpendingSummary,
    to_money,
)
from familyspend.services.storage import ReceiptStorageInterface, StorageError


logger = structlog.get_logger(__name__)

# Most recent days kept in the daily series
DAILY_POINTS = 14


class SpendingPeriod(str, Enum):
    """Dashboard window presets."""
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    THIS_YEAR = "this_year"
    LAST_7_DAYS = "last_7_days"
    LAST_30_DAYS = "last_30_days"
    CUSTOM = "custom"


def week_bounds(day: date) -> tuple[date, date]:
    """Sunday..Saturday week containing day."""
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    return start, start + timedelta(days=6)


def month_bounds(day: date) -> tuple[date, date]:
    last = monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def resolve_period(
    period: SpendingPeriod,
    today: Optional[date] = None,
    custom: Optional[DateRange] = None,
) -> DateRange:
    """
    Convert a preset to an inclusive date window.

    This is DETERMINISTIC given today.

    Raises:
        InputRejectedError: CUSTOM without a custom range
    """
    today = today or date.today()
    period = SpendingPeriod(period)

    if period == SpendingPeriod.THIS_WEEK:
        start, end = week_bounds(today)
    elif period == SpendingPeriod.THIS_MONTH:
        start, end = month_bounds(today)
    elif period == SpendingPeriod.THIS_YEAR:
        start, end = date(today.year, 1, 1), date(today.year, 12, 31)
    elif period == SpendingPeriod.LAST_7_DAYS:
        start, end = today - timedelta(days=6), today
    elif period == SpendingPeriod.LAST_30_DAYS:
        start, end = today - timedelta(days=29), today
    else:
        if custom is None:
            raise InputRejectedError("A custom period needs a start and end date")
        return custom

    return DateRange(start=start, end=end)


def summarize_receipts(receipts: list[Receipt]) -> SpendingSummary:
    """
    Pure aggregation over already-fetched receipts.

    - total/count/average from receipt totals (average 0 when empty)
    - category breakdown from item totals; items without a category name
      land in "Uncategorized"; amount descending, then name ascending
    - daily series from receipt totals per calendar day, ascending,
      keeping the last DAILY_POINTS days
    """
    total = to_money(sum((r.total_amount for r in receipts), Decimal("0")))
    count = len(receipts)
    average = to_money(total / count) if count else to_money(0)

    amounts: dict[str, Decimal] = {}
    counts: dict[str, int] = {}
    for receipt in receipts:
        for item in receipt.items:
            name = item.category_name or UNCATEGORIZED
            amounts[name] = amounts.get(name, Decimal("0")) + item.total_price
            counts[name] = counts.get(name, 0) + 1

    breakdown = [
        CategorySpend(category=name, amount=to_money(amount), count=counts[name])
        for name, amount in amounts.items()
    ]
    breakdown.sort(key=lambda row: (-row.amount, row.category))

    by_day: dict[date, Decimal] = {}
    for receipt in receipts:
        by_day[receipt.date] = by_day.get(receipt.date, Decimal("0")) + receipt.total_amount
    daily = [
        DailySpend(day=day, amount=to_money(amount))
        for day, amount in sorted(by_day.items())
    ][-DAILY_POINTS:]

    return SpendingSummary(
        total_amount=total,
        transaction_count=count,
        avg_transaction=average,
        category_breakdown=breakdown,
        daily_spending=daily,
    )


class SummaryState(BaseModel):
    """What the dashboard renders for the latest requested window."""

    account_id: Optional[str] = None
    date_range: Optional[DateRange] = None
    loading: bool = False
    summary: Optional[SpendingSummary] = None
    error: Optional[str] = None

    @property
    def unavailable(self) -> bool:
        return not self.loading and self.error is not None


class SpendingAggregator:
    """
    Loads spending summaries for the dashboard.

    Every load() bumps a generation counter. A response that completes
    after a newer load() started is discarded, so a slow request for an
    old scope or window can never overwrite the current one.
    """

    def __init__(
        self,
        storage: ReceiptStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._generation = 0
        self._state = SummaryState()

    @property
    def state(self) -> SummaryState:
        return self._state

    async def fetch_summary(self, account: Account, date_range: DateRange) -> SpendingSummary:
        """
        One window's summary for one account scope.

        Raises:
            SummaryLoadError: The receipts could not be read
        """
        try:
            receipts = await self._storage.list_receipts_with_items(account, date_range)
        except StorageError as e:
            window = f"{date_range.start.isoformat()}..{date_range.end.isoformat()}"
            await self._audit.log(AuditEventBuilder.summary_load_failed(
                account_id=account.id,
                window=window,
                error_message=str(e),
            ))
            raise SummaryLoadError(f"Spending summary unavailable for {window}: {e}")

        return summarize_receipts(receipts)

    async def load(self, account: Account, date_range: DateRange) -> Optional[SummaryState]:
        """
        Load a window into state.

        The previous summary is cleared as soon as loading starts.

        Returns:
            The new state, or None when a newer load() superseded this one
        """
        self._generation += 1
        generation = self._generation
        self._state = SummaryState(
            account_id=account.id,
            date_range=date_range,
            loading=True,
        )

        try:
            summary = await self.fetch_summary(account, date_range)
            outcome = {"summary": summary}
        except SummaryLoadError as e:
            outcome = {"error": str(e)}

        if generation != self._generation:
            logger.debug(
                "stale_summary_discarded",
                account_id=account.id,
                generation=generation,
                current_generation=self._generation,
            )
            return None

        self._state = SummaryState(
            account_id=account.id,
            date_range=date_range,
            loading=False,
            **outcome,
        )
        return self._state
