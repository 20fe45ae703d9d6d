"""
Tests for spending aggregation and the usage report.
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import TODAY, RecordingAuditLogger, item_fields, receipt_fields, run

from familyspend.errors import InputRejectedError, SummaryLoadError
from familyspend.models.account import Account
from familyspend.models.audit import AuditEventType, UsageRecord
from familyspend.models.family import Family
from familyspend.models.finance import DateRange, Item, Receipt
from familyspend.queries import (
    DAILY_POINTS,
    SpendingAggregator,
    SpendingPeriod,
    UsagePeriod,
    export_usage_csv,
    get_usage_summary,
    resolve_period,
    summarize_receipts,
    usage_window,
)
from familyspend.services.storage import InMemoryStorage


MARCH = DateRange(start=date(2024, 3, 1), end=date(2024, 3, 31))


def receipt(day: date, total: str, *items: tuple) -> Receipt:
    """items: (category_name or None, total_price)."""
    return Receipt(
        id=f"r-{day.isoformat()}-{total}",
        vendor_name="Shop",
        date=day,
        total_amount=Decimal(total),
        user_id="u1",
        items=[
            Item(id=f"i{n}", receipt_id="r", name=f"item {n}", total_price=Decimal(price),
                 category_name=category)
            for n, (category, price) in enumerate(items)
        ],
    )


def seed(backend, user_id, family_id=None, day=TODAY, items=()):
    """Insert one receipt with items straight into storage; returns its id."""
    storage = backend.storage_for(user_id)
    total = sum((Decimal(i["total_price"]) for i in items), Decimal("0"))
    row = run(storage.insert_receipt(
        receipt_fields(user_id, family_id, date=day.isoformat(), total_amount=str(total))
    ))
    run(storage.insert_items(row.id, list(items)))
    return row.id


class TestResolvePeriod:
    """Presets -> inclusive windows (2024-03-15 is a Friday)."""

    def test_this_week_starts_sunday(self):
        window = resolve_period(SpendingPeriod.THIS_WEEK, TODAY)
        assert (window.start, window.end) == (date(2024, 3, 10), date(2024, 3, 16))

    def test_week_of_a_sunday(self):
        window = resolve_period(SpendingPeriod.THIS_WEEK, date(2024, 3, 10))
        assert window.start == date(2024, 3, 10)

    def test_this_month(self):
        window = resolve_period(SpendingPeriod.THIS_MONTH, date(2024, 2, 10))
        assert (window.start, window.end) == (date(2024, 2, 1), date(2024, 2, 29))

    def test_this_year(self):
        window = resolve_period("this_year", TODAY)
        assert (window.start, window.end) == (date(2024, 1, 1), date(2024, 12, 31))

    def test_rolling_windows_include_today(self):
        seven = resolve_period(SpendingPeriod.LAST_7_DAYS, TODAY)
        thirty = resolve_period(SpendingPeriod.LAST_30_DAYS, TODAY)
        assert (seven.start, seven.end) == (date(2024, 3, 9), TODAY)
        assert thirty.start == date(2024, 2, 15)

    def test_custom(self):
        assert resolve_period(SpendingPeriod.CUSTOM, TODAY, MARCH) == MARCH
        with pytest.raises(InputRejectedError):
            resolve_period(SpendingPeriod.CUSTOM, TODAY)


class TestSummarizeReceipts:
    """The pure aggregation."""

    def test_empty_window(self):
        summary = summarize_receipts([])
        assert summary.total_amount == Decimal("0.00")
        assert summary.transaction_count == 0
        assert summary.avg_transaction == Decimal("0.00")
        assert summary.category_breakdown == []
        assert summary.daily_spending == []

    def test_totals_and_average(self):
        summary = summarize_receipts([
            receipt(date(2024, 3, 1), "10.00", ("Groceries", "10.00")),
            receipt(date(2024, 3, 2), "5.00", ("Dining", "5.00")),
            receipt(date(2024, 3, 2), "0.01", ("Dining", "0.01")),
        ])
        assert summary.total_amount == Decimal("15.01")
        assert summary.transaction_count == 3
        assert summary.avg_transaction == Decimal("5.00")

    def test_breakdown_order_and_uncategorized(self):
        summary = summarize_receipts([
            receipt(date(2024, 3, 1), "20.00",
                    ("Groceries", "8.00"), ("Dining", "8.00"), (None, "4.00")),
            receipt(date(2024, 3, 2), "12.00", ("Household", "12.00")),
        ])
        rows = [(row.category, row.amount, row.count) for row in summary.category_breakdown]
        assert rows == [
            ("Household", Decimal("12.00"), 1),
            ("Dining", Decimal("8.00"), 1),
            ("Groceries", Decimal("8.00"), 1),
            ("Uncategorized", Decimal("4.00"), 1),
        ]

    def test_tax_and_tip_stay_out_of_breakdown(self):
        """Receipt totals may exceed the categorized item total."""
        summary = summarize_receipts([
            receipt(date(2024, 3, 1), "11.00", ("Dining", "10.00")),
        ])
        assert summary.total_amount == Decimal("11.00")
        assert summary.categorized_total == Decimal("10.00")

    def test_daily_series_keeps_last_points(self):
        start = date(2024, 3, 1)
        receipts = [receipt(start + timedelta(days=n), "1.00") for n in range(20)]
        summary = summarize_receipts(receipts)

        assert len(summary.daily_spending) == DAILY_POINTS
        assert summary.daily_spending[0].day == date(2024, 3, 7)
        assert summary.daily_spending[-1].day == date(2024, 3, 20)

    def test_daily_series_sums_same_day(self):
        summary = summarize_receipts([
            receipt(date(2024, 3, 2), "3.00"),
            receipt(date(2024, 3, 1), "1.00"),
            receipt(date(2024, 3, 2), "4.00"),
        ])
        assert [(d.day.day, d.amount) for d in summary.daily_spending] == [
            (1, Decimal("1.00")),
            (2, Decimal("7.00")),
        ]


class TestSpendingAggregator:
    """Scoped reads and stale-response handling."""

    def test_personal_and_family_scopes_are_disjoint(self, backend):
        family_id = run(backend.storage_for("u-alice").create_family_with_admin("Smiths")).id
        seed(backend, "u-alice", items=[item_fields("Milk", "3.00", "cat-groceries")])
        seed(backend, "u-alice", family_id, items=[item_fields("Pizza", "20.00", "cat-dining")])
        seed(backend, "u-bob", items=[item_fields("Bus", "2.50", "cat-transport")])

        aggregator = SpendingAggregator(backend.storage_for("u-alice"))
        family = Family(id=family_id, name="Smiths")

        personal = run(aggregator.fetch_summary(Account.personal("u-alice"), MARCH))
        shared = run(aggregator.fetch_summary(Account.for_family(family, "u-alice"), MARCH))

        assert personal.total_amount == Decimal("3.00")
        assert personal.category_breakdown[0].category == "Groceries"
        assert shared.total_amount == Decimal("20.00")
        assert shared.category_breakdown[0].category == "Dining"

    def test_window_is_inclusive(self, backend):
        seed(backend, "u-alice", day=date(2024, 3, 31), items=[item_fields("Milk", "3.00")])
        seed(backend, "u-alice", day=date(2024, 4, 1), items=[item_fields("Milk", "4.00")])
        aggregator = SpendingAggregator(backend.storage_for("u-alice"))

        summary = run(aggregator.fetch_summary(Account.personal("u-alice"), MARCH))
        assert summary.total_amount == Decimal("3.00")

    def test_failure_is_not_zero(self, backend):
        backend.fail("list_receipts_with_items")
        audit = RecordingAuditLogger()
        aggregator = SpendingAggregator(backend.storage_for("u-alice"), audit)

        with pytest.raises(SummaryLoadError):
            run(aggregator.fetch_summary(Account.personal("u-alice"), MARCH))
        assert audit.of_type(AuditEventType.SUMMARY_LOAD_FAILED)

    def test_load_failure_sets_error_without_summary(self, backend):
        backend.fail("list_receipts_with_items")
        aggregator = SpendingAggregator(backend.storage_for("u-alice"))

        state = run(aggregator.load(Account.personal("u-alice"), MARCH))
        assert state.unavailable is True
        assert state.summary is None

    def test_stale_load_is_discarded(self, backend):
        """A slow response for an old scope never overwrites the newer one."""

        class SlowStorage(InMemoryStorage):
            async def list_receipts_with_items(self, account, date_range):
                if account.user_id == "slow":
                    await asyncio.sleep(0.05)
                    return [receipt(date(2024, 3, 1), "99.00")]
                return [receipt(date(2024, 3, 1), "1.00")]

        aggregator = SpendingAggregator(SlowStorage(backend, "u-alice"))

        async def race():
            old = asyncio.create_task(aggregator.load(Account.personal("slow"), MARCH))
            await asyncio.sleep(0)
            new = await aggregator.load(Account.personal("fast"), MARCH)
            return await old, new

        old_state, new_state = run(race())
        assert old_state is None
        assert new_state.summary.total_amount == Decimal("1.00")
        assert aggregator.state.account_id == "personal-fast"
        assert aggregator.state.summary.total_amount == Decimal("1.00")


class TestUsageReport:
    """api_usage summaries and CSV export."""

    def _record(self, created_at: datetime, tokens: int = 100, cost: str = "0.0001") -> UsageRecord:
        return UsageRecord(
            user_id="u-alice",
            model="gemini-test",
            prompt_tokens=tokens - 20,
            completion_tokens=20,
            total_tokens=tokens,
            cost_usd=Decimal(cost),
            created_at=created_at,
        )

    def test_window_today(self):
        now = datetime(2024, 3, 15, 13, 0, tzinfo=timezone.utc)
        since, until = usage_window(UsagePeriod.TODAY, now)
        assert since == datetime(2024, 3, 15, tzinfo=timezone.utc)
        assert until.date() == date(2024, 3, 15)
        assert usage_window(UsagePeriod.ALL, now) == (None, None)

    def test_summary_for_month(self, backend):
        now = datetime(2024, 3, 15, 13, 0, tzinfo=timezone.utc)
        backend.usage.extend([
            self._record(datetime(2024, 3, 2, tzinfo=timezone.utc), 100, "0.0001"),
            self._record(datetime(2024, 3, 14, tzinfo=timezone.utc), 300, "0.0003"),
            self._record(datetime(2024, 2, 28, tzinfo=timezone.utc), 999, "0.0009"),
        ])
        summary = run(get_usage_summary(backend.storage_for("u-alice"), "u-alice", UsagePeriod.MONTH, now))

        assert summary.request_count == 2
        assert summary.total_tokens == 400
        assert summary.total_cost_usd == Decimal("0.0004")
        assert summary.records[0].created_at.day == 14

    def test_csv_export(self):
        created = datetime(2024, 3, 2, 9, 30)
        csv_text = export_usage_csv([self._record(created)])
        header, row = csv_text.strip().split("\n")

        assert header.startswith("Date,Function,Model")
        assert row == "2024-03-02 09:30:00,process-receipt,gemini-test,80,20,100,0.0001,"
