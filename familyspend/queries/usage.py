"""
Vision model usage report.

Reads the api_usage trail for the billing screen and renders it as CSV.
"""

import csv
import io
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from familyspend.models.audit import UsageRecord
from familyspend.queries.aggregator import month_bounds, week_bounds
from familyspend.services.storage import UsageStorageInterface


# Most recent records returned for any period
USAGE_LIMIT = 100

CSV_HEADER = [
    "Date",
    "Function",
    "Model",
    "Prompt Tokens",
    "Completion Tokens",
    "Total Tokens",
    "Cost (USD)",
    "Receipt ID",
]


class UsagePeriod(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


class UsageSummary(BaseModel):
    """Totals over the returned records."""

    period: UsagePeriod
    records: list[UsageRecord] = Field(default_factory=list)
    request_count: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    total_cost_usd: Decimal = Decimal("0")


def usage_window(
    period: UsagePeriod,
    now: Optional[datetime] = None,
) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    Inclusive (since, until) for a period in local time, (None, None) for ALL.
    """
    now = now or datetime.now().astimezone()
    tz = now.tzinfo or timezone.utc
    period = UsagePeriod(period)
    today = now.date()

    if period == UsagePeriod.TODAY:
        first, last = today, today
    elif period == UsagePeriod.WEEK:
        first, last = week_bounds(today)
    elif period == UsagePeriod.MONTH:
        first, last = month_bounds(today)
    else:
        return None, None

    since = datetime.combine(first, time.min, tzinfo=tz)
    until = datetime.combine(last + timedelta(days=1), time.min, tzinfo=tz) - timedelta(microseconds=1)
    return since, until


def summarize_usage(period: UsagePeriod, records: list[UsageRecord]) -> UsageSummary:
    return UsageSummary(
        period=period,
        records=records,
        request_count=len(records),
        prompt_tokens=sum(r.prompt_tokens for r in records),
        completion_tokens=sum(r.completion_tokens for r in records),
        total_tokens=sum(r.total_tokens for r in records),
        total_cost_usd=sum((r.cost_usd for r in records), Decimal("0")),
    )


async def get_usage_summary(
    storage: UsageStorageInterface,
    user_id: str,
    period: UsagePeriod = UsagePeriod.MONTH,
    now: Optional[datetime] = None,
) -> UsageSummary:
    """
    A user's vision model usage for a period, newest first, at most 100 records.

    Raises:
        StorageError: The usage trail could not be read
    """
    period = UsagePeriod(period)
    since, until = usage_window(period, now)
    records = await storage.list_usage(user_id, since=since, until=until, limit=USAGE_LIMIT)
    return summarize_usage(period, records)


def export_usage_csv(records: list[UsageRecord]) -> str:
    """CSV report, one row per record, timestamps in local time."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for record in records:
        created_at = record.created_at
        if created_at.tzinfo is not None:
            created_at = created_at.astimezone()
        writer.writerow([
            created_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.function_name,
            record.model,
            record.prompt_tokens,
            record.completion_tokens,
            record.total_tokens,
            str(record.cost_usd),
            record.receipt_id or "",
        ])
    return buffer.getvalue()
