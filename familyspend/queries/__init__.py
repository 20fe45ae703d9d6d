"""Spending and usage queries package."""

from familyspend.queries.aggregator import (
    DAILY_POINTS,
    SpendingAggregator,
    SpendingPeriod,
    SummaryState,
    resolve_period,
    summarize_receipts,
)
from familyspend.queries.usage import (
    USAGE_LIMIT,
    UsagePeriod,
    UsageSummary,
    export_usage_csv,
    get_usage_summary,
    summarize_usage,
    usage_window,
)

__all__ = [
    # Spending
    "DAILY_POINTS",
    "SpendingAggregator",
    "SpendingPeriod",
    "SummaryState",
    "resolve_period",
    "summarize_receipts",
    # Usage
    "USAGE_LIMIT",
    "UsagePeriod",
    "UsageSummary",
    "export_usage_csv",
    "get_usage_summary",
    "summarize_usage",
    "usage_window",
]
