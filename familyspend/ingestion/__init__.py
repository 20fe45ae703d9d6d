"""Receipt ingestion package."""

from familyspend.ingestion.reconciler import (
    ReceiptIngestionReconciler,
    build_item,
    safe_date,
    safe_decimal,
    usage_cost,
)

__all__ = [
    "ReceiptIngestionReconciler",
    "build_item",
    "safe_date",
    "safe_decimal",
    "usage_cost",
]
