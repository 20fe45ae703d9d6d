"""Receipt and item mutation package."""

from familyspend.transactions.mutator import (
    ReceiptCreateError,
    ReceiptDeleteError,
    TransactionMutator,
    item_row,
)

__all__ = [
    "ReceiptCreateError",
    "ReceiptDeleteError",
    "TransactionMutator",
    "item_row",
]
