"""
Transaction Mutator

Create, update and delete of receipts and items.

INVARIANTS kept here (the backend does not enforce them):
1. item.total_price == quantity * unit_price at write time; caller
   totals are ignored
2. receipt.total_amount == sum of its items' total_price after any
   item-level change
3. A receipt is never left without items by a failed create, and never
   deleted while items still reference it
"""

from decimal import Decimal
from typing import Any, Optional

import structlog

from familyspend.audit import AuditLogger, create_correlation_id
from familyspend.config import AppSettings, get_settings
from familyspend.errors import FinanceError, InputRejectedError
from familyspend.models.account import Account
from familyspend.models.audit import AuditEventBuilder, AuditEventType
from familyspend.models.finance import (
    Item,
    ItemInput,
    ItemUpdate,
    Receipt,
    ReceiptDraft,
    ReceiptPage,
    ReceiptPatch,
    to_money,
)
from familyspend.services.storage import (
    NotFoundError,
    ReceiptStorageInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)


class ReceiptCreateError(FinanceError):
    """
    Item insertion failed after the receipt row was written.

    compensated tells whether the orphaned receipt was removed again.
    """

    def __init__(self, message: str, receipt_id: Optional[str] = None, compensated: bool = False):
        self.receipt_id = receipt_id
        self.compensated = compensated
        super().__init__(message)


class ReceiptDeleteError(FinanceError):
    """Items could not all be removed; the receipt was kept."""

    def __init__(self, receipt_id: str, message: str):
        self.receipt_id = receipt_id
        super().__init__(message)


def item_row(item: ItemInput) -> dict[str, Any]:
    """Insert payload for one item with its total recomputed."""
    return {
        "name": item.name,
        "quantity": str(item.quantity),
        "unit_price": str(to_money(item.unit_price)),
        "total_price": str(item.computed_total()),
        "category_id": item.category_id,
        "description": item.description,
    }


def require_category(item: ItemInput, index: int) -> None:
    if not item.category_id:
        raise InputRejectedError(f"Item {index + 1} ({item.name!r}) needs a category")


class TransactionMutator:
    """
    Writes receipts and items.

    Every failure leaves local state to the caller: nothing here caches
    receipts, and each method returns the state as re-read after writing.
    """

    def __init__(
        self,
        storage: ReceiptStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().app

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_receipt(
        self,
        draft: ReceiptDraft,
        account: Account,
        added_by: Optional[str] = None,
    ) -> Receipt:
        """
        Persist a reviewed draft into the account's scope.

        The receipt total is the sum of the recomputed item totals.

        Raises:
            InputRejectedError: No items, an item without category, no vendor
            ReceiptCreateError: Items failed after the receipt was written
            StorageError: The receipt row itself could not be written
        """
        if not draft.vendor_name.strip():
            raise InputRejectedError("Vendor name is required")
        if not draft.items:
            raise InputRejectedError("A receipt needs at least one item")
        for index, item in enumerate(draft.items):
            require_category(item, index)

        correlation_id = create_correlation_id()
        rows = [item_row(item) for item in draft.items]
        total = to_money(sum((item.computed_total() for item in draft.items), Decimal("0")))

        fields = {
            "vendor_name": draft.vendor_name.strip(),
            "date": draft.date.isoformat(),
            "total_amount": str(total),
            "tax_amount": str(draft.tax_amount) if draft.tax_amount is not None else None,
            "tip_amount": str(draft.tip_amount) if draft.tip_amount is not None else None,
            "notes": draft.notes,
            "user_id": account.user_id,
            "family_id": account.family_id,
            "added_by": added_by or account.user_id,
            "ai_extracted": draft.ai_extracted,
            "ai_data": draft.ai_data,
        }

        receipt = await self._storage.insert_receipt(fields)

        try:
            items = await self._storage.insert_items(receipt.id, rows)
        except StorageError as e:
            compensated = await self._compensate(receipt.id)
            await self._audit.log(AuditEventBuilder.save_failed(
                operation="create_receipt",
                error_message=str(e),
                details={"receipt_id": receipt.id, "compensated": compensated},
                correlation_id=correlation_id,
            ))
            suffix = "" if compensated else f"; receipt {receipt.id} could not be removed"
            raise ReceiptCreateError(
                f"Could not save receipt items: {e}{suffix}",
                receipt_id=receipt.id,
                compensated=compensated,
            ) from e

        await self._audit.log(AuditEventBuilder.receipt_created(
            receipt_id=receipt.id,
            vendor=receipt.vendor_name,
            amount=str(receipt.total_amount),
            item_count=len(items),
            correlation_id=correlation_id,
        ))
        return receipt.model_copy(update={"items": items})

    async def _compensate(self, receipt_id: str) -> bool:
        """Remove a receipt whose items failed. Returns True if it is gone."""
        try:
            await self._storage.delete_items_for_receipt(receipt_id)
            await self._storage.delete_receipt(receipt_id)
            return True
        except StorageError as e:
            logger.error("receipt_compensation_failed", receipt_id=receipt_id, error=str(e))
            return False

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_receipt(self, receipt_id: str, patch: ReceiptPatch) -> Receipt:
        """
        Patch receipt fields. Items and total are left alone.

        Raises:
            NotFoundError: No such receipt
        """
        fields = patch.to_fields()
        if not fields:
            receipt = await self._storage.get_receipt(receipt_id)
            if receipt is None:
                raise NotFoundError(f"Receipt not found: {receipt_id}")
            return receipt

        receipt = await self._storage.update_receipt(receipt_id, fields)
        await self._audit.log_receipt_changed(
            AuditEventType.RECEIPT_UPDATED,
            receipt_id,
            "Receipt fields updated",
            {"fields": sorted(fields)},
        )
        return receipt

    async def update_items(self, receipt_id: str, updates: list[ItemUpdate]) -> Receipt:
        """
        Write a batch of item changes, then re-derive the receipt total.

        Each item's total is recomputed from its (possibly updated)
        quantity and unit price. If a write fails part-way, the total is
        still re-derived from what was written before the error is raised.

        Raises:
            NotFoundError: An update names an item not on this receipt
        """
        updates = self._fold_updates(updates)
        current = {item.id: item for item in await self._storage.list_items(receipt_id)}
        for update in updates:
            if update.id not in current:
                raise NotFoundError(f"Item {update.id} is not on receipt {receipt_id}")

        try:
            for update in updates:
                await self._storage.update_item(
                    update.id, self._merge_item(current[update.id], update)
                )
        except StorageError:
            await self._recompute_total(receipt_id)
            raise

        receipt = await self._recompute_total(receipt_id)
        await self._audit.log_receipt_changed(
            AuditEventType.ITEMS_UPDATED,
            receipt_id,
            f"{len(updates)} item(s) updated",
            {"total_amount": str(receipt.total_amount)},
        )
        return receipt

    @staticmethod
    def _fold_updates(updates: list[ItemUpdate]) -> list[ItemUpdate]:
        """One update per item id; later fields win, first position kept."""
        folded: dict[str, dict[str, Any]] = {}
        for update in updates:
            fields = folded.setdefault(update.id, {})
            fields.update(update.model_dump(exclude_unset=True))
        return [ItemUpdate(**fields) for fields in folded.values()]

    @staticmethod
    def _merge_item(item: Item, update: ItemUpdate) -> dict[str, Any]:
        changes = update.model_dump(exclude_unset=True, exclude={"id", "total_price"})
        quantity = update.quantity if update.quantity is not None else item.quantity
        unit_price = update.unit_price if update.unit_price is not None else item.unit_price

        fields: dict[str, Any] = {
            k: v for k, v in changes.items() if k not in ("quantity", "unit_price")
        }
        fields["quantity"] = str(quantity)
        fields["unit_price"] = str(to_money(unit_price))
        fields["total_price"] = str(to_money(quantity * unit_price))
        return fields

    async def add_item(self, receipt_id: str, item: ItemInput) -> Receipt:
        """Add one item and re-derive the receipt total."""
        require_category(item, 0)
        await self._storage.insert_items(receipt_id, [item_row(item)])
        receipt = await self._recompute_total(receipt_id)
        await self._audit.log_receipt_changed(
            AuditEventType.ITEMS_UPDATED,
            receipt_id,
            f"Item added: {item.name}",
            {"total_amount": str(receipt.total_amount)},
        )
        return receipt

    async def remove_item(self, receipt_id: str, item_id: str) -> Receipt:
        """
        Remove one item and re-derive the receipt total.

        Raises:
            InputRejectedError: It is the receipt's last item
            NotFoundError: Not an item of this receipt
        """
        items = await self._storage.list_items(receipt_id)
        if not any(item.id == item_id for item in items):
            raise NotFoundError(f"Item {item_id} is not on receipt {receipt_id}")
        if len(items) == 1:
            raise InputRejectedError(
                "A receipt needs at least one item; delete the receipt instead"
            )

        await self._storage.delete_item(item_id)
        receipt = await self._recompute_total(receipt_id)
        await self._audit.log_receipt_changed(
            AuditEventType.ITEMS_UPDATED,
            receipt_id,
            "Item removed",
            {"item_id": item_id, "total_amount": str(receipt.total_amount)},
        )
        return receipt

    async def _recompute_total(self, receipt_id: str) -> Receipt:
        """Re-read the items and write their sum as the receipt total."""
        items = await self._storage.list_items(receipt_id)
        total = to_money(sum((item.total_price for item in items), Decimal("0")))
        receipt = await self._storage.update_receipt(receipt_id, {"total_amount": str(total)})
        return receipt.model_copy(update={"items": items})

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_receipt(self, receipt_id: str) -> bool:
        """
        Delete items first, then the receipt.

        Raises:
            ReceiptDeleteError: Items could not all be removed; receipt kept
        """
        try:
            await self._storage.delete_items_for_receipt(receipt_id)
            remaining = await self._storage.list_items(receipt_id)
        except StorageError as e:
            raise ReceiptDeleteError(receipt_id, f"Could not delete receipt items: {e}") from e

        if remaining:
            await self._audit.log_error(
                "partial_item_delete",
                f"{len(remaining)} item(s) left after delete",
                details={"receipt_id": receipt_id},
            )
            raise ReceiptDeleteError(
                receipt_id,
                f"{len(remaining)} item(s) could not be deleted; receipt kept",
            )

        deleted = await self._storage.delete_receipt(receipt_id)
        if deleted:
            await self._audit.log_receipt_changed(
                AuditEventType.RECEIPT_DELETED,
                receipt_id,
                "Receipt deleted",
            )
        return deleted

    # =========================================================================
    # HISTORY
    # =========================================================================

    async def list_transactions(self, account: Account, page: int = 1) -> ReceiptPage:
        """
        One page of the account's receipts, newest first.

        Raises:
            InputRejectedError: page < 1
        """
        if page < 1:
            raise InputRejectedError("Page numbers start at 1")
        page_size = self._settings.transactions_page_size
        receipts, total_count = await self._storage.list_receipts(
            account,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        return ReceiptPage(
            receipts=receipts,
            page=page,
            page_size=page_size,
            total_count=total_count,
        )

    async def list_items(self, receipt_id: str) -> list[Item]:
        return await self._storage.list_items(receipt_id)
