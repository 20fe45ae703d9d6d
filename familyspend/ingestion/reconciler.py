"""
Receipt Ingestion Reconciler

FLOW:
1. Size check (before anything else, no network)
2. Image inspection with Pillow -> MIME type
3. Category taxonomy (cached per session)
4. Vision model call, bounded by a timeout
5. Usage record for the call
6. Parse contract -> validation contract
7. Category reconciliation -> ReceiptDraft with review warnings

CRITICAL: The reconciler NEVER writes receipts. The draft goes back to
the user; the TransactionMutator persists it after review. Any extraction
error ends the attempt with no draft at all.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog

from familyspend.audit import AuditLogger, create_correlation_id
from familyspend.categories import CategoryTaxonomy, match_category
from familyspend.config import AppSettings, GeminiSettings, get_settings
from familyspend.errors import ImageTooLargeError
from familyspend.models.audit import AuditEventBuilder, UsageRecord
from familyspend.models.finance import (
    Category,
    ItemDraft,
    ReceiptDraft,
    to_money,
)
from familyspend.services.extraction import (
    EXTRACTION_FUNCTION_NAME,
    ExtractionError,
    ExtractionServiceError,
    ExtractionTimeoutError,
    RawExtraction,
    ReceiptExtractor,
    inspect_image,
    to_data_uri,
)
from familyspend.validation import ExtractionValidator, parse_model_output


logger = structlog.get_logger(__name__)

MILLION = Decimal("1000000")
COST_QUANTUM = Decimal("0.000001")

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%d.%m.%Y")


def safe_decimal(value: Any) -> Optional[Decimal]:
    """Model numbers to Decimal cents; None for anything unreadable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "").lstrip("$")
        if not value:
            return None
    try:
        return to_money(value)
    except (InvalidOperation, TypeError, ValueError):
        return None


def safe_date(value: Any) -> Optional[date]:
    """Model dates to a date; None for anything unreadable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
    return None


def usage_cost(raw: RawExtraction, settings: GeminiSettings) -> Decimal:
    """USD cost of one call at the configured per-million-token prices."""
    prompt = Decimal(raw.prompt_tokens) * Decimal(str(settings.input_cost_per_million))
    completion = Decimal(raw.completion_tokens) * Decimal(str(settings.output_cost_per_million))
    return ((prompt + completion) / MILLION).quantize(COST_QUANTUM)


def build_item(raw_item: dict[str, Any], categories: list[Category]) -> ItemDraft:
    """
    One validated model item -> ItemDraft.

    Quantity defaults to 1 when missing or not positive. When the unit
    price is missing it is derived from the line total.
    """
    quantity = safe_decimal(raw_item.get("quantity"))
    if quantity is None or quantity <= 0:
        quantity = Decimal("1")

    total_price = safe_decimal(raw_item.get("total_price"))
    unit_price = safe_decimal(raw_item.get("unit_price"))
    if unit_price is None or unit_price < 0:
        if total_price is not None and total_price > 0:
            unit_price = to_money(total_price / quantity)
        else:
            unit_price = Decimal("0")

    category_text = str(raw_item.get("category")).strip()
    category = match_category(category_text, categories)

    subcategory = raw_item.get("subcategory")
    description = str(subcategory).strip() if subcategory else None

    name = str(raw_item.get("name") or "").strip() or category_text

    return ItemDraft(
        name=name[:200],
        quantity=quantity,
        unit_price=unit_price,
        total_price=to_money(quantity * unit_price),
        category_id=category.id if category else None,
        category_text=category_text,
        description=description or None,
    )


class ReceiptIngestionReconciler:
    """
    Turns a receipt image into a reviewable draft.

    Usage:
        reconciler = ReceiptIngestionReconciler(extractor, taxonomy, audit)
        draft = await reconciler.ingest_receipt_image(image_bytes, user_id)
    """

    def __init__(
        self,
        extractor: ReceiptExtractor,
        taxonomy: CategoryTaxonomy,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
        gemini_settings: Optional[GeminiSettings] = None,
        validator: Optional[ExtractionValidator] = None,
    ):
        self._extractor = extractor
        self._taxonomy = taxonomy
        self._audit = audit_logger or AuditLogger()
        self._settings = app_settings or get_settings().app
        self._gemini_settings = gemini_settings
        self._validator = validator or ExtractionValidator()

    def _pricing(self) -> Optional[GeminiSettings]:
        if self._gemini_settings is None:
            try:
                self._gemini_settings = get_settings().gemini
            except Exception as e:
                logger.warning("pricing_unavailable", error=str(e))
                return None
        return self._gemini_settings

    def check_size(self, image_bytes: bytes) -> None:
        """Raises ImageTooLargeError over the upload cap."""
        limit = self._settings.max_upload_size_bytes
        if len(image_bytes) > limit:
            raise ImageTooLargeError(len(image_bytes), limit)

    async def ingest_receipt_image(
        self,
        image_bytes: bytes,
        user_id: str,
        family_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ReceiptDraft:
        """
        Image bytes -> ReceiptDraft.

        Args:
            image_bytes: The uploaded file
            user_id: Signed-in user (billed in api_usage)
            family_id: Active family scope, for the usage record
            today: Reference day for date defaults and checks

        Raises:
            ImageTooLargeError / UnsupportedImageError: Before any network call
            LoadError: Category taxonomy unavailable
            ExtractionError subclasses: The attempt produced nothing usable
        """
        today = today or date.today()
        correlation_id = create_correlation_id()

        self.check_size(image_bytes)
        mime_type = inspect_image(image_bytes, self._settings)
        await self._audit.log(AuditEventBuilder.receipt_image_received(
            size_bytes=len(image_bytes),
            mime_type=mime_type,
            correlation_id=correlation_id,
        ))

        categories = await self._taxonomy.get_categories()

        try:
            raw = await self._call_extractor(
                to_data_uri(image_bytes, mime_type),
                [c.name for c in categories],
            )
        except ExtractionError as e:
            if isinstance(e, ExtractionServiceError):
                await self._audit.log_external_service_error("gemini", str(e), correlation_id)
            await self._audit.log(AuditEventBuilder.extraction_failed(
                type(e).__name__, str(e), correlation_id
            ))
            raise

        await self._record_usage(raw, user_id, family_id)
        await self._audit.log(AuditEventBuilder.extraction_completed(
            model=raw.model,
            total_tokens=raw.total_tokens,
            correlation_id=correlation_id,
        ))

        try:
            draft = self.build_draft(raw.text, categories, today)
        except ExtractionError as e:
            await self._audit.log(AuditEventBuilder.extraction_failed(
                type(e).__name__, str(e), correlation_id
            ))
            raise

        await self._audit.log(AuditEventBuilder.draft_prepared(
            extraction_id=draft.extraction_id,
            item_count=len(draft.items),
            unresolved_count=len(draft.unresolved_items),
            correlation_id=correlation_id,
        ))
        return draft

    async def _call_extractor(
        self,
        data_uri: str,
        category_names: list[str],
    ) -> RawExtraction:
        timeout = self._settings.extraction_timeout_seconds
        try:
            return await asyncio.wait_for(
                self._extractor.extract_receipt(data_uri, category_names),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise ExtractionTimeoutError(timeout)

    async def _record_usage(
        self,
        raw: RawExtraction,
        user_id: str,
        family_id: Optional[str],
    ) -> None:
        pricing = self._pricing()
        cost = usage_cost(raw, pricing) if pricing else Decimal("0")
        await self._audit.record_usage(UsageRecord(
            user_id=user_id,
            family_id=family_id,
            function_name=EXTRACTION_FUNCTION_NAME,
            model=raw.model,
            prompt_tokens=raw.prompt_tokens,
            completion_tokens=raw.completion_tokens,
            total_tokens=raw.total_tokens,
            cost_usd=cost,
        ))

    def build_draft(
        self,
        text: str,
        categories: list[Category],
        today: date,
    ) -> ReceiptDraft:
        """
        Model text -> ReceiptDraft. Pure; no I/O.

        Raises:
            ExtractionError subclasses from the parse and validation contracts
        """
        payload, stage = parse_model_output(text)
        payload = self._validator.validate_structure(payload)
        logger.debug("extraction_parsed", stage=stage.value)

        items = [build_item(raw_item, categories) for raw_item in payload["items"]]

        extracted_date = safe_date(payload.get("date"))
        extracted_total = safe_decimal(payload.get("total_amount"))
        tax = safe_decimal(payload.get("tax_amount"))
        tip = safe_decimal(payload.get("tip_amount"))

        draft = ReceiptDraft(
            vendor_name=str(payload.get("vendor_name") or "").strip()[:200],
            date=extracted_date or today,
            total_amount=to_money(sum((i.computed_total() for i in items), Decimal("0"))),
            tax_amount=tax if tax and tax > 0 else None,
            tip_amount=tip if tip and tip > 0 else None,
            items=items,
            ai_extracted=True,
            ai_data=payload,
        )
        draft.issues = self._validator.review_draft(
            draft, extracted_date, extracted_total, today
        )
        return draft
