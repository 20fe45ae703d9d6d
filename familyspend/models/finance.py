"""
Core Data Models for Family Spend Tracker

These models define the schemas for receipts, items, categories, drafts
and spending summaries flowing through the core. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Map one-to-one onto backend rows (model_dump(mode="json") is a row payload)

DESIGN DECISION: Money is Decimal, rounded to cents with ROUND_HALF_UP.
Floats from the backend are converted through str, never used for sums.
"""

import datetime as dt
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


MONEY_QUANTUM = Decimal("0.01")

# Breakdown bucket for items without a resolved category
UNCATEGORIZED = "Uncategorized"


def to_money(value: Any) -> Decimal:
    """Round a number to cents."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def to_local_date(value: Any) -> Any:
    """
    Reduce a backend date/timestamp to a calendar day in local time.

    Receipts written by older clients carry full ISO timestamps
    ("2024-03-01T18:30:00.000Z"); grouping is by local calendar day.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date()
    if isinstance(value, str) and "T" in value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return to_local_date(parsed)
    return value


# =============================================================================
# REFERENCE DATA
# =============================================================================

class Category(BaseModel):
    """
    Spend category.

    Level 1 categories are broad groups, level 2 are subcategories
    pointing at their parent.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    name: str = Field(..., min_length=1)
    level: int = Field(default=1, ge=1)
    parent_id: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None


# =============================================================================
# PERSISTED ROWS
# =============================================================================

class Item(BaseModel):
    """One line within a receipt, as stored."""

    id: str
    receipt_id: str
    name: str
    quantity: Decimal = Field(default=Decimal("1"))
    unit_price: Decimal = Field(default=Decimal("0"))
    total_price: Decimal = Field(default=Decimal("0"))
    category_id: Optional[str] = None
    description: Optional[str] = None

    # Filled from the embedded categories(name) join when present
    category_name: Optional[str] = None

    @field_validator("quantity", mode="before")
    @classmethod
    def default_quantity(cls, v: Any) -> Any:
        """Rows written without a quantity count as one unit."""
        return Decimal("1") if v is None else v


class Receipt(BaseModel):
    """
    One purchase event, as stored.

    family_id = None means the receipt belongs to the personal scope
    of user_id.
    """

    id: str
    vendor_name: str
    date: dt.date
    total_amount: Decimal
    tax_amount: Optional[Decimal] = None
    tip_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    user_id: str
    family_id: Optional[str] = None
    added_by: Optional[str] = None
    ai_extracted: bool = False
    ai_data: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None

    items: list[Item] = Field(default_factory=list)

    @field_validator("date", mode="before")
    @classmethod
    def coerce_local_date(cls, v: Any) -> Any:
        return to_local_date(v)

    @field_validator("ai_extracted", mode="before")
    @classmethod
    def null_is_false(cls, v: Any) -> Any:
        return bool(v)

    @property
    def is_personal(self) -> bool:
        return self.family_id is None

    @property
    def items_total(self) -> Decimal:
        """Sum of item totals (what total_amount must equal)."""
        return to_money(sum((item.total_price for item in self.items), Decimal("0")))


# =============================================================================
# VALIDATION ISSUES
# =============================================================================

class ValidationIssue(BaseModel):
    """A single soft issue found while building a draft."""

    field: str = Field(
        ...,
        description="Field with the issue (e.g. 'items[2].category')"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'unmatched_category', 'inconsistent')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


# =============================================================================
# WRITE MODELS
# =============================================================================

class ItemInput(BaseModel):
    """
    An item as supplied by a caller for creation.

    total_price is accepted but never trusted: the mutator writes
    quantity * unit_price.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    total_price: Optional[Decimal] = Field(default=None, ge=0)
    category_id: Optional[str] = None
    description: Optional[str] = None

    def computed_total(self) -> Decimal:
        return to_money(self.quantity * self.unit_price)


class ItemDraft(ItemInput):
    """An item proposed by extraction, pending user review."""

    category_text: Optional[str] = Field(
        default=None,
        description="Free-text category the extractor proposed"
    )

    @property
    def is_categorized(self) -> bool:
        return bool(self.category_id)


class ReceiptDraft(BaseModel):
    """
    An unsaved, user-reviewable receipt with items.

    CRITICAL: This is PROPOSED data. It goes back to the user for
    review before the mutator persists it. Items whose category could
    not be resolved keep category_id = None and are listed in issues.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    extraction_id: UUID = Field(default_factory=uuid4)
    vendor_name: str = Field(default="", max_length=200)
    date: dt.date
    total_amount: Decimal = Field(default=Decimal("0"), ge=0)
    tax_amount: Optional[Decimal] = Field(default=None, ge=0)
    tip_amount: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)
    items: list[ItemDraft] = Field(default_factory=list)

    ai_extracted: bool = False
    ai_data: Optional[dict[str, Any]] = None

    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def unresolved_items(self) -> list[ItemDraft]:
        return [item for item in self.items if not item.is_categorized]

    @property
    def items_total(self) -> Decimal:
        return to_money(sum((item.computed_total() for item in self.items), Decimal("0")))


class ReceiptPatch(BaseModel):
    """
    Receipt field patch.

    total_amount is deliberately absent: it is re-derived from items.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    vendor_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    date: Optional[dt.date] = None
    tax_amount: Optional[Decimal] = Field(default=None, ge=0)
    tip_amount: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)

    def to_fields(self) -> dict[str, Any]:
        """Only the fields the caller actually set, as a row payload."""
        return self.model_dump(mode="json", exclude_unset=True)


class ItemUpdate(BaseModel):
    """A change to one existing item; unset fields are kept."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    quantity: Optional[Decimal] = Field(default=None, gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    total_price: Optional[Decimal] = Field(default=None, ge=0)
    category_id: Optional[str] = None
    description: Optional[str] = None


# =============================================================================
# QUERY MODELS
# =============================================================================

class DateRange(BaseModel):
    """Inclusive window of calendar days."""
    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @model_validator(mode="after")
    def validate_order(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("Date range end cannot be before start")
        return self

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


class CategorySpend(BaseModel):
    """One row of the category breakdown."""

    category: str
    amount: Decimal
    count: int = Field(ge=0)


class DailySpend(BaseModel):
    """Receipt total for one calendar day."""

    day: date
    amount: Decimal


class SpendingSummary(BaseModel):
    """Aggregated spend for one account scope over one window."""

    total_amount: Decimal = Decimal("0.00")
    transaction_count: int = 0
    avg_transaction: Decimal = Decimal("0.00")
    category_breakdown: list[CategorySpend] = Field(default_factory=list)
    daily_spending: list[DailySpend] = Field(default_factory=list)

    @property
    def categorized_total(self) -> Decimal:
        """Item-level total; excludes receipt-level tax and tip."""
        return to_money(sum((row.amount for row in self.category_breakdown), Decimal("0")))


class ReceiptPage(BaseModel):
    """One page of the transaction history."""

    receipts: list[Receipt] = Field(default_factory=list)
    page: int = Field(ge=1)
    page_size: int = Field(ge=1)
    total_count: int = Field(ge=0)

    @property
    def total_pages(self) -> int:
        return max(1, -(-self.total_count // self.page_size))

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages
