"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - STRUCTURAL VALIDATION (hard, raises):
- The response is a JSON object
- items is a non-empty list of objects
- Every item carries a non-blank category
- Any failure is terminal for the ingestion attempt

STAGE 2 - REVIEW WARNINGS (soft, reported):
- Item categories that matched nothing in the taxonomy
- Missing or future receipt date
- Extracted total disagreeing with the item sum
- These go on the draft for the review screen

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for human review.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from familyspend.models.finance import ReceiptDraft, ValidationIssue
from familyspend.services.extraction import (
    EmptyExtractionError,
    ExtractionFormatError,
    MissingCategoryError,
)


# Rounding slack before a total mismatch is reported
TOTAL_TOLERANCE = Decimal("0.05")


class ExtractionValidator:
    """
    Validates extracted receipt data.

    Stage 1 runs on the parsed JSON before anything is built from it.
    Stage 2 runs on the reconciled draft.
    """

    def validate_structure(self, payload: Any) -> dict[str, Any]:
        """
        Stage 1: structural validation.

        Returns:
            The payload, now known to be an object with categorized items

        Raises:
            ExtractionFormatError: Not an object, or an item is not an object
            EmptyExtractionError: items missing or empty
            MissingCategoryError: An item has a blank category
        """
        if not isinstance(payload, dict):
            raise ExtractionFormatError(
                f"Expected a JSON object, got {type(payload).__name__}"
            )

        items = payload.get("items")
        if items is None or (isinstance(items, list) and not items):
            raise EmptyExtractionError("The receipt has no items")
        if not isinstance(items, list):
            raise ExtractionFormatError(
                f"Expected items to be a list, got {type(items).__name__}"
            )

        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise ExtractionFormatError(f"Item {index} is not an object")
            category = item.get("category")
            if not isinstance(category, str) or not category.strip():
                raise MissingCategoryError(index, str(item.get("name") or ""))

        return payload

    def review_draft(
        self,
        draft: ReceiptDraft,
        extracted_date: Optional[date],
        extracted_total: Optional[Decimal],
        today: Optional[date] = None,
    ) -> list[ValidationIssue]:
        """
        Stage 2: warnings for the review screen.

        Args:
            draft: The reconciled draft
            extracted_date: Date as read by the model (None if unreadable)
            extracted_total: Total as read by the model (None if absent)
            today: Reference day for the future-date check
        """
        issues = []
        today = today or date.today()

        for index, item in enumerate(draft.items):
            if not item.is_categorized:
                issues.append(ValidationIssue(
                    field=f"items[{index}].category",
                    issue_type="unmatched_category",
                    message=(
                        f"No category matches {item.category_text!r} "
                        f"for item {item.name!r}"
                    ),
                    severity="warning",
                    suggested_fix="Pick a category before saving",
                ))

        if extracted_date is None:
            issues.append(ValidationIssue(
                field="date",
                issue_type="missing",
                message="Receipt date could not be read",
                severity="warning",
                suggested_fix=f"Check the date; {draft.date.isoformat()} was used",
            ))
        elif extracted_date > today:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Receipt date ({extracted_date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        if extracted_total is not None and draft.items:
            expected = draft.items_total
            if abs(extracted_total - expected) > TOTAL_TOLERANCE:
                issues.append(ValidationIssue(
                    field="total_amount",
                    issue_type="inconsistent",
                    message=(
                        f"Receipt total ({extracted_total}) doesn't match "
                        f"the item sum ({expected})"
                    ),
                    severity="warning",
                    suggested_fix="The item sum is saved as the total; check item prices",
                ))

        return issues

    def get_user_friendly_summary(self, draft: ReceiptDraft) -> str:
        """
        Generate a user-friendly summary of a draft's issues.

        This is what the review screen shows above the form.
        """
        if not draft.issues:
            return "All checks passed! Please review the details below."

        lines = ["Please verify the following:"]
        for issue in draft.issues:
            lines.append(f"   • {issue.message}")
            if issue.suggested_fix:
                lines.append(f"     → {issue.suggested_fix}")

        if draft.unresolved_items:
            lines.append("")
            lines.append(
                f"{len(draft.unresolved_items)} item(s) need a category before saving."
            )
        return "\n".join(lines)
