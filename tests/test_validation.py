"""
Tests for the parse and validation contracts.

Each parse stage is exercised on literal model responses.
"""

import pytest
from datetime import date
from decimal import Decimal

from familyspend.models.finance import ItemDraft, ReceiptDraft
from familyspend.services.extraction import (
    EmptyExtractionError,
    ExtractionFormatError,
    ExtractionParseError,
    MissingCategoryError,
)
from familyspend.validation import (
    NO_PARSE,
    ExtractionValidator,
    ParseStage,
    find_balanced_object,
    parse_brace_scan,
    parse_defenced,
    parse_model_output,
    parse_strict,
)


class TestParseStages:
    """Each stage on its own."""

    def test_strict_accepts_plain_json(self):
        assert parse_strict('  {"items": []}\n') == {"items": []}

    def test_strict_rejects_prose(self):
        assert parse_strict('Here you go: {"items": []}') is NO_PARSE

    def test_defenced_reads_json_fence(self):
        text = 'Sure!\n```json\n{"vendor_name": "Shop"}\n```\nAnything else?'
        assert parse_defenced(text) == {"vendor_name": "Shop"}

    def test_defenced_reads_bare_fence(self):
        assert parse_defenced('```\n{"a": 1}\n```') == {"a": 1}

    def test_defenced_without_fence(self):
        assert parse_defenced('{"a": 1}') is NO_PARSE

    def test_balanced_object_ignores_braces_in_strings(self):
        text = 'The receipt: {"vendor_name": "Curly } Cafe", "items": [{"a": "{"}]} thanks'
        span = find_balanced_object(text)
        assert span == '{"vendor_name": "Curly } Cafe", "items": [{"a": "{"}]}'

    def test_balanced_object_handles_escaped_quotes(self):
        text = 'x {"name": "6\\" sub }"} y'
        assert find_balanced_object(text) == '{"name": "6\\" sub }"}'

    def test_balanced_object_unclosed(self):
        assert find_balanced_object('{"a": {"b": 1}') is None
        assert find_balanced_object("no braces") is None

    def test_brace_scan_from_prose(self):
        text = 'I found this: {"vendor_name": "Shop", "items": []} Hope it helps.'
        assert parse_brace_scan(text) == {"vendor_name": "Shop", "items": []}


class TestParseModelOutput:
    """The stage order and the failure outcome."""

    def test_reports_strict_stage(self):
        _, stage = parse_model_output('{"a": 1}')
        assert stage == ParseStage.STRICT

    def test_reports_defenced_stage(self):
        value, stage = parse_model_output('```json\n{"a": 1}\n```')
        assert value == {"a": 1}
        assert stage == ParseStage.DEFENCED

    def test_reports_brace_scan_stage(self):
        value, stage = parse_model_output('Result -> {"a": 1} <- done')
        assert value == {"a": 1}
        assert stage == ParseStage.BRACE_SCAN

    def test_non_object_json_is_returned_as_is(self):
        """Shape checks belong to the validator."""
        value, stage = parse_model_output("[1, 2]")
        assert value == [1, 2]
        assert stage == ParseStage.STRICT

    def test_failure_keeps_raw_text(self):
        with pytest.raises(ExtractionParseError) as exc_info:
            parse_model_output("I could not read this receipt, sorry.")
        assert exc_info.value.raw_text == "I could not read this receipt, sorry."


class TestStructuralValidation:
    """Stage 1: hard failures."""

    def setup_method(self):
        self.validator = ExtractionValidator()

    def test_valid_payload_passes(self):
        payload = {"items": [{"name": "Milk", "category": "Groceries"}]}
        assert self.validator.validate_structure(payload) is payload

    def test_array_is_format_error(self):
        with pytest.raises(ExtractionFormatError):
            self.validator.validate_structure([{"name": "Milk"}])

    def test_missing_items_is_empty(self):
        with pytest.raises(EmptyExtractionError):
            self.validator.validate_structure({"vendor_name": "Shop"})

    def test_empty_items_is_empty(self):
        with pytest.raises(EmptyExtractionError):
            self.validator.validate_structure({"items": []})

    def test_items_not_a_list(self):
        with pytest.raises(ExtractionFormatError):
            self.validator.validate_structure({"items": "Milk"})

    def test_item_not_an_object(self):
        with pytest.raises(ExtractionFormatError):
            self.validator.validate_structure({"items": ["Milk"]})

    def test_blank_category(self):
        payload = {"items": [
            {"name": "Milk", "category": "Groceries"},
            {"name": "Mystery", "category": "   "},
        ]}
        with pytest.raises(MissingCategoryError) as exc_info:
            self.validator.validate_structure(payload)
        assert exc_info.value.item_index == 1
        assert exc_info.value.item_name == "Mystery"

    def test_missing_category(self):
        with pytest.raises(MissingCategoryError):
            self.validator.validate_structure({"items": [{"name": "Milk"}]})


class TestReviewWarnings:
    """Stage 2: soft warnings on the draft."""

    def setup_method(self):
        self.validator = ExtractionValidator()
        self.today = date(2024, 3, 15)

    def _draft(self, *items: ItemDraft) -> ReceiptDraft:
        return ReceiptDraft(vendor_name="Shop", date=self.today, items=list(items))

    def test_clean_draft_has_no_issues(self):
        draft = self._draft(ItemDraft(name="Milk", unit_price=Decimal("2"), category_id="c1"))
        issues = self.validator.review_draft(draft, self.today, Decimal("2.00"), self.today)
        assert issues == []

    def test_unmatched_category(self):
        draft = self._draft(ItemDraft(name="Widget", unit_price=Decimal("2"), category_text="Gadgets"))
        issues = self.validator.review_draft(draft, self.today, None, self.today)
        assert [i.issue_type for i in issues] == ["unmatched_category"]
        assert issues[0].field == "items[0].category"

    def test_missing_and_future_dates(self):
        draft = self._draft(ItemDraft(name="Milk", unit_price=Decimal("2"), category_id="c1"))
        missing = self.validator.review_draft(draft, None, None, self.today)
        future = self.validator.review_draft(draft, date(2024, 3, 20), None, self.today)
        assert missing[0].issue_type == "missing"
        assert future[0].issue_type == "future_date"

    def test_total_within_tolerance(self):
        draft = self._draft(ItemDraft(name="Milk", unit_price=Decimal("2"), category_id="c1"))
        ok = self.validator.review_draft(draft, self.today, Decimal("2.04"), self.today)
        off = self.validator.review_draft(draft, self.today, Decimal("2.50"), self.today)
        assert ok == []
        assert off[0].issue_type == "inconsistent"

    def test_user_friendly_summary(self):
        draft = self._draft(ItemDraft(name="Widget", unit_price=Decimal("2"), category_text="Gadgets"))
        draft.issues = self.validator.review_draft(draft, self.today, None, self.today)
        summary = self.validator.get_user_friendly_summary(draft)
        assert "Please verify" in summary
        assert "1 item(s) need a category" in summary
