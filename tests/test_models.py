"""
Tests for Family Spend Tracker

Test strategy:
1. Unit tests for individual components (models, validators, aggregation)
2. Integration tests for flows (in-memory backend, scripted extractor)
3. No real API calls in tests
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from familyspend.models.account import PERSONAL_ACCOUNT_NAME, Account, AccountType
from familyspend.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    UsageRecord,
)
from familyspend.models.family import (
    Family,
    FamilyInvitation,
    FamilyMember,
    FamilyMembership,
    FamilyRole,
    InvitationStatus,
)
from familyspend.models.finance import (
    DateRange,
    Item,
    ItemDraft,
    ItemInput,
    Receipt,
    ReceiptDraft,
    ReceiptPage,
    ReceiptPatch,
    to_money,
)


class TestFinanceModels:
    """Tests for receipt and item Pydantic models."""

    def test_to_money_rounds_half_up(self):
        """Cents are rounded half up, floats go through str."""
        assert to_money("2.005") == Decimal("2.01")
        assert to_money(0.1 + 0.2) == Decimal("0.30")
        assert to_money(Decimal("7")) == Decimal("7.00")

    def test_item_input_computed_total(self):
        """The line total is always quantity * unit price."""
        item = ItemInput(
            name="Milk",
            quantity=Decimal("3"),
            unit_price=Decimal("2.00"),
            total_price=Decimal("999"),
        )
        assert item.computed_total() == Decimal("6.00")

    def test_item_input_strips_whitespace(self):
        item = ItemInput(name="  Bread  ", unit_price=Decimal("1.50"))
        assert item.name == "Bread"

    def test_item_input_rejects_zero_quantity(self):
        with pytest.raises(ValueError):
            ItemInput(name="Milk", quantity=Decimal("0"))

    def test_item_input_rejects_negative_price(self):
        with pytest.raises(ValueError):
            ItemInput(name="Milk", unit_price=Decimal("-1"))

    def test_item_missing_quantity_counts_as_one(self):
        """Stored rows without quantity are one unit."""
        item = Item(id="i1", receipt_id="r1", name="Soap", quantity=None)
        assert item.quantity == Decimal("1")

    def test_receipt_timestamp_date_becomes_calendar_day(self):
        """Older rows carry full timestamps; only the day is kept."""
        receipt = Receipt(
            id="r1",
            vendor_name="Shop",
            date="2024-03-01T12:00:00",
            total_amount=Decimal("5"),
            user_id="u1",
        )
        assert receipt.date == date(2024, 3, 1)

    def test_receipt_null_ai_flag_is_false(self):
        receipt = Receipt(
            id="r1",
            vendor_name="Shop",
            date=date(2024, 3, 1),
            total_amount=Decimal("5"),
            user_id="u1",
            ai_extracted=None,
        )
        assert receipt.ai_extracted is False
        assert receipt.is_personal is True

    def test_draft_unresolved_items(self):
        """Items without a category id are pending review."""
        draft = ReceiptDraft(
            date=date(2024, 3, 1),
            items=[
                ItemDraft(name="Milk", unit_price=Decimal("2"), category_id="c1"),
                ItemDraft(name="Thing", unit_price=Decimal("3"), category_text="Misc"),
            ],
        )
        assert [i.name for i in draft.unresolved_items] == ["Thing"]
        assert draft.items_total == Decimal("5.00")

    def test_receipt_patch_only_set_fields(self):
        """Unset fields are not part of the payload."""
        patch = ReceiptPatch(vendor_name="New Shop")
        assert patch.to_fields() == {"vendor_name": "New Shop"}

    def test_receipt_patch_rejects_total(self):
        """The total is derived from items, never patched."""
        with pytest.raises(ValueError):
            ReceiptPatch(total_amount=Decimal("10"))

    def test_date_range_order(self):
        with pytest.raises(ValueError, match="Date range end cannot be before start"):
            DateRange(start=date(2024, 3, 2), end=date(2024, 3, 1))

    def test_date_range_is_inclusive(self):
        window = DateRange(start=date(2024, 3, 1), end=date(2024, 3, 31))
        assert window.contains(date(2024, 3, 1))
        assert window.contains(date(2024, 3, 31))
        assert not window.contains(date(2024, 4, 1))

    def test_receipt_page_counts(self):
        page = ReceiptPage(page=1, page_size=20, total_count=41)
        assert page.total_pages == 3
        assert page.has_next is True
        assert ReceiptPage(page=1, page_size=20, total_count=0).total_pages == 1


class TestAccountAndFamilyModels:
    """Tests for account and family models."""

    def test_personal_account(self):
        account = Account.personal("u1")
        assert account.id == "personal-u1"
        assert account.name == PERSONAL_ACCOUNT_NAME
        assert account.type == AccountType.PERSONAL
        assert account.family_id is None

    def test_family_account(self):
        family = Family(id="f1", name="Smiths")
        account = Account.for_family(family, "u1")
        assert account.id == "family-f1"
        assert account.name == "Smiths"
        assert account.is_family is True
        assert account.user_id == "u1"

    def test_membership_null_role_is_member(self):
        membership = FamilyMembership(family_id="f1", user_id="u1", role=None)
        assert membership.role == FamilyRole.MEMBER

    def test_member_display_name_fallbacks(self):
        member = FamilyMember(family_id="f1", user_id="u1", profile_email="a@x.com")
        assert member.display_name == "a@x.com"
        assert FamilyMember(family_id="f1", user_id="u2").display_name == "Unknown User"

    def test_invitation_expiry(self):
        now = datetime(2024, 3, 15, tzinfo=timezone.utc)
        invitation = FamilyInvitation(
            id="inv1",
            family_id="f1",
            invited_email="a@x.com",
            invited_by="u1",
            expires_at=now - timedelta(seconds=1),
        )
        assert invitation.is_expired(now) is True
        assert invitation.is_active(now) is False

    def test_declined_invitation_is_not_active(self):
        now = datetime(2024, 3, 15, tzinfo=timezone.utc)
        invitation = FamilyInvitation(
            id="inv1",
            family_id="f1",
            invited_email="a@x.com",
            invited_by="u1",
            status=InvitationStatus.DECLINED,
            expires_at=now + timedelta(days=7),
        )
        assert invitation.is_active(now) is False


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.RECEIPT_IMAGE_RECEIVED,
            description="Test image received",
        )
        assert event.event_type == AuditEventType.RECEIPT_IMAGE_RECEIVED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.RECEIPT_CREATED,
            description="Receipt saved",
            details={"vendor": "Corner Shop", "amount": "12.50"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "receipt_created"
        assert log_dict["details"]["vendor"] == "Corner Shop"

    def test_audit_event_builder_receipt_created(self):
        correlation_id = uuid4()
        event = AuditEventBuilder.receipt_created(
            receipt_id="r1",
            vendor="Corner Shop",
            amount="12.50",
            item_count=2,
            correlation_id=correlation_id,
        )
        assert event.event_type == AuditEventType.RECEIPT_CREATED
        assert event.entity_id == "r1"
        assert event.correlation_id == correlation_id
        assert event.is_user_action is True

    def test_audit_event_builder_draft_prepared(self):
        extraction_id = uuid4()
        event = AuditEventBuilder.draft_prepared(
            extraction_id=extraction_id,
            item_count=3,
            unresolved_count=1,
            correlation_id=uuid4(),
        )
        assert event.entity_id == str(extraction_id)
        assert event.details == {"item_count": 3, "unresolved_count": 1}

    def test_usage_record_row_has_no_id(self):
        record = UsageRecord(user_id="u1", model="gemini-test", total_tokens=10)
        row = record.to_row()
        assert "id" not in row
        assert row["function_name"] == "process-receipt"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
