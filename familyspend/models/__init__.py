"""
Data Models Package

This package contains all Pydantic models used by the core.
All data flowing through the system must conform to these schemas.
"""

from familyspend.models.account import (
    PERSONAL_ACCOUNT_NAME,
    Account,
    AccountType,
)
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
    FamilyLoadResult,
    FamilyMember,
    FamilyMembership,
    FamilyRole,
    Identity,
    InvitationStatus,
    Profile,
    RosterLoadResult,
)
from familyspend.models.finance import (
    UNCATEGORIZED,
    Category,
    CategorySpend,
    DailySpend,
    DateRange,
    Item,
    ItemDraft,
    ItemInput,
    ItemUpdate,
    Receipt,
    ReceiptDraft,
    ReceiptPage,
    ReceiptPatch,
    SpendingSummary,
    ValidationIssue,
    to_money,
)

__all__ = [
    # Account models
    "PERSONAL_ACCOUNT_NAME",
    "Account",
    "AccountType",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    "UsageRecord",
    # Family models
    "Family",
    "FamilyInvitation",
    "FamilyLoadResult",
    "FamilyMember",
    "FamilyMembership",
    "FamilyRole",
    "Identity",
    "InvitationStatus",
    "Profile",
    "RosterLoadResult",
    # Finance models
    "UNCATEGORIZED",
    "Category",
    "CategorySpend",
    "DailySpend",
    "DateRange",
    "Item",
    "ItemDraft",
    "ItemInput",
    "ItemUpdate",
    "Receipt",
    "ReceiptDraft",
    "ReceiptPage",
    "ReceiptPatch",
    "SpendingSummary",
    "ValidationIssue",
    "to_money",
]
