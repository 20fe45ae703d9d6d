"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the hosted backend.
This allows us to:
1. Keep business logic decoupled from the Supabase client
2. Use in-memory storage for testing
3. Treat the backend's atomic procedures and cascades as a contract

The interface mirrors the tables the core touches (families,
family_members, family_invitations, profiles, categories, receipts,
items, api_usage) and the two atomic procedures
create_family_with_admin and accept_family_invitation.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from familyspend.models.account import Account
from familyspend.models.audit import UsageRecord
from familyspend.models.family import (
    Family,
    FamilyInvitation,
    FamilyMembership,
    InvitationStatus,
    Profile,
)
from familyspend.models.finance import Category, DateRange, Item, Receipt


class CategoryStorageInterface(ABC):
    """Read access to the category taxonomy."""

    @abstractmethod
    async def list_categories(self) -> list[Category]:
        """
        List all categories, broad levels first, then by name.

        Raises:
            StorageError: If the read fails
        """
        pass


class FamilyStorageInterface(ABC):
    """
    Families, memberships, invitations and profiles.

    Row-level policies on the backend are authoritative for every write;
    implementations surface a refused write as StorageError.
    """

    @abstractmethod
    async def list_memberships_for_user(
        self,
        user_id: str,
    ) -> list[tuple[FamilyMembership, Family]]:
        """
        List a user's memberships joined to their family rows.

        Memberships whose family row is not visible are skipped.
        """
        pass

    @abstractmethod
    async def list_memberships_for_family(
        self,
        family_id: str,
    ) -> list[FamilyMembership]:
        """List all membership rows of one family."""
        pass

    @abstractmethod
    async def get_profiles(self, user_ids: list[str]) -> list[Profile]:
        """
        Fetch profiles for a set of user ids in ONE call.

        Args:
            user_ids: Ids to fetch; unknown ids are simply absent

        Returns:
            The profiles found, in no particular order
        """
        pass

    @abstractmethod
    async def create_family_with_admin(self, name: str) -> Family:
        """
        Atomically create a family and the caller's admin membership.

        Backed by the create_family_with_admin procedure.
        """
        pass

    @abstractmethod
    async def rename_family(self, family_id: str, name: str) -> Family:
        """Rename a family. Raises NotFoundError if it is not visible."""
        pass

    @abstractmethod
    async def delete_family(self, family_id: str) -> bool:
        """
        Delete a family.

        Memberships, invitations and family receipts are removed by the
        backend's cascade, not by the caller.
        """
        pass

    @abstractmethod
    async def delete_membership(self, family_id: str, user_id: str) -> bool:
        """Delete one membership row. Returns False if none matched."""
        pass

    @abstractmethod
    async def create_invitation(
        self,
        family_id: str,
        invited_email: str,
        invited_by: str,
        invited_by_name: Optional[str],
        expires_at: datetime,
    ) -> FamilyInvitation:
        """Insert a pending invitation."""
        pass

    @abstractmethod
    async def list_invitations(
        self,
        family_ids: list[str],
        status: Optional[InvitationStatus] = None,
    ) -> list[FamilyInvitation]:
        """List invitations of the given families, newest first."""
        pass

    @abstractmethod
    async def list_invitations_for_email(
        self,
        email: str,
        status: Optional[InvitationStatus] = None,
    ) -> list[FamilyInvitation]:
        """List invitations addressed to an email (case-insensitive)."""
        pass

    @abstractmethod
    async def get_invitation(self, invitation_id: str) -> Optional[FamilyInvitation]:
        pass

    @abstractmethod
    async def update_invitation_status(
        self,
        invitation_id: str,
        status: InvitationStatus,
    ) -> FamilyInvitation:
        pass

    @abstractmethod
    async def delete_invitation(self, invitation_id: str) -> bool:
        pass

    @abstractmethod
    async def accept_invitation(self, invitation_id: str) -> bool:
        """
        Atomically accept an invitation for the caller.

        Backed by the accept_family_invitation procedure: validates the
        invitation is pending and unexpired, creates the membership and
        marks the invitation accepted, or does nothing and returns False.
        """
        pass


class ReceiptStorageInterface(ABC):
    """Receipts and their items."""

    @abstractmethod
    async def insert_receipt(self, fields: dict[str, Any]) -> Receipt:
        """Insert a receipt row and return it as stored."""
        pass

    @abstractmethod
    async def get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        """Fetch one receipt with its items."""
        pass

    @abstractmethod
    async def update_receipt(self, receipt_id: str, fields: dict[str, Any]) -> Receipt:
        """
        Patch receipt fields.

        Raises:
            NotFoundError: If the receipt doesn't exist
        """
        pass

    @abstractmethod
    async def delete_receipt(self, receipt_id: str) -> bool:
        pass

    @abstractmethod
    async def insert_items(
        self,
        receipt_id: str,
        rows: list[dict[str, Any]],
    ) -> list[Item]:
        """Insert item rows for one receipt in a single call."""
        pass

    @abstractmethod
    async def list_items(self, receipt_id: str) -> list[Item]:
        """List a receipt's items ordered by name."""
        pass

    @abstractmethod
    async def update_item(self, item_id: str, fields: dict[str, Any]) -> Item:
        pass

    @abstractmethod
    async def delete_item(self, item_id: str) -> bool:
        pass

    @abstractmethod
    async def delete_items_for_receipt(self, receipt_id: str) -> int:
        """Delete all items of a receipt. Returns the number deleted."""
        pass

    @abstractmethod
    async def list_receipts_with_items(
        self,
        account: Account,
        date_range: DateRange,
    ) -> list[Receipt]:
        """
        Receipts of an account scope inside a window, in one joined read.

        Each receipt carries its items, and each item its category name.
        Family scope: family_id = account.family_id.
        Personal scope: family_id IS NULL AND user_id = account.user_id.
        """
        pass

    @abstractmethod
    async def list_receipts(
        self,
        account: Account,
        offset: int,
        limit: int,
    ) -> tuple[list[Receipt], int]:
        """
        One page of an account's receipts, newest first.

        Returns:
            (receipts_without_items, exact_total_count)
        """
        pass


class UsageStorageInterface(ABC):
    """
    Append-only log of external AI calls (api_usage).
    """

    @abstractmethod
    async def append_usage(self, record: UsageRecord) -> bool:
        """Append one usage record."""
        pass

    @abstractmethod
    async def list_usage(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[UsageRecord]:
        """A user's usage records, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class OrphanedFamilyError(StorageError):
    """A family row exists but the creator's admin membership does not."""

    def __init__(self, family_id: str, message: str = ""):
        self.family_id = family_id
        super().__init__(
            message or f"Family {family_id} was created without an admin membership"
        )
