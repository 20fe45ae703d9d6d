"""
In-Memory Storage Implementation

A process-local stand-in for the hosted backend. It keeps the same
tables, runs the two atomic procedures, applies the admin-only policies
on family writes and cascades family deletion the way the backend does.

Used by the test suite and for running the core without credentials.
Several InMemoryStorage views (one per signed-in user) can share one
InMemoryBackend, which is how multi-user scenarios are exercised.
"""

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import uuid4

from familyspend.models.account import Account
from familyspend.models.audit import UsageRecord
from familyspend.models.family import (
    Family,
    FamilyInvitation,
    FamilyMembership,
    FamilyRole,
    InvitationStatus,
    Profile,
)
from familyspend.models.finance import Category, DateRange, Item, Receipt
from familyspend.services.storage.interface import (
    CategoryStorageInterface,
    FamilyStorageInterface,
    NotFoundError,
    ReceiptStorageInterface,
    StorageError,
    UsageStorageInterface,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class InMemoryBackend:
    """
    Shared tables plus failure injection.

    Usage:
        backend = InMemoryBackend(categories=[...])
        backend.add_profile("u1", name="Alice", email="alice@example.com")
        storage = backend.storage_for("u1")
        backend.fail("list_categories")   # next call raises StorageError
    """

    def __init__(
        self,
        categories: Optional[list[Category]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.categories: list[Category] = list(categories or [])
        self.profiles: dict[str, Profile] = {}
        self.families: dict[str, Family] = {}
        self.memberships: list[FamilyMembership] = []
        self.invitations: dict[str, FamilyInvitation] = {}
        self.receipts: dict[str, Receipt] = {}
        self.items: dict[str, Item] = {}
        self.usage: list[UsageRecord] = []

        self.clock = clock or _utcnow
        self.calls: Counter = Counter()
        self._failures: Counter = Counter()

    def add_profile(
        self,
        user_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Profile:
        profile = Profile(id=user_id, name=name, email=email)
        self.profiles[user_id] = profile
        return profile

    def storage_for(self, user_id: str) -> "InMemoryStorage":
        return InMemoryStorage(self, user_id)

    def fail(self, operation: str, times: int = 1) -> None:
        """Make the next `times` calls of an operation raise StorageError."""
        self._failures[operation] += times

    def check(self, operation: str) -> None:
        self.calls[operation] += 1
        if self._failures[operation] > 0:
            self._failures[operation] -= 1
            raise StorageError(f"Injected failure: {operation}")

    def should_skip(self, operation: str) -> bool:
        """Consume an injected failure without raising (silent partial write)."""
        if self._failures[operation] > 0:
            self._failures[operation] -= 1
            return True
        return False

    # Table helpers

    def membership(self, family_id: str, user_id: str) -> Optional[FamilyMembership]:
        for m in self.memberships:
            if m.family_id == family_id and m.user_id == user_id:
                return m
        return None

    def is_admin(self, family_id: str, user_id: str) -> bool:
        m = self.membership(family_id, user_id)
        return m is not None and m.role == FamilyRole.ADMIN

    def category_name(self, category_id: Optional[str]) -> Optional[str]:
        for category in self.categories:
            if category.id == category_id:
                return category.name
        return None

    def items_of(self, receipt_id: str) -> list[Item]:
        rows = [i for i in self.items.values() if i.receipt_id == receipt_id]
        rows = [
            i.model_copy(update={"category_name": self.category_name(i.category_id)})
            for i in rows
        ]
        return sorted(rows, key=lambda i: i.name)

    def with_items(self, receipt: Receipt) -> Receipt:
        return receipt.model_copy(update={"items": self.items_of(receipt.id)})

    def with_family_name(self, invitation: FamilyInvitation) -> FamilyInvitation:
        family = self.families.get(invitation.family_id)
        return invitation.model_copy(
            update={"family_name": family.name if family else None}
        )


class InMemoryStorage(
    CategoryStorageInterface,
    FamilyStorageInterface,
    ReceiptStorageInterface,
    UsageStorageInterface,
):
    """
    All four storage interfaces, seen as one signed-in user.

    The user id plays the role of the auth token on the hosted backend:
    procedures act on behalf of it and policies are checked against it.
    """

    def __init__(self, backend: InMemoryBackend, user_id: str):
        self.backend = backend
        self.user_id = user_id

    def _require_admin(self, family_id: str) -> None:
        if not self.backend.is_admin(family_id, self.user_id):
            raise StorageError(
                f"new row violates row-level security policy for family {family_id}"
            )

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def list_categories(self) -> list[Category]:
        self.backend.check("list_categories")
        return sorted(self.backend.categories, key=lambda c: (c.level, c.name))

    # =========================================================================
    # FAMILIES
    # =========================================================================

    async def list_memberships_for_user(
        self,
        user_id: str,
    ) -> list[tuple[FamilyMembership, Family]]:
        self.backend.check("list_memberships_for_user")
        pairs = []
        for m in self.backend.memberships:
            family = self.backend.families.get(m.family_id)
            if m.user_id == user_id and family is not None:
                pairs.append((m, family))
        return pairs

    async def list_memberships_for_family(
        self,
        family_id: str,
    ) -> list[FamilyMembership]:
        self.backend.check("list_memberships_for_family")
        return [m for m in self.backend.memberships if m.family_id == family_id]

    async def get_profiles(self, user_ids: list[str]) -> list[Profile]:
        self.backend.check("get_profiles")
        return [
            self.backend.profiles[uid]
            for uid in sorted(set(user_ids))
            if uid in self.backend.profiles
        ]

    async def create_family_with_admin(self, name: str) -> Family:
        self.backend.check("create_family_with_admin")
        family = Family(
            id=_new_id(),
            name=name,
            created_by=self.user_id,
            created_at=self.backend.clock(),
        )
        self.backend.families[family.id] = family
        # Emulates a partial commit: family written, membership lost
        if not self.backend.should_skip("create_family_with_admin.membership"):
            self.backend.memberships.append(FamilyMembership(
                id=_new_id(),
                family_id=family.id,
                user_id=self.user_id,
                role=FamilyRole.ADMIN,
                joined_at=self.backend.clock(),
            ))
        return family

    async def rename_family(self, family_id: str, name: str) -> Family:
        self.backend.check("rename_family")
        if family_id not in self.backend.families:
            raise NotFoundError(f"Family not found: {family_id}")
        self._require_admin(family_id)
        family = self.backend.families[family_id].model_copy(update={"name": name})
        self.backend.families[family_id] = family
        return family

    async def delete_family(self, family_id: str) -> bool:
        self.backend.check("delete_family")
        if family_id not in self.backend.families:
            return False
        self._require_admin(family_id)

        del self.backend.families[family_id]
        self.backend.memberships = [
            m for m in self.backend.memberships if m.family_id != family_id
        ]
        self.backend.invitations = {
            k: v for k, v in self.backend.invitations.items()
            if v.family_id != family_id
        }
        receipt_ids = {
            r.id for r in self.backend.receipts.values() if r.family_id == family_id
        }
        for receipt_id in receipt_ids:
            del self.backend.receipts[receipt_id]
        self.backend.items = {
            k: v for k, v in self.backend.items.items()
            if v.receipt_id not in receipt_ids
        }
        return True

    async def delete_membership(self, family_id: str, user_id: str) -> bool:
        self.backend.check("delete_membership")
        if user_id != self.user_id:
            self._require_admin(family_id)
        membership = self.backend.membership(family_id, user_id)
        if membership is None:
            return False
        self.backend.memberships.remove(membership)
        return True

    async def create_invitation(
        self,
        family_id: str,
        invited_email: str,
        invited_by: str,
        invited_by_name: Optional[str],
        expires_at: datetime,
    ) -> FamilyInvitation:
        self.backend.check("create_invitation")
        self._require_admin(family_id)
        invitation = FamilyInvitation(
            id=_new_id(),
            family_id=family_id,
            invited_email=invited_email,
            invited_by=invited_by,
            invited_by_name=invited_by_name,
            status=InvitationStatus.PENDING,
            created_at=self.backend.clock(),
            expires_at=expires_at,
        )
        self.backend.invitations[invitation.id] = invitation
        return self.backend.with_family_name(invitation)

    async def list_invitations(
        self,
        family_ids: list[str],
        status: Optional[InvitationStatus] = None,
    ) -> list[FamilyInvitation]:
        self.backend.check("list_invitations")
        rows = [
            self.backend.with_family_name(inv)
            for inv in self.backend.invitations.values()
            if inv.family_id in family_ids and (status is None or inv.status == status)
        ]
        return sorted(rows, key=lambda inv: inv.created_at, reverse=True)

    async def list_invitations_for_email(
        self,
        email: str,
        status: Optional[InvitationStatus] = None,
    ) -> list[FamilyInvitation]:
        self.backend.check("list_invitations_for_email")
        rows = [
            self.backend.with_family_name(inv)
            for inv in self.backend.invitations.values()
            if inv.invited_email.lower() == email.lower()
            and (status is None or inv.status == status)
        ]
        return sorted(rows, key=lambda inv: inv.created_at, reverse=True)

    async def get_invitation(self, invitation_id: str) -> Optional[FamilyInvitation]:
        self.backend.check("get_invitation")
        invitation = self.backend.invitations.get(invitation_id)
        return self.backend.with_family_name(invitation) if invitation else None

    async def update_invitation_status(
        self,
        invitation_id: str,
        status: InvitationStatus,
    ) -> FamilyInvitation:
        self.backend.check("update_invitation_status")
        invitation = self.backend.invitations.get(invitation_id)
        if invitation is None:
            raise NotFoundError(f"Invitation not found: {invitation_id}")
        invitation = invitation.model_copy(update={"status": status})
        self.backend.invitations[invitation_id] = invitation
        return self.backend.with_family_name(invitation)

    async def delete_invitation(self, invitation_id: str) -> bool:
        self.backend.check("delete_invitation")
        invitation = self.backend.invitations.get(invitation_id)
        if invitation is None:
            return False
        self._require_admin(invitation.family_id)
        del self.backend.invitations[invitation_id]
        return True

    async def accept_invitation(self, invitation_id: str) -> bool:
        self.backend.check("accept_invitation")
        invitation = self.backend.invitations.get(invitation_id)
        profile = self.backend.profiles.get(self.user_id)
        if invitation is None or profile is None or not profile.email:
            return False
        if invitation.invited_email.lower() != profile.email.lower():
            return False
        if not invitation.is_active(self.backend.clock()):
            return False
        if invitation.family_id not in self.backend.families:
            return False

        if self.backend.membership(invitation.family_id, self.user_id) is None:
            self.backend.memberships.append(FamilyMembership(
                id=_new_id(),
                family_id=invitation.family_id,
                user_id=self.user_id,
                role=FamilyRole.MEMBER,
                joined_at=self.backend.clock(),
            ))
        self.backend.invitations[invitation_id] = invitation.model_copy(
            update={"status": InvitationStatus.ACCEPTED}
        )
        return True

    # =========================================================================
    # RECEIPTS
    # =========================================================================

    @staticmethod
    def _in_scope(receipt: Receipt, account: Account) -> bool:
        if account.is_family:
            return receipt.family_id == account.family_id
        return receipt.family_id is None and receipt.user_id == account.user_id

    async def insert_receipt(self, fields: dict[str, Any]) -> Receipt:
        self.backend.check("insert_receipt")
        family_id = fields.get("family_id")
        if family_id and self.backend.membership(family_id, self.user_id) is None:
            raise StorageError(
                f"new row violates row-level security policy for family {family_id}"
            )
        receipt = Receipt(
            id=_new_id(),
            created_at=self.backend.clock(),
            **{k: v for k, v in fields.items() if k != "items"},
        )
        self.backend.receipts[receipt.id] = receipt
        return receipt

    async def get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        self.backend.check("get_receipt")
        receipt = self.backend.receipts.get(receipt_id)
        return self.backend.with_items(receipt) if receipt else None

    async def update_receipt(self, receipt_id: str, fields: dict[str, Any]) -> Receipt:
        self.backend.check("update_receipt")
        receipt = self.backend.receipts.get(receipt_id)
        if receipt is None:
            raise NotFoundError(f"Receipt not found: {receipt_id}")
        data = receipt.model_dump()
        data.update(fields)
        receipt = Receipt(**data)
        self.backend.receipts[receipt_id] = receipt
        return receipt

    async def delete_receipt(self, receipt_id: str) -> bool:
        self.backend.check("delete_receipt")
        return self.backend.receipts.pop(receipt_id, None) is not None

    async def insert_items(
        self,
        receipt_id: str,
        rows: list[dict[str, Any]],
    ) -> list[Item]:
        self.backend.check("insert_items")
        if receipt_id not in self.backend.receipts:
            raise StorageError(f"insert or update on table items violates foreign key: {receipt_id}")
        inserted = []
        for row in rows:
            item = Item(id=_new_id(), receipt_id=receipt_id, **row)
            self.backend.items[item.id] = item
            inserted.append(item)
        return inserted

    async def list_items(self, receipt_id: str) -> list[Item]:
        self.backend.check("list_items")
        return self.backend.items_of(receipt_id)

    async def update_item(self, item_id: str, fields: dict[str, Any]) -> Item:
        self.backend.check("update_item")
        item = self.backend.items.get(item_id)
        if item is None:
            raise NotFoundError(f"Item not found: {item_id}")
        data = item.model_dump()
        data.update(fields)
        item = Item(**data)
        self.backend.items[item_id] = item
        return item

    async def delete_item(self, item_id: str) -> bool:
        self.backend.check("delete_item")
        return self.backend.items.pop(item_id, None) is not None

    async def delete_items_for_receipt(self, receipt_id: str) -> int:
        self.backend.check("delete_items_for_receipt")
        if self.backend.should_skip("delete_items_for_receipt.silent"):
            return 0
        doomed = [k for k, v in self.backend.items.items() if v.receipt_id == receipt_id]
        for item_id in doomed:
            del self.backend.items[item_id]
        return len(doomed)

    async def list_receipts_with_items(
        self,
        account: Account,
        date_range: DateRange,
    ) -> list[Receipt]:
        self.backend.check("list_receipts_with_items")
        rows = [
            self.backend.with_items(r)
            for r in self.backend.receipts.values()
            if self._in_scope(r, account) and date_range.contains(r.date)
        ]
        return sorted(rows, key=lambda r: r.date, reverse=True)

    async def list_receipts(
        self,
        account: Account,
        offset: int,
        limit: int,
    ) -> tuple[list[Receipt], int]:
        self.backend.check("list_receipts")
        rows = [r for r in self.backend.receipts.values() if self._in_scope(r, account)]
        rows.sort(key=lambda r: (r.date, r.created_at or _utcnow()), reverse=True)
        return rows[offset:offset + limit], len(rows)

    # =========================================================================
    # USAGE
    # =========================================================================

    async def append_usage(self, record: UsageRecord) -> bool:
        self.backend.check("append_usage")
        self.backend.usage.append(record.model_copy(update={"id": _new_id()}))
        return True

    async def list_usage(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[UsageRecord]:
        self.backend.check("list_usage")
        rows = [
            r for r in self.backend.usage
            if r.user_id == user_id
            and (since is None or r.created_at >= since)
            and (until is None or r.created_at <= until)
        ]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows[:limit]
