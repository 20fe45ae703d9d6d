"""
Family Membership Store

Loads a user's families, roles and rosters, and runs every family
mutation (create, rename, delete, invite, accept, decline, cancel,
remove, leave).

DESIGN DECISIONS:
1. Reads never raise past this class. A failed read comes back as a
   result object with error set, so "load failed" and "no families"
   stay distinguishable.
2. Mutations raise. They are never retried automatically.
3. Role checks here are advisory (fast, user-facing errors). The
   backend's row-level policy is the one that actually decides.
4. The family list is cached per session and dropped after any
   mutation that changes membership.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from familyspend.audit import AuditLogger
from familyspend.config import AppSettings, get_settings
from familyspend.errors import (
    AlreadyMemberError,
    AuthorizationError,
    ConflictError,
    DuplicateInvitationError,
    InputRejectedError,
    LastAdminError,
    LoadError,
)
from familyspend.models.audit import AuditEventType
from familyspend.models.family import (
    Family,
    FamilyInvitation,
    FamilyLoadResult,
    FamilyMember,
    FamilyRole,
    Identity,
    InvitationStatus,
    RosterLoadResult,
)
from familyspend.services.storage import (
    SELECTED_FAMILY_KEY,
    FamilyStorageInterface,
    NotFoundError,
    OrphanedFamilyError,
    StateStore,
    StorageError,
)


logger = structlog.get_logger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_FAMILY_NAME_LENGTH = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_family_name(name: str) -> str:
    """
    Raises:
        InputRejectedError: Blank or too long
    """
    name = (name or "").strip()
    if not name:
        raise InputRejectedError("Family name is required")
    if len(name) > MAX_FAMILY_NAME_LENGTH:
        raise InputRejectedError(
            f"Family name must be at most {MAX_FAMILY_NAME_LENGTH} characters"
        )
    return name


def normalize_email(email: str) -> str:
    """
    Raises:
        InputRejectedError: Not an email address
    """
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise InputRejectedError(f"Invalid email address: {email!r}")
    return email


class FamilyMembershipStore:
    """
    Family data for one signed-in user.

    Usage:
        store = FamilyMembershipStore(storage, identity, state_store)
        result = await store.load_families()
        family = await store.create_family("Smiths")
        await store.invite_member(family.id, "a@x.com")
    """

    def __init__(
        self,
        storage: FamilyStorageInterface,
        identity: Identity,
        state_store: StateStore,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._storage = storage
        self._identity = identity
        self._state_store = state_store
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().app
        self._clock = clock or _utcnow
        self._families: Optional[FamilyLoadResult] = None

    @property
    def identity(self) -> Identity:
        return self._identity

    # =========================================================================
    # READS
    # =========================================================================

    async def load_families(self, force_refresh: bool = False) -> FamilyLoadResult:
        """
        The user's families with the user's role in each.

        A user with no memberships gets an empty, successful result.
        """
        if self._families is not None and not force_refresh:
            return self._families

        try:
            pairs = await self._storage.list_memberships_for_user(self._identity.id)
        except StorageError as e:
            logger.warning("family_load_failed", user_id=self._identity.id, error=str(e))
            return FamilyLoadResult(error=f"Could not load families: {e}")

        result = FamilyLoadResult(
            families=[family for _, family in pairs],
            roles_by_family_id={m.family_id: m.role for m, _ in pairs},
        )
        self._families = result
        return result

    def invalidate(self) -> None:
        """Drop the cached family list."""
        self._families = None

    async def load_members(self, family_id: str) -> RosterLoadResult:
        """
        A family's roster with display names.

        Membership rows first, then ONE batched profile lookup for all
        member ids.
        """
        try:
            memberships = await self._storage.list_memberships_for_family(family_id)
            user_ids = [m.user_id for m in memberships]
            profiles = await self._storage.get_profiles(user_ids) if user_ids else []
        except StorageError as e:
            logger.warning("roster_load_failed", family_id=family_id, error=str(e))
            return RosterLoadResult(family_id=family_id, error=f"Could not load members: {e}")

        by_id = {p.id: p for p in profiles}
        members = []
        for m in memberships:
            profile = by_id.get(m.user_id)
            members.append(FamilyMember(
                **m.model_dump(),
                profile_name=profile.name if profile else None,
                profile_email=profile.email if profile else None,
            ))
        return RosterLoadResult(family_id=family_id, members=members)

    async def role_for(self, family_id: str) -> Optional[FamilyRole]:
        """
        The user's role in a family, None if not a member.

        Raises:
            LoadError: Families could not be loaded
        """
        result = await self.load_families()
        if not result.ok:
            raise LoadError(result.error)
        return result.role_for(family_id)

    async def is_admin(self, family_id: str) -> bool:
        return await self.role_for(family_id) == FamilyRole.ADMIN

    async def _require_admin(self, family_id: str) -> None:
        if not await self.is_admin(family_id):
            raise AuthorizationError(family_id, FamilyRole.ADMIN.value)

    async def _load_roster_or_raise(self, family_id: str) -> RosterLoadResult:
        roster = await self.load_members(family_id)
        if not roster.ok:
            raise LoadError(roster.error)
        return roster

    # =========================================================================
    # FAMILY LIFECYCLE
    # =========================================================================

    async def create_family(self, name: str) -> Family:
        """
        Create a family with the caller as its admin.

        The create_family_with_admin procedure writes both rows in one
        transaction. The admin membership is read back afterwards.

        Raises:
            InputRejectedError: Blank or too long name
            OrphanedFamilyError: Family exists without the creator's admin row
            StorageError: The write failed
        """
        name = normalize_family_name(name)
        family = await self._storage.create_family_with_admin(name)
        self.invalidate()

        memberships = await self._storage.list_memberships_for_family(family.id)
        has_admin = any(
            m.user_id == self._identity.id and m.role == FamilyRole.ADMIN
            for m in memberships
        )
        if not has_admin:
            logger.error("family_created_without_admin", family_id=family.id)
            raise OrphanedFamilyError(family.id)

        await self._audit.log_family_event(
            AuditEventType.FAMILY_CREATED,
            family.id,
            f"Family created: {family.name}",
            {"created_by": self._identity.id},
        )
        return family

    async def rename_family(self, family_id: str, name: str) -> Family:
        """Admin only."""
        name = normalize_family_name(name)
        await self._require_admin(family_id)
        family = await self._storage.rename_family(family_id, name)
        self.invalidate()
        await self._audit.log_family_event(
            AuditEventType.FAMILY_RENAMED,
            family_id,
            f"Family renamed to {family.name}",
        )
        return family

    async def delete_family(self, family_id: str) -> bool:
        """
        Admin only.

        Memberships, invitations and family receipts go with it through
        the backend's cascade.
        """
        await self._require_admin(family_id)
        deleted = await self._storage.delete_family(family_id)
        self.invalidate()
        if deleted:
            self._forget_selected_family(family_id)
            await self._audit.log_family_event(
                AuditEventType.FAMILY_DELETED,
                family_id,
                "Family deleted",
            )
        return deleted

    # =========================================================================
    # INVITATIONS
    # =========================================================================

    async def invite_member(self, family_id: str, email: str) -> FamilyInvitation:
        """
        Invite an email address to a family.

        Raises:
            InputRejectedError: Malformed email
            AuthorizationError: Caller is not an admin of the family
            DuplicateInvitationError: An active invitation already exists
            AlreadyMemberError: The address belongs to a current member
        """
        email = normalize_email(email)
        await self._require_admin(family_id)

        pending = await self._storage.list_invitations(
            [family_id], status=InvitationStatus.PENDING
        )
        now = self._clock()
        for invitation in pending:
            if invitation.invited_email.lower() == email and invitation.is_active(now):
                raise DuplicateInvitationError(
                    f"{email} already has a pending invitation to this family"
                )

        roster = await self._load_roster_or_raise(family_id)
        for member in roster.members:
            if member.profile_email and member.profile_email.lower() == email:
                raise AlreadyMemberError(f"{email} is already a member of this family")

        invitation = await self._storage.create_invitation(
            family_id=family_id,
            invited_email=email,
            invited_by=self._identity.id,
            invited_by_name=self._identity.name or self._identity.email,
            expires_at=now + timedelta(days=self._settings.invitation_expiry_days),
        )
        await self._audit.log_family_event(
            AuditEventType.INVITATION_SENT,
            family_id,
            f"Invitation sent to {email}",
            {"invitation_id": invitation.id},
        )
        return invitation

    async def accept_invitation(self, invitation_id: str) -> bool:
        """
        Accept an invitation addressed to the caller.

        One call to the accept_family_invitation procedure, which checks
        the invitation, creates the membership and marks it accepted.
        Returns False when the invitation was not acceptable.
        """
        accepted = await self._storage.accept_invitation(invitation_id)
        if not accepted:
            logger.info("invitation_not_accepted", invitation_id=invitation_id)
            return False

        self.invalidate()
        invitation = await self._storage.get_invitation(invitation_id)
        await self._audit.log_family_event(
            AuditEventType.INVITATION_ACCEPTED,
            invitation.family_id if invitation else "",
            "Invitation accepted",
            {"invitation_id": invitation_id, "user_id": self._identity.id},
        )
        return True

    async def decline_invitation(self, invitation_id: str) -> FamilyInvitation:
        """
        Raises:
            NotFoundError: No such invitation
            ConflictError: The invitation is no longer pending
        """
        invitation = await self._storage.get_invitation(invitation_id)
        if invitation is None:
            raise NotFoundError(f"Invitation not found: {invitation_id}")
        if invitation.status != InvitationStatus.PENDING:
            raise ConflictError(f"Invitation is already {invitation.status.value}")

        invitation = await self._storage.update_invitation_status(
            invitation_id, InvitationStatus.DECLINED
        )
        await self._audit.log_family_event(
            AuditEventType.INVITATION_DECLINED,
            invitation.family_id,
            "Invitation declined",
            {"invitation_id": invitation_id},
        )
        return invitation

    async def cancel_invitation(self, invitation_id: str) -> bool:
        """Withdraw an invitation. Admin of its family only."""
        invitation = await self._storage.get_invitation(invitation_id)
        if invitation is None:
            raise NotFoundError(f"Invitation not found: {invitation_id}")
        await self._require_admin(invitation.family_id)

        deleted = await self._storage.delete_invitation(invitation_id)
        if deleted:
            await self._audit.log_family_event(
                AuditEventType.INVITATION_CANCELLED,
                invitation.family_id,
                f"Invitation to {invitation.invited_email} cancelled",
                {"invitation_id": invitation_id},
            )
        return deleted

    async def list_pending_invitations(
        self,
        family_ids: Optional[list[str]] = None,
    ) -> list[FamilyInvitation]:
        """
        Pending, unexpired invitations of the given families.

        Defaults to every family of the caller. Expired invitations are
        filtered out here, never deleted.
        """
        if family_ids is None:
            result = await self.load_families()
            if not result.ok:
                raise LoadError(result.error)
            family_ids = [f.id for f in result.families]

        invitations = await self._storage.list_invitations(
            family_ids, status=InvitationStatus.PENDING
        )
        now = self._clock()
        return [inv for inv in invitations if inv.is_active(now)]

    async def list_my_invitations(self, email: Optional[str] = None) -> list[FamilyInvitation]:
        """Pending, unexpired invitations addressed to the caller."""
        email = email or self._identity.email
        if not email:
            return []
        invitations = await self._storage.list_invitations_for_email(
            email.strip().lower(), status=InvitationStatus.PENDING
        )
        now = self._clock()
        return [inv for inv in invitations if inv.is_active(now)]

    # =========================================================================
    # MEMBERSHIP CHANGES
    # =========================================================================

    async def remove_member(self, family_id: str, user_id: str) -> bool:
        """
        Remove another user's membership.

        Admin only, and never an admin: admins leave on their own.

        Raises:
            AuthorizationError: Caller is not an admin, or target is an admin
        """
        await self._require_admin(family_id)
        roster = await self._load_roster_or_raise(family_id)
        target = next((m for m in roster.members if m.user_id == user_id), None)
        if target is None:
            return False
        if target.role == FamilyRole.ADMIN:
            raise AuthorizationError(
                family_id,
                FamilyRole.ADMIN.value,
                "Admins cannot be removed by other members; they must leave the family",
            )

        removed = await self._storage.delete_membership(family_id, user_id)
        self.invalidate()
        if removed:
            await self._audit.log_family_event(
                AuditEventType.MEMBER_REMOVED,
                family_id,
                f"Member {target.display_name} removed",
                {"user_id": user_id},
            )
        return removed

    async def leave_family(self, family_id: str) -> bool:
        """
        Delete the caller's own membership.

        Raises:
            LastAdminError: The caller is the family's only admin
        """
        role = await self.role_for(family_id)
        if role is None:
            return False
        if role == FamilyRole.ADMIN:
            roster = await self._load_roster_or_raise(family_id)
            if roster.admin_count <= 1:
                raise LastAdminError(
                    "You are the only admin of this family; delete the family instead"
                )

        left = await self._storage.delete_membership(family_id, self._identity.id)
        self.invalidate()
        if left:
            self._forget_selected_family(family_id)
            await self._audit.log_family_event(
                AuditEventType.FAMILY_LEFT,
                family_id,
                "Left family",
                {"user_id": self._identity.id},
            )
        return left

    # =========================================================================
    # LABELS AND SELECTION
    # =========================================================================

    async def get_display_name(self, user_id: str, family_id: Optional[str] = None) -> str:
        """
        Label for a user.

        The caller: own name, else email, else "You".
        Anyone else: profile name, else profile email, else "Unknown User".
        """
        if user_id == self._identity.id:
            return self._identity.name or self._identity.email or "You"

        if family_id is not None:
            roster = await self.load_members(family_id)
            for member in roster.members:
                if member.user_id == user_id:
                    return member.display_name

        try:
            profiles = await self._storage.get_profiles([user_id])
        except StorageError as e:
            logger.warning("profile_lookup_failed", user_id=user_id, error=str(e))
            profiles = []
        if profiles:
            return profiles[0].name or profiles[0].email or "Unknown User"
        return "Unknown User"

    def get_selected_family(self, families: list[Family]) -> Optional[Family]:
        """
        The family remembered for the profile view.

        Re-validated against the given families; falls back to the first.
        """
        if not families:
            return None
        remembered = self._state_store.get(SELECTED_FAMILY_KEY)
        for family in families:
            if family.id == remembered:
                return family
        return families[0]

    def select_family(self, family_id: str) -> None:
        self._state_store.set(SELECTED_FAMILY_KEY, family_id)

    def _forget_selected_family(self, family_id: str) -> None:
        if self._state_store.get(SELECTED_FAMILY_KEY) == family_id:
            self._state_store.remove(SELECTED_FAMILY_KEY)
