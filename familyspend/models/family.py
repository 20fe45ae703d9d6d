"""
Family and identity models.

A family is a sharing group. Each user has at most one membership row
per family, with role admin or member. Invitations move from pending to
accepted or declined; expiry is passive (filtered out, never deleted).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FamilyRole(str, Enum):
    """Role of a user inside one family."""
    ADMIN = "admin"
    MEMBER = "member"


class InvitationStatus(str, Enum):
    """Invitation lifecycle state."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Identity(BaseModel):
    """The signed-in user. Owned by the auth subsystem, read-only here."""
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    name: Optional[str] = None


class Profile(BaseModel):
    """Public profile row used to label roster members."""

    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class Family(BaseModel):
    """A sharing group."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    name: str = Field(..., min_length=1, max_length=100)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class FamilyMembership(BaseModel):
    """A user's membership row in one family."""

    id: Optional[str] = None
    family_id: str
    user_id: str
    role: FamilyRole = FamilyRole.MEMBER
    joined_at: Optional[datetime] = None

    @field_validator("role", mode="before")
    @classmethod
    def null_role_is_member(cls, v):
        return FamilyRole.MEMBER if v is None else v


class FamilyMember(FamilyMembership):
    """Roster entry: membership joined with the member's profile."""

    profile_name: Optional[str] = None
    profile_email: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.profile_name or self.profile_email or "Unknown User"


class FamilyInvitation(BaseModel):
    """An invitation for an email address to join a family."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    family_id: str
    invited_email: str
    invited_by: str
    invited_by_name: Optional[str] = None
    status: InvitationStatus = InvitationStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime

    # Filled from the embedded families(name) join when present
    family_name: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or _utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Pending and not yet expired."""
        return self.status == InvitationStatus.PENDING and not self.is_expired(now)


class FamilyLoadResult(BaseModel):
    """
    Outcome of loading a user's families.

    A failed load carries error and empty data; a successful load of a
    user with no families carries error = None and empty data.
    """

    families: list[Family] = Field(default_factory=list)
    roles_by_family_id: dict[str, FamilyRole] = Field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def role_for(self, family_id: str) -> Optional[FamilyRole]:
        return self.roles_by_family_id.get(family_id)


class RosterLoadResult(BaseModel):
    """Outcome of loading one family's roster."""

    family_id: str
    members: list[FamilyMember] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def admin_count(self) -> int:
        return sum(1 for m in self.members if m.role == FamilyRole.ADMIN)
