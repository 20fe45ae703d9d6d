"""Family membership package."""

from familyspend.family.store import (
    FamilyMembershipStore,
    normalize_email,
    normalize_family_name,
)

__all__ = ["FamilyMembershipStore", "normalize_email", "normalize_family_name"]
