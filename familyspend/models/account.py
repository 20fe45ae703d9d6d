"""
Account scope models.

An account is derived, never stored: one personal account per user and
one family account per membership. Every receipt query goes through one.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from familyspend.models.family import Family


PERSONAL_ACCOUNT_NAME = "Personal Account"


class AccountType(str, Enum):
    PERSONAL = "personal"
    FAMILY = "family"


class Account(BaseModel):
    """
    The lens receipts are filtered through.

    user_id is the signed-in user the account was computed for; for the
    personal scope it is also the receipt owner filter.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: AccountType
    user_id: str
    family_id: Optional[str] = None

    @classmethod
    def personal(cls, user_id: str) -> "Account":
        return cls(
            id=f"personal-{user_id}",
            name=PERSONAL_ACCOUNT_NAME,
            type=AccountType.PERSONAL,
            user_id=user_id,
        )

    @classmethod
    def for_family(cls, family: Family, user_id: str) -> "Account":
        return cls(
            id=f"family-{family.id}",
            name=family.name,
            type=AccountType.FAMILY,
            user_id=user_id,
            family_id=family.id,
        )

    @property
    def is_family(self) -> bool:
        return self.type == AccountType.FAMILY
