"""Account scope package."""

from familyspend.accounts.resolver import (
    AccountScopeResolver,
    AccountState,
    build_accounts,
)

__all__ = ["AccountScopeResolver", "AccountState", "build_accounts"]
