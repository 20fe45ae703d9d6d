"""
Account Scope Resolver

Computes the selectable accounts (one personal, one per family) and the
active one, and remembers the user's choice across sessions.

DESIGN DECISION: The resolver is an explicit session object, created
once per signed-in session and passed to whoever issues scoped queries.
There is no module-level "current account".

Invariant: current_account, when set, is always one of
available_accounts. A remembered id that no longer resolves (the user
left that family) falls back to the personal account without raising.
"""

from typing import Optional

import structlog
from pydantic import BaseModel, Field

from familyspend.errors import AccountNotAvailableError
from familyspend.models.account import Account
from familyspend.models.family import Family, Identity
from familyspend.services.storage import CURRENT_ACCOUNT_KEY, StateStore


logger = structlog.get_logger(__name__)


class AccountState(BaseModel):
    """What the account selector renders."""

    available_accounts: list[Account] = Field(default_factory=list)
    current_account: Optional[Account] = None
    loading: bool = True


def build_accounts(user_id: str, families: list[Family]) -> list[Account]:
    """Personal account first, then one per family in the given order."""
    accounts = [Account.personal(user_id)]
    accounts.extend(Account.for_family(family, user_id) for family in families)
    return accounts


class AccountScopeResolver:
    """
    Session-scoped account selection.

    Usage:
        resolver = AccountScopeResolver(state_store)
        resolver.update(identity, families)
        resolver.select_account("family-123")
    """

    def __init__(self, state_store: StateStore):
        self._state_store = state_store
        self._identity_id: Optional[str] = None
        self._state = AccountState()
        # Set when the last selection was made without the family list
        self._provisional = False
        # Active account id held back while the family list reloads
        self._pending_id: Optional[str] = None

    @property
    def state(self) -> AccountState:
        return self._state

    @property
    def available_accounts(self) -> list[Account]:
        return list(self._state.available_accounts)

    @property
    def current_account(self) -> Optional[Account]:
        return self._state.current_account

    def update(
        self,
        identity: Optional[Identity],
        families: list[Family],
        families_loading: bool = False,
        persist: bool = True,
    ) -> AccountState:
        """
        Recompute accounts after identity or family membership changed.

        Args:
            identity: Signed-in user, None while auth is still resolving
            families: The user's families, in display order
            families_loading: True while the family list is being fetched
            persist: False to leave the remembered choice untouched when
                falling back (used while the family list is unavailable)
        """
        if identity is None or families_loading:
            if identity is None:
                self._identity_id = None
                self._pending_id = None
            elif self._state.current_account is not None:
                self._pending_id = self._state.current_account.id
            # No accounts while loading, so no active one either
            self._state = AccountState(loading=True)
            return self._state

        if identity.id != self._identity_id:
            # A different user: nothing carries over from the previous one
            self._identity_id = identity.id
            current_id = None
        elif self._provisional:
            current_id = None
        elif self._state.current_account is not None:
            current_id = self._state.current_account.id
        else:
            current_id = self._pending_id
        self._pending_id = None

        available = build_accounts(identity.id, families)
        by_id = {account.id: account for account in available}

        if current_id is not None and current_id in by_id:
            # Same id, fresh object (a rename changes the name)
            current = by_id[current_id]
        else:
            current = self._restore_selection(by_id, available[0], persist)

        self._provisional = not persist
        self._state = AccountState(
            available_accounts=available,
            current_account=current,
            loading=False,
        )
        return self._state

    def _restore_selection(
        self,
        by_id: dict[str, Account],
        personal: Account,
        persist: bool = True,
    ) -> Account:
        remembered = self._state_store.get(CURRENT_ACCOUNT_KEY)
        if remembered and remembered in by_id:
            return by_id[remembered]

        if remembered:
            logger.info(
                "remembered_account_unavailable",
                account_id=remembered,
                fallback=personal.id,
            )
        if persist:
            self._state_store.set(CURRENT_ACCOUNT_KEY, personal.id)
        return personal

    def set_current_account(self, account: Account) -> Account:
        """
        Make an account active and remember it immediately.

        Raises:
            AccountNotAvailableError: Not one of the available accounts
        """
        return self.select_account(account.id)

    def select_account(self, account_id: str) -> Account:
        """Same as set_current_account, by id."""
        for account in self._state.available_accounts:
            if account.id == account_id:
                self._state_store.set(CURRENT_ACCOUNT_KEY, account.id)
                self._provisional = False
                self._state = self._state.model_copy(update={"current_account": account})
                logger.debug("account_selected", account_id=account.id)
                return account
        raise AccountNotAvailableError(account_id)
