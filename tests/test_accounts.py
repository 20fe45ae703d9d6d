"""
Tests for account scope resolution and client-side state.
"""

import json

import pytest

from familyspend.accounts import AccountScopeResolver, build_accounts
from familyspend.errors import AccountNotAvailableError
from familyspend.models.account import AccountType
from familyspend.models.family import Family, Identity
from familyspend.services.storage import (
    CURRENT_ACCOUNT_KEY,
    JsonFileStateStore,
    StateStore,
)


ALICE = Identity(id="u-alice", email="alice@example.com")
SMITHS = Family(id="f-smiths", name="Smiths")
CABIN = Family(id="f-cabin", name="Cabin Trip")


class TestBuildAccounts:
    def test_personal_first_then_families_in_order(self):
        accounts = build_accounts("u-alice", [SMITHS, CABIN])
        assert [a.id for a in accounts] == ["personal-u-alice", "family-f-smiths", "family-f-cabin"]
        assert accounts[0].type == AccountType.PERSONAL

    def test_no_families(self):
        assert [a.id for a in build_accounts("u-alice", [])] == ["personal-u-alice"]


class TestAccountScopeResolver:
    """Selection, persistence and fallback."""

    def test_defaults_to_personal_and_remembers_it(self):
        store = StateStore()
        resolver = AccountScopeResolver(store)
        state = resolver.update(ALICE, [SMITHS, CABIN])

        assert state.loading is False
        assert state.current_account.id == "personal-u-alice"
        assert store.get(CURRENT_ACCOUNT_KEY) == "personal-u-alice"

    def test_restores_remembered_account(self):
        store = StateStore({CURRENT_ACCOUNT_KEY: "family-f-cabin"})
        resolver = AccountScopeResolver(store)
        resolver.update(ALICE, [SMITHS, CABIN])
        assert resolver.current_account.id == "family-f-cabin"

    def test_stale_remembered_account_falls_back(self):
        """The user left that family: personal account, no error."""
        store = StateStore({CURRENT_ACCOUNT_KEY: "family-f-gone"})
        resolver = AccountScopeResolver(store)
        resolver.update(ALICE, [SMITHS])
        assert resolver.current_account.id == "personal-u-alice"
        assert store.get(CURRENT_ACCOUNT_KEY) == "personal-u-alice"

    def test_select_account_persists(self):
        store = StateStore()
        resolver = AccountScopeResolver(store)
        resolver.update(ALICE, [SMITHS])

        account = resolver.select_account("family-f-smiths")
        assert account.family_id == "f-smiths"
        assert resolver.current_account == account
        assert store.get(CURRENT_ACCOUNT_KEY) == "family-f-smiths"

    def test_select_unknown_account(self):
        resolver = AccountScopeResolver(StateStore())
        resolver.update(ALICE, [SMITHS])
        with pytest.raises(AccountNotAvailableError):
            resolver.select_account("family-f-other")
        assert resolver.current_account.id == "personal-u-alice"

    def test_current_account_always_available(self):
        """Leaving the selected family drops back to personal."""
        resolver = AccountScopeResolver(StateStore())
        resolver.update(ALICE, [SMITHS, CABIN])
        resolver.select_account("family-f-cabin")

        resolver.update(ALICE, [SMITHS])
        assert resolver.current_account.id == "personal-u-alice"
        assert resolver.current_account in resolver.available_accounts

    def test_rename_refreshes_current_account(self):
        resolver = AccountScopeResolver(StateStore())
        resolver.update(ALICE, [SMITHS])
        resolver.select_account("family-f-smiths")

        resolver.update(ALICE, [Family(id="f-smiths", name="The Smiths")])
        assert resolver.current_account.name == "The Smiths"

    def test_loading_states(self):
        resolver = AccountScopeResolver(StateStore())
        assert resolver.update(None, []).loading is True
        assert resolver.update(ALICE, [], families_loading=True).loading is True
        assert resolver.available_accounts == []

    def test_no_active_account_while_families_reload(self):
        resolver = AccountScopeResolver(StateStore())
        resolver.update(ALICE, [SMITHS])
        resolver.select_account("family-f-smiths")

        state = resolver.update(ALICE, [], families_loading=True)
        assert state.available_accounts == []
        assert state.current_account is None

        resolver.update(ALICE, [SMITHS])
        assert resolver.current_account.id == "family-f-smiths"

    def test_reload_after_leaving_drops_to_personal(self):
        resolver = AccountScopeResolver(StateStore())
        resolver.update(ALICE, [SMITHS, CABIN])
        resolver.select_account("family-f-cabin")

        resolver.update(ALICE, [], families_loading=True)
        resolver.update(ALICE, [SMITHS])
        assert resolver.current_account.id == "personal-u-alice"

    def test_sign_out_clears_selection(self):
        resolver = AccountScopeResolver(StateStore())
        resolver.update(ALICE, [SMITHS])
        resolver.select_account("family-f-smiths")

        state = resolver.update(None, [])
        assert state.current_account is None

    def test_different_user_does_not_inherit_selection(self):
        store = StateStore()
        resolver = AccountScopeResolver(store)
        resolver.update(ALICE, [SMITHS])
        resolver.select_account("family-f-smiths")

        bob = Identity(id="u-bob")
        resolver.update(bob, [])
        assert resolver.current_account.id == "personal-u-bob"

    def test_unavailable_families_keep_remembered_choice(self):
        """Without a family list the personal account is shown but not saved."""
        store = StateStore({CURRENT_ACCOUNT_KEY: "family-f-smiths"})
        resolver = AccountScopeResolver(store)

        resolver.update(ALICE, [], persist=False)
        assert resolver.current_account.id == "personal-u-alice"
        assert store.get(CURRENT_ACCOUNT_KEY) == "family-f-smiths"

        resolver.update(ALICE, [SMITHS])
        assert resolver.current_account.id == "family-f-smiths"


class TestStateStores:
    """In-memory and JSON file key-value state."""

    def test_memory_store(self):
        store = StateStore()
        store.set("k", "v")
        assert store.get("k") == "v"
        store.remove("k")
        assert store.get("k") is None

    def test_json_file_round_trip(self, tmp_path):
        path = tmp_path / "state.json"
        JsonFileStateStore(path).set(CURRENT_ACCOUNT_KEY, "family-f1")
        assert JsonFileStateStore(path).get(CURRENT_ACCOUNT_KEY) == "family-f1"

    def test_missing_file_is_empty(self, tmp_path):
        assert JsonFileStateStore(tmp_path / "nope.json").get(CURRENT_ACCOUNT_KEY) is None

    def test_corrupt_file_is_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonFileStateStore(path)
        assert store.get(CURRENT_ACCOUNT_KEY) is None

        store.set(CURRENT_ACCOUNT_KEY, "personal-u1")
        assert json.loads(path.read_text(encoding="utf-8")) == {CURRENT_ACCOUNT_KEY: "personal-u1"}
