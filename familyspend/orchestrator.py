"""
Main Orchestrator for Family Spend Tracker

This module ties the components together into the surface a client
(web or mobile UI) calls:
1. Accounts (which scope every query runs in)
2. Ingestion (image -> reviewable draft)
3. Spending summaries and history
4. Receipt and item mutations
5. Family management

DESIGN DECISION: The orchestrator enforces the boundaries:
- No draft is persisted without the user sending it back to create_receipt
- Every scoped call runs against an explicit account
- Any change to memberships refreshes the available accounts

One FinanceCore is created per signed-in session.
"""

from datetime import date, datetime
from typing import Optional

import structlog

from familyspend.accounts import AccountScopeResolver, AccountState
from familyspend.audit import AuditLogger
from familyspend.categories import CategoryTaxonomy
from familyspend.config import AppSettings, GeminiSettings, get_settings
from familyspend.errors import AccountNotAvailableError
from familyspend.family import FamilyMembershipStore
from familyspend.ingestion import ReceiptIngestionReconciler
from familyspend.models.account import Account
from familyspend.models.audit import AuditEventBuilder, UsageRecord
from familyspend.models.family import (
    Family,
    FamilyInvitation,
    FamilyLoadResult,
    Identity,
    RosterLoadResult,
)
from familyspend.models.finance import (
    Category,
    DateRange,
    Item,
    ItemInput,
    ItemUpdate,
    Receipt,
    ReceiptDraft,
    ReceiptPage,
    ReceiptPatch,
    SpendingSummary,
)
from familyspend.queries import (
    SpendingAggregator,
    SpendingPeriod,
    SummaryState,
    UsagePeriod,
    UsageSummary,
    export_usage_csv,
    get_usage_summary,
    resolve_period,
)
from familyspend.services.extraction import (
    ExtractionServiceError,
    GeminiReceiptExtractor,
    ReceiptExtractor,
)
from familyspend.services.storage import (
    CategoryStorageInterface,
    FamilyStorageInterface,
    JsonFileStateStore,
    ReceiptStorageInterface,
    StateStore,
    SupabaseCategoryStorage,
    SupabaseClient,
    SupabaseFamilyStorage,
    SupabaseReceiptStorage,
    SupabaseUsageStorage,
    UsageStorageInterface,
)
from familyspend.transactions import TransactionMutator


logger = structlog.get_logger(__name__)


class FinanceCore:
    """
    Client-facing surface for one signed-in session.

    Usage:
        core = create_app_components(identity, access_token=token)
        await core.refresh_accounts()
        draft = await core.ingest_receipt_image(image_bytes)
        receipt = await core.create_receipt(draft)
    """

    def __init__(
        self,
        identity: Identity,
        category_storage: CategoryStorageInterface,
        family_storage: FamilyStorageInterface,
        receipt_storage: ReceiptStorageInterface,
        usage_storage: UsageStorageInterface,
        state_store: StateStore,
        extractor: Optional[ReceiptExtractor] = None,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
        gemini_settings: Optional[GeminiSettings] = None,
    ):
        self.identity = identity
        self._usage_storage = usage_storage
        self._audit = audit_logger or AuditLogger(usage_storage)
        settings = app_settings or get_settings().app

        self.taxonomy = CategoryTaxonomy(category_storage)
        self.accounts = AccountScopeResolver(state_store)
        self.families = FamilyMembershipStore(
            family_storage,
            identity,
            state_store,
            audit_logger=self._audit,
            settings=settings,
        )
        self.reconciler = (
            ReceiptIngestionReconciler(
                extractor,
                self.taxonomy,
                audit_logger=self._audit,
                app_settings=settings,
                gemini_settings=gemini_settings,
            )
            if extractor is not None
            else None
        )
        self.aggregator = SpendingAggregator(receipt_storage, self._audit)
        self.mutator = TransactionMutator(receipt_storage, self._audit, settings)

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def refresh_accounts(self, force: bool = True) -> AccountState:
        """
        Reload families and recompute the available accounts.

        If the family list cannot be loaded, only the personal account is
        offered and the remembered choice is left as it was.
        """
        self.accounts.update(self.identity, [], families_loading=True)
        result = await self.families.load_families(force_refresh=force)
        if not result.ok:
            logger.warning("accounts_without_families", error=result.error)
            return self.accounts.update(self.identity, [], persist=False)
        return self.accounts.update(self.identity, result.families)

    def get_available_accounts(self) -> list[Account]:
        return self.accounts.available_accounts

    def get_current_account(self) -> Optional[Account]:
        return self.accounts.current_account

    async def select_account(self, account_id: str) -> Account:
        account = self.accounts.select_account(account_id)
        await self._audit.log(AuditEventBuilder.account_selected(account.id, account.type.value))
        return account

    def _scope(self, account: Optional[Account]) -> Account:
        scope = account or self.accounts.current_account
        if scope is None:
            raise AccountNotAvailableError("<none>")
        return scope

    # =========================================================================
    # CATEGORIES AND INGESTION
    # =========================================================================

    async def get_categories(self) -> list[Category]:
        return await self.taxonomy.get_categories()

    async def ingest_receipt_image(
        self,
        image_bytes: bytes,
        today: Optional[date] = None,
    ) -> ReceiptDraft:
        """
        Image -> draft for review. Nothing is saved.

        Raises:
            InputRejectedError, LoadError, ExtractionError subclasses
        """
        if self.reconciler is None:
            raise ExtractionServiceError("Receipt extraction is not configured")
        account = self.accounts.current_account
        return await self.reconciler.ingest_receipt_image(
            image_bytes,
            user_id=self.identity.id,
            family_id=account.family_id if account else None,
            today=today,
        )

    # =========================================================================
    # SUMMARIES AND HISTORY
    # =========================================================================

    async def get_spending_summary(
        self,
        date_range: DateRange,
        scope: Optional[Account] = None,
    ) -> SpendingSummary:
        """
        Raises:
            SummaryLoadError: The window could not be loaded
        """
        return await self.aggregator.fetch_summary(self._scope(scope), date_range)

    async def load_dashboard(
        self,
        period: SpendingPeriod = SpendingPeriod.THIS_MONTH,
        custom: Optional[DateRange] = None,
        today: Optional[date] = None,
    ) -> Optional[SummaryState]:
        """
        Load the dashboard window for the current account.

        Returns None when a newer load superseded this one.
        """
        date_range = resolve_period(period, today, custom)
        return await self.aggregator.load(self._scope(None), date_range)

    async def list_transactions(self, page: int = 1, scope: Optional[Account] = None) -> ReceiptPage:
        return await self.mutator.list_transactions(self._scope(scope), page)

    async def list_items(self, receipt_id: str) -> list[Item]:
        return await self.mutator.list_items(receipt_id)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def create_receipt(self, draft: ReceiptDraft, scope: Optional[Account] = None) -> Receipt:
        return await self.mutator.create_receipt(
            draft, self._scope(scope), added_by=self.identity.id
        )

    async def update_receipt(self, receipt_id: str, patch: ReceiptPatch) -> Receipt:
        return await self.mutator.update_receipt(receipt_id, patch)

    async def update_items(self, receipt_id: str, items: list[ItemUpdate]) -> Receipt:
        return await self.mutator.update_items(receipt_id, items)

    async def add_item(self, receipt_id: str, item: ItemInput) -> Receipt:
        return await self.mutator.add_item(receipt_id, item)

    async def remove_item(self, receipt_id: str, item_id: str) -> Receipt:
        return await self.mutator.remove_item(receipt_id, item_id)

    async def delete_receipt(self, receipt_id: str) -> bool:
        return await self.mutator.delete_receipt(receipt_id)

    # =========================================================================
    # FAMILIES
    # =========================================================================

    async def load_families(self) -> FamilyLoadResult:
        return await self.families.load_families()

    async def load_members(self, family_id: str) -> RosterLoadResult:
        return await self.families.load_members(family_id)

    async def create_family(self, name: str) -> Family:
        family = await self.families.create_family(name)
        await self.refresh_accounts()
        return family

    async def rename_family(self, family_id: str, name: str) -> Family:
        family = await self.families.rename_family(family_id, name)
        await self.refresh_accounts()
        return family

    async def delete_family(self, family_id: str) -> bool:
        deleted = await self.families.delete_family(family_id)
        await self.refresh_accounts()
        return deleted

    async def invite_member(self, family_id: str, email: str) -> FamilyInvitation:
        return await self.families.invite_member(family_id, email)

    async def accept_invitation(self, invitation_id: str) -> bool:
        accepted = await self.families.accept_invitation(invitation_id)
        if accepted:
            await self.refresh_accounts()
        return accepted

    async def decline_invitation(self, invitation_id: str) -> FamilyInvitation:
        return await self.families.decline_invitation(invitation_id)

    async def cancel_invitation(self, invitation_id: str) -> bool:
        return await self.families.cancel_invitation(invitation_id)

    async def list_pending_invitations(
        self,
        family_ids: Optional[list[str]] = None,
    ) -> list[FamilyInvitation]:
        return await self.families.list_pending_invitations(family_ids)

    async def list_my_invitations(self) -> list[FamilyInvitation]:
        return await self.families.list_my_invitations()

    async def remove_member(self, family_id: str, user_id: str) -> bool:
        return await self.families.remove_member(family_id, user_id)

    async def leave_family(self, family_id: str) -> bool:
        left = await self.families.leave_family(family_id)
        await self.refresh_accounts()
        return left

    async def get_display_name(self, user_id: str, family_id: Optional[str] = None) -> str:
        return await self.families.get_display_name(user_id, family_id)

    async def get_selected_family(self) -> Optional[Family]:
        result = await self.families.load_families()
        return self.families.get_selected_family(result.families)

    def select_family(self, family_id: str) -> None:
        self.families.select_family(family_id)

    # =========================================================================
    # USAGE
    # =========================================================================

    async def get_usage_summary(
        self,
        period: UsagePeriod = UsagePeriod.MONTH,
        now: Optional[datetime] = None,
    ) -> UsageSummary:
        return await get_usage_summary(self._usage_storage, self.identity.id, period, now)

    @staticmethod
    def export_usage_csv(records: list[UsageRecord]) -> str:
        return export_usage_csv(records)


def create_app_components(
    identity: Identity,
    access_token: Optional[str] = None,
    state_store: Optional[StateStore] = None,
    extractor: Optional[ReceiptExtractor] = None,
    use_extractor: bool = True,
) -> FinanceCore:
    """
    Factory function to create a Supabase-backed session.

    Args:
        identity: The signed-in user
        access_token: The user's JWT, so row-level policies apply to them
        state_store: Client-side state; defaults to the configured JSON file
        extractor: Vision extractor; defaults to Gemini
        use_extractor: Set to False to run without receipt extraction
                    (manual entry still works)

    Returns:
        A FinanceCore; call refresh_accounts() before scoped calls
    """
    settings = get_settings()
    app_settings = settings.app

    client = SupabaseClient(settings.supabase, access_token=access_token)
    usage_storage = SupabaseUsageStorage(client)
    audit_logger = AuditLogger(usage_storage)

    if extractor is None and use_extractor:
        try:
            extractor = GeminiReceiptExtractor()
        except Exception as e:
            # Vision model not configured - continue without ingestion
            logger.warning("extractor_not_configured", error=str(e))
            extractor = None

    return FinanceCore(
        identity=identity,
        category_storage=SupabaseCategoryStorage(client),
        family_storage=SupabaseFamilyStorage(client),
        receipt_storage=SupabaseReceiptStorage(client),
        usage_storage=usage_storage,
        state_store=state_store or JsonFileStateStore(app_settings.state_file_path),
        extractor=extractor,
        audit_logger=audit_logger,
        app_settings=app_settings,
    )
