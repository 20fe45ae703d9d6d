"""
Supabase Storage Implementation

DESIGN DECISION: The hosted Supabase backend is the single source of truth.
Authentication, row-level authorization and cascades are the backend's job;
this module only translates between PostgREST rows and our models.

TRADEOFFS:
- The supabase client is synchronous; every request runs in a worker
  thread via asyncio.to_thread so the event loop is never blocked
- Multi-step atomicity comes from the two server-side procedures,
  everything else is a single request

The implementation follows the abstract interface, so business logic
never sees the client, its query builder, or APIError.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Optional

import structlog
from postgrest.exceptions import APIError
from supabase import Client, create_client
from tenacity import retry, stop_after_attempt, wait_exponential

from familyspend.config import SupabaseSettings, get_settings
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
from familyspend.services.storage.interface import (
    CategoryStorageInterface,
    DuplicateError,
    FamilyStorageInterface,
    NotFoundError,
    ReceiptStorageInterface,
    StorageConnectionError,
    StorageError,
    UsageStorageInterface,
)


logger = structlog.get_logger(__name__)

# Embedded selects (single joined reads)
RECEIPT_WITH_ITEMS_SELECT = "*, items(*, categories(name))"
ITEM_SELECT = "*, categories(name)"
MEMBERSHIP_WITH_FAMILY_SELECT = (
    "id, family_id, user_id, role, joined_at, "
    "families(id, name, created_by, created_at)"
)
INVITATION_SELECT = "*, families(name)"

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


class SupabaseClient:
    """
    Low-level Supabase client wrapper.

    Handles connection and provides retry logic for establishing it.
    Pass the signed-in user's access token so row-level policies see
    that user; without it the configured key's role applies.
    """

    def __init__(
        self,
        settings: Optional[SupabaseSettings] = None,
        access_token: Optional[str] = None,
    ):
        self._settings = settings
        self._access_token = access_token
        self._client: Optional[Client] = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> Client:
        """Create the client once; later calls reuse it."""
        if self._client is None:
            settings = self._settings or get_settings().supabase
            try:
                client = create_client(settings.url, settings.key)
                if self._access_token:
                    client.postgrest.auth(self._access_token)
                self._client = client
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Supabase: {e}")
        return self._client

    async def _connected(self) -> Client:
        # connect() retries with blocking sleeps, so keep it off the event loop
        if self._client is not None:
            return self._client
        return await asyncio.to_thread(self.connect)

    async def table(self, name: str):
        client = await self._connected()
        return client.table(name)

    async def rpc(self, function_name: str, params: dict[str, Any]):
        client = await self._connected()
        return client.rpc(function_name, params)


async def _execute(query, operation: str):
    """
    Run a prepared PostgREST request off the event loop.

    Translates client errors into StorageError subclasses.
    """
    try:
        return await asyncio.to_thread(query.execute)
    except APIError as e:
        logger.warning(
            "supabase_request_failed",
            operation=operation,
            code=e.code,
            error=e.message,
        )
        if e.code == UNIQUE_VIOLATION:
            raise DuplicateError(f"{operation}: {e.message}")
        raise StorageError(f"{operation} failed: {e.message}")
    except StorageError:
        raise
    except Exception as e:
        logger.error("supabase_transport_failed", operation=operation, error=str(e))
        raise StorageError(f"{operation} failed: {e}")


def _rows(response) -> list[dict[str, Any]]:
    data = response.data
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


# =============================================================================
# ROW MAPPING
# =============================================================================

def _row_to_item(row: dict[str, Any]) -> Item:
    category = row.get("categories") or {}
    return Item(
        id=row["id"],
        receipt_id=row["receipt_id"],
        name=row["name"],
        quantity=row.get("quantity"),
        unit_price=row.get("unit_price") or 0,
        total_price=row.get("total_price") or 0,
        category_id=row.get("category_id"),
        description=row.get("description"),
        category_name=category.get("name"),
    )


def _row_to_receipt(row: dict[str, Any]) -> Receipt:
    items = [_row_to_item(item) for item in row.get("items") or []]
    return Receipt(
        id=row["id"],
        vendor_name=row["vendor_name"],
        date=row["date"],
        total_amount=row.get("total_amount") or 0,
        tax_amount=row.get("tax_amount"),
        tip_amount=row.get("tip_amount"),
        notes=row.get("notes"),
        user_id=row["user_id"],
        family_id=row.get("family_id"),
        added_by=row.get("added_by"),
        ai_extracted=row.get("ai_extracted"),
        ai_data=row.get("ai_data"),
        created_at=row.get("created_at"),
        items=items,
    )


def _row_to_invitation(row: dict[str, Any]) -> FamilyInvitation:
    family = row.get("families") or {}
    return FamilyInvitation(
        id=row["id"],
        family_id=row["family_id"],
        invited_email=row["invited_email"],
        invited_by=row["invited_by"],
        invited_by_name=row.get("invited_by_name"),
        status=row.get("status") or InvitationStatus.PENDING,
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        family_name=family.get("name"),
    )


def _row_to_usage(row: dict[str, Any]) -> UsageRecord:
    return UsageRecord(
        id=row.get("id"),
        user_id=row["user_id"],
        family_id=row.get("family_id"),
        function_name=row["function_name"],
        model=row["model"],
        prompt_tokens=row.get("prompt_tokens") or 0,
        completion_tokens=row.get("completion_tokens") or 0,
        total_tokens=row.get("total_tokens") or 0,
        cost_usd=row.get("cost_usd") or 0,
        receipt_id=row.get("receipt_id"),
        created_at=row["created_at"],
    )


# =============================================================================
# STORAGE CLASSES
# =============================================================================

class SupabaseCategoryStorage(CategoryStorageInterface):
    """Category taxonomy from the categories table."""

    def __init__(self, client: Optional[SupabaseClient] = None):
        self._client = client or SupabaseClient()

    async def list_categories(self) -> list[Category]:
        query = (
            (await self._client.table("categories"))
            .select("id, name, level, parent_id, color, icon")
            .order("level")
            .order("name")
        )
        response = await _execute(query, "list categories")
        return [Category(**row) for row in _rows(response)]


class SupabaseFamilyStorage(FamilyStorageInterface):
    """Families, memberships, invitations and profiles."""

    def __init__(self, client: Optional[SupabaseClient] = None):
        self._client = client or SupabaseClient()

    async def list_memberships_for_user(
        self,
        user_id: str,
    ) -> list[tuple[FamilyMembership, Family]]:
        query = (
            (await self._client.table("family_members"))
            .select(MEMBERSHIP_WITH_FAMILY_SELECT)
            .eq("user_id", user_id)
        )
        response = await _execute(query, "list memberships")

        pairs = []
        for row in _rows(response):
            family_row = row.get("families")
            if not family_row:
                continue
            membership = FamilyMembership(
                id=row.get("id"),
                family_id=row["family_id"],
                user_id=row["user_id"],
                role=row.get("role"),
                joined_at=row.get("joined_at"),
            )
            pairs.append((membership, Family(**family_row)))
        return pairs

    async def list_memberships_for_family(
        self,
        family_id: str,
    ) -> list[FamilyMembership]:
        query = (
            (await self._client.table("family_members"))
            .select("id, family_id, user_id, role, joined_at")
            .eq("family_id", family_id)
        )
        response = await _execute(query, "list family members")
        return [
            FamilyMembership(**row)
            for row in _rows(response)
            if row.get("user_id")
        ]

    async def get_profiles(self, user_ids: list[str]) -> list[Profile]:
        if not user_ids:
            return []
        query = (
            (await self._client.table("profiles"))
            .select("id, name, email")
            .in_("id", sorted(set(user_ids)))
        )
        response = await _execute(query, "get profiles")
        return [Profile(**row) for row in _rows(response)]

    async def create_family_with_admin(self, name: str) -> Family:
        query = await self._client.rpc("create_family_with_admin", {"family_name": name})
        response = await _execute(query, "create family")
        rows = _rows(response)
        if not rows:
            raise StorageError("create_family_with_admin returned no family")
        return Family(**rows[0])

    async def rename_family(self, family_id: str, name: str) -> Family:
        query = (
            (await self._client.table("families"))
            .update({"name": name})
            .eq("id", family_id)
        )
        rows = _rows(await _execute(query, "rename family"))
        if not rows:
            raise NotFoundError(f"Family not found: {family_id}")
        return Family(**rows[0])

    async def delete_family(self, family_id: str) -> bool:
        query = (await self._client.table("families")).delete().eq("id", family_id)
        return bool(_rows(await _execute(query, "delete family")))

    async def delete_membership(self, family_id: str, user_id: str) -> bool:
        query = (
            (await self._client.table("family_members"))
            .delete()
            .eq("family_id", family_id)
            .eq("user_id", user_id)
        )
        return bool(_rows(await _execute(query, "delete membership")))

    async def create_invitation(
        self,
        family_id: str,
        invited_email: str,
        invited_by: str,
        invited_by_name: Optional[str],
        expires_at: datetime,
    ) -> FamilyInvitation:
        query = (await self._client.table("family_invitations")).insert({
            "family_id": family_id,
            "invited_email": invited_email,
            "invited_by": invited_by,
            "invited_by_name": invited_by_name,
            "status": InvitationStatus.PENDING.value,
            "expires_at": expires_at.isoformat(),
        })
        rows = _rows(await _execute(query, "create invitation"))
        if not rows:
            raise StorageError("Invitation insert returned no row")
        return _row_to_invitation(rows[0])

    async def list_invitations(
        self,
        family_ids: list[str],
        status: Optional[InvitationStatus] = None,
    ) -> list[FamilyInvitation]:
        if not family_ids:
            return []
        query = (
            (await self._client.table("family_invitations"))
            .select(INVITATION_SELECT)
            .in_("family_id", family_ids)
        )
        if status is not None:
            query = query.eq("status", status.value)
        query = query.order("created_at", desc=True)
        response = await _execute(query, "list invitations")
        return [_row_to_invitation(row) for row in _rows(response)]

    async def list_invitations_for_email(
        self,
        email: str,
        status: Optional[InvitationStatus] = None,
    ) -> list[FamilyInvitation]:
        query = (
            (await self._client.table("family_invitations"))
            .select(INVITATION_SELECT)
            .eq("invited_email", email.strip().lower())
        )
        if status is not None:
            query = query.eq("status", status.value)
        query = query.order("created_at", desc=True)
        response = await _execute(query, "list invitations for email")
        return [_row_to_invitation(row) for row in _rows(response)]

    async def get_invitation(self, invitation_id: str) -> Optional[FamilyInvitation]:
        query = (
            (await self._client.table("family_invitations"))
            .select(INVITATION_SELECT)
            .eq("id", invitation_id)
            .limit(1)
        )
        rows = _rows(await _execute(query, "get invitation"))
        return _row_to_invitation(rows[0]) if rows else None

    async def update_invitation_status(
        self,
        invitation_id: str,
        status: InvitationStatus,
    ) -> FamilyInvitation:
        query = (
            (await self._client.table("family_invitations"))
            .update({"status": status.value})
            .eq("id", invitation_id)
        )
        rows = _rows(await _execute(query, "update invitation"))
        if not rows:
            raise NotFoundError(f"Invitation not found: {invitation_id}")
        return _row_to_invitation(rows[0])

    async def delete_invitation(self, invitation_id: str) -> bool:
        query = (await self._client.table("family_invitations")).delete().eq("id", invitation_id)
        return bool(_rows(await _execute(query, "delete invitation")))

    async def accept_invitation(self, invitation_id: str) -> bool:
        query = await self._client.rpc(
            "accept_family_invitation",
            {"invitation_id": invitation_id},
        )
        response = await _execute(query, "accept invitation")
        return bool(response.data)


class SupabaseReceiptStorage(ReceiptStorageInterface):
    """Receipts and items."""

    def __init__(self, client: Optional[SupabaseClient] = None):
        self._client = client or SupabaseClient()

    @staticmethod
    def _apply_scope(query, account: Account):
        if account.is_family:
            return query.eq("family_id", account.family_id)
        return query.eq("user_id", account.user_id).is_("family_id", "null")

    async def insert_receipt(self, fields: dict[str, Any]) -> Receipt:
        query = (await self._client.table("receipts")).insert(fields)
        rows = _rows(await _execute(query, "insert receipt"))
        if not rows:
            raise StorageError("Receipt insert returned no row")
        return _row_to_receipt(rows[0])

    async def get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        query = (
            (await self._client.table("receipts"))
            .select(RECEIPT_WITH_ITEMS_SELECT)
            .eq("id", receipt_id)
            .limit(1)
        )
        rows = _rows(await _execute(query, "get receipt"))
        return _row_to_receipt(rows[0]) if rows else None

    async def update_receipt(self, receipt_id: str, fields: dict[str, Any]) -> Receipt:
        query = (await self._client.table("receipts")).update(fields).eq("id", receipt_id)
        rows = _rows(await _execute(query, "update receipt"))
        if not rows:
            raise NotFoundError(f"Receipt not found: {receipt_id}")
        return _row_to_receipt(rows[0])

    async def delete_receipt(self, receipt_id: str) -> bool:
        query = (await self._client.table("receipts")).delete().eq("id", receipt_id)
        return bool(_rows(await _execute(query, "delete receipt")))

    async def insert_items(
        self,
        receipt_id: str,
        rows: list[dict[str, Any]],
    ) -> list[Item]:
        payload = [{**row, "receipt_id": receipt_id} for row in rows]
        query = (await self._client.table("items")).insert(payload)
        inserted = _rows(await _execute(query, "insert items"))
        if len(inserted) != len(payload):
            raise StorageError(
                f"Inserted {len(inserted)} of {len(payload)} items for receipt {receipt_id}"
            )
        return [_row_to_item(row) for row in inserted]

    async def list_items(self, receipt_id: str) -> list[Item]:
        query = (
            (await self._client.table("items"))
            .select(ITEM_SELECT)
            .eq("receipt_id", receipt_id)
            .order("name")
        )
        response = await _execute(query, "list items")
        return [_row_to_item(row) for row in _rows(response)]

    async def update_item(self, item_id: str, fields: dict[str, Any]) -> Item:
        query = (await self._client.table("items")).update(fields).eq("id", item_id)
        rows = _rows(await _execute(query, "update item"))
        if not rows:
            raise NotFoundError(f"Item not found: {item_id}")
        return _row_to_item(rows[0])

    async def delete_item(self, item_id: str) -> bool:
        query = (await self._client.table("items")).delete().eq("id", item_id)
        return bool(_rows(await _execute(query, "delete item")))

    async def delete_items_for_receipt(self, receipt_id: str) -> int:
        query = (await self._client.table("items")).delete().eq("receipt_id", receipt_id)
        return len(_rows(await _execute(query, "delete items")))

    async def list_receipts_with_items(
        self,
        account: Account,
        date_range: DateRange,
    ) -> list[Receipt]:
        # Upper bound is exclusive on the next day so timestamp-valued
        # dates late on the last day are still inside the window.
        day_after = date_range.end + timedelta(days=1)
        query = (
            (await self._client.table("receipts"))
            .select(RECEIPT_WITH_ITEMS_SELECT)
            .gte("date", date_range.start.isoformat())
            .lt("date", day_after.isoformat())
        )
        query = self._apply_scope(query, account).order("date", desc=True)
        response = await _execute(query, "list receipts")
        return [_row_to_receipt(row) for row in _rows(response)]

    async def list_receipts(
        self,
        account: Account,
        offset: int,
        limit: int,
    ) -> tuple[list[Receipt], int]:
        query = (await self._client.table("receipts")).select("*", count="exact")
        query = (
            self._apply_scope(query, account)
            .order("date", desc=True)
            .range(offset, offset + limit - 1)
        )
        response = await _execute(query, "list transactions")
        receipts = [_row_to_receipt(row) for row in _rows(response)]
        return receipts, response.count or 0


class SupabaseUsageStorage(UsageStorageInterface):
    """api_usage audit trail."""

    def __init__(self, client: Optional[SupabaseClient] = None):
        self._client = client or SupabaseClient()

    async def append_usage(self, record: UsageRecord) -> bool:
        query = (await self._client.table("api_usage")).insert(record.to_row())
        await _execute(query, "append usage")
        return True

    async def list_usage(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[UsageRecord]:
        query = (await self._client.table("api_usage")).select("*").eq("user_id", user_id)
        if since is not None:
            query = query.gte("created_at", since.isoformat())
        if until is not None:
            query = query.lte("created_at", until.isoformat())
        query = query.order("created_at", desc=True).limit(limit)
        response = await _execute(query, "list usage")
        return [_row_to_usage(row) for row in _rows(response)]
