"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The hosted Supabase backend is the production implementation; the
in-memory backend mirrors its tables, procedures and policies.
"""

from familyspend.services.storage.interface import (
    CategoryStorageInterface,
    DuplicateError,
    FamilyStorageInterface,
    NotFoundError,
    OrphanedFamilyError,
    ReceiptStorageInterface,
    StorageConnectionError,
    StorageError,
    UsageStorageInterface,
)
from familyspend.services.storage.local_state import (
    CURRENT_ACCOUNT_KEY,
    SELECTED_FAMILY_KEY,
    JsonFileStateStore,
    StateStore,
)
from familyspend.services.storage.memory import InMemoryBackend, InMemoryStorage
from familyspend.services.storage.supabase_store import (
    SupabaseCategoryStorage,
    SupabaseClient,
    SupabaseFamilyStorage,
    SupabaseReceiptStorage,
    SupabaseUsageStorage,
)

__all__ = [
    # Interfaces
    "CategoryStorageInterface",
    "FamilyStorageInterface",
    "ReceiptStorageInterface",
    "UsageStorageInterface",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "OrphanedFamilyError",
    "StorageConnectionError",
    "StorageError",
    # Client-side state
    "CURRENT_ACCOUNT_KEY",
    "SELECTED_FAMILY_KEY",
    "JsonFileStateStore",
    "StateStore",
    # In-memory implementation
    "InMemoryBackend",
    "InMemoryStorage",
    # Supabase implementation
    "SupabaseCategoryStorage",
    "SupabaseClient",
    "SupabaseFamilyStorage",
    "SupabaseReceiptStorage",
    "SupabaseUsageStorage",
]
