"""Services package: storage and extraction boundaries."""

from familyspend.services.extraction import (
    EmptyExtractionError,
    ExtractionError,
    ExtractionFormatError,
    ExtractionParseError,
    ExtractionServiceError,
    ExtractionTimeoutError,
    GeminiReceiptExtractor,
    MissingCategoryError,
    RawExtraction,
    ReceiptExtractor,
)
from familyspend.services.storage import (
    CategoryStorageInterface,
    FamilyStorageInterface,
    InMemoryBackend,
    InMemoryStorage,
    JsonFileStateStore,
    NotFoundError,
    OrphanedFamilyError,
    ReceiptStorageInterface,
    StateStore,
    StorageError,
    SupabaseClient,
    UsageStorageInterface,
)

__all__ = [
    # Extraction services
    "EmptyExtractionError",
    "ExtractionError",
    "ExtractionFormatError",
    "ExtractionParseError",
    "ExtractionServiceError",
    "ExtractionTimeoutError",
    "GeminiReceiptExtractor",
    "MissingCategoryError",
    "RawExtraction",
    "ReceiptExtractor",
    # Storage services
    "CategoryStorageInterface",
    "FamilyStorageInterface",
    "InMemoryBackend",
    "InMemoryStorage",
    "JsonFileStateStore",
    "NotFoundError",
    "OrphanedFamilyError",
    "ReceiptStorageInterface",
    "StateStore",
    "StorageError",
    "SupabaseClient",
    "UsageStorageInterface",
]
