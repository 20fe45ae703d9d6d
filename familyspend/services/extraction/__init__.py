"""
Receipt extraction services.

The ReceiptExtractor boundary, its Gemini implementation, and the image
helpers that prepare bytes for it.
"""

from familyspend.services.extraction.extractor import (
    EXTRACTION_FUNCTION_NAME,
    EmptyExtractionError,
    ExtractionError,
    ExtractionFormatError,
    ExtractionParseError,
    ExtractionServiceError,
    ExtractionTimeoutError,
    MissingCategoryError,
    RawExtraction,
    ReceiptExtractor,
    build_prompt,
)
from familyspend.services.extraction.gemini_service import GeminiReceiptExtractor
from familyspend.services.extraction.image import (
    from_data_uri,
    inspect_image,
    to_data_uri,
)

__all__ = [
    # Boundary
    "EXTRACTION_FUNCTION_NAME",
    "RawExtraction",
    "ReceiptExtractor",
    "build_prompt",
    # Exceptions
    "EmptyExtractionError",
    "ExtractionError",
    "ExtractionFormatError",
    "ExtractionParseError",
    "ExtractionServiceError",
    "ExtractionTimeoutError",
    "MissingCategoryError",
    # Gemini implementation
    "GeminiReceiptExtractor",
    # Image helpers
    "from_data_uri",
    "inspect_image",
    "to_data_uri",
]
