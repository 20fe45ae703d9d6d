"""
Receipt extraction boundary.

The extractor is a black box: image in (as a data URI), free text out.
Nothing it returns is trusted; the parse and validation contracts in
familyspend.validation decide what, if anything, becomes a draft.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from familyspend.errors import FinanceError


EXTRACTION_FUNCTION_NAME = "process-receipt"

EXTRACTION_PROMPT = """You are a receipt processing AI. Extract all relevant information from the receipt image and return it in JSON format. For each item, categorize it appropriately (e.g., Food, Transportation, Shopping, etc.). Return the data in this exact structure:
{
  "vendor_name": "string",
  "date": "YYYY-MM-DD",
  "total_amount": number,
  "tax_amount": number,
  "tip_amount": number,
  "items": [
    {
      "name": "string",
      "quantity": number,
      "unit_price": number,
      "total_price": number,
      "category": "string",
      "subcategory": "string"
    }
  ]
}

Common categories: {categories}.
Be precise with amounts and dates. If information is unclear, make reasonable assumptions.
Respond with ONLY the JSON object."""

DEFAULT_CATEGORY_HINT = (
    "Food, Transportation, Shopping, Entertainment, Healthcare, Utilities, "
    "Housing, Personal Care, Education, Travel, Other"
)


def build_prompt(category_names: list[str]) -> str:
    """Prompt text, naming the live taxonomy when there is one."""
    hint = ", ".join(category_names) if category_names else DEFAULT_CATEGORY_HINT
    return EXTRACTION_PROMPT.replace("{categories}", hint)


class RawExtraction(BaseModel):
    """Untrusted extractor output plus what the call cost."""

    text: str
    model: str
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ReceiptExtractor(ABC):
    """A vision model that reads a receipt image."""

    @abstractmethod
    async def extract_receipt(
        self,
        image_data_uri: str,
        category_names: list[str],
    ) -> RawExtraction:
        """
        Send one receipt image to the model.

        Args:
            image_data_uri: data:<mime>;base64,<payload>
            category_names: Taxonomy names offered to the model as hints

        Raises:
            ExtractionServiceError: The service failed or returned no text
        """
        pass


class ExtractionError(FinanceError):
    """Base exception for extraction errors. Terminal for one ingestion attempt."""
    pass


class ExtractionParseError(ExtractionError):
    """No JSON could be recovered from the model's response."""

    def __init__(self, message: str, raw_text: str = ""):
        self.raw_text = raw_text
        super().__init__(message)


class ExtractionFormatError(ExtractionError):
    """Response parsed, but not to a JSON object."""
    pass


class EmptyExtractionError(ExtractionError):
    """Response carries no items."""
    pass


class MissingCategoryError(ExtractionError):
    """An item came back without a category."""

    def __init__(self, item_index: int, item_name: str = ""):
        self.item_index = item_index
        self.item_name = item_name
        label = f" ({item_name!r})" if item_name else ""
        super().__init__(f"Item {item_index}{label} has no category")


class ExtractionTimeoutError(ExtractionError):
    """The model did not answer in time."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Receipt extraction timed out after {timeout_seconds:g}s")


class ExtractionServiceError(ExtractionError):
    """The vision service failed or returned no text."""
    pass
