"""
Receipt extraction using Gemini

DESIGN DECISION: A vision-capable Gemini model reads the receipt.
1. One request per image, low temperature for consistent output
2. Transient service errors are retried with exponential backoff
3. Everything else surfaces as ExtractionServiceError

This service ONLY talks to the model. It does not parse the answer,
match categories or persist anything.
"""

from typing import Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from familyspend.config import GeminiSettings, get_settings
from familyspend.services.extraction.extractor import (
    ExtractionServiceError,
    RawExtraction,
    ReceiptExtractor,
    build_prompt,
)
from familyspend.services.extraction.image import from_data_uri


logger = structlog.get_logger(__name__)

TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.TooManyRequests,
    google_exceptions.InternalServerError,
    google_exceptions.DeadlineExceeded,
)


class GeminiReceiptExtractor(ReceiptExtractor):
    """
    Receipt extractor backed by the Gemini API.

    BOUNDARIES:
    - NEVER persists data
    - NEVER interprets the response beyond reading its text
    """

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _generate(self, prompt: str, mime_type: str, data: bytes):
        return await self._model.generate_content_async([
            prompt,
            {"mime_type": mime_type, "data": data},
        ])

    async def extract_receipt(
        self,
        image_data_uri: str,
        category_names: list[str],
    ) -> RawExtraction:
        try:
            mime_type, data = from_data_uri(image_data_uri)
        except ValueError as e:
            raise ExtractionServiceError(f"Bad image payload: {e}")

        try:
            response = await self._generate(build_prompt(category_names), mime_type, data)
        except google_exceptions.GoogleAPIError as e:
            logger.error("gemini_request_failed", model=self._settings.model_name, error=str(e))
            raise ExtractionServiceError(f"Gemini request failed: {e}")

        # .text raises ValueError when the candidate was blocked or empty
        try:
            text = response.text
        except ValueError as e:
            raise ExtractionServiceError(f"Gemini returned no text: {e}")
        if not text or not text.strip():
            raise ExtractionServiceError("Gemini returned an empty response")

        usage = getattr(response, "usage_metadata", None)
        return RawExtraction(
            text=text,
            model=self._settings.model_name,
            prompt_tokens=getattr(usage, "prompt_token_count", 0) or 0,
            completion_tokens=getattr(usage, "candidates_token_count", 0) or 0,
        )
