"""
Shared fixtures.

Everything runs against the in-memory backend and a scripted extractor;
no test talks to Supabase or Gemini.
"""

import asyncio
from datetime import date
from io import BytesIO
from typing import Any, Optional

import pytest
from PIL import Image

from familyspend.audit import AuditLogger
from familyspend.config import AppSettings, GeminiSettings
from familyspend.models.audit import AuditEvent, AuditEventType
from familyspend.models.family import Identity
from familyspend.models.finance import Category
from familyspend.services.extraction import RawExtraction, ReceiptExtractor
from familyspend.services.storage import InMemoryBackend, StateStore


TODAY = date(2024, 3, 15)


def run(coro: Any) -> Any:
    """Run one coroutine to completion."""
    return asyncio.run(coro)


class RecordingAuditLogger(AuditLogger):
    """AuditLogger that also keeps every event for assertions."""

    def __init__(self, usage_storage=None):
        super().__init__(usage_storage)
        self.events: list[AuditEvent] = []

    async def log(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return await super().log(event)

    def of_type(self, event_type: AuditEventType) -> list[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]


class FakeExtractor(ReceiptExtractor):
    """Returns a scripted response, optionally after a delay."""

    def __init__(
        self,
        text: str = "",
        delay: float = 0.0,
        error: Optional[Exception] = None,
        prompt_tokens: int = 1200,
        completion_tokens: int = 300,
    ):
        self.text = text
        self.delay = delay
        self.error = error
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.calls: list[tuple[str, list[str]]] = []

    async def extract_receipt(self, image_data_uri: str, category_names: list[str]) -> RawExtraction:
        self.calls.append((image_data_uri, category_names))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return RawExtraction(
            text=self.text,
            model="gemini-test",
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
        )


@pytest.fixture
def categories() -> list[Category]:
    return [
        Category(id="cat-dining", name="Dining", level=1),
        Category(id="cat-groceries", name="Groceries", level=1),
        Category(id="cat-household", name="Household", level=1),
        Category(id="cat-transport", name="Transportation", level=1),
    ]


@pytest.fixture
def backend(categories) -> InMemoryBackend:
    backend = InMemoryBackend(categories=categories)
    backend.add_profile("u-alice", name="Alice Smith", email="alice@example.com")
    backend.add_profile("u-bob", name="Bob Smith", email="bob@example.com")
    backend.add_profile("u-carol", name=None, email="carol@example.com")
    return backend


@pytest.fixture
def alice() -> Identity:
    return Identity(id="u-alice", email="alice@example.com", name="Alice Smith")


@pytest.fixture
def bob() -> Identity:
    return Identity(id="u-bob", email="bob@example.com", name="Bob Smith")


@pytest.fixture
def audit() -> RecordingAuditLogger:
    return RecordingAuditLogger()


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(_env_file=None)


@pytest.fixture
def gemini_settings() -> GeminiSettings:
    return GeminiSettings(api_key="test-key")


def make_png() -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (8, 8), color="white").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


def receipt_fields(user_id: str, family_id: Optional[str] = None, **overrides) -> dict:
    """Row payload for a receipt inserted straight into storage."""
    fields = {
        "vendor_name": "Corner Shop",
        "date": TODAY.isoformat(),
        "total_amount": "0.00",
        "user_id": user_id,
        "family_id": family_id,
        "added_by": user_id,
    }
    fields.update(overrides)
    return fields


def item_fields(name: str, total: str, category_id: Optional[str] = None) -> dict:
    return {
        "name": name,
        "quantity": "1",
        "unit_price": total,
        "total_price": total,
        "category_id": category_id,
    }