"""
Configuration Management for Family Spend Tracker

Three sections, each read from environment variables (and .env):
- SUPABASE_* for the hosted backend
- GEMINI_* for receipt extraction and its per-token pricing
- app limits: upload size, extraction timeout, page size, invitation expiry

A missing section only fails when a component actually needs it.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SupabaseSettings(BaseSettings):
    """Hosted backend (Supabase) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SUPABASE_",
        extra="ignore"
    )

    url: str = Field(
        ...,
        description="Supabase project URL"
    )
    key: str = Field(
        ...,
        description="Supabase anon or service-role key"
    )

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """The client library needs an absolute http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Supabase URL must start with http:// or https://, got {v!r}")
        return v.rstrip("/")


class GeminiSettings(BaseSettings):
    """Gemini vision model configuration (receipt extraction)."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Vision-capable Gemini model to use"
    )
    max_tokens: int = Field(
        default=1000,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )

    # Pricing, used for the api_usage audit trail
    input_cost_per_million: float = Field(
        default=0.075,
        ge=0.0,
        description="USD per one million prompt tokens"
    )
    output_cost_per_million: float = Field(
        default=0.30,
        ge=0.0,
        description="USD per one million completion tokens"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    Every field has a default, so this section is always available.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # File upload limits
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum receipt image size in MB"
    )
    supported_image_formats: str = Field(
        default="jpg,jpeg,png,webp",
        description="Comma-separated list of supported image formats"
    )

    # Extraction
    extraction_timeout_seconds: float = Field(
        default=45.0,
        ge=5.0,
        le=120.0,
        description="Upper bound for one call to the vision model"
    )

    # History and families
    transactions_page_size: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Receipts per page in the transaction history"
    )
    invitation_expiry_days: int = Field(
        default=7,
        ge=1,
        description="How long a family invitation stays acceptable"
    )

    # Client-side key-value state
    state_file_path: str = Field(
        default=str(Path.home() / ".familyspend" / "state.json"),
        description="Where the last selected account/family ids are kept"
    )

    @property
    def supported_formats_list(self) -> list[str]:
        """Get supported formats as a list."""
        return [fmt.strip().lower() for fmt in self.supported_image_formats.split(",")]

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def supabase(self) -> SupabaseSettings:
        return SupabaseSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, object]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name + "_error": message} for the failing ones.
    Useful for startup checks.
    """
    results: dict[str, object] = {}
    settings = get_settings()

    for name in ("supabase", "gemini", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
