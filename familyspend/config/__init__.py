"""Configuration package."""

from familyspend.config.settings import (
    AppSettings,
    GeminiSettings,
    Settings,
    SupabaseSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GeminiSettings",
    "Settings",
    "SupabaseSettings",
    "get_settings",
    "validate_all_settings",
]
