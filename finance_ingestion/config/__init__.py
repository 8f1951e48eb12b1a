"""Configuration package."""

from finance_ingestion.config.settings import (
    AppSettings,
    GeminiSettings,
    IngestionSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GeminiSettings",
    "IngestionSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
