"""
Configuration Management for Finance Ingestion

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class GeminiSettings(BaseSettings):
    """
    Gemini configuration.

    Several keys and models can be configured. They are tried in order
    when one of them runs out of quota.
    """

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore"
    )

    api_keys: str = Field(
        default="",
        validation_alias=AliasChoices(
            "GEMINI_API_KEYS",
            "GEMINI_API_KEY",
            "GOOGLE_AI_API_KEY",
        ),
        description="Comma-separated Gemini API keys, in rotation order"
    )
    models: str = Field(
        default="gemini-2.5-flash,gemini-2.0-flash,gemini-1.5-flash",
        description="Comma-separated model names, in rotation order"
    )
    max_tokens: int = Field(
        default=8192,
        ge=100,
        le=65536,
        description="Maximum tokens in response (statements need room)"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )

    @property
    def api_key_list(self) -> list[str]:
        """Get API keys as a list."""
        return _split_csv(self.api_keys)

    @property
    def model_list(self) -> list[str]:
        """Get model names as a list."""
        return _split_csv(self.models)


class IngestionSettings(BaseSettings):
    """Knobs of the extraction pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="INGESTION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    confidence_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Regex results at or above this confidence skip the AI"
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total AI attempts for transient failures"
    )
    base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Backoff before the second attempt; doubles afterwards"
    )
    request_timeout_seconds: float = Field(
        default=90.0,
        gt=0.0,
        description="Deadline of one generation call (statements span pages)"
    )
    max_rotation_attempts: int = Field(
        default=15,
        ge=1,
        description="Safety ceiling on generation calls within one AI attempt"
    )
    ai_confidence: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
        description="Confidence reported for AI extractions"
    )
    unknown_merchant_label: str = Field(
        default="Não identificado",
        description="Merchant used when the regex stage finds none"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )

    # File upload limits
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum upload file size in MB"
    )
    supported_mime_types: str = Field(
        default="application/pdf,image/jpeg,image/png",
        description="Comma-separated list of accepted MIME types"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def supported_mime_types_list(self) -> list[str]:
        """Get supported MIME types as a list."""
        return [m.lower() for m in _split_csv(self.supported_mime_types)]

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

    # Sub-settings are built lazily to allow partial configuration

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def ingestion(self) -> IngestionSettings:
        return IngestionSettings()

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


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    try:
        gemini = settings.gemini
        results["gemini"] = bool(gemini.api_key_list and gemini.model_list)
        if not results["gemini"]:
            results["gemini_error"] = "No API key or model configured"
    except Exception as e:
        results["gemini"] = False
        results["gemini_error"] = str(e)

    try:
        _ = settings.ingestion
        results["ingestion"] = True
    except Exception as e:
        results["ingestion"] = False
        results["ingestion_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
