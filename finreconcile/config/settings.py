"""
Configuration Management for the Reconciliation Core

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Components accept explicit constructor arguments and only fall back to
these settings when none are given, so tests never depend on the
environment.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FetchSettings(BaseSettings):
    """Per-source fetch, cache and retry configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FETCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    cache_ttl_seconds: float = Field(
        default=300.0,
        gt=0,
        description="How long a fetched snapshot is served without a network call"
    )
    stale_retention_seconds: float = Field(
        default=86400.0,
        ge=0,
        description="How long an expired entry stays available for stale fallback"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts made when the upstream call fails transiently (network, 5xx, 429)"
    )
    retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Linear backoff unit (attempt x backoff)"
    )
    adapter_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for a single adapter call"
    )
    rate_limit_window_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Sliding window used by the local rate-limit gate"
    )


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration (compliance classifier and resolution plans)."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=2048,
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

    log_level: str = Field(
        default="INFO",
        description="Minimum level for local structured logs"
    )
    classifier_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Upper bound for one compliance classification call"
    )


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
    def fetching(self) -> FetchSettings:
        return FetchSettings()

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

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()
