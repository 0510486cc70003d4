"""Configuration package."""

from finreconcile.config.settings import (
    AppSettings,
    FetchSettings,
    GeminiSettings,
    Settings,
    get_settings,
)

__all__ = [
    "AppSettings",
    "FetchSettings",
    "GeminiSettings",
    "Settings",
    "get_settings",
]
