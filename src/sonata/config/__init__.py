"""Configuration module for Sonata."""

from .settings import (
    DatabaseSettings,
    LibrarySettings,
    ObservabilitySettings,
    Settings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "LibrarySettings",
    "ObservabilitySettings",
    "Settings",
    "get_settings",
]
