"""Cached settings loaders.

Each loader builds its settings object once per process. Tests call
``clear_all_caches()`` after changing environment variables.
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .gateway import GatewaySettings
from .logs import LoggingSettings
from .notifications import NotificationSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Get cached FastAPI application settings.

    Returns:
        Validated and frozen AppSettings instance.
    """
    return AppSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_gateway_settings() -> GatewaySettings:
    """Get cached messaging gateway settings.

    Returns:
        Validated and frozen GatewaySettings instance.
    """
    return GatewaySettings()


@lru_cache(maxsize=1)
def get_notification_settings() -> NotificationSettings:
    """Get cached notification engine settings.

    Returns:
        Validated and frozen NotificationSettings instance.
    """
    return NotificationSettings()


def clear_all_caches() -> None:
    """Clear all settings caches."""
    get_app_settings.cache_clear()
    get_logging_settings.cache_clear()
    get_gateway_settings.cache_clear()
    get_notification_settings.cache_clear()
