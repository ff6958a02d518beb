"""Modular Pydantic Settings v2 configuration.

Settings are split by domain (app, logging, gateway, notifications), loaded
through LRU-cached loaders and frozen after validation.

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. YAML/conf.d files under ``conf/`` (optional)
    3. Environment variables
    4. .env file
    5. secrets_dir
"""

from __future__ import annotations

from .app import AppSettings
from .gateway import GatewaySettings
from .loader import (
    clear_all_caches,
    get_app_settings,
    get_gateway_settings,
    get_logging_settings,
    get_notification_settings,
)
from .logs import LoggingSettings
from .notifications import NotificationSettings

__all__ = [
    "AppSettings",
    "GatewaySettings",
    "LoggingSettings",
    "NotificationSettings",
    "clear_all_caches",
    "get_app_settings",
    "get_gateway_settings",
    "get_logging_settings",
    "get_notification_settings",
]
