"""Router registry and setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from artisan_notify.core.settings import get_app_settings
from artisan_notify.features.health.router import router as health_router
from artisan_notify.features.metrics.router import router as metrics_router
from artisan_notify.features.notifications.router import router as notifications_router

if TYPE_CHECKING:
    from fastapi import FastAPI

    from artisan_notify.core.settings import AppSettings

logger = logging.getLogger(__name__)


def setup_routers(app: FastAPI, app_settings: AppSettings | None = None) -> None:
    """Register feature routers.

    Health and metrics stay at the root for health checks and scrapers; the
    notifications API lives under ``api_prefix``.
    """
    settings = app_settings or get_app_settings()

    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(notifications_router, prefix=settings.api_prefix)

    logger.debug("Routers registered", extra={"api_prefix": settings.api_prefix})
