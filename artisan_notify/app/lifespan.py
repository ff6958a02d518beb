"""Application lifespan management.

Startup:
1. Logging
2. Notification engine (gateway client, rate limiter, tracker, dispatcher)
3. Retention sweeper

Shutdown runs in reverse.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from artisan_notify.core.settings import (
    get_app_settings,
    get_gateway_settings,
    get_logging_settings,
    get_notification_settings,
)
from artisan_notify.features.notifications.service import NotificationEngine
from artisan_notify.infra.logging import setup_logging
from artisan_notify.infra.logging import shutdown as shutdown_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the notification engine on startup and close it on shutdown.

    An engine already present on ``app.state`` (tests, embedding) is used
    as-is and not closed here.
    """
    setup_logging(get_logging_settings())
    app_settings = get_app_settings()

    engine: NotificationEngine | None = getattr(app.state, "engine", None)
    owns_engine = engine is None
    if engine is None:
        engine = NotificationEngine.from_settings(
            get_notification_settings(), get_gateway_settings(),
        )
        app.state.engine = engine

    await engine.start()
    logger.info(
        "Application started",
        extra={
            "service": app_settings.service_name,
            "version": app_settings.version,
            "environment": app_settings.environment,
        },
    )

    try:
        yield
    finally:
        if owns_engine:
            await engine.aclose()
            app.state.engine = None
        else:
            await engine.sweeper.stop()
        logger.info("Application stopped")
        shutdown_logging()
