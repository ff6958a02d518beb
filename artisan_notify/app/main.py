"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from artisan_notify.app.exception_handlers import configure_exception_handlers
from artisan_notify.app.lifespan import lifespan
from artisan_notify.app.router import setup_routers
from artisan_notify.core.settings import get_app_settings


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    The notification engine is attached to ``app.state.engine`` by the
    lifespan; tests may attach their own before the first request.
    """
    settings = get_app_settings()

    app = FastAPI(
        title=settings.title,
        description=settings.description,
        version=settings.version,
        docs_url=settings.get_docs_url(),
        redoc_url=None,
        openapi_url=settings.get_openapi_url(),
        debug=settings.debug,
        lifespan=lifespan,
    )

    configure_exception_handlers(app)
    setup_routers(app, settings)

    return app
