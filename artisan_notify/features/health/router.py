"""Health check API endpoints.

- GET /health - Liveness: the process is up
- GET /health/ready - Readiness: the notification engine is built and
  its rate-limit backend is reachable
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response, status

from artisan_notify.core.settings import get_app_settings
from artisan_notify.features.health.schemas import LivenessResponse, ReadinessResponse
from artisan_notify.features.notifications.models import utcnow
from artisan_notify.features.notifications.service import NotificationEngine
from artisan_notify.infra.ratelimit import RateLimitProtectionStatus

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=LivenessResponse, summary="Liveness check")
async def liveness() -> LivenessResponse:
    settings = get_app_settings()
    return LivenessResponse(
        service=settings.service_name,
        version=settings.version,
        timestamp=utcnow(),
    )


@router.get("/ready", response_model=ReadinessResponse, summary="Readiness check")
async def readiness(request: Request, response: Response) -> ReadinessResponse:
    engine: NotificationEngine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return ReadinessResponse(status="not_ready", timestamp=utcnow())

    protection = engine.limiter.protection.status
    return ReadinessResponse(
        status="ready" if protection is RateLimitProtectionStatus.ACTIVE else "degraded",
        timestamp=utcnow(),
        rate_limit_backend=engine.settings.rate_limit_backend,
        rate_limit_protection=protection.value,
        retention_sweeper_running=engine.sweeper.running,
        tracked_records=await engine.tracker.store.count(),
    )
