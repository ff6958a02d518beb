"""FastAPI dependencies for the notifications feature.

Provides Annotated type aliases so route handlers receive the engine and its
components without touching ``app.state`` directly.

Example usage:
    from artisan_notify.features.notifications.dependencies import DispatcherDep

    @router.post("/send")
    async def send(body: SendNotificationRequest, dispatcher: DispatcherDep):
        return await dispatcher.send(body.to_domain())
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from artisan_notify.core.exceptions import ServiceUnavailableException
from artisan_notify.core.settings import GatewaySettings, get_gateway_settings
from artisan_notify.features.notifications.deadletter import DeadLetterQueue
from artisan_notify.features.notifications.dispatcher import NotificationDispatcher
from artisan_notify.features.notifications.fallback import FallbackManager
from artisan_notify.features.notifications.service import NotificationEngine
from artisan_notify.features.notifications.tracker import DeliveryTracker
from artisan_notify.infra.ratelimit import ChannelLimiter


def get_engine(request: Request) -> NotificationEngine:
    """Return the engine created in the application lifespan.

    Raises:
        ServiceUnavailableException: If the lifespan has not built an engine.
    """
    engine: NotificationEngine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ServiceUnavailableException("Notification engine is not initialized")
    return engine


EngineDep = Annotated[NotificationEngine, Depends(get_engine)]


def get_dispatcher(engine: EngineDep) -> NotificationDispatcher:
    return engine.dispatcher


def get_tracker(engine: EngineDep) -> DeliveryTracker:
    return engine.tracker


def get_limiter(engine: EngineDep) -> ChannelLimiter:
    return engine.limiter


def get_fallback_manager(engine: EngineDep) -> FallbackManager:
    return engine.fallback_manager


def get_dead_letters(engine: EngineDep) -> DeadLetterQueue:
    if engine.dead_letters is None:
        raise ServiceUnavailableException("Dead-letter queue is not configured")
    return engine.dead_letters


DispatcherDep = Annotated[NotificationDispatcher, Depends(get_dispatcher)]
TrackerDep = Annotated[DeliveryTracker, Depends(get_tracker)]
LimiterDep = Annotated[ChannelLimiter, Depends(get_limiter)]
FallbackManagerDep = Annotated[FallbackManager, Depends(get_fallback_manager)]
DeadLettersDep = Annotated[DeadLetterQueue, Depends(get_dead_letters)]
GatewaySettingsDep = Annotated[GatewaySettings, Depends(get_gateway_settings)]

__all__ = [
    "DeadLettersDep",
    "DispatcherDep",
    "EngineDep",
    "FallbackManagerDep",
    "GatewaySettingsDep",
    "LimiterDep",
    "TrackerDep",
    "get_engine",
]
