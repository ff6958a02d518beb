"""Composition root for the notification engine.

``NotificationEngine`` wires the rate limiter, retry executor, fallback
engine, tracker and dispatcher from settings. One engine is created per
process in the application lifespan and reached through ``app.state``;
nothing here is a module-level singleton.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from redis.asyncio import Redis

from artisan_notify.core.settings import GatewaySettings, NotificationSettings
from artisan_notify.features.notifications import metrics
from artisan_notify.features.notifications.channels import ChannelGateway, GatewayClient
from artisan_notify.features.notifications.deadletter import DeadLetterQueue
from artisan_notify.features.notifications.dispatcher import NotificationDispatcher
from artisan_notify.features.notifications.errors import ErrorClassification
from artisan_notify.features.notifications.fallback import (
    DEFAULT_FALLBACK_RULES,
    FallbackManager,
    FallbackRule,
)
from artisan_notify.features.notifications.models import utcnow
from artisan_notify.features.notifications.retry import RetryExecutor, RetryPolicy
from artisan_notify.features.notifications.store import (
    DeliveryRecordStore,
    InMemoryDeliveryRecordStore,
    InMemoryTemplateStore,
    TemplateStore,
    load_templates_file,
)
from artisan_notify.features.notifications.tracker import DeliveryTracker
from artisan_notify.infra.ratelimit import (
    ChannelLimiter,
    ChannelRateLimiter,
    RedisChannelRateLimiter,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def _count_retry(classification: ErrorClassification, _retry: int) -> None:
    metrics.retries_total.labels(category=classification.category.value).inc()


class RetentionSweeper:
    """Background task pruning old tracker records, fallback log entries and dead letters.

    Attributes:
        interval: Seconds between sweeps
        retention: Age after which entries are pruned
    """

    def __init__(
        self,
        tracker: DeliveryTracker,
        fallback_manager: FallbackManager,
        *,
        retention_seconds: float,
        interval_seconds: float,
        dead_letters: DeadLetterQueue | None = None,
    ) -> None:
        self.tracker = tracker
        self.fallback_manager = fallback_manager
        self.dead_letters = dead_letters
        self.retention = timedelta(seconds=retention_seconds)
        self.interval = interval_seconds

        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> dict[str, int]:
        """Prune everything older than the retention window.

        Returns:
            Counts of removed records, fallback entries and dead letters.
        """
        cutoff = utcnow() - self.retention
        records = await self.tracker.prune(cutoff)
        fallbacks = self.fallback_manager.prune(cutoff)
        dead_letters = self.dead_letters.prune(cutoff) if self.dead_letters is not None else 0
        if records or fallbacks or dead_letters:
            logger.info(
                "Retention sweep completed",
                extra={
                    "records_removed": records,
                    "fallbacks_removed": fallbacks,
                    "dead_letters_removed": dead_letters,
                },
            )
        return {"records": records, "fallbacks": fallbacks, "dead_letters": dead_letters}

    async def start(self) -> None:
        if self.running:
            logger.warning("Retention sweeper already running")
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Retention sweeper started",
            extra={
                "interval_seconds": self.interval,
                "retention_seconds": self.retention.total_seconds(),
            },
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        try:
            await asyncio.wait_for(self._task, timeout=10.0)
        except TimeoutError:
            logger.warning("Retention sweeper shutdown timed out, cancelling")
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        logger.info("Retention sweeper stopped")

    async def _run_loop(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except TimeoutError:
                pass
            if self._stop.is_set():
                break
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Retention sweep failed")


class NotificationEngine:
    """Everything the HTTP layer and CLI need to send and track notifications."""

    def __init__(
        self,
        *,
        settings: NotificationSettings,
        gateway: ChannelGateway,
        limiter: ChannelLimiter,
        fallback_manager: FallbackManager,
        tracker: DeliveryTracker,
        template_store: TemplateStore | None,
        dispatcher: NotificationDispatcher,
        sweeper: RetentionSweeper,
        dead_letters: DeadLetterQueue | None = None,
        redis: Redis | None = None,
        owns_gateway: bool = False,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.limiter = limiter
        self.fallback_manager = fallback_manager
        self.tracker = tracker
        self.template_store = template_store
        self.dispatcher = dispatcher
        self.sweeper = sweeper
        self.dead_letters = dead_letters
        self._redis = redis
        self._owns_gateway = owns_gateway

    @classmethod
    def from_settings(
        cls,
        settings: NotificationSettings,
        gateway_settings: GatewaySettings | None = None,
        *,
        gateway: ChannelGateway | None = None,
        record_store: DeliveryRecordStore | None = None,
        template_store: TemplateStore | None = None,
        redis: Redis | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> NotificationEngine:
        """Build an engine.

        Args:
            settings: Engine settings.
            gateway_settings: Used to build a ``GatewayClient`` when ``gateway`` is None.
            gateway: Pre-built transport (tests, CLI dry runs).
            record_store: Delivery record persistence; in-memory by default.
            template_store: Template lookup. When omitted, templates are loaded from
                ``settings.templates_file``; with neither, rich templates pass
                to the gateway unchecked.
            redis: Redis client for the redis rate-limit backend; created from
                ``settings.redis_url`` when omitted.
            sleep: Awaitable sleep for backoff and fallback delays.
        """
        owns_gateway = gateway is None
        if gateway is None:
            if gateway_settings is None:
                msg = "gateway_settings is required when no gateway is supplied"
                raise ValueError(msg)
            gateway = GatewayClient.from_settings(gateway_settings)

        limiter: ChannelLimiter
        if settings.rate_limit_backend == "redis":
            redis = redis or Redis.from_url(settings.redis_url)
            limiter = RedisChannelRateLimiter(
                redis,
                settings.channel_capacities,
                daily_limit=settings.daily_limit,
                key_prefix=settings.redis_key_prefix,
            )
        else:
            limiter = ChannelRateLimiter(
                settings.channel_capacities, daily_limit=settings.daily_limit,
            )

        rules = list(DEFAULT_FALLBACK_RULES)
        rules.extend(FallbackRule.from_dict(raw) for raw in settings.fallback_rules)
        fallback_manager = FallbackManager(
            rules,
            enable_auto_fallback=settings.enable_auto_fallback,
            max_fallback_attempts=settings.max_fallback_attempts,
            default_delay=settings.default_fallback_delay,
            rate_limit_delay=settings.rate_limit_fallback_delay,
            log_size=settings.fallback_log_size,
        )

        tracker = DeliveryTracker(
            record_store or InMemoryDeliveryRecordStore(),
            orphan_buffer_size=settings.orphan_buffer_size,
        )
        if template_store is None and settings.templates_file is not None:
            template_store = InMemoryTemplateStore(load_templates_file(settings.templates_file))
        dead_letters = DeadLetterQueue(settings.dead_letter_size)

        dispatcher = NotificationDispatcher(
            gateway,
            limiter,
            RetryExecutor(sleep=sleep, on_retry=_count_retry),
            fallback_manager,
            tracker,
            template_store,
            retry_policy=RetryPolicy(
                max_retries=settings.max_retries,
                base_delay=settings.base_delay,
                max_delay=settings.max_delay,
                backoff_multiplier=settings.backoff_multiplier,
                jitter=settings.jitter,
            ),
            max_fallback_attempts=settings.max_fallback_attempts,
            sleep=sleep,
            dead_letters=dead_letters,
            batch_concurrency=settings.batch_concurrency,
        )
        sweeper = RetentionSweeper(
            tracker,
            fallback_manager,
            retention_seconds=settings.retention_seconds,
            interval_seconds=settings.sweep_interval_seconds,
            dead_letters=dead_letters,
        )

        logger.info(
            "Notification engine configured",
            extra={
                "rate_limit_backend": settings.rate_limit_backend,
                "channel_capacities": settings.channel_capacities,
                "max_fallback_attempts": settings.max_fallback_attempts,
                "templates_loaded": template_store is not None,
            },
        )
        return cls(
            settings=settings,
            gateway=gateway,
            limiter=limiter,
            fallback_manager=fallback_manager,
            tracker=tracker,
            template_store=template_store,
            dispatcher=dispatcher,
            sweeper=sweeper,
            dead_letters=dead_letters,
            redis=redis if settings.rate_limit_backend == "redis" else None,
            owns_gateway=owns_gateway,
        )

    async def start(self) -> None:
        await self.sweeper.start()

    async def aclose(self) -> None:
        """Stop background work and release owned connections."""
        await self.sweeper.stop()
        if self._owns_gateway and isinstance(self.gateway, GatewayClient):
            await self.gateway.aclose()
        if self._redis is not None:
            await self._redis.aclose()
        logger.info("Notification engine closed")


__all__ = ["NotificationEngine", "RetentionSweeper"]
