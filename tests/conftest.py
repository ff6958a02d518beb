"""Pytest configuration and shared fixtures.

Organization:
    - Gateway Fixtures: scripted fake gateway and recorded sleep
    - Engine Fixtures: notification engine wired with the fakes
    - Application Fixtures: FastAPI app and HTTP client

The engine never talks to a real gateway or Redis in unit tests; sleeps are
recorded instead of awaited so backoff and fallback delays can be asserted.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from artisan_notify.core.settings import NotificationSettings, clear_all_caches
from artisan_notify.features.notifications.channels import GatewayResponse
from artisan_notify.features.notifications.service import NotificationEngine
from artisan_notify.features.notifications.store import InMemoryTemplateStore, MessageTemplate

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("LOG_CONSOLE_ENABLED", "false")
os.environ.setdefault("NOTIFY_RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("CONFIG_DIR", "/nonexistent-artisan-notify-conf")


# ============================================================================
# Gateway Fixtures
# ============================================================================


@dataclass
class SentCall:
    channel: str
    to: str
    payload: dict[str, Any]


@dataclass
class FakeGateway:
    """In-memory ``ChannelGateway`` with scripted outcomes per channel.

    Each script entry is either an exception (raised) or a message id
    (accepted). Once a channel's script is exhausted every send succeeds.

    Example:
        gateway.script("rich", GatewayError("not opted in", gateway_code="USER_NOT_OPTED_IN"))
        result = await engine.dispatcher.send(request)
        assert gateway.channels == ["rich", "plain"]
    """

    scripts: dict[str, list[Any]] = field(default_factory=lambda: {"rich": [], "plain": []})
    calls: list[SentCall] = field(default_factory=list)
    _ids: Any = field(default_factory=lambda: itertools.count(1))

    def script(self, channel: str, *outcomes: Any) -> None:
        self.scripts[channel].extend(outcomes)

    @property
    def channels(self) -> list[str]:
        return [call.channel for call in self.calls]

    def _next(self, channel: str) -> GatewayResponse:
        outcome = self.scripts[channel].pop(0) if self.scripts[channel] else None
        if isinstance(outcome, BaseException):
            raise outcome
        message_id = outcome or f"{channel}-msg-{next(self._ids)}"
        return GatewayResponse(message_id=message_id, status_code=200, response_time_ms=5)

    async def send_rich(
        self,
        to: str,
        template_name: str,
        params: dict[str, str],
        language: str = "en",
    ) -> GatewayResponse:
        self.calls.append(
            SentCall(
                "rich",
                to,
                {"template_name": template_name, "params": params, "language": language},
            ),
        )
        return self._next("rich")

    async def send_plain(self, to: str, text: str) -> GatewayResponse:
        self.calls.append(SentCall("plain", to, {"text": text}))
        return self._next("plain")


class RecordingSleep:
    """Awaitable stand-in for ``asyncio.sleep`` that only records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def template_store() -> InMemoryTemplateStore:
    """Template store with one approved and one pending template."""
    return InMemoryTemplateStore(
        [
            MessageTemplate(
                name="order_shipped",
                body="Hi {{ name }}, your order {{ order_id }} has shipped.",
            ),
            MessageTemplate(
                name="promo_pending",
                body="Sale starts {{ date }}",
                approved=False,
            ),
        ],
    )


@pytest.fixture
def notification_settings() -> NotificationSettings:
    return NotificationSettings(
        rate_limit_backend="memory",
        max_retries=2,
        base_delay=1.0,
        max_delay=10.0,
        default_fallback_delay=1.0,
        rate_limit_fallback_delay=5.0,
    )


@pytest.fixture
def make_engine(fake_gateway, fake_sleep, template_store):
    """Factory building engines that share the fake gateway and sleep."""

    def _make(settings: NotificationSettings | None = None, **overrides: Any) -> NotificationEngine:
        return NotificationEngine.from_settings(
            settings or NotificationSettings(rate_limit_backend="memory", **overrides),
            gateway=fake_gateway,
            template_store=template_store,
            sleep=fake_sleep,
        )

    return _make


@pytest.fixture
def engine(make_engine, notification_settings) -> NotificationEngine:
    return make_engine(notification_settings)


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def app(engine):
    """FastAPI application with the test engine attached.

    The lifespan is not run by ``ASGITransport``, so the engine is placed on
    ``app.state`` directly.
    """
    from artisan_notify.app.main import create_app

    clear_all_caches()
    application = create_app()
    application.state.engine = engine
    yield application
    application.dependency_overrides.clear()
    clear_all_caches()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client bound to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as ac:
        yield ac
