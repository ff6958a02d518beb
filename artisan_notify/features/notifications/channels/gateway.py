"""HTTP client for the messaging gateway.

Both channels go through one ``POST {base_url}{message_path}`` endpoint
authenticated with an ``apikey`` header. Non-2xx responses, and 2xx
responses whose body reports an error, raise ``GatewayError`` carrying the
HTTP status and the gateway's own error code so the classifier can map
them. Transport failures (timeouts, refused connections) propagate as the
underlying ``httpx`` exceptions.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

import httpx

from artisan_notify import __version__
from artisan_notify.core.settings import GatewaySettings
from artisan_notify.features.notifications import metrics
from artisan_notify.features.notifications.channels.base import GatewayResponse
from artisan_notify.features.notifications.errors import GatewayError
from artisan_notify.features.notifications.validation import mask_address

logger = logging.getLogger(__name__)

_REJECTED_STATUSES = frozenset({"error", "failed", "rejected"})


def _error_details(body: Any, fallback: str) -> tuple[str | None, str]:
    """Pull (code, message) out of a gateway error body."""
    if not isinstance(body, dict):
        return None, fallback
    nested = body.get("error")
    if isinstance(nested, dict):
        code = nested.get("code") or body.get("code")
        message = nested.get("message") or body.get("message")
    else:
        code = body.get("code") or body.get("errorCode")
        message = body.get("message") or nested
    return (str(code) if code is not None else None), str(message or fallback)


class GatewayClient:
    """Async gateway client implementing ``ChannelGateway``.

    Example:
        client = GatewayClient.from_settings(get_gateway_settings())
        try:
            response = await client.send_plain("919876543210", "Your order shipped")
        finally:
            await client.aclose()
    """

    def __init__(
        self,
        settings: GatewaySettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            settings: Gateway connection settings
            transport: Optional httpx transport (``httpx.MockTransport`` in tests)
        """
        self.settings = settings
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"artisan-notify/{__version__}",
        }
        if settings.api_key is not None:
            headers["apikey"] = settings.api_key.get_secret_value()

        self._client = httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(
                settings.timeout_seconds, connect=settings.connect_timeout_seconds,
            ),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: GatewaySettings) -> GatewayClient:
        if not settings.is_configured:
            logger.warning("Gateway API key is not configured; sends will be rejected upstream")
        return cls(settings)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GatewayClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def build_rich_payload(
        self,
        to: str,
        template_name: str,
        params: dict[str, str],
        language: str = "en",
    ) -> dict[str, Any]:
        components = []
        if params:
            components.append(
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": value} for value in params.values()],
                },
            )
        return {
            "channel": "whatsapp",
            "source": self.settings.rich_source_number,
            "destination": to,
            "src.name": self.settings.rich_business_account,
            "message": {
                "type": "template",
                "template": {
                    "name": template_name,
                    "language": {"code": language},
                    "components": components,
                },
            },
        }

    def build_plain_payload(self, to: str, text: str) -> dict[str, Any]:
        return {
            "channel": "sms",
            "source": self.settings.plain_sender_id,
            "destination": to,
            "message": text,
            "src.name": self.settings.plain_sender_id,
            "route": self.settings.plain_route,
        }

    async def send_rich(
        self,
        to: str,
        template_name: str,
        params: dict[str, str],
        language: str = "en",
    ) -> GatewayResponse:
        payload = self.build_rich_payload(to, template_name, params, language)
        return await self._submit("rich", to, payload)

    async def send_plain(self, to: str, text: str) -> GatewayResponse:
        return await self._submit("plain", to, self.build_plain_payload(to, text))

    async def _submit(self, channel: str, to: str, payload: dict[str, Any]) -> GatewayResponse:
        started = time.perf_counter()
        try:
            response = await self._client.post(self.settings.message_path, json=payload)
        except httpx.HTTPError as exc:
            metrics.gateway_attempts_total.labels(channel=channel, result="transport_error").inc()
            logger.warning(
                "Gateway request failed",
                extra={
                    "channel": channel,
                    "recipient": mask_address(to),
                    "error_type": type(exc).__name__,
                },
            )
            raise
        finally:
            metrics.gateway_request_duration_seconds.labels(channel=channel).observe(
                time.perf_counter() - started,
            )

        response_time_ms = int((time.perf_counter() - started) * 1000)
        try:
            body = response.json()
        except ValueError:
            body = {}

        rejected = isinstance(body, dict) and str(body.get("status", "")).lower() in _REJECTED_STATUSES
        if not response.is_success or rejected:
            code, message = _error_details(body, response.reason_phrase or f"HTTP {response.status_code}")
            metrics.gateway_attempts_total.labels(channel=channel, result="rejected").inc()
            logger.warning(
                "Gateway rejected message",
                extra={
                    "channel": channel,
                    "recipient": mask_address(to),
                    "status_code": response.status_code,
                    "gateway_code": code,
                    "response_time_ms": response_time_ms,
                },
            )
            raise GatewayError(
                message,
                http_status=response.status_code,
                gateway_code=code,
                body=body,
            )

        message_id = body.get("messageId") if isinstance(body, dict) else None
        if not message_id:
            message_id = f"local-{uuid.uuid4().hex}"
            logger.warning(
                "Gateway response carried no message id; using a local id",
                extra={"channel": channel, "gateway_message_id": message_id},
            )

        metrics.gateway_attempts_total.labels(channel=channel, result="accepted").inc()
        logger.info(
            "Gateway accepted message",
            extra={
                "channel": channel,
                "recipient": mask_address(to),
                "gateway_message_id": message_id,
                "status_code": response.status_code,
                "response_time_ms": response_time_ms,
            },
        )
        return GatewayResponse(
            message_id=str(message_id),
            status_code=response.status_code,
            response_time_ms=response_time_ms,
            raw=body if isinstance(body, dict) else {},
        )


__all__ = ["GatewayClient"]
