"""Unit tests for the gateway HTTP client using httpx.MockTransport."""
from __future__ import annotations

import json

import httpx
import pytest

from artisan_notify.core.settings import GatewaySettings
from artisan_notify.features.notifications.channels import GatewayClient
from artisan_notify.features.notifications.errors import ErrorCode, GatewayError, classify


@pytest.fixture
def gateway_settings() -> GatewaySettings:
    return GatewaySettings(
        base_url="https://gateway.test/api",
        message_path="/msg",
        api_key="secret-key",
        rich_source_number="919000000000",
        rich_business_account="artisan",
        plain_sender_id="ARTSN",
        plain_route="transactional",
    )


def _client(settings: GatewaySettings, handler) -> GatewayClient:
    return GatewayClient(settings, transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestGatewayClient:
    """Test suite for GatewayClient."""

    @pytest.mark.asyncio
    async def test_send_rich_payload(self, gateway_settings):
        """Test the rich request shape and authentication header."""
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["apikey"] = request.headers.get("apikey")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "submitted", "messageId": "gw-1"})

        async with _client(gateway_settings, handler) as client:
            response = await client.send_rich(
                "+919876543210", "order_shipped", {"name": "Asha", "order_id": "42"}, "en",
            )

        assert response.message_id == "gw-1"
        assert response.status_code == 200
        assert seen["url"] == "https://gateway.test/api/msg"
        assert seen["apikey"] == "secret-key"
        body = seen["body"]
        assert body["channel"] == "whatsapp"
        assert body["source"] == "919000000000"
        assert body["destination"] == "+919876543210"
        template = body["message"]["template"]
        assert template["name"] == "order_shipped"
        assert template["language"] == {"code": "en"}
        assert [p["text"] for p in template["components"][0]["parameters"]] == ["Asha", "42"]

    @pytest.mark.asyncio
    async def test_send_plain_payload(self, gateway_settings):
        """Test the plain request shape."""
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(202, json={"messageId": "gw-2"})

        async with _client(gateway_settings, handler) as client:
            response = await client.send_plain("919876543210", "Hello")

        assert response.message_id == "gw-2"
        assert seen["body"] == {
            "channel": "sms",
            "source": "ARTSN",
            "destination": "919876543210",
            "message": "Hello",
            "src.name": "ARTSN",
            "route": "transactional",
        }

    @pytest.mark.asyncio
    async def test_error_response_raises_gateway_error(self, gateway_settings):
        """Test that non-2xx responses carry the gateway code for classification."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json={"status": "error", "error": {"code": "USER_NOT_OPTED_IN", "message": "opted out"}},
            )

        async with _client(gateway_settings, handler) as client:
            with pytest.raises(GatewayError) as exc_info:
                await client.send_rich("+919876543210", "order_shipped", {})

        error = exc_info.value
        assert error.http_status == 400
        assert error.gateway_code == "USER_NOT_OPTED_IN"
        assert error.message == "opted out"
        assert classify(error).code is ErrorCode.USER_NOT_OPTED_IN

    @pytest.mark.asyncio
    async def test_error_status_in_success_body(self, gateway_settings):
        """Test that a 200 with an error status is still a rejection."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "rejected", "message": "Insufficient balance"})

        async with _client(gateway_settings, handler) as client:
            with pytest.raises(GatewayError) as exc_info:
                await client.send_plain("919876543210", "Hello")

        assert classify(exc_info.value).code is ErrorCode.INSUFFICIENT_BALANCE

    @pytest.mark.asyncio
    async def test_server_error_without_body(self, gateway_settings):
        """Test classification falls back to the HTTP status."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="<html>down</html>")

        async with _client(gateway_settings, handler) as client:
            with pytest.raises(GatewayError) as exc_info:
                await client.send_plain("919876543210", "Hello")

        assert classify(exc_info.value).code is ErrorCode.SERVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, gateway_settings):
        """Test that connection failures surface as httpx errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(gateway_settings, handler) as client:
            with pytest.raises(httpx.ConnectError) as exc_info:
                await client.send_plain("919876543210", "Hello")

        assert classify(exc_info.value).code is ErrorCode.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_missing_message_id_gets_local_id(self, gateway_settings):
        """Test that an accepted response without an id still yields a trackable id."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "submitted"})

        async with _client(gateway_settings, handler) as client:
            response = await client.send_plain("919876543210", "Hello")

        assert response.message_id.startswith("local-")

    def test_is_configured(self, gateway_settings):
        assert gateway_settings.is_configured
        assert not GatewaySettings(api_key=None).is_configured
