"""Tests for the notifications API."""
from __future__ import annotations

import json
import time
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from artisan_notify.core.settings import GatewaySettings, get_gateway_settings
from artisan_notify.features.notifications.errors import GatewayError
from artisan_notify.features.notifications.router import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    compute_webhook_signature,
    verify_webhook_signature,
)
from artisan_notify.infra.ratelimit import ChannelRateLimiter, RedisChannelRateLimiter

API = "/api/v1/notifications"
PHONE = "+919876543210"


async def _send_template(client) -> dict:
    response = await client.post(
        f"{API}/send",
        json={
            "to": PHONE,
            "template_name": "order_shipped",
            "template_params": {"name": "Asha", "order_id": "42"},
        },
    )
    assert response.status_code == 200
    return response.json()


@pytest.mark.unit
class TestSendEndpoint:
    """Test suite for POST /notifications/send."""

    @pytest.mark.asyncio
    async def test_send_success(self, client):
        body = await _send_template(client)

        assert body["success"] is True
        assert body["channel"] == "rich"
        assert body["message_id"] == "rich-msg-1"
        assert body["error"] is None

    @pytest.mark.asyncio
    async def test_delivery_failure_is_reported_in_body(self, client, fake_gateway):
        """Test that delivery failures are 200 responses with an error."""
        fake_gateway.script("plain", GatewayError("DND", gateway_code="DND_NUMBER"))

        response = await client.post(f"{API}/send", json={"to": PHONE, "message": "Hi"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["error"] == {"code": "DND_NUMBER", "category": "user_error", "message": "DND"}

    @pytest.mark.asyncio
    async def test_request_needs_content(self, client):
        """Test that a request with neither message nor template is a 422."""
        response = await client.post(f"{API}/send", json={"to": PHONE})

        assert response.status_code == 422
        assert response.headers["content-type"].startswith("application/problem+json")
        assert response.json()["type"] == "validation-error"

    @pytest.mark.asyncio
    async def test_engine_missing(self, app, client):
        """Test a 503 problem when the engine is not built."""
        app.state.engine = None

        response = await client.post(f"{API}/send", json={"to": PHONE, "message": "Hi"})

        assert response.status_code == 503


@pytest.mark.unit
class TestWebhookEndpoint:
    """Test suite for status callbacks."""

    @pytest.mark.asyncio
    async def test_status_update_applied(self, client):
        sent = await _send_template(client)

        response = await client.post(
            f"{API}/webhooks/status",
            json={"messageId": sent["message_id"], "status": "DELIVERED"},
        )

        assert response.status_code == 202
        assert response.json() == {
            "accepted": True, "applied": True, "orphan": False, "status": "delivered",
        }

        timeline = await client.get(f"{API}/messages/{sent['message_id']}/timeline")
        assert timeline.status_code == 200
        assert [t["status"] for t in timeline.json()["transitions"]] == ["queued", "sent", "delivered"]

    @pytest.mark.asyncio
    async def test_unparseable_timestamp_uses_receive_time(self, client):
        """Test that a bad timestamp does not reject the callback."""
        sent = await _send_template(client)
        before = datetime.now(UTC)

        response = await client.post(
            f"{API}/webhooks/status",
            json={"messageId": sent["message_id"], "status": "delivered", "timestamp": "not-a-date"},
        )

        assert response.status_code == 202
        assert response.json()["applied"] is True
        timeline = (await client.get(f"{API}/messages/{sent['message_id']}/timeline")).json()
        delivered_at = datetime.fromisoformat(timeline["transitions"][-1]["timestamp"])
        assert delivered_at >= before

    @pytest.mark.asyncio
    async def test_unknown_message_is_orphaned(self, client):
        response = await client.post(
            f"{API}/webhooks/status",
            json={"message_id": "ghost", "status": "read", "errorCode": 1026},
        )

        assert response.status_code == 202
        assert response.json()["orphan"] is True

        orphans = (await client.get(f"{API}/webhooks/orphans")).json()
        assert orphans[0]["message_id"] == "ghost"
        assert orphans[0]["error_code"] == "1026"

    @pytest.mark.asyncio
    async def test_malformed_payload(self, client):
        response = await client.post(f"{API}/webhooks/status", content=b'{"status": "sent"}')

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_signature_required_when_secret_configured(self, app, client):
        """Test signed webhook verification."""
        app.dependency_overrides[get_gateway_settings] = lambda: GatewaySettings(
            webhook_secret="whsec",
        )
        sent = await _send_template(client)
        body = json.dumps({"messageId": sent["message_id"], "status": "delivered"}).encode()
        timestamp = str(int(time.time()))

        unsigned = await client.post(f"{API}/webhooks/status", content=body)
        assert unsigned.status_code == 401

        signed = await client.post(
            f"{API}/webhooks/status",
            content=body,
            headers={
                TIMESTAMP_HEADER: timestamp,
                SIGNATURE_HEADER: "sha256=" + compute_webhook_signature("whsec", timestamp, body),
            },
        )
        assert signed.status_code == 202
        assert signed.json()["applied"] is True


@pytest.mark.unit
class TestSignatureVerification:
    """Test suite for webhook HMAC checks."""

    def test_valid_signature(self):
        body = b'{"a": 1}'
        sig = compute_webhook_signature("s", "1000", body)

        assert verify_webhook_signature("s", "1000", body, sig, now=1100)

    def test_tampered_body(self):
        sig = compute_webhook_signature("s", "1000", b"a")

        assert not verify_webhook_signature("s", "1000", b"b", sig, now=1000)

    def test_stale_timestamp(self):
        sig = compute_webhook_signature("s", "1000", b"a")

        assert not verify_webhook_signature("s", "1000", b"a", sig, now=2000)
        assert verify_webhook_signature("s", "1000", b"a", sig, now=2000, tolerance_seconds=0)

    def test_iso_timestamp(self):
        stamp = "2025-01-01T00:00:00Z"
        sig = compute_webhook_signature("s", stamp, b"a")
        now = datetime(2025, 1, 1, 0, 1, tzinfo=UTC).timestamp()

        assert verify_webhook_signature("s", stamp, b"a", sig, now=now)

    def test_missing_headers(self):
        assert not verify_webhook_signature("s", None, b"a", "x")
        assert not verify_webhook_signature("s", "1000", b"a", None)


@pytest.mark.unit
class TestTrackingEndpoints:
    """Test suite for timeline, report and history queries."""

    @pytest.mark.asyncio
    async def test_timeline_not_found(self, client):
        response = await client.get(f"{API}/messages/unknown/timeline")

        assert response.status_code == 404
        assert response.json()["type"] == "message-not-found"

    @pytest.mark.asyncio
    async def test_delivery_report(self, client):
        sent = await _send_template(client)
        await client.post(
            f"{API}/webhooks/status", json={"messageId": sent["message_id"], "status": "delivered"},
        )

        report = (await client.get(f"{API}/reports/delivery")).json()

        assert report["total_messages"] == 1
        assert report["successful_deliveries"] == 1
        assert report["success_rate"] == 100.0
        assert report["channel_breakdown"]["rich"]["delivered"] == 1

    @pytest.mark.asyncio
    async def test_report_window_validation(self, client):
        now = datetime.now(UTC)
        response = await client.get(
            f"{API}/reports/delivery",
            params={"start": now.isoformat(), "end": (now - timedelta(hours=1)).isoformat()},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_recipient_history(self, client):
        await _send_template(client)

        history = (await client.get(f"{API}/recipients/{PHONE}/history")).json()

        assert history["total_notifications"] == 1
        assert history["last_channel"] == "rich"


@pytest.mark.unit
class TestRateLimitEndpoints:
    """Test suite for rate limit inspection and reset."""

    @pytest.mark.asyncio
    async def test_list(self, client):
        body = (await client.get(f"{API}/rate-limits")).json()

        assert body["protection"] == "active"
        assert {c["channel"] for c in body["channels"]} == {"rich", "plain"}

    @pytest.mark.asyncio
    async def test_single_channel_after_send(self, client, engine):
        limiter = ChannelRateLimiter(engine.settings.channel_capacities, clock=lambda: 1000.0, monotonic=lambda: 1000.0)
        engine.limiter = engine.dispatcher.limiter = limiter
        await _send_template(client)

        body = (await client.get(f"{API}/rate-limits/rich")).json()

        assert body["capacity"] == 80
        assert body["remaining"] == 79

    @pytest.mark.asyncio
    async def test_unknown_channel(self, client):
        response = await client.get(f"{API}/rate-limits/email")

        assert response.status_code == 404
        assert response.json()["channel"] == "email"

    @pytest.mark.asyncio
    async def test_reset(self, client):
        await _send_template(client)

        body = (await client.post(f"{API}/rate-limits/rich/reset")).json()

        assert body["remaining"] == 80

    @pytest.mark.asyncio
    async def test_reset_backend_unavailable(self, client, engine):
        """Test that a reset Redis could not apply is a 503, not a success."""
        redis = AsyncMock()
        redis.get.return_value = None
        redis.pttl.return_value = -2
        redis.delete.side_effect = RedisConnectionError("down")
        engine.limiter = RedisChannelRateLimiter(redis, engine.settings.channel_capacities)

        response = await client.post(f"{API}/rate-limits/rich/reset")

        assert response.status_code == 503
        assert response.json()["channel"] == "rich"


@pytest.mark.unit
class TestFallbackEndpoints:
    """Test suite for fallback statistics."""

    @pytest.mark.asyncio
    async def test_stats_and_recent(self, client, fake_gateway):
        fake_gateway.script(
            "rich", GatewayError("not opted in", gateway_code="USER_NOT_OPTED_IN"),
        )
        await _send_template(client)

        stats = (await client.get(f"{API}/fallbacks/stats")).json()
        recent = (await client.get(f"{API}/fallbacks/recent", params={"limit": 5})).json()

        assert stats["total_attempts"] == 1
        assert stats["successful_fallbacks"] == 1
        assert recent[0]["origin_channel"] == "rich"
        assert recent[0]["target_channel"] == "plain"
        assert recent[0]["error"]["code"] == "USER_NOT_OPTED_IN"


@pytest.mark.unit
class TestBatchEndpoint:
    """Test suite for POST /notifications/send/batch."""

    @pytest.mark.asyncio
    async def test_batch_results_in_request_order(self, client, fake_gateway):
        fake_gateway.script("plain", GatewayError("DND", gateway_code="DND_NUMBER"))

        response = await client.post(
            f"{API}/send/batch",
            json={
                "notifications": [
                    {"to": PHONE, "message": "first"},
                    {
                        "to": PHONE,
                        "template_name": "order_shipped",
                        "template_params": {"name": "Asha", "order_id": "42"},
                        "priority": "high",
                    },
                ],
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert (body["total"], body["succeeded"], body["failed"]) == (2, 1, 1)
        assert body["results"][0]["error"]["code"] == "DND_NUMBER"
        assert body["results"][1]["channel"] == "rich"

    @pytest.mark.asyncio
    async def test_batch_size_limit(self, client, engine):
        engine.settings = engine.settings.model_copy(update={"batch_max_size": 2})
        notifications = [{"to": PHONE, "message": f"m{i}"} for i in range(3)]

        response = await client.post(f"{API}/send/batch", json={"notifications": notifications})

        assert response.status_code == 422
        assert response.json()["max_size"] == 2

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, client):
        response = await client.post(f"{API}/send/batch", json={"notifications": []})

        assert response.status_code == 422


@pytest.mark.unit
class TestDeadLetterEndpoints:
    """Test suite for the dead-letter endpoints."""

    @pytest.mark.asyncio
    async def test_list_and_requeue(self, client, fake_gateway):
        fake_gateway.script("plain", GatewayError("DND", gateway_code="DND_NUMBER"))
        failed = (await client.post(f"{API}/send", json={"to": PHONE, "message": "Hi"})).json()

        listing = (await client.get(f"{API}/dead-letters")).json()

        assert listing["total"] == 1
        entry = listing["entries"][0]
        assert entry["entry_id"] == failed["correlation_id"]
        assert entry["to"] == PHONE
        assert entry["error"]["code"] == "DND_NUMBER"
        assert entry["requeue_count"] == 0

        requeued = await client.post(f"{API}/dead-letters/{entry['entry_id']}/requeue")

        assert requeued.status_code == 200
        assert requeued.json()["success"] is True
        assert (await client.get(f"{API}/dead-letters")).json()["total"] == 0

    @pytest.mark.asyncio
    async def test_requeue_unknown_entry(self, client):
        response = await client.post(f"{API}/dead-letters/nope/requeue")

        assert response.status_code == 404
        assert response.json()["entry_id"] == "nope"

    @pytest.mark.asyncio
    async def test_delete(self, client, fake_gateway):
        fake_gateway.script("plain", GatewayError("DND", gateway_code="DND_NUMBER"))
        failed = (await client.post(f"{API}/send", json={"to": PHONE, "message": "Hi"})).json()

        first = await client.delete(f"{API}/dead-letters/{failed['correlation_id']}")
        second = await client.delete(f"{API}/dead-letters/{failed['correlation_id']}")

        assert first.status_code == 204
        assert second.status_code == 404
