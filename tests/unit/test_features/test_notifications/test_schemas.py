"""Tests for notification API schemas."""
from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from artisan_notify.features.notifications.models import Priority
from artisan_notify.features.notifications.schemas import (
    SendNotificationRequest,
    WebhookStatusPayload,
)


@pytest.mark.unit
class TestSendNotificationRequest:
    """Test suite for SendNotificationRequest."""

    def test_template_only(self):
        request = SendNotificationRequest(to="+919876543210", template_name="order_shipped")

        domain = request.to_domain()

        assert domain.template_name == "order_shipped"
        assert domain.message is None
        assert domain.priority is Priority.MEDIUM

    @pytest.mark.parametrize("message", [None, "", "   "])
    def test_needs_message_or_template(self, message):
        with pytest.raises(ValidationError, match="message or template_name"):
            SendNotificationRequest(to="+919876543210", message=message)

    def test_fallback_override_bounds(self):
        with pytest.raises(ValidationError):
            SendNotificationRequest(to="+919876543210", message="Hi", max_fallback_attempts=11)


@pytest.mark.unit
class TestWebhookStatusPayload:
    """Test suite for WebhookStatusPayload."""

    def test_camel_case_aliases(self):
        payload = WebhookStatusPayload.model_validate(
            {"messageId": "m1", "status": "DELIVERED", "errorCode": 1026, "errorMessage": "x"},
        )

        assert payload.message_id == "m1"
        assert payload.error_code == "1026"
        assert payload.error_message == "x"

    def test_naive_timestamp_is_utc(self):
        payload = WebhookStatusPayload(
            message_id="m1", status="sent", timestamp=datetime(2025, 1, 1, 12, 0),
        )

        assert payload.timestamp.tzinfo is UTC

    @pytest.mark.parametrize("raw", ["not-a-date", "", "2025-13-45T99:00:00"])
    def test_unparseable_timestamp_is_dropped(self, raw):
        payload = WebhookStatusPayload.model_validate(
            {"messageId": "m1", "status": "delivered", "timestamp": raw},
        )

        assert payload.timestamp is None
        assert payload.to_event().timestamp.tzinfo is not None

    def test_iso_timestamp_with_offset_is_kept(self):
        payload = WebhookStatusPayload.model_validate(
            {"messageId": "m1", "status": "sent", "timestamp": "2025-01-01T12:00:00Z"},
        )

        assert payload.timestamp == datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def test_missing_timestamp_defaults_to_now(self):
        event = WebhookStatusPayload(message_id="m1", status="sent").to_event()

        assert event.timestamp.tzinfo is not None
        assert event.message_id == "m1"

    def test_missing_message_id(self):
        with pytest.raises(ValidationError):
            WebhookStatusPayload.model_validate({"status": "sent"})
