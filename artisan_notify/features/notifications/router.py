"""API router for the notifications feature.

Dispatch:
- POST /notifications/send - Send a notification with retry and fallback
- POST /notifications/send/batch - Send several notifications, high priority first

Dead letters:
- GET /notifications/dead-letters - Notifications that failed on every channel
- POST /notifications/dead-letters/{entry_id}/requeue - Send a dead-lettered notification again
- DELETE /notifications/dead-letters/{entry_id} - Discard a dead-lettered notification

Webhooks:
- POST /notifications/webhooks/status - Gateway delivery status callback
- GET /notifications/webhooks/orphans - Callbacks for unknown message ids

Tracking:
- GET /notifications/messages/{message_id}/timeline - Status history of one message
- GET /notifications/reports/delivery - Aggregate delivery report
- GET /notifications/recipients/{recipient}/history - Per-recipient summary

Rate limits:
- GET /notifications/rate-limits - Quota of every channel
- GET /notifications/rate-limits/{channel} - Quota of one channel
- POST /notifications/rate-limits/{channel}/reset - Refill one channel

Fallback:
- GET /notifications/fallbacks/stats - Fallback success statistics
- GET /notifications/fallbacks/recent - Latest fallback decisions
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Query, Request, status
from pydantic import ValidationError

from artisan_notify.core.exceptions import (
    NotFoundException,
    UnauthorizedException,
    ValidationException,
)
from artisan_notify.features.notifications.dependencies import (
    DeadLettersDep,
    DispatcherDep,
    EngineDep,
    FallbackManagerDep,
    GatewaySettingsDep,
    LimiterDep,
    TrackerDep,
)
from artisan_notify.features.notifications.models import utcnow
from artisan_notify.features.notifications.schemas import (
    BatchSendRequest,
    BatchSendResponse,
    DeadLetterListResponse,
    DeadLetterResponse,
    DeliveryReportResponse,
    FallbackAttemptResponse,
    FallbackStatsResponse,
    NotificationResultResponse,
    OrphanEventResponse,
    RateLimitListResponse,
    RateLimitResponse,
    RecipientHistoryResponse,
    SendNotificationRequest,
    TimelineResponse,
    WebhookAck,
    WebhookStatusPayload,
)
from artisan_notify.infra.ratelimit import RateLimitInfo, UnknownChannelError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
DEFAULT_REPORT_WINDOW = timedelta(hours=24)


def compute_webhook_signature(secret: str, timestamp: str, body: bytes) -> str:
    """HMAC-SHA256 hex digest over ``"{timestamp}.{body}"``."""
    message = timestamp.encode("utf-8") + b"." + body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _timestamp_age(timestamp: str, now: float) -> float | None:
    """Age in seconds of an epoch or ISO-8601 timestamp; None if unparseable."""
    try:
        sent = float(timestamp)
    except ValueError:
        try:
            sent = datetime.fromisoformat(timestamp.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return None
    return abs(now - sent)


def verify_webhook_signature(
    secret: str,
    timestamp: str | None,
    body: bytes,
    signature: str | None,
    *,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> bool:
    """Check a signed webhook.

    Args:
        secret: Shared webhook secret.
        timestamp: Value of the timestamp header.
        body: Raw request body.
        signature: Value of the signature header, optionally ``sha256=`` prefixed.
        tolerance_seconds: Maximum timestamp age; 0 disables the check.
        now: Current epoch seconds (injectable for tests).

    Returns:
        True when the signature matches and the timestamp is fresh.
    """
    if not timestamp or not signature:
        return False
    if tolerance_seconds:
        age = _timestamp_age(timestamp, time.time() if now is None else now)
        if age is None or age > tolerance_seconds:
            return False
    expected = compute_webhook_signature(secret, timestamp, body)
    provided = signature.removeprefix("sha256=")
    return hmac.compare_digest(expected, provided)


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _report_window(start: datetime | None, end: datetime | None) -> tuple[datetime, datetime]:
    end = _aware(end) or utcnow()
    start = _aware(start) or end - DEFAULT_REPORT_WINDOW
    if start > end:
        raise ValidationException(
            "start must not be after end",
            extra={"start": start.isoformat(), "end": end.isoformat()},
        )
    return start, end


async def _channel_info(limiter: LimiterDep, channel: str) -> RateLimitInfo:
    try:
        return await limiter.info(channel)
    except UnknownChannelError as e:
        raise NotFoundException(
            f"Unknown channel: {channel}",
            type="channel-not-found",
            extra={"channel": channel, "channels": limiter.channels},
        ) from e


# ============================================================================
# Dispatch
# ============================================================================


@router.post(
    "/send",
    response_model=NotificationResultResponse,
    summary="Send a notification",
    description="""
Send one notification. A `template_name` starts delivery on the rich channel;
otherwise the plain channel is used. Failed attempts are retried with
backoff and, when the failure is channel-specific, retried on the next
channel.

Delivery failures are reported in the body (`success: false` with an
`error` of `{code, category, message}`), not as HTTP errors.
""",
)
async def send_notification(
    body: SendNotificationRequest,
    dispatcher: DispatcherDep,
) -> NotificationResultResponse:
    result = await dispatcher.send(body.to_domain())
    return NotificationResultResponse.from_result(result)


@router.post(
    "/send/batch",
    response_model=BatchSendResponse,
    summary="Send several notifications",
    description="""
Send up to the configured batch size of notifications in one call. Sends run
concurrently with a bounded number in flight; high-priority notifications
start first. Results are returned in request order.
""",
)
async def send_notification_batch(
    body: BatchSendRequest,
    engine: EngineDep,
) -> BatchSendResponse:
    max_size = engine.settings.batch_max_size
    if len(body.notifications) > max_size:
        raise ValidationException(
            f"Batch exceeds the maximum of {max_size} notifications",
            extra={"max_size": max_size, "size": len(body.notifications)},
        )
    results = await engine.dispatcher.send_batch(body.to_domain())
    return BatchSendResponse.from_results(results)


# ============================================================================
# Dead letters
# ============================================================================


def _dead_letter_not_found(entry_id: str) -> NotFoundException:
    return NotFoundException(
        f"No dead-letter entry {entry_id}",
        type="dead-letter-not-found",
        extra={"entry_id": entry_id},
    )


@router.get(
    "/dead-letters",
    response_model=DeadLetterListResponse,
    summary="List notifications that failed on every channel",
)
async def list_dead_letters(
    dead_letters: DeadLettersDep,
    limit: int = Query(50, ge=1, le=500),
) -> DeadLetterListResponse:
    return DeadLetterListResponse(
        total=len(dead_letters),
        entries=[DeadLetterResponse.from_entry(e) for e in dead_letters.recent(limit)],
    )


@router.post(
    "/dead-letters/{entry_id}/requeue",
    response_model=NotificationResultResponse,
    summary="Send a dead-lettered notification again",
    description=(
        "Removes the entry and dispatches its original request. If delivery fails "
        "again, a new entry is created with `requeue_count` incremented."
    ),
)
async def requeue_dead_letter(
    entry_id: str,
    dispatcher: DispatcherDep,
) -> NotificationResultResponse:
    result = await dispatcher.requeue(entry_id)
    if result is None:
        raise _dead_letter_not_found(entry_id)
    return NotificationResultResponse.from_result(result)


@router.delete(
    "/dead-letters/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Discard a dead-lettered notification",
)
async def delete_dead_letter(entry_id: str, dead_letters: DeadLettersDep) -> None:
    if dead_letters.pop(entry_id) is None:
        raise _dead_letter_not_found(entry_id)
    logger.info("Dead-letter entry discarded via API", extra={"entry_id": entry_id})


# ============================================================================
# Webhooks
# ============================================================================


@router.post(
    "/webhooks/status",
    response_model=WebhookAck,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Receive a delivery status callback",
)
async def receive_status_webhook(
    request: Request,
    tracker: TrackerDep,
    gateway_settings: GatewaySettingsDep,
) -> WebhookAck:
    raw_body = await request.body()

    if gateway_settings.webhook_secret is not None:
        valid = verify_webhook_signature(
            gateway_settings.webhook_secret.get_secret_value(),
            request.headers.get(TIMESTAMP_HEADER),
            raw_body,
            request.headers.get(SIGNATURE_HEADER),
            tolerance_seconds=gateway_settings.signature_tolerance_seconds,
        )
        if not valid:
            logger.warning("Rejected webhook with invalid signature")
            raise UnauthorizedException("Invalid webhook signature", type="invalid-signature")

    try:
        payload = WebhookStatusPayload.model_validate_json(raw_body)
    except ValidationError as e:
        raise ValidationException(
            "Invalid status callback payload",
            extra={"errors": e.errors(include_url=False, include_context=False)},
        ) from e

    result = await tracker.process_webhook(payload.to_event())
    return WebhookAck.from_result(result)


@router.get(
    "/webhooks/orphans",
    response_model=list[OrphanEventResponse],
    summary="List status callbacks for unknown messages",
)
async def list_orphan_events(
    tracker: TrackerDep,
    limit: int = Query(50, ge=1, le=500),
) -> list[OrphanEventResponse]:
    return [OrphanEventResponse.from_orphan(o) for o in tracker.orphan_events(limit)]


# ============================================================================
# Tracking
# ============================================================================


@router.get(
    "/messages/{message_id}/timeline",
    response_model=TimelineResponse,
    summary="Get the status timeline of a message",
)
async def get_message_timeline(message_id: str, tracker: TrackerDep) -> TimelineResponse:
    record = await tracker.get_record(message_id)
    if record is None:
        raise NotFoundException(
            f"No delivery record for message {message_id}",
            type="message-not-found",
            extra={"message_id": message_id},
        )
    return TimelineResponse.from_record(record)


@router.get(
    "/reports/delivery",
    response_model=DeliveryReportResponse,
    summary="Aggregate delivery report",
    description="Covers messages sent within `[start, end]`; defaults to the last 24 hours.",
)
async def get_delivery_report(
    tracker: TrackerDep,
    start: datetime | None = Query(None, description="Window start (ISO 8601)"),
    end: datetime | None = Query(None, description="Window end (ISO 8601)"),
) -> DeliveryReportResponse:
    window_start, window_end = _report_window(start, end)
    report = await tracker.get_delivery_report(window_start, window_end)
    return DeliveryReportResponse.from_report(report)


@router.get(
    "/recipients/{recipient}/history",
    response_model=RecipientHistoryResponse,
    summary="Notification history summary for one recipient",
)
async def get_recipient_history(recipient: str, tracker: TrackerDep) -> RecipientHistoryResponse:
    history = await tracker.get_recipient_history(recipient)
    return RecipientHistoryResponse.from_history(history)


# ============================================================================
# Rate limits
# ============================================================================


@router.get(
    "/rate-limits",
    response_model=RateLimitListResponse,
    summary="Rate limit status of all channels",
)
async def list_rate_limits(limiter: LimiterDep) -> RateLimitListResponse:
    channels = [RateLimitResponse.from_info(await limiter.info(ch)) for ch in limiter.channels]
    return RateLimitListResponse(protection=limiter.protection.status.value, channels=channels)


@router.get(
    "/rate-limits/{channel}",
    response_model=RateLimitResponse,
    summary="Rate limit status of one channel",
)
async def get_rate_limit(channel: str, limiter: LimiterDep) -> RateLimitResponse:
    return RateLimitResponse.from_info(await _channel_info(limiter, channel))


@router.post(
    "/rate-limits/{channel}/reset",
    response_model=RateLimitResponse,
    summary="Reset one channel's rate limit window",
)
async def reset_rate_limit(channel: str, limiter: LimiterDep) -> RateLimitResponse:
    await _channel_info(limiter, channel)
    await limiter.reset(channel)
    logger.info("Rate limit reset via API", extra={"channel": channel})
    return RateLimitResponse.from_info(await limiter.info(channel))


# ============================================================================
# Fallback
# ============================================================================


@router.get(
    "/fallbacks/stats",
    response_model=FallbackStatsResponse,
    summary="Fallback statistics",
)
async def get_fallback_stats(
    fallback_manager: FallbackManagerDep,
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
) -> FallbackStatsResponse:
    start, end = _aware(start), _aware(end)
    if start and end and start > end:
        raise ValidationException("start must not be after end")
    return FallbackStatsResponse.from_stats(fallback_manager.stats(start, end))


@router.get(
    "/fallbacks/recent",
    response_model=list[FallbackAttemptResponse],
    summary="Most recent fallback decisions",
)
async def list_recent_fallbacks(
    fallback_manager: FallbackManagerDep,
    limit: int = Query(10, ge=1, le=100),
) -> list[FallbackAttemptResponse]:
    return [FallbackAttemptResponse.from_attempt(a) for a in fallback_manager.recent(limit)]


__all__ = [
    "compute_webhook_signature",
    "router",
    "verify_webhook_signature",
]
