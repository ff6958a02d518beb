"""Pydantic schemas for the notifications API."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
    model_validator,
)

from artisan_notify.features.notifications.deadletter import DeadLetterEntry
from artisan_notify.features.notifications.errors import ErrorClassification
from artisan_notify.features.notifications.fallback import FallbackStats
from artisan_notify.features.notifications.models import (
    Channel,
    DeliveryRecord,
    FallbackAttempt,
    NotificationRequest,
    NotificationResult,
    Priority,
    StatusEvent,
    StatusTransition,
    utcnow,
)
from artisan_notify.features.notifications.tracker import (
    DeliveryReport,
    OrphanEvent,
    RecipientHistory,
    WebhookResult,
)
from artisan_notify.infra.ratelimit import RateLimitInfo, seconds_until

# ============================================================================
# Dispatch
# ============================================================================


class SendNotificationRequest(BaseModel):
    """Payload for sending one notification.

    A template selects the rich channel first; ``message`` is the plain text
    used on the plain channel (the template is rendered when it is absent).
    """

    to: str = Field(
        ...,
        min_length=8,
        max_length=32,
        description="Recipient phone number (E.164 or 10-digit national)",
        examples=["+919876543210"],
    )
    message: str | None = Field(
        default=None,
        max_length=10_000,
        description="Plain text body",
    )
    template_name: str | None = Field(
        default=None,
        max_length=512,
        description="Pre-approved rich channel template",
    )
    template_params: dict[str, str] = Field(
        default_factory=dict,
        description="Template parameter values, in template order",
    )
    language: str = Field(default="en", max_length=10, description="Template language code")
    priority: Priority = Field(default=Priority.MEDIUM)
    enable_fallback: bool = Field(default=True, description="Allow channel fallback")
    max_fallback_attempts: int | None = Field(
        default=None,
        ge=0,
        le=10,
        description="Override of the configured channel switch limit",
    )

    @model_validator(mode="after")
    def require_content(self) -> SendNotificationRequest:
        if not self.template_name and not (self.message and self.message.strip()):
            msg = "Either message or template_name is required"
            raise ValueError(msg)
        return self

    def to_domain(self) -> NotificationRequest:
        return NotificationRequest(
            to=self.to,
            message=self.message,
            template_name=self.template_name,
            template_params=dict(self.template_params),
            language=self.language,
            priority=self.priority,
            enable_fallback=self.enable_fallback,
            max_fallback_attempts=self.max_fallback_attempts,
        )


class ErrorDetail(BaseModel):
    code: str
    category: str
    message: str

    @classmethod
    def from_classification(cls, classification: ErrorClassification) -> ErrorDetail:
        return cls(**classification.to_dict())


class NotificationResultResponse(BaseModel):
    """Outcome of a dispatch."""

    success: bool
    message_id: str | None = Field(default=None, description="Gateway message id on success")
    correlation_id: str
    channel: Channel = Field(description="Channel of the last attempt")
    fallback_used: bool
    fallback_attempts: int
    error: ErrorDetail | None = None

    @classmethod
    def from_result(cls, result: NotificationResult) -> NotificationResultResponse:
        return cls(
            success=result.success,
            message_id=result.message_id,
            correlation_id=result.correlation_id,
            channel=result.channel,
            fallback_used=result.fallback_used,
            fallback_attempts=result.fallback_attempts,
            error=ErrorDetail.from_classification(result.error) if result.error else None,
        )


class BatchSendRequest(BaseModel):
    """Payload for sending several notifications in one call.

    The configured batch size limit is enforced by the endpoint.
    """

    notifications: list[SendNotificationRequest] = Field(..., min_length=1)

    def to_domain(self) -> list[NotificationRequest]:
        return [n.to_domain() for n in self.notifications]


class BatchSendResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: list[NotificationResultResponse] = Field(
        description="One result per notification, in request order",
    )

    @classmethod
    def from_results(cls, results: list[NotificationResult]) -> BatchSendResponse:
        succeeded = sum(1 for r in results if r.success)
        return cls(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=[NotificationResultResponse.from_result(r) for r in results],
        )


class DeadLetterResponse(BaseModel):
    entry_id: str
    to: str
    template_name: str | None = None
    priority: Priority
    channel: Channel = Field(description="Channel of the last attempt")
    fallback_attempts: int
    requeue_count: int
    error: ErrorDetail
    failed_at: datetime

    @classmethod
    def from_entry(cls, entry: DeadLetterEntry) -> DeadLetterResponse:
        return cls(
            entry_id=entry.entry_id,
            to=entry.request.to,
            template_name=entry.request.template_name,
            priority=entry.request.priority,
            channel=entry.channel,
            fallback_attempts=entry.fallback_attempts,
            requeue_count=entry.requeue_count,
            error=ErrorDetail.from_classification(entry.error),
            failed_at=entry.failed_at,
        )


class DeadLetterListResponse(BaseModel):
    total: int = Field(description="Entries currently held")
    entries: list[DeadLetterResponse] = Field(description="Newest first")


# ============================================================================
# Webhooks
# ============================================================================


class WebhookStatusPayload(BaseModel):
    """Delivery status callback from the gateway.

    Accepts both the gateway's camelCase field names and snake_case.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message_id: str = Field(..., alias="messageId", min_length=1)
    status: str = Field(..., min_length=1)
    timestamp: datetime | None = None
    error_code: str | None = Field(default=None, alias="errorCode")
    error_message: str | None = Field(default=None, alias="errorMessage")

    @field_validator("error_code", mode="before")
    @classmethod
    def stringify_code(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("timestamp", mode="wrap")
    @classmethod
    def parse_timestamp(
        cls, value: object, handler: ValidatorFunctionWrapHandler,
    ) -> datetime | None:
        """Naive times are UTC; unparseable ones are dropped so the receive time is used."""
        try:
            parsed = handler(value)
        except ValidationError:
            return None
        if parsed is not None and parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed

    def to_event(self) -> StatusEvent:
        return StatusEvent(
            message_id=self.message_id,
            status=self.status,
            timestamp=self.timestamp or utcnow(),
            error_code=self.error_code,
            error_message=self.error_message,
        )


class WebhookAck(BaseModel):
    accepted: bool = True
    applied: bool
    orphan: bool
    status: str | None = None

    @classmethod
    def from_result(cls, result: WebhookResult) -> WebhookAck:
        return cls(
            applied=result.applied,
            orphan=result.orphan,
            status=result.status.value if result.status else None,
        )


class OrphanEventResponse(BaseModel):
    message_id: str
    status: str
    timestamp: datetime
    error_code: str | None = None
    received_at: datetime

    @classmethod
    def from_orphan(cls, orphan: OrphanEvent) -> OrphanEventResponse:
        return cls(
            message_id=orphan.event.message_id,
            status=orphan.event.status,
            timestamp=orphan.event.timestamp,
            error_code=orphan.event.error_code,
            received_at=orphan.received_at,
        )


# ============================================================================
# Tracking queries
# ============================================================================


class StatusTransitionResponse(BaseModel):
    status: str
    timestamp: datetime
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def from_transition(cls, transition: StatusTransition) -> StatusTransitionResponse:
        return cls(
            status=transition.status.value,
            timestamp=transition.timestamp,
            error_code=transition.error_code,
            error_message=transition.error_message,
        )


class TimelineResponse(BaseModel):
    message_id: str
    correlation_id: str
    channel: Channel
    status: str
    transitions: list[StatusTransitionResponse]

    @classmethod
    def from_record(cls, record: DeliveryRecord) -> TimelineResponse:
        return cls(
            message_id=record.gateway_message_id,
            correlation_id=record.correlation_id,
            channel=record.channel,
            status=record.status.value,
            transitions=[StatusTransitionResponse.from_transition(t) for t in record.transitions],
        )


class ChannelBreakdownResponse(BaseModel):
    total: int
    delivered: int
    failed: int


class DeliveryReportResponse(BaseModel):
    start: datetime
    end: datetime
    total_messages: int
    successful_deliveries: int
    failed_deliveries: int
    pending_deliveries: int
    success_rate: float = Field(description="Percentage of messages delivered or read")
    average_delivery_time: float | None = Field(
        default=None, description="Mean seconds from sent to delivered",
    )
    channel_breakdown: dict[str, ChannelBreakdownResponse]
    error_breakdown: dict[str, int]

    @classmethod
    def from_report(cls, report: DeliveryReport) -> DeliveryReportResponse:
        return cls(
            start=report.start,
            end=report.end,
            total_messages=report.total_messages,
            successful_deliveries=report.successful_deliveries,
            failed_deliveries=report.failed_deliveries,
            pending_deliveries=report.pending_deliveries,
            success_rate=report.success_rate,
            average_delivery_time=report.average_delivery_time,
            channel_breakdown={
                channel: ChannelBreakdownResponse(
                    total=b.total, delivered=b.delivered, failed=b.failed,
                )
                for channel, b in report.channel_breakdown.items()
            },
            error_breakdown=report.error_breakdown,
        )


class RecipientHistoryResponse(BaseModel):
    recipient: str
    total_notifications: int
    successful_notifications: int
    failed_notifications: int
    last_notification_at: datetime | None = None
    last_channel: Channel | None = None
    preferred_channel: Channel | None = None

    @classmethod
    def from_history(cls, history: RecipientHistory) -> RecipientHistoryResponse:
        return cls(
            recipient=history.recipient,
            total_notifications=history.total_notifications,
            successful_notifications=history.successful_notifications,
            failed_notifications=history.failed_notifications,
            last_notification_at=history.last_notification_at,
            last_channel=history.last_channel,
            preferred_channel=history.preferred_channel,
        )


# ============================================================================
# Rate limits
# ============================================================================


class RateLimitResponse(BaseModel):
    channel: str
    capacity: int
    remaining: int
    reset_time: datetime
    retry_after: int = Field(description="Seconds until the window resets")
    is_limited: bool
    daily_remaining: int | None = None

    @classmethod
    def from_info(cls, info: RateLimitInfo) -> RateLimitResponse:
        return cls(
            channel=info.channel,
            capacity=info.capacity,
            remaining=info.remaining,
            reset_time=info.reset_time,
            retry_after=seconds_until(info.reset_time),
            is_limited=info.is_limited,
            daily_remaining=info.daily_remaining,
        )


class RateLimitListResponse(BaseModel):
    protection: str = Field(description="active, or degraded when the backend is unreachable")
    channels: list[RateLimitResponse]


# ============================================================================
# Fallback
# ============================================================================


class FallbackStatsResponse(BaseModel):
    total_decisions: int
    total_attempts: int
    successful_fallbacks: int
    failed_fallbacks: int
    success_rate: float = Field(description="Percentage of channel switches that succeeded")
    top_failure_reasons: dict[str, int]

    @classmethod
    def from_stats(cls, stats: FallbackStats) -> FallbackStatsResponse:
        return cls(
            total_decisions=stats.total_decisions,
            total_attempts=stats.total_attempts,
            successful_fallbacks=stats.successful_fallbacks,
            failed_fallbacks=stats.failed_fallbacks,
            success_rate=stats.success_rate,
            top_failure_reasons=stats.top_failure_reasons,
        )


class FallbackAttemptResponse(BaseModel):
    correlation_id: str | None = None
    origin_channel: Channel
    target_channel: Channel | None = None
    should_fallback: bool
    reason: str
    delay: float
    error: ErrorDetail
    success: bool | None = None
    gateway_message_id: str | None = None
    timestamp: datetime

    @classmethod
    def from_attempt(cls, attempt: FallbackAttempt) -> FallbackAttemptResponse:
        return cls(
            correlation_id=attempt.correlation_id,
            origin_channel=attempt.origin_channel,
            target_channel=attempt.target_channel,
            should_fallback=attempt.should_fallback,
            reason=attempt.reason,
            delay=attempt.delay,
            error=ErrorDetail.from_classification(attempt.classification),
            success=attempt.success,
            gateway_message_id=attempt.gateway_message_id,
            timestamp=attempt.timestamp,
        )


__all__ = [
    "BatchSendRequest",
    "BatchSendResponse",
    "ChannelBreakdownResponse",
    "DeadLetterListResponse",
    "DeadLetterResponse",
    "DeliveryReportResponse",
    "ErrorDetail",
    "FallbackAttemptResponse",
    "FallbackStatsResponse",
    "NotificationResultResponse",
    "OrphanEventResponse",
    "RateLimitListResponse",
    "RateLimitResponse",
    "RecipientHistoryResponse",
    "SendNotificationRequest",
    "StatusTransitionResponse",
    "TimelineResponse",
    "WebhookAck",
    "WebhookStatusPayload",
]
