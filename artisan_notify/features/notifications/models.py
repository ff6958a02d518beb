"""Domain types for notification delivery.

These are plain dataclasses kept in memory by the engine; the HTTP layer
has its own pydantic schemas in ``schemas.py``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from artisan_notify.features.notifications.errors import ErrorClassification


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_correlation_id() -> str:
    return uuid.uuid4().hex


class Channel(str, Enum):
    """Messaging transports, in fallback order."""

    RICH = "rich"
    PLAIN = "plain"


# Next hop for each channel; a channel missing from the map is terminal.
CHANNEL_CHAIN: dict[Channel, Channel] = {Channel.RICH: Channel.PLAIN}


def next_channel(channel: Channel) -> Channel | None:
    return CHANNEL_CHAIN.get(channel)


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DeliveryStatus(str, Enum):
    """Lifecycle states of a dispatched message.

    ``queued < sent < delivered < read`` is the forward ordering; ``failed``
    can be reached from any non-terminal state. ``read`` and ``failed`` are
    terminal.
    """

    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.READ, DeliveryStatus.FAILED)

    def advances_from(self, current: DeliveryStatus) -> bool:
        """Whether moving from ``current`` to this status is a forward step."""
        if current.is_terminal:
            return False
        if self is DeliveryStatus.FAILED:
            return True
        return _STATUS_RANK[self] > _STATUS_RANK[current]


_STATUS_RANK = {
    DeliveryStatus.QUEUED: 0,
    DeliveryStatus.SENT: 1,
    DeliveryStatus.DELIVERED: 2,
    DeliveryStatus.READ: 3,
}


@dataclass(frozen=True)
class MessageContent:
    """Either raw text or a template reference with its parameters."""

    text: str | None = None
    template_name: str | None = None
    template_params: dict[str, str] = field(default_factory=dict)
    language: str = "en"

    @property
    def has_template(self) -> bool:
        return bool(self.template_name)


@dataclass
class Message:
    """A logical notification, stable across channel switches.

    Only ``channel`` and ``gateway_message_id`` change after creation.
    """

    recipient: str
    channel: Channel
    content: MessageContent
    priority: Priority = Priority.MEDIUM
    correlation_id: str = field(default_factory=new_correlation_id)
    gateway_message_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class StatusTransition:
    status: DeliveryStatus
    timestamp: datetime
    error_code: str | None = None
    error_message: str | None = None


@dataclass
class DeliveryRecord:
    """Delivery state for one gateway message id.

    Attributes:
        gateway_message_id: Id assigned by the gateway on acceptance
        correlation_id: Id of the logical message this attempt belongs to
        recipient: Recipient reference as given by the caller
        formatted_address: Address as sent to the gateway
        channel: Channel the message was accepted on
        status: Current status
        transitions: Applied transitions, oldest first
        error_code: Last gateway error code, diagnostic unless status is failed
        error_message: Last gateway error message
        sent_at: When the gateway accepted the message
        updated_at: When the record last changed
    """

    gateway_message_id: str
    correlation_id: str
    recipient: str
    formatted_address: str
    channel: Channel
    status: DeliveryStatus = DeliveryStatus.QUEUED
    transitions: list[StatusTransition] = field(default_factory=list)
    error_code: str | None = None
    error_message: str | None = None
    sent_at: datetime | None = None
    updated_at: datetime = field(default_factory=utcnow)

    def apply(self, transition: StatusTransition) -> None:
        """Record a transition that has already been checked as advancing."""
        self.status = transition.status
        self.transitions.append(transition)
        self.updated_at = transition.timestamp
        if transition.status is DeliveryStatus.SENT and self.sent_at is None:
            self.sent_at = transition.timestamp

    def reached_at(self, status: DeliveryStatus) -> datetime | None:
        for transition in self.transitions:
            if transition.status is status:
                return transition.timestamp
        return None


@dataclass(frozen=True)
class StatusEvent:
    """Inbound delivery status callback, already parsed from the wire."""

    message_id: str
    status: str
    timestamp: datetime = field(default_factory=utcnow)
    error_code: str | None = None
    error_message: str | None = None


@dataclass
class FallbackAttempt:
    """One fallback decision, taken or not.

    ``success`` stays None until the outcome on the target channel is known.
    """

    origin_channel: Channel
    target_channel: Channel | None
    classification: ErrorClassification
    should_fallback: bool
    reason: str
    delay: float = 0.0
    correlation_id: str | None = None
    success: bool | None = None
    gateway_message_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class NotificationRequest:
    """Caller-facing dispatch request.

    Attributes:
        to: Recipient address (E.164-like)
        message: Plain text body
        template_name: Rich channel template; selects the rich channel when set
        template_params: Template parameter values
        language: Template language code
        priority: Priority tier
        enable_fallback: Allow channel fallback for this message
        max_fallback_attempts: Override of the configured fallback hop limit
    """

    to: str
    message: str | None = None
    template_name: str | None = None
    template_params: dict[str, str] = field(default_factory=dict)
    language: str = "en"
    priority: Priority = Priority.MEDIUM
    enable_fallback: bool = True
    max_fallback_attempts: int | None = None

    def to_content(self) -> MessageContent:
        return MessageContent(
            text=self.message,
            template_name=self.template_name,
            template_params=dict(self.template_params),
            language=self.language,
        )


@dataclass(frozen=True)
class NotificationResult:
    """Final outcome of a dispatch. ``error`` is set exactly when ``success`` is False."""

    success: bool
    correlation_id: str
    channel: Channel
    message_id: str | None = None
    fallback_used: bool = False
    fallback_attempts: int = 0
    error: ErrorClassification | None = None


__all__ = [
    "CHANNEL_CHAIN",
    "Channel",
    "DeliveryRecord",
    "DeliveryStatus",
    "FallbackAttempt",
    "Message",
    "MessageContent",
    "NotificationRequest",
    "NotificationResult",
    "Priority",
    "StatusEvent",
    "StatusTransition",
    "new_correlation_id",
    "next_channel",
    "utcnow",
]
