"""Delivery status tracking.

Every message accepted by the gateway gets a ``DeliveryRecord``. Status
callbacks from the gateway arrive asynchronously, possibly duplicated or out
of order, and are merged monotonically: an event is applied only when it
moves the record forward along ``queued < sent < delivered < read`` (or to
``failed`` from a non-terminal state). Anything else is ignored, which makes
webhook ingestion idempotent.

Events for unknown message ids (never tracked here, or already pruned) are
kept in a bounded orphan buffer for diagnostics and never raise.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import Counter, defaultdict, deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime

from artisan_notify.features.notifications import metrics
from artisan_notify.features.notifications.models import (
    Channel,
    DeliveryRecord,
    DeliveryStatus,
    StatusEvent,
    StatusTransition,
    utcnow,
)
from artisan_notify.features.notifications.store import DeliveryRecordStore
from artisan_notify.features.notifications.validation import mask_address

logger = logging.getLogger(__name__)

_STATUS_ALIASES: dict[str, DeliveryStatus] = {
    "queued": DeliveryStatus.QUEUED,
    "enqueued": DeliveryStatus.SENT,
    "submitted": DeliveryStatus.SENT,
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.READ,
    "seen": DeliveryStatus.READ,
    "failed": DeliveryStatus.FAILED,
    "rejected": DeliveryStatus.FAILED,
    "error": DeliveryStatus.FAILED,
    "undelivered": DeliveryStatus.FAILED,
}

SUCCESS_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.READ})


def map_gateway_status(raw: str | None) -> DeliveryStatus:
    """Map a gateway status string to a delivery status; unknown values map to ``sent``."""
    if not raw:
        return DeliveryStatus.SENT
    return _STATUS_ALIASES.get(raw.strip().lower(), DeliveryStatus.SENT)


@dataclass(frozen=True)
class WebhookResult:
    """Outcome of merging one status event.

    Attributes:
        applied: The event advanced the record
        orphan: No record exists for the event's message id
        status: Record status after the merge (None for orphans)
    """

    applied: bool
    orphan: bool
    status: DeliveryStatus | None


@dataclass(frozen=True)
class OrphanEvent:
    event: StatusEvent
    received_at: datetime


@dataclass(frozen=True)
class ChannelBreakdown:
    total: int = 0
    delivered: int = 0
    failed: int = 0


@dataclass(frozen=True)
class DeliveryReport:
    """Aggregate delivery figures for records sent within ``[start, end]``.

    ``success_rate`` is a percentage; ``average_delivery_time`` is the mean
    number of seconds between ``sent`` and ``delivered`` (or ``read`` when the
    delivered callback never arrived), None when nothing was delivered.
    """

    start: datetime
    end: datetime
    total_messages: int
    successful_deliveries: int
    failed_deliveries: int
    pending_deliveries: int
    success_rate: float
    average_delivery_time: float | None
    channel_breakdown: dict[str, ChannelBreakdown] = field(default_factory=dict)
    error_breakdown: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class RecipientHistory:
    recipient: str
    total_notifications: int
    successful_notifications: int
    failed_notifications: int
    last_notification_at: datetime | None
    last_channel: Channel | None
    preferred_channel: Channel | None


@dataclass
class _RecordLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class DeliveryTracker:
    """Owns delivery records and merges status callbacks into them.

    Updates to one record are serialized by a per-record ``asyncio.Lock``;
    updates to different records proceed concurrently. A lock lives only
    while some task holds or waits for it.
    """

    def __init__(
        self,
        store: DeliveryRecordStore,
        *,
        orphan_buffer_size: int = 500,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self._clock = clock
        self._locks: dict[str, _RecordLock] = {}
        self._orphans: deque[OrphanEvent] = deque(maxlen=orphan_buffer_size)

    @contextlib.asynccontextmanager
    async def _record_lock(self, message_id: str) -> AsyncIterator[None]:
        entry = self._locks.get(message_id)
        if entry is None:
            entry = self._locks[message_id] = _RecordLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[message_id]

    async def track_message(
        self,
        gateway_message_id: str,
        recipient_ref: str,
        channel: Channel,
        formatted_address: str,
        correlation_id: str | None = None,
    ) -> DeliveryRecord:
        """Register a message the gateway has just accepted.

        The record is created in ``queued`` and immediately advanced to ``sent``.
        Tracking the same id twice keeps the existing record.
        """
        async with self._record_lock(gateway_message_id):
            existing = await self.store.get(gateway_message_id)
            if existing is not None:
                logger.debug(
                    "Message already tracked",
                    extra={"gateway_message_id": gateway_message_id},
                )
                return existing

            now = self._clock()
            record = DeliveryRecord(
                gateway_message_id=gateway_message_id,
                correlation_id=correlation_id or gateway_message_id,
                recipient=recipient_ref,
                formatted_address=formatted_address,
                channel=channel,
                updated_at=now,
            )
            record.apply(StatusTransition(DeliveryStatus.QUEUED, now))
            record.apply(StatusTransition(DeliveryStatus.SENT, now))
            await self.store.save(record)

        metrics.tracked_records.set(await self.store.count())
        logger.info(
            "Tracking delivery",
            extra={
                "gateway_message_id": gateway_message_id,
                "correlation_id": record.correlation_id,
                "channel": channel.value,
                "recipient": mask_address(formatted_address),
            },
        )
        return record

    async def process_webhook(self, event: StatusEvent) -> WebhookResult:
        """Merge one status callback.

        Returns:
            WebhookResult describing whether the event was applied, ignored or orphaned.
        """
        new_status = map_gateway_status(event.status)
        async with self._record_lock(event.message_id):
            record = await self.store.get(event.message_id)
            if record is None:
                result = WebhookResult(applied=False, orphan=True, status=None)
            elif not new_status.advances_from(record.status):
                result = WebhookResult(applied=False, orphan=False, status=record.status)
            else:
                record.apply(
                    StatusTransition(
                        status=new_status,
                        timestamp=event.timestamp,
                        error_code=event.error_code,
                        error_message=event.error_message,
                    ),
                )
                # On non-failed statuses an error code is diagnostic only.
                if event.error_code or event.error_message:
                    record.error_code = event.error_code
                    record.error_message = event.error_message
                await self.store.save(record)
                result = WebhookResult(applied=True, orphan=False, status=new_status)

        if result.orphan:
            self._orphans.append(OrphanEvent(event=event, received_at=self._clock()))
            metrics.webhooks_total.labels(status=new_status.value, result="orphan").inc()
            logger.warning(
                "Status event for unknown message",
                extra={"gateway_message_id": event.message_id, "raw_status": event.status},
            )
        elif result.applied:
            metrics.webhooks_total.labels(status=new_status.value, result="applied").inc()
            logger.info(
                "Delivery status updated",
                extra={
                    "gateway_message_id": event.message_id,
                    "status": new_status.value,
                    "error_code": event.error_code,
                },
            )
        else:
            metrics.webhooks_total.labels(status=new_status.value, result="ignored").inc()
            logger.debug(
                "Stale or duplicate status event ignored",
                extra={
                    "gateway_message_id": event.message_id,
                    "event_status": new_status.value,
                    "current_status": result.status.value if result.status else None,
                },
            )
        return result

    async def get_record(self, message_id: str) -> DeliveryRecord | None:
        return await self.store.get(message_id)

    async def get_delivery_timeline(self, message_id: str) -> list[StatusTransition]:
        """Applied transitions for one message, oldest first; empty for unknown ids."""
        record = await self.store.get(message_id)
        return list(record.transitions) if record else []

    def orphan_events(self, limit: int = 50) -> list[OrphanEvent]:
        """Most recent orphaned events, newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._orphans))[:limit]

    async def get_delivery_report(self, start: datetime, end: datetime) -> DeliveryReport:
        """Aggregate records whose ``sent`` timestamp falls within ``[start, end]``."""
        records = [
            r for r in await self.store.all_records()
            if r.sent_at is not None and start <= r.sent_at <= end
        ]

        successful = [r for r in records if r.status in SUCCESS_STATUSES]
        failed = [r for r in records if r.status is DeliveryStatus.FAILED]

        durations = []
        for record in successful:
            delivered_at = record.reached_at(DeliveryStatus.DELIVERED) or record.reached_at(
                DeliveryStatus.READ,
            )
            if delivered_at is not None and record.sent_at is not None:
                durations.append(max(0.0, (delivered_at - record.sent_at).total_seconds()))

        by_channel: dict[str, Counter[str]] = defaultdict(Counter)
        for record in records:
            counts = by_channel[record.channel.value]
            counts["total"] += 1
            if record.status in SUCCESS_STATUSES:
                counts["delivered"] += 1
            elif record.status is DeliveryStatus.FAILED:
                counts["failed"] += 1

        errors = Counter(r.error_code or "UNKNOWN" for r in failed)

        total = len(records)
        return DeliveryReport(
            start=start,
            end=end,
            total_messages=total,
            successful_deliveries=len(successful),
            failed_deliveries=len(failed),
            pending_deliveries=total - len(successful) - len(failed),
            success_rate=round(len(successful) / total * 100, 2) if total else 0.0,
            average_delivery_time=round(sum(durations) / len(durations), 3) if durations else None,
            channel_breakdown={
                channel: ChannelBreakdown(
                    total=c["total"], delivered=c["delivered"], failed=c["failed"],
                )
                for channel, c in by_channel.items()
            },
            error_breakdown=dict(errors.most_common()),
        )

    async def get_recipient_history(self, recipient: str) -> RecipientHistory:
        """Summarize notifications sent to one recipient.

        The preferred channel is the one with the best delivery rate, ties
        broken by volume.
        """
        records = await self.store.by_recipient(recipient)
        successful = sum(1 for r in records if r.status in SUCCESS_STATUSES)
        failed = sum(1 for r in records if r.status is DeliveryStatus.FAILED)
        last = max(records, key=lambda r: r.sent_at or r.updated_at, default=None)

        per_channel: dict[Channel, list[int]] = defaultdict(lambda: [0, 0])
        for record in records:
            per_channel[record.channel][0] += 1
            if record.status in SUCCESS_STATUSES:
                per_channel[record.channel][1] += 1
        preferred = max(
            per_channel,
            key=lambda ch: (per_channel[ch][1] / per_channel[ch][0], per_channel[ch][0]),
            default=None,
        )

        return RecipientHistory(
            recipient=recipient,
            total_notifications=len(records),
            successful_notifications=successful,
            failed_notifications=failed,
            last_notification_at=(last.sent_at or last.updated_at) if last else None,
            last_channel=last.channel if last else None,
            preferred_channel=preferred,
        )

    async def prune(self, older_than: datetime) -> int:
        """Evict records and orphans not updated since ``older_than``.

        Returns:
            Number of delivery records removed.
        """
        stale = await self.store.updated_before(older_than)
        removed = await self.store.delete_many(r.gateway_message_id for r in stale)

        kept = [o for o in self._orphans if o.received_at >= older_than]
        orphans_removed = len(self._orphans) - len(kept)
        if orphans_removed:
            self._orphans = deque(kept, maxlen=self._orphans.maxlen)

        metrics.tracked_records.set(await self.store.count())
        if removed or orphans_removed:
            logger.info(
                "Pruned delivery records",
                extra={"records_removed": removed, "orphans_removed": orphans_removed},
            )
        return removed


__all__ = [
    "ChannelBreakdown",
    "DeliveryReport",
    "DeliveryTracker",
    "OrphanEvent",
    "RecipientHistory",
    "WebhookResult",
    "map_gateway_status",
]
