"""Dead-letter log for notifications that could not be delivered.

A notification lands here when every channel it was allowed to try has
failed. Entries keep the original request so an operator can requeue it once
the cause is gone, for example after a gateway outage. Requests rejected as
invalid are not kept: resending them cannot succeed.

The log is in memory and bounded; when full, the oldest entry is evicted.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime

from artisan_notify.features.notifications import metrics
from artisan_notify.features.notifications.errors import ErrorCategory, ErrorClassification
from artisan_notify.features.notifications.models import Channel, NotificationRequest, utcnow

logger = logging.getLogger(__name__)

# Failures that describe the request itself; requeueing them cannot help.
NOT_DEAD_LETTERED: frozenset[ErrorCategory] = frozenset({ErrorCategory.VALIDATION})


@dataclass
class DeadLetterEntry:
    """A notification whose delivery failed on every allowed channel.

    Attributes:
        entry_id: Correlation id of the failed dispatch
        request: The request as originally submitted
        error: Classification of the last failure
        channel: Channel of the last attempt
        fallback_attempts: Channel switches made before giving up
        requeue_count: How many times this request was requeued before
        failed_at: When the dispatch gave up
    """

    entry_id: str
    request: NotificationRequest
    error: ErrorClassification
    channel: Channel
    fallback_attempts: int = 0
    requeue_count: int = 0
    failed_at: datetime = field(default_factory=utcnow)


class DeadLetterQueue:
    """Bounded, insertion-ordered store of dead-lettered notifications.

    Example:
        queue = DeadLetterQueue(max_size=1000)
        queue.add(entry)
        for entry in queue.recent(limit=20):
            ...
    """

    def __init__(self, max_size: int = 1000) -> None:
        if max_size < 1:
            msg = "max_size must be at least 1"
            raise ValueError(msg)
        self.max_size = max_size
        self._entries: OrderedDict[str, DeadLetterEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    @staticmethod
    def accepts(error: ErrorClassification) -> bool:
        """Whether a failure with this classification is worth keeping."""
        return error.category not in NOT_DEAD_LETTERED

    def add(self, entry: DeadLetterEntry) -> None:
        self._entries[entry.entry_id] = entry
        self._entries.move_to_end(entry.entry_id)
        while len(self._entries) > self.max_size:
            evicted_id, _ = self._entries.popitem(last=False)
            logger.warning(
                "Dead-letter queue full, evicted oldest entry",
                extra={"entry_id": evicted_id, "max_size": self.max_size},
            )
        metrics.dead_letters_total.labels(category=entry.error.category.value).inc()
        metrics.dead_letter_size.set(len(self._entries))
        logger.warning(
            "Notification dead-lettered",
            extra={
                "entry_id": entry.entry_id,
                "error_code": entry.error.code.value,
                "requeue_count": entry.requeue_count,
            },
        )

    def get(self, entry_id: str) -> DeadLetterEntry | None:
        return self._entries.get(entry_id)

    def pop(self, entry_id: str) -> DeadLetterEntry | None:
        entry = self._entries.pop(entry_id, None)
        metrics.dead_letter_size.set(len(self._entries))
        return entry

    def recent(self, limit: int = 50) -> list[DeadLetterEntry]:
        """Entries newest first."""
        return list(reversed(self._entries.values()))[:limit]

    def prune(self, older_than: datetime) -> int:
        """Drop entries that failed before ``older_than``. Returns the number removed."""
        stale = [k for k, e in self._entries.items() if e.failed_at < older_than]
        for entry_id in stale:
            del self._entries[entry_id]
        if stale:
            metrics.dead_letter_size.set(len(self._entries))
            logger.info("Pruned dead-letter entries", extra={"removed": len(stale)})
        return len(stale)


__all__ = ["NOT_DEAD_LETTERED", "DeadLetterEntry", "DeadLetterQueue"]
