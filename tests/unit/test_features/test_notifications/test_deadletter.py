"""Unit tests for the dead-letter queue."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from artisan_notify.features.notifications.deadletter import DeadLetterEntry, DeadLetterQueue
from artisan_notify.features.notifications.errors import ErrorCode, make_classification
from artisan_notify.features.notifications.models import Channel, NotificationRequest

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _entry(entry_id: str, failed_at: datetime = T0, code: ErrorCode = ErrorCode.NETWORK_ERROR):
    return DeadLetterEntry(
        entry_id=entry_id,
        request=NotificationRequest(to="+919876543210", message="Hi"),
        error=make_classification(code),
        channel=Channel.PLAIN,
        failed_at=failed_at,
    )


@pytest.mark.unit
class TestDeadLetterQueue:
    """Test suite for DeadLetterQueue."""

    def test_recent_is_newest_first(self):
        queue = DeadLetterQueue()
        for i in range(3):
            queue.add(_entry(f"c{i}"))

        assert [e.entry_id for e in queue.recent()] == ["c2", "c1", "c0"]
        assert [e.entry_id for e in queue.recent(limit=1)] == ["c2"]
        assert len(queue) == 3

    def test_oldest_evicted_when_full(self):
        """Test that the queue never grows past max_size."""
        queue = DeadLetterQueue(max_size=2)
        for i in range(4):
            queue.add(_entry(f"c{i}"))

        assert len(queue) == 2
        assert "c0" not in queue
        assert "c3" in queue

    def test_pop(self):
        queue = DeadLetterQueue()
        queue.add(_entry("c1"))

        assert queue.pop("c1").entry_id == "c1"
        assert queue.pop("c1") is None
        assert queue.get("c1") is None

    def test_prune(self):
        queue = DeadLetterQueue()
        queue.add(_entry("old", failed_at=T0 - timedelta(days=10)))
        queue.add(_entry("new", failed_at=T0))

        removed = queue.prune(T0 - timedelta(days=1))

        assert removed == 1
        assert [e.entry_id for e in queue.recent()] == ["new"]

    @pytest.mark.parametrize(
        ("code", "accepted"),
        [
            (ErrorCode.NETWORK_ERROR, True),
            (ErrorCode.RATE_LIMIT_EXCEEDED, True),
            (ErrorCode.DND_NUMBER, True),
            (ErrorCode.INVALID_TEMPLATE, False),
            (ErrorCode.INVALID_PARAMETERS, False),
        ],
    )
    def test_accepts(self, code, accepted):
        """Test that invalid requests are not kept for requeue."""
        assert DeadLetterQueue.accepts(make_classification(code)) is accepted

    def test_max_size_must_be_positive(self):
        with pytest.raises(ValueError, match="max_size"):
            DeadLetterQueue(max_size=0)
