"""Rate limit backend health types.

The Redis limiter fails open when Redis is unreachable; this state records
that so the health endpoint can report degraded protection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class RateLimitProtectionStatus(str, Enum):
    """Status of rate limiting protection.

    Values:
        ACTIVE: Counters are enforced normally
        DEGRADED: Backend unavailable, sends are allowed without counting
    """

    ACTIVE = "active"
    DEGRADED = "degraded"


@dataclass
class RateLimitProtectionState:
    """Current state of rate limit protection.

    Attributes:
        status: Current protection status
        since: When this status began
        consecutive_failures: Number of consecutive backend failures
        last_error: Most recent error message (if any)
    """

    status: RateLimitProtectionStatus = RateLimitProtectionStatus.ACTIVE
    since: datetime = field(default_factory=lambda: datetime.now(UTC))
    consecutive_failures: int = 0
    last_error: str | None = None

    def record_success(self) -> None:
        if self.status is not RateLimitProtectionStatus.ACTIVE:
            self.status = RateLimitProtectionStatus.ACTIVE
            self.since = datetime.now(UTC)
        self.consecutive_failures = 0
        self.last_error = None

    def record_failure(self, error: str) -> None:
        if self.status is not RateLimitProtectionStatus.DEGRADED:
            self.status = RateLimitProtectionStatus.DEGRADED
            self.since = datetime.now(UTC)
        self.consecutive_failures += 1
        self.last_error = error


__all__ = [
    "RateLimitProtectionState",
    "RateLimitProtectionStatus",
]
