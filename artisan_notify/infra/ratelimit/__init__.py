"""Per-channel rate limiting."""
from __future__ import annotations

from artisan_notify.infra.ratelimit.limiter import (
    ChannelLimiter,
    ChannelRateLimiter,
    RateLimitInfo,
    RedisChannelRateLimiter,
    TokenBucket,
    UnknownChannelError,
    seconds_until,
)
from artisan_notify.infra.ratelimit.status import (
    RateLimitProtectionState,
    RateLimitProtectionStatus,
)

__all__ = [
    "ChannelLimiter",
    "ChannelRateLimiter",
    "RateLimitInfo",
    "RateLimitProtectionState",
    "RateLimitProtectionStatus",
    "RedisChannelRateLimiter",
    "TokenBucket",
    "UnknownChannelError",
    "seconds_until",
]
