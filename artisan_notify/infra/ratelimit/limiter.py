"""Per-channel rate limiting.

Each channel owns one bucket refilled with a fixed one-second window: once a
full window has elapsed since the last refill, the bucket is topped up to
capacity. Windows are measured on the monotonic clock; wall time is only
used for the UTC day of the daily quota and for reported reset times. Refill
is computed lazily on every call, there is no background timer. Callers never
wait for a token; a refused ``consume`` is reported to the caller, which
decides whether to fall back.

Two implementations share the ``ChannelLimiter`` contract:

* ``ChannelRateLimiter`` keeps buckets in process memory.
* ``RedisChannelRateLimiter`` keeps counters in Redis for multi-process
  deployments, using one atomic Lua script per consume.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from redis.exceptions import RedisError

from artisan_notify.core.exceptions import ServiceUnavailableException
from artisan_notify.infra.ratelimit.status import RateLimitProtectionState

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400


class UnknownChannelError(LookupError):
    """Raised when a limiter is asked about a channel it has no bucket for."""

    def __init__(self, channel: str) -> None:
        self.channel = channel
        super().__init__(f"No rate limit bucket configured for channel '{channel}'")


@dataclass(frozen=True)
class RateLimitInfo:
    """Point-in-time view of one channel's quota.

    Attributes:
        channel: Channel name
        capacity: Tokens per window
        remaining: Tokens left in the current window
        reset_time: When the current window ends (UTC)
        is_limited: True when no token is currently available
        daily_remaining: Sends left today, or None when no daily quota is set
    """

    channel: str
    capacity: int
    remaining: int
    reset_time: datetime
    is_limited: bool
    daily_remaining: int | None = None


@dataclass
class TokenBucket:
    """Fixed-window token bucket. Invariant: ``0 <= tokens <= capacity``."""

    capacity: int
    tokens: int
    last_refill: float
    window_seconds: float = 1.0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def refill(self, now: float) -> None:
        """Top up to capacity if a full window has elapsed. Caller holds ``lock``."""
        if now - self.last_refill >= self.window_seconds:
            self.tokens = self.capacity
            self.last_refill = now

    @property
    def reset_at(self) -> float:
        return self.last_refill + self.window_seconds


class ChannelLimiter(Protocol):
    """Contract shared by the in-memory and Redis limiters."""

    protection: RateLimitProtectionState

    @property
    def channels(self) -> list[str]: ...

    async def can_send(self, channel: str) -> bool: ...

    async def consume(self, channel: str) -> bool: ...

    async def info(self, channel: str) -> RateLimitInfo: ...

    async def reset(self, channel: str) -> None: ...


class ChannelRateLimiter:
    """In-memory limiter with one ``TokenBucket`` per channel.

    ``consume`` is an atomic check-and-decrement: the bucket's lock is held
    for the refill, the check and the decrement, and nothing inside the
    critical section awaits, so concurrent tasks and threads can never take
    more than ``capacity`` tokens from one window.

    Example:
        limiter = ChannelRateLimiter({"rich": 80, "plain": 100})
        if await limiter.consume("rich"):
            ...  # send
    """

    def __init__(
        self,
        capacities: Mapping[str, int],
        *,
        daily_limit: int = 0,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize buckets at full capacity.

        Args:
            capacities: Tokens per window keyed by channel name.
            daily_limit: Total sends per UTC day across all channels; 0 disables.
            window_seconds: Refill window length.
            clock: Wall clock returning epoch seconds, used for the daily quota.
            monotonic: Clock that never goes backwards, used for refill windows.
        """
        self._clock = clock
        self._monotonic = monotonic
        now = clock()
        self._buckets = {
            channel: TokenBucket(
                capacity=capacity,
                tokens=capacity,
                last_refill=monotonic(),
                window_seconds=window_seconds,
            )
            for channel, capacity in capacities.items()
        }
        self.daily_limit = daily_limit
        self._daily_lock = threading.Lock()
        self._daily_count = 0
        self._daily_day = self._day_index(now)
        self.protection = RateLimitProtectionState()

    @property
    def channels(self) -> list[str]:
        return list(self._buckets)

    async def can_send(self, channel: str) -> bool:
        """Report whether a token is available without taking it."""
        bucket = self._bucket(channel)
        now = self._clock()
        with bucket.lock:
            bucket.refill(self._monotonic())
            has_token = bucket.tokens > 0
        return has_token and self._daily_available(now)

    async def consume(self, channel: str) -> bool:
        """Take one token from the channel's bucket.

        Returns:
            True if a token was taken, False if the window or daily quota is exhausted.
        """
        bucket = self._bucket(channel)
        now = self._clock()
        with bucket.lock:
            bucket.refill(self._monotonic())
            if bucket.tokens <= 0:
                logger.debug("Rate limit window exhausted", extra={"channel": channel})
                return False
            with self._daily_lock:
                self._roll_day(now)
                if self.daily_limit and self._daily_count >= self.daily_limit:
                    logger.warning(
                        "Daily send quota exhausted",
                        extra={"channel": channel, "daily_limit": self.daily_limit},
                    )
                    return False
                self._daily_count += 1
            bucket.tokens -= 1
            return True

    async def info(self, channel: str) -> RateLimitInfo:
        bucket = self._bucket(channel)
        now = self._clock()
        with bucket.lock:
            mono_now = self._monotonic()
            bucket.refill(mono_now)
            remaining = bucket.tokens
            reset_in = max(0.0, bucket.reset_at - mono_now)
            capacity = bucket.capacity
        daily_remaining = self._daily_remaining(now)
        return RateLimitInfo(
            channel=channel,
            capacity=capacity,
            remaining=remaining,
            reset_time=datetime.fromtimestamp(now + reset_in, tz=UTC),
            is_limited=remaining <= 0 or daily_remaining == 0,
            daily_remaining=daily_remaining,
        )

    async def reset(self, channel: str) -> None:
        """Administratively refill a channel's bucket and start a new window."""
        bucket = self._bucket(channel)
        with bucket.lock:
            bucket.tokens = bucket.capacity
            bucket.last_refill = self._monotonic()
        logger.info("Rate limit reset", extra={"channel": channel})

    def _bucket(self, channel: str) -> TokenBucket:
        try:
            return self._buckets[channel]
        except KeyError:
            raise UnknownChannelError(channel) from None

    @staticmethod
    def _day_index(now: float) -> int:
        return int(now // SECONDS_PER_DAY)

    def _roll_day(self, now: float) -> None:
        """Reset the daily counter at UTC midnight. Caller holds ``_daily_lock``."""
        day = self._day_index(now)
        if day != self._daily_day:
            self._daily_day = day
            self._daily_count = 0

    def _daily_available(self, now: float) -> bool:
        remaining = self._daily_remaining(now)
        return remaining is None or remaining > 0

    def _daily_remaining(self, now: float) -> int | None:
        if not self.daily_limit:
            return None
        with self._daily_lock:
            self._roll_day(now)
            return max(0, self.daily_limit - self._daily_count)


# Fixed window counter plus optional daily quota, evaluated atomically.
# Returns {allowed, remaining, window_ttl_ms}.
_CONSUME_SCRIPT = """
local window_key = KEYS[1]
local daily_key = KEYS[2]
local capacity = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local daily_limit = tonumber(ARGV[3])

if daily_limit > 0 then
    local used = tonumber(redis.call('GET', daily_key) or '0')
    if used >= daily_limit then
        return {0, 0, redis.call('PTTL', window_key)}
    end
end

local current = redis.call('INCR', window_key)
if current == 1 then
    redis.call('PEXPIRE', window_key, window_ms)
end
if current > capacity then
    return {0, 0, redis.call('PTTL', window_key)}
end

if daily_limit > 0 then
    if redis.call('INCR', daily_key) == 1 then
        redis.call('EXPIRE', daily_key, 90000)
    end
end
return {1, capacity - current, redis.call('PTTL', window_key)}
"""


class RedisChannelRateLimiter:
    """Redis-backed limiter with the same contract as ``ChannelRateLimiter``.

    The window counter for a channel is a Redis key that expires after one
    window; the consume script increments and checks it in a single atomic
    step, so the capacity bound holds across processes. When Redis is
    unreachable the limiter fails open and marks its protection state as
    degraded.
    """

    def __init__(
        self,
        redis: Redis,
        capacities: Mapping[str, int],
        *,
        daily_limit: int = 0,
        window_seconds: float = 1.0,
        key_prefix: str = "notify:ratelimit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis = redis
        self._capacities = dict(capacities)
        self.daily_limit = daily_limit
        self.window_ms = max(1, int(window_seconds * 1000))
        self.key_prefix = key_prefix
        self._clock = clock
        self.protection = RateLimitProtectionState()

    @property
    def channels(self) -> list[str]:
        return list(self._capacities)

    def _window_key(self, channel: str) -> str:
        return f"{self.key_prefix}:{channel}"

    def _daily_key(self, now: float) -> str:
        return f"{self.key_prefix}:daily:{int(now // SECONDS_PER_DAY)}"

    def _capacity(self, channel: str) -> int:
        try:
            return self._capacities[channel]
        except KeyError:
            raise UnknownChannelError(channel) from None

    async def consume(self, channel: str) -> bool:
        capacity = self._capacity(channel)
        now = self._clock()
        try:
            result = await self.redis.eval(
                _CONSUME_SCRIPT,
                2,
                self._window_key(channel),
                self._daily_key(now),
                capacity,
                self.window_ms,
                self.daily_limit,
            )
        except RedisError as e:
            self.protection.record_failure(str(e))
            logger.error(
                "Rate limit check failed, allowing send",
                extra={"channel": channel, "error": str(e)},
                exc_info=True,
            )
            return True

        self.protection.record_success()
        allowed = bool(int(result[0]))
        if not allowed:
            logger.debug("Rate limit window exhausted", extra={"channel": channel})
        return allowed

    async def can_send(self, channel: str) -> bool:
        info = await self.info(channel)
        return not info.is_limited

    async def info(self, channel: str) -> RateLimitInfo:
        capacity = self._capacity(channel)
        now = self._clock()
        window_key = self._window_key(channel)
        try:
            used_raw = await self.redis.get(window_key)
            ttl_ms = await self.redis.pttl(window_key)
            daily_raw = await self.redis.get(self._daily_key(now)) if self.daily_limit else None
        except RedisError as e:
            self.protection.record_failure(str(e))
            logger.error(
                "Failed to get rate limit info",
                extra={"channel": channel, "error": str(e)},
                exc_info=True,
            )
            used_raw, ttl_ms, daily_raw = None, -2, None
        else:
            self.protection.record_success()

        used = int(used_raw or 0)
        remaining = max(0, capacity - used)
        ttl = ttl_ms / 1000 if ttl_ms and ttl_ms > 0 else 0.0
        daily_remaining = (
            max(0, self.daily_limit - int(daily_raw or 0)) if self.daily_limit else None
        )
        return RateLimitInfo(
            channel=channel,
            capacity=capacity,
            remaining=remaining,
            reset_time=datetime.fromtimestamp(now + ttl, tz=UTC),
            is_limited=remaining <= 0 or daily_remaining == 0,
            daily_remaining=daily_remaining,
        )

    async def reset(self, channel: str) -> None:
        """Delete the window counter.

        Unlike ``consume`` this does not fail open.

        Raises:
            ServiceUnavailableException: If Redis cannot be reached.
        """
        self._capacity(channel)
        try:
            await self.redis.delete(self._window_key(channel))
        except RedisError as e:
            self.protection.record_failure(str(e))
            logger.error(
                "Rate limit reset failed",
                extra={"channel": channel, "error": str(e)},
                exc_info=True,
            )
            raise ServiceUnavailableException(
                "Rate limit backend unavailable", extra={"channel": channel},
            ) from e
        self.protection.record_success()
        logger.info("Rate limit reset", extra={"channel": channel})


def seconds_until(reset_time: datetime, now: float | None = None) -> int:
    """Whole seconds until ``reset_time``, rounded up, never negative."""
    current = time.time() if now is None else now
    return max(0, math.ceil(reset_time.timestamp() - current))


__all__ = [
    "ChannelLimiter",
    "ChannelRateLimiter",
    "RateLimitInfo",
    "RedisChannelRateLimiter",
    "TokenBucket",
    "UnknownChannelError",
    "seconds_until",
]
