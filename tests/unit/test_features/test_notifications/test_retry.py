"""Unit tests for the retry executor."""
from __future__ import annotations

import httpx
import pytest

from artisan_notify.features.notifications.errors import ErrorCategory, ErrorCode, GatewayError
from artisan_notify.features.notifications.retry import (
    DEFAULT_RETRY_POLICIES,
    RetryExecutor,
    RetryPolicy,
)


def _failing(*errors, value="ok"):
    """Coroutine factory raising ``errors`` in turn, then returning ``value``."""
    remaining = list(errors)
    calls = []

    async def attempt():
        calls.append(1)
        if remaining:
            raise remaining.pop(0)
        return value

    attempt.calls = calls
    return attempt


@pytest.mark.unit
class TestRetryPolicy:
    """Test suite for backoff delays."""

    def test_delays_grow_exponentially(self):
        """Test base * multiplier**attempt."""
        policy = RetryPolicy(base_delay=1.0, backoff_multiplier=2.0, max_delay=30.0)

        assert [policy.delay_for(i) for i in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_is_capped(self):
        """Test that delays never exceed max_delay."""
        policy = RetryPolicy(base_delay=5.0, backoff_multiplier=3.0, max_delay=20.0)

        assert policy.delay_for(5) == 20.0


@pytest.mark.unit
class TestRetryExecutor:
    """Test suite for RetryExecutor."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, fake_sleep):
        """Test that a successful call is not retried."""
        executor = RetryExecutor(sleep=fake_sleep)
        attempt = _failing()

        outcome = await executor.execute(attempt, RetryPolicy())

        assert outcome.success
        assert outcome.value == "ok"
        assert outcome.attempts == 1
        assert outcome.retries == 0
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, fake_sleep):
        """Test that network failures are retried with backoff until success."""
        executor = RetryExecutor(sleep=fake_sleep)
        attempt = _failing(httpx.ConnectError("down"), httpx.ReadTimeout("slow"))

        outcome = await executor.execute(attempt, RetryPolicy(max_retries=3, base_delay=1.0))

        assert outcome.success
        assert outcome.attempts == 3
        assert fake_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, fake_sleep):
        """Test that the last classified error is returned after max_retries."""
        executor = RetryExecutor(sleep=fake_sleep)
        errors = [GatewayError("Service unavailable", http_status=503) for _ in range(5)]
        attempt = _failing(*errors)

        outcome = await executor.execute(attempt, RetryPolicy(max_retries=2, base_delay=0.5))

        assert not outcome.success
        assert outcome.attempts == 3
        assert outcome.error.code is ErrorCode.SERVICE_UNAVAILABLE
        assert fake_sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_validation_failure_is_not_retried(self, fake_sleep):
        """Test that validation errors surface after a single attempt."""
        executor = RetryExecutor(sleep=fake_sleep)
        attempt = _failing(GatewayError("Invalid template", gateway_code="INVALID_TEMPLATE"))

        outcome = await executor.execute(attempt, RetryPolicy(max_retries=5))

        assert not outcome.success
        assert outcome.attempts == 1
        assert len(attempt.calls) == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_fallback_action_stops_retrying(self, fake_sleep):
        """Test that channel-specific failures go straight to fallback."""
        executor = RetryExecutor(sleep=fake_sleep)
        attempt = _failing(GatewayError("blocked", gateway_code="USER_BLOCKED"))

        outcome = await executor.execute(attempt, RetryPolicy(max_retries=5))

        assert outcome.error.code is ErrorCode.USER_BLOCKED
        assert outcome.attempts == 1

    @pytest.mark.asyncio
    async def test_unknown_errors_retry_once(self, fake_sleep):
        """Test that UNKNOWN failures are retried at most once."""
        executor = RetryExecutor(sleep=fake_sleep)
        attempt = _failing(RuntimeError("?"), RuntimeError("?"), RuntimeError("?"))

        outcome = await executor.execute(attempt, RetryPolicy(max_retries=5))

        assert not outcome.success
        assert outcome.error.code is ErrorCode.UNKNOWN
        assert outcome.attempts == 2

    @pytest.mark.asyncio
    async def test_category_policy_used_without_explicit_policy(self, fake_sleep):
        """Test that per-category defaults apply when no policy is passed."""
        executor = RetryExecutor(sleep=fake_sleep)
        network = DEFAULT_RETRY_POLICIES[ErrorCategory.NETWORK]
        errors = [httpx.ConnectError("down") for _ in range(10)]

        outcome = await executor.execute(_failing(*errors))

        assert outcome.attempts == network.max_retries + 1

    @pytest.mark.asyncio
    async def test_rate_limited_is_not_retried(self, fake_sleep):
        """Test that a gateway 429 goes straight back for fallback."""
        executor = RetryExecutor(sleep=fake_sleep)
        attempt = _failing(GatewayError("Too many requests", http_status=429), value="late")

        outcome = await executor.execute(attempt)

        assert DEFAULT_RETRY_POLICIES[ErrorCategory.RATE_LIMITING].max_retries == 0
        assert not outcome.success
        assert outcome.error.code is ErrorCode.RATE_LIMIT_EXCEEDED
        assert outcome.attempts == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_on_retry_callback(self, fake_sleep):
        """Test that the retry hook sees each retry."""
        seen = []
        executor = RetryExecutor(
            sleep=fake_sleep, on_retry=lambda c, n: seen.append((c.code, n)),
        )

        await executor.execute(
            _failing(httpx.ConnectError("a"), httpx.ConnectError("b")),
            RetryPolicy(max_retries=3),
        )

        assert seen == [(ErrorCode.NETWORK_ERROR, 1), (ErrorCode.NETWORK_ERROR, 2)]

    @pytest.mark.asyncio
    async def test_jitter_stays_within_bounds(self, fake_sleep):
        """Test that jittered delays stay within 50-150% of the base delay."""
        executor = RetryExecutor(sleep=fake_sleep)

        await executor.execute(
            _failing(httpx.ConnectError("a")),
            RetryPolicy(max_retries=1, base_delay=2.0, jitter=True),
        )

        assert 1.0 <= fake_sleep.delays[0] <= 3.0
