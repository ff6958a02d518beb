"""Bounded exponential-backoff retry around a single gateway call.

The executor classifies every failure and stops as soon as retrying cannot
help: the classification says ``no_retry``, ``escalate`` or ``fallback``, or
its category is validation, authentication or configuration. Otherwise it
sleeps ``min(base_delay * multiplier**attempt, max_delay)`` and tries again,
up to ``max_retries`` times.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from artisan_notify.features.notifications.errors import (
    NON_RETRYABLE_CATEGORIES,
    ErrorCategory,
    ErrorClassification,
    ErrorCode,
    RetryAction,
    classify,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]

# UNKNOWN failures are retried, but never more than this.
UNKNOWN_MAX_RETRIES = 1


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters. Delays are in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = False

    def delay_for(self, attempt: int) -> float:
        """Deterministic delay before retry number ``attempt + 1`` (0-indexed).

        Args:
            attempt: Index of the attempt that just failed.

        Returns:
            ``min(base_delay * backoff_multiplier**attempt, max_delay)``.
        """
        return min(self.base_delay * (self.backoff_multiplier**attempt), self.max_delay)


NO_RETRY_POLICY = RetryPolicy(max_retries=0, base_delay=0.0, max_delay=0.0, backoff_multiplier=1.0)

DEFAULT_RETRY_POLICIES: dict[ErrorCategory, RetryPolicy] = {
    ErrorCategory.NETWORK: RetryPolicy(max_retries=3, base_delay=1.0, max_delay=30.0),
    ErrorCategory.SERVICE: RetryPolicy(max_retries=2, base_delay=2.0, max_delay=20.0),
    ErrorCategory.RATE_LIMITING: NO_RETRY_POLICY,
    ErrorCategory.AUTHENTICATION: NO_RETRY_POLICY,
    ErrorCategory.VALIDATION: NO_RETRY_POLICY,
    ErrorCategory.CONFIGURATION: NO_RETRY_POLICY,
    ErrorCategory.USER_ERROR: NO_RETRY_POLICY,
}


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of ``RetryExecutor.execute``.

    Attributes:
        success: Whether an attempt succeeded
        value: Return value of the successful attempt
        error: Classification of the last failure
        attempts: Number of attempts made (at least 1)
        retries: Number of retries, i.e. ``attempts - 1``
    """

    success: bool
    value: T | None = None
    error: ErrorClassification | None = None
    attempts: int = 0

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)


def should_stop(classification: ErrorClassification) -> bool:
    """Whether a failure must be surfaced without another attempt."""
    return (
        classification.retry_action is not RetryAction.RETRY
        or classification.category in NON_RETRYABLE_CATEGORIES
    )


class RetryExecutor:
    """Runs an async call with bounded retry.

    Example:
        executor = RetryExecutor()
        outcome = await executor.execute(lambda: gateway.send_plain(...), RetryPolicy())
        if not outcome.success:
            print(outcome.error.code)
    """

    def __init__(
        self,
        sleep: Sleep = asyncio.sleep,
        on_retry: Callable[[ErrorClassification, int], None] | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            sleep: Awaitable sleep used for backoff (injectable for tests).
            on_retry: Optional callback called before each retry with
                (classification, retry number).
        """
        self._sleep = sleep
        self._on_retry = on_retry

    def _delay(self, policy: RetryPolicy, attempt: int) -> float:
        delay = policy.delay_for(attempt)
        if policy.jitter:
            delay = delay * (0.5 + random.random())
        return delay

    async def execute(
        self,
        attempt_fn: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
    ) -> RetryOutcome[T]:
        """Call ``attempt_fn`` until it succeeds or retrying must stop.

        Args:
            attempt_fn: Zero-argument coroutine factory performing one attempt.
            policy: Backoff policy. When None, the policy is looked up per failure
                in ``DEFAULT_RETRY_POLICIES`` by the failure's category.

        Returns:
            RetryOutcome with the value or the last classified error. Never raises
            for failures of ``attempt_fn``.
        """
        attempt = 0
        while True:
            started = time.perf_counter()
            try:
                value = await attempt_fn()
            except Exception as e:
                duration = time.perf_counter() - started
                classification = classify(e)
                effective = policy or DEFAULT_RETRY_POLICIES[classification.category]
                max_retries = effective.max_retries
                if classification.code is ErrorCode.UNKNOWN:
                    max_retries = min(max_retries, UNKNOWN_MAX_RETRIES)

                logger.info(
                    "Attempt failed",
                    extra={
                        "attempt": attempt + 1,
                        "duration_seconds": round(duration, 4),
                        "error_code": classification.code.value,
                        "error_category": classification.category.value,
                        "retry_action": classification.retry_action.value,
                    },
                )

                if should_stop(classification) or attempt >= max_retries:
                    return RetryOutcome(
                        success=False, error=classification, attempts=attempt + 1,
                    )

                delay = self._delay(effective, attempt)
                logger.warning(
                    f"Retrying after {delay:.2f}s (retry {attempt + 1}/{max_retries})",
                    extra={
                        "attempt": attempt + 1,
                        "max_retries": max_retries,
                        "delay": delay,
                        "error_code": classification.code.value,
                    },
                )
                if self._on_retry:
                    self._on_retry(classification, attempt + 1)
                await self._sleep(delay)
                attempt += 1
            else:
                logger.debug(
                    "Attempt succeeded",
                    extra={
                        "attempt": attempt + 1,
                        "duration_seconds": round(time.perf_counter() - started, 4),
                    },
                )
                return RetryOutcome(success=True, value=value, attempts=attempt + 1)


__all__ = [
    "DEFAULT_RETRY_POLICIES",
    "NO_RETRY_POLICY",
    "RetryExecutor",
    "RetryOutcome",
    "RetryPolicy",
    "should_stop",
]
