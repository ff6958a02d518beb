"""Channel fallback decisions.

``FallbackManager.decide`` answers one question after a channel attempt has
failed: should the message be retried on another channel, which one, and
after what delay? The answer comes from a declarative rule table:

1. Fallback disabled, terminal origin channel, or hop limit reached: no.
2. A rule for the exact error code, else a rule for the error category.
3. No rule: the category default. ``user_error``, ``network``, ``service``
   and ``rate_limiting`` fall back; ``validation``, ``authentication`` and
   ``configuration`` do not, since another channel would fail the same way.

Rate-limited failures fall back after ``rate_limit_delay`` so the new
channel is not hit immediately. Every decision, taken or not, is appended
to a bounded in-memory log used for fallback statistics.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from artisan_notify.features.notifications.errors import (
    ErrorCategory,
    ErrorClassification,
    ErrorCode,
)
from artisan_notify.features.notifications.models import Channel, FallbackAttempt, next_channel

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_CATEGORIES = frozenset(
    {
        ErrorCategory.USER_ERROR,
        ErrorCategory.NETWORK,
        ErrorCategory.SERVICE,
        ErrorCategory.RATE_LIMITING,
    },
)


@dataclass(frozen=True)
class FallbackRule:
    """One row of the fallback table.

    A rule with ``code`` matches that error code exactly; a rule with only
    ``category`` matches any error in the category that has no code rule.

    Attributes:
        code: Error code matched exactly
        category: Error category matched when no code rule applies
        should_fallback: Whether to switch channel
        target_channel: Channel to switch to; None means the next channel in the chain
        delay: Seconds to wait before the first attempt on the new channel;
            None uses the manager's default for the category
        max_attempts: Hop limit specific to this rule
        reason: Operator note included in decisions
    """

    code: ErrorCode | None = None
    category: ErrorCategory | None = None
    should_fallback: bool = True
    target_channel: Channel | None = None
    delay: float | None = None
    max_attempts: int | None = None
    reason: str = ""

    def __post_init__(self) -> None:
        if self.code is None and self.category is None:
            msg = "A fallback rule needs a code or a category"
            raise ValueError(msg)

    @property
    def key(self) -> str:
        return self.code.value if self.code is not None else f"category:{self.category.value}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FallbackRule:
        """Build a rule from configuration (e.g. ``NOTIFY_FALLBACK_RULES`` JSON)."""
        code = data.get("code")
        category = data.get("category")
        target = data.get("target_channel")
        delay = data.get("delay")
        max_attempts = data.get("max_attempts")
        return cls(
            code=ErrorCode(code) if code else None,
            category=ErrorCategory(category) if category else None,
            should_fallback=bool(data.get("should_fallback", True)),
            target_channel=Channel(target) if target else None,
            delay=float(delay) if delay is not None else None,
            max_attempts=int(max_attempts) if max_attempts is not None else None,
            reason=str(data.get("reason", "")),
        )


DEFAULT_FALLBACK_RULES: tuple[FallbackRule, ...] = (
    # Recipient unreachable on the rich channel
    FallbackRule(code=ErrorCode.USER_NOT_OPTED_IN, delay=0.0),
    FallbackRule(code=ErrorCode.USER_BLOCKED, delay=0.0),
    # Rich account restricted; the plain channel uses a different account
    FallbackRule(code=ErrorCode.BUSINESS_ACCOUNT_RESTRICTED, delay=1.0),
    FallbackRule(code=ErrorCode.RATE_LIMIT_EXCEEDED),
    # Transient failures, after in-channel retries are exhausted
    FallbackRule(code=ErrorCode.NETWORK_ERROR, delay=2.0, max_attempts=1),
    FallbackRule(code=ErrorCode.SERVICE_UNAVAILABLE, delay=3.0, max_attempts=1),
    # Fixing these needs an operator, not another channel
    FallbackRule(code=ErrorCode.INVALID_TEMPLATE, should_fallback=False),
    FallbackRule(code=ErrorCode.TEMPLATE_NOT_APPROVED, should_fallback=False),
    FallbackRule(code=ErrorCode.UNAUTHORIZED, should_fallback=False),
    FallbackRule(code=ErrorCode.FORBIDDEN, should_fallback=False),
    # DND registration blocks the plain channel too
    FallbackRule(code=ErrorCode.DND_NUMBER, should_fallback=False),
)


@dataclass(frozen=True)
class FallbackDecision:
    should_fallback: bool
    target_channel: Channel | None
    delay: float
    reason: str


@dataclass(frozen=True)
class FallbackStats:
    """Aggregate view of the fallback log.

    Attributes:
        total_decisions: Decisions logged, taken or not
        total_attempts: Decisions that switched channel
        successful_fallbacks: Switches whose target attempt succeeded
        failed_fallbacks: Switches whose target attempt failed
        success_rate: ``successful_fallbacks / total_attempts`` as a percentage
        top_failure_reasons: Error codes that prompted decisions, most frequent first
    """

    total_decisions: int
    total_attempts: int
    successful_fallbacks: int
    failed_fallbacks: int
    success_rate: float
    top_failure_reasons: dict[str, int]


class FallbackManager:
    """Rule-driven fallback decision engine with an in-memory decision log."""

    def __init__(
        self,
        rules: Iterable[FallbackRule] = DEFAULT_FALLBACK_RULES,
        *,
        enable_auto_fallback: bool = True,
        max_fallback_attempts: int = 2,
        default_delay: float = 1.0,
        rate_limit_delay: float = 5.0,
        log_size: int = 1000,
    ) -> None:
        """Initialize the engine.

        Args:
            rules: Rule table; later rules with the same key replace earlier ones.
            enable_auto_fallback: Global switch for automatic fallback.
            max_fallback_attempts: Channel switches allowed per message.
            default_delay: Delay for rules and defaults without their own delay.
            rate_limit_delay: Delay for rate-limited failures without a rule delay.
            log_size: Maximum number of decisions kept; oldest evicted first.
        """
        self.enable_auto_fallback = enable_auto_fallback
        self.max_fallback_attempts = max_fallback_attempts
        self.default_delay = default_delay
        self.rate_limit_delay = rate_limit_delay
        self._rules: dict[str, FallbackRule] = {}
        for rule in rules:
            self._rules[rule.key] = rule
        self._log: deque[FallbackAttempt] = deque(maxlen=log_size)

        logger.info(
            "Fallback manager initialized",
            extra={
                "auto_fallback": enable_auto_fallback,
                "max_fallback_attempts": max_fallback_attempts,
                "rules_count": len(self._rules),
            },
        )

    @property
    def rules(self) -> list[FallbackRule]:
        return list(self._rules.values())

    def add_rule(self, rule: FallbackRule) -> None:
        """Add a rule, replacing any rule for the same code or category."""
        self._rules[rule.key] = rule
        logger.info(
            "Fallback rule added",
            extra={"rule": rule.key, "should_fallback": rule.should_fallback},
        )

    def remove_rule(self, key: ErrorCode | ErrorCategory) -> bool:
        """Remove the rule for an error code or category.

        Returns:
            True if a rule was removed.
        """
        rule_key = key.value if isinstance(key, ErrorCode) else f"category:{key.value}"
        removed = self._rules.pop(rule_key, None) is not None
        if removed:
            logger.info("Fallback rule removed", extra={"rule": rule_key})
        return removed

    def find_rule(self, classification: ErrorClassification) -> FallbackRule | None:
        rule = self._rules.get(classification.code.value)
        if rule is None:
            rule = self._rules.get(f"category:{classification.category.value}")
        return rule

    def _default_delay_for(self, classification: ErrorClassification) -> float:
        if classification.category is ErrorCategory.RATE_LIMITING:
            return self.rate_limit_delay
        return self.default_delay

    def _evaluate(
        self,
        classification: ErrorClassification,
        origin_channel: Channel,
        fallback_attempt_count: int,
        enabled: bool,
        max_attempts: int | None,
    ) -> FallbackDecision:
        limit = self.max_fallback_attempts if max_attempts is None else max_attempts

        if not self.enable_auto_fallback:
            return FallbackDecision(False, None, 0.0, "Auto fallback is disabled")
        if not enabled:
            return FallbackDecision(False, None, 0.0, "Fallback disabled for this message")

        chained = next_channel(origin_channel)
        if chained is None:
            return FallbackDecision(
                False, None, 0.0, f"{origin_channel.value} is the final channel",
            )
        if fallback_attempt_count >= limit:
            return FallbackDecision(
                False, None, 0.0, f"Maximum fallback attempts ({limit}) reached",
            )

        rule = self.find_rule(classification)
        if rule is None:
            if classification.category in DEFAULT_FALLBACK_CATEGORIES:
                return FallbackDecision(
                    True,
                    chained,
                    self._default_delay_for(classification),
                    f"Default fallback for {classification.category.value} errors",
                )
            return FallbackDecision(
                False,
                None,
                0.0,
                f"{classification.category.value} errors are not channel-specific",
            )

        if rule.max_attempts is not None and fallback_attempt_count >= rule.max_attempts:
            return FallbackDecision(
                False, None, 0.0, f"Rule max attempts ({rule.max_attempts}) reached for {rule.key}",
            )

        reason = rule.reason or f"Matched rule for {rule.key}"
        if not rule.should_fallback:
            return FallbackDecision(False, None, 0.0, reason)

        target = rule.target_channel or chained
        if target is origin_channel:
            return FallbackDecision(
                False, None, 0.0, f"Rule for {rule.key} targets the failing channel",
            )
        delay = rule.delay if rule.delay is not None else self._default_delay_for(classification)
        return FallbackDecision(True, target, delay, reason)

    def decide(
        self,
        classification: ErrorClassification,
        origin_channel: Channel,
        fallback_attempt_count: int,
        correlation_id: str | None = None,
        *,
        enabled: bool = True,
        max_attempts: int | None = None,
    ) -> FallbackDecision:
        """Decide whether to retry a failed message on another channel.

        Args:
            classification: Classified failure on ``origin_channel``.
            origin_channel: Channel that just failed.
            fallback_attempt_count: Channel switches already made for this message.
            correlation_id: Message correlation id, recorded in the decision log.
            enabled: Per-message fallback switch.
            max_attempts: Per-message override of ``max_fallback_attempts``.

        Returns:
            The decision. It is also appended to the decision log.
        """
        decision = self._evaluate(
            classification, origin_channel, fallback_attempt_count, enabled, max_attempts,
        )
        self._log.append(
            FallbackAttempt(
                origin_channel=origin_channel,
                target_channel=decision.target_channel,
                classification=classification,
                should_fallback=decision.should_fallback,
                reason=decision.reason,
                delay=decision.delay,
                correlation_id=correlation_id,
            ),
        )
        logger.info(
            "Fallback decision",
            extra={
                "correlation_id": correlation_id,
                "origin_channel": origin_channel.value,
                "target_channel": decision.target_channel.value if decision.target_channel else None,
                "should_fallback": decision.should_fallback,
                "error_code": classification.code.value,
                "delay": decision.delay,
                "reason": decision.reason,
            },
        )
        return decision

    def record_outcome(
        self,
        correlation_id: str,
        success: bool,
        gateway_message_id: str | None = None,
    ) -> bool:
        """Attach the outcome on the target channel to the latest open switch.

        Returns:
            True if a pending fallback attempt was found and updated.
        """
        for attempt in reversed(self._log):
            if (
                attempt.correlation_id == correlation_id
                and attempt.should_fallback
                and attempt.success is None
            ):
                attempt.success = success
                attempt.gateway_message_id = gateway_message_id
                return True
        return False

    def _in_range(
        self, start: datetime | None, end: datetime | None,
    ) -> list[FallbackAttempt]:
        return [
            a
            for a in self._log
            if (start is None or a.timestamp >= start) and (end is None or a.timestamp <= end)
        ]

    def stats(self, start: datetime | None = None, end: datetime | None = None) -> FallbackStats:
        """Summarize logged decisions, optionally within ``[start, end]``."""
        entries = self._in_range(start, end)
        switches = [a for a in entries if a.should_fallback]
        successful = sum(1 for a in switches if a.success is True)
        failed = sum(1 for a in switches if a.success is False)
        reasons = Counter(a.classification.code.value for a in entries)
        return FallbackStats(
            total_decisions=len(entries),
            total_attempts=len(switches),
            successful_fallbacks=successful,
            failed_fallbacks=failed,
            success_rate=round(successful / len(switches) * 100, 2) if switches else 0.0,
            top_failure_reasons=dict(reasons.most_common(10)),
        )

    def recent(self, limit: int = 10) -> list[FallbackAttempt]:
        """Most recent decisions, newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._log))[:limit]

    def clear(self) -> None:
        self._log.clear()
        logger.info("Fallback log cleared")

    def prune(self, older_than: datetime) -> int:
        """Drop decisions logged before ``older_than``.

        Returns:
            Number of entries removed.
        """
        kept = [a for a in self._log if a.timestamp >= older_than]
        removed = len(self._log) - len(kept)
        if removed:
            self._log = deque(kept, maxlen=self._log.maxlen)
        return removed

    def __len__(self) -> int:
        return len(self._log)


__all__ = [
    "DEFAULT_FALLBACK_CATEGORIES",
    "DEFAULT_FALLBACK_RULES",
    "FallbackDecision",
    "FallbackManager",
    "FallbackRule",
    "FallbackStats",
]
