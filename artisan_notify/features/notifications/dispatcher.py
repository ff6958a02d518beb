"""Notification dispatch with retry and channel fallback.

One ``send`` call owns one logical message. It starts on the rich channel
when a template is supplied (plain otherwise) and, per channel, validates
the request, takes a rate-limit token and sends through the retry executor.
When a channel attempt fails, the fallback engine decides whether to wait
and switch to the next channel. The dispatcher is the only place failures
become caller-visible results; it never raises for a delivery failure.

Terminal failures are kept in the dead-letter queue, when one is configured,
and can be requeued from there. ``send_batch`` dispatches many requests
concurrently, starting higher-priority ones first.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from artisan_notify.features.notifications import metrics
from artisan_notify.features.notifications.channels.base import ChannelGateway, GatewayResponse
from artisan_notify.features.notifications.deadletter import DeadLetterEntry, DeadLetterQueue
from artisan_notify.features.notifications.errors import (
    ClassifiedError,
    ErrorClassification,
    ErrorCode,
    make_classification,
)
from artisan_notify.features.notifications.fallback import FallbackManager
from artisan_notify.features.notifications.models import (
    Channel,
    Message,
    NotificationRequest,
    NotificationResult,
    Priority,
)
from artisan_notify.features.notifications.retry import RetryExecutor, RetryOutcome, RetryPolicy
from artisan_notify.features.notifications.store import TemplateRenderError, TemplateStore
from artisan_notify.features.notifications.tracker import DeliveryTracker
from artisan_notify.features.notifications.validation import (
    mask_address,
    validate_recipient,
    validate_template_request,
    validate_text,
)
from artisan_notify.infra.logging import remove_from_log_context, set_log_context
from artisan_notify.infra.ratelimit import ChannelLimiter

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

# Lower sorts first.
PRIORITY_ORDER: dict[Priority, int] = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


@dataclass(frozen=True)
class _PreparedSend:
    address: str
    call: Callable[[], Awaitable[GatewayResponse]]


def _invalid(code: ErrorCode, message: str) -> ClassifiedError:
    return ClassifiedError(make_classification(code, message))


class NotificationDispatcher:
    """Sends notifications across channels.

    Args:
        gateway: Transport for both channels.
        limiter: Per-channel rate limiter.
        retry_executor: Bounded retry around each gateway call.
        fallback_manager: Channel fallback decision engine.
        tracker: Delivery tracker the accepted message is registered with.
        template_store: Template lookup; when None, rich templates are passed
            to the gateway unchecked and plain sends need raw text.
        retry_policy: Policy for every gateway call; None selects the
            per-category defaults.
        max_fallback_attempts: Channel switches allowed per message.
        sleep: Awaitable sleep used for fallback delays.
        dead_letters: Queue receiving terminally failed requests; None disables it.
        batch_concurrency: Sends in flight at once during ``send_batch``.
    """

    def __init__(
        self,
        gateway: ChannelGateway,
        limiter: ChannelLimiter,
        retry_executor: RetryExecutor,
        fallback_manager: FallbackManager,
        tracker: DeliveryTracker,
        template_store: TemplateStore | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
        max_fallback_attempts: int = 2,
        sleep: Sleep = asyncio.sleep,
        dead_letters: DeadLetterQueue | None = None,
        batch_concurrency: int = 10,
    ) -> None:
        self.gateway = gateway
        self.limiter = limiter
        self.retry_executor = retry_executor
        self.fallback_manager = fallback_manager
        self.tracker = tracker
        self.template_store = template_store
        self.retry_policy = retry_policy
        self.max_fallback_attempts = max_fallback_attempts
        self._sleep = sleep
        self.dead_letters = dead_letters
        self.batch_concurrency = batch_concurrency

    async def send(self, request: NotificationRequest) -> NotificationResult:
        """Deliver one notification.

        Returns:
            NotificationResult; ``error`` carries the last classification on failure.
        """
        return await self._dispatch(request, requeue_count=0)

    async def send_batch(
        self,
        requests: Sequence[NotificationRequest],
        *,
        concurrency: int | None = None,
    ) -> list[NotificationResult]:
        """Deliver many notifications concurrently.

        At most ``concurrency`` sends are in flight at once. Requests start in
        priority order (high, medium, low; submission order within a tier),
        so under a tight rate limit the high-priority ones take the tokens.

        Returns:
            One result per request, in the order the requests were given.
        """
        if not requests:
            return []
        semaphore = asyncio.Semaphore(concurrency or self.batch_concurrency)
        order = sorted(range(len(requests)), key=lambda i: PRIORITY_ORDER[requests[i].priority])

        async def send_one(request: NotificationRequest) -> NotificationResult:
            async with semaphore:
                return await self.send(request)

        outcomes = await asyncio.gather(*(send_one(requests[i]) for i in order))
        by_index = dict(zip(order, outcomes, strict=True))
        results = [by_index[i] for i in range(len(requests))]

        metrics.batch_size.observe(len(requests))
        succeeded = sum(1 for r in results if r.success)
        logger.info(
            "Batch dispatched",
            extra={
                "total": len(results),
                "succeeded": succeeded,
                "failed": len(results) - succeeded,
            },
        )
        return results

    async def requeue(self, entry_id: str) -> NotificationResult | None:
        """Resend a dead-lettered request.

        The entry leaves the queue before the send; if delivery fails again it
        is dead-lettered anew with its requeue count incremented.

        Returns:
            The new result, or None when no entry has this id.
        """
        if self.dead_letters is None:
            return None
        entry = self.dead_letters.pop(entry_id)
        if entry is None:
            return None
        logger.info(
            "Requeueing dead-lettered notification",
            extra={"entry_id": entry_id, "requeue_count": entry.requeue_count + 1},
        )
        return await self._dispatch(entry.request, requeue_count=entry.requeue_count + 1)

    async def _dispatch(
        self, request: NotificationRequest, requeue_count: int,
    ) -> NotificationResult:
        channel = Channel.RICH if request.template_name else Channel.PLAIN
        message = Message(
            recipient=request.to,
            channel=channel,
            content=request.to_content(),
            priority=request.priority,
        )
        max_fallbacks = (
            self.max_fallback_attempts
            if request.max_fallback_attempts is None
            else request.max_fallback_attempts
        )
        set_log_context(correlation_id=message.correlation_id, channel=channel.value)
        logger.info(
            "Dispatching notification",
            extra={
                "recipient": mask_address(request.to),
                "priority": request.priority.value,
                "has_template": message.content.has_template,
            },
        )

        try:
            fallback_attempts = 0
            last_error: ErrorClassification | None = None
            while fallback_attempts <= max_fallbacks:
                outcome, address = await self._attempt_channel(message)

                if outcome.success and outcome.value is not None:
                    return await self._succeeded(
                        message, outcome.value, address, fallback_attempts,
                    )

                last_error = outcome.error or make_classification(ErrorCode.UNKNOWN)
                if fallback_attempts:
                    self.fallback_manager.record_outcome(message.correlation_id, False)

                decision = self.fallback_manager.decide(
                    last_error,
                    message.channel,
                    fallback_attempts,
                    message.correlation_id,
                    enabled=request.enable_fallback,
                    max_attempts=max_fallbacks,
                )
                metrics.fallback_decisions_total.labels(
                    origin=message.channel.value,
                    target=decision.target_channel.value if decision.target_channel else "none",
                    decision="fallback" if decision.should_fallback else "stop",
                ).inc()
                if not decision.should_fallback or decision.target_channel is None:
                    break

                if decision.delay > 0:
                    await self._sleep(decision.delay)
                message.channel = decision.target_channel
                fallback_attempts += 1
                set_log_context(channel=message.channel.value)
                logger.info(
                    "Falling back to next channel",
                    extra={
                        "fallback_attempt": fallback_attempts,
                        "error_code": last_error.code.value,
                        "delay": decision.delay,
                    },
                )

            metrics.notifications_sent_total.labels(
                channel=message.channel.value, outcome="failed",
            ).inc()
            logger.warning(
                "Notification delivery failed",
                extra={
                    "error_code": last_error.code.value if last_error else None,
                    "error_category": last_error.category.value if last_error else None,
                    "fallback_attempts": fallback_attempts,
                },
            )
            result = NotificationResult(
                success=False,
                correlation_id=message.correlation_id,
                channel=message.channel,
                fallback_used=fallback_attempts > 0,
                fallback_attempts=fallback_attempts,
                error=last_error or make_classification(ErrorCode.UNKNOWN),
            )
            self._dead_letter(request, result, requeue_count)
            return result
        finally:
            remove_from_log_context("correlation_id", "channel")

    def _dead_letter(
        self, request: NotificationRequest, result: NotificationResult, requeue_count: int,
    ) -> None:
        if self.dead_letters is None or result.error is None:
            return
        if not self.dead_letters.accepts(result.error):
            return
        self.dead_letters.add(
            DeadLetterEntry(
                entry_id=result.correlation_id,
                request=request,
                error=result.error,
                channel=result.channel,
                fallback_attempts=result.fallback_attempts,
                requeue_count=requeue_count,
            ),
        )

    async def _succeeded(
        self,
        message: Message,
        response: GatewayResponse,
        address: str,
        fallback_attempts: int,
    ) -> NotificationResult:
        message.gateway_message_id = response.message_id
        await self.tracker.track_message(
            response.message_id,
            message.recipient,
            message.channel,
            address,
            correlation_id=message.correlation_id,
        )
        if fallback_attempts:
            self.fallback_manager.record_outcome(
                message.correlation_id, True, response.message_id,
            )
        metrics.notifications_sent_total.labels(
            channel=message.channel.value, outcome="sent",
        ).inc()
        logger.info(
            "Notification sent",
            extra={
                "gateway_message_id": response.message_id,
                "fallback_attempts": fallback_attempts,
            },
        )
        return NotificationResult(
            success=True,
            correlation_id=message.correlation_id,
            channel=message.channel,
            message_id=response.message_id,
            fallback_used=fallback_attempts > 0,
            fallback_attempts=fallback_attempts,
        )

    async def _attempt_channel(
        self, message: Message,
    ) -> tuple[RetryOutcome[GatewayResponse], str | None]:
        """Validate, rate-limit and send on the message's current channel."""
        try:
            prepared = await self._prepare(message)
        except ClassifiedError as e:
            logger.info(
                "Request is not valid for channel",
                extra={"error_code": e.classification.code.value, "detail": e.classification.message},
            )
            return RetryOutcome(success=False, error=e.classification), None

        if not await self.limiter.consume(message.channel.value):
            metrics.rate_limit_rejections_total.labels(channel=message.channel.value).inc()
            logger.warning("Rate limit exceeded for channel")
            error = make_classification(
                ErrorCode.RATE_LIMIT_EXCEEDED,
                f"Rate limit exceeded for {message.channel.value} channel",
            )
            return RetryOutcome(success=False, error=error), prepared.address

        outcome = await self.retry_executor.execute(prepared.call, self.retry_policy)
        return outcome, prepared.address

    async def _prepare(self, message: Message) -> _PreparedSend:
        """Build the gateway call for the current channel.

        Raises:
            ClassifiedError: Validation-category failure for this channel.
        """
        content = message.content
        address = validate_recipient(message.recipient, message.channel)

        if message.channel is Channel.RICH:
            if not content.template_name:
                raise _invalid(ErrorCode.INVALID_TEMPLATE, "Rich channel requires a template")
            validate_template_request(
                content.template_name, content.language, content.template_params,
            )
            if self.template_store is not None:
                template = await self.template_store.get(content.template_name, content.language)
                if template is None:
                    raise _invalid(
                        ErrorCode.INVALID_TEMPLATE,
                        f"Template not found: {content.template_name}",
                    )
                if not template.approved:
                    raise _invalid(
                        ErrorCode.TEMPLATE_NOT_APPROVED,
                        f"Template not approved: {content.template_name}",
                    )
                missing = template.missing_params(content.template_params)
                if missing:
                    raise _invalid(
                        ErrorCode.INVALID_PARAMETERS,
                        f"Missing template parameters: {', '.join(missing)}",
                    )

            name, params, language = content.template_name, dict(content.template_params), content.language
            return _PreparedSend(
                address=address,
                call=lambda: self.gateway.send_rich(address, name, params, language),
            )

        text = validate_text(await self._plain_text(message), Channel.PLAIN)
        return _PreparedSend(address=address, call=lambda: self.gateway.send_plain(address, text))

    async def _plain_text(self, message: Message) -> str | None:
        """Raw text when given, else the template rendered to text."""
        content = message.content
        if content.text and content.text.strip():
            return content.text
        if not content.has_template:
            return content.text
        if self.template_store is None:
            raise _invalid(
                ErrorCode.INVALID_TEMPLATE,
                "No message text and no template store to render the template",
            )
        template = await self.template_store.get(content.template_name or "", content.language)
        if template is None:
            raise _invalid(
                ErrorCode.INVALID_TEMPLATE, f"Template not found: {content.template_name}",
            )
        try:
            return self.template_store.render(template, content.template_params)
        except TemplateRenderError as e:
            raise _invalid(ErrorCode.INVALID_PARAMETERS, str(e)) from e


__all__ = ["NotificationDispatcher"]
