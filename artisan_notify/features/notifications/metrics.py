"""Prometheus collectors for notification delivery."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from artisan_notify.infra.metrics.prometheus import GATEWAY_LATENCY_BUCKETS, REGISTRY

notifications_sent_total = Counter(
    "notifications_sent_total",
    "Dispatch outcomes by final channel",
    ["channel", "outcome"],
    registry=REGISTRY,
)

gateway_attempts_total = Counter(
    "notification_gateway_attempts_total",
    "Individual gateway calls by channel and result",
    ["channel", "result"],
    registry=REGISTRY,
)

gateway_request_duration_seconds = Histogram(
    "notification_gateway_request_duration_seconds",
    "Gateway call duration in seconds",
    ["channel"],
    buckets=GATEWAY_LATENCY_BUCKETS,
    registry=REGISTRY,
)

retries_total = Counter(
    "notification_retries_total",
    "Retries scheduled after a failed gateway call",
    ["category"],
    registry=REGISTRY,
)

fallback_decisions_total = Counter(
    "notification_fallback_decisions_total",
    "Fallback decisions by origin, target and decision",
    ["origin", "target", "decision"],
    registry=REGISTRY,
)

rate_limit_rejections_total = Counter(
    "notification_rate_limit_rejections_total",
    "Sends refused by the local rate limiter",
    ["channel"],
    registry=REGISTRY,
)

webhooks_total = Counter(
    "notification_webhooks_total",
    "Inbound status callbacks by mapped status and merge result",
    ["status", "result"],
    registry=REGISTRY,
)

tracked_records = Gauge(
    "notification_tracked_records",
    "Delivery records currently held by the tracker",
    registry=REGISTRY,
)

dead_letters_total = Counter(
    "notification_dead_letters_total",
    "Notifications moved to the dead-letter queue by error category",
    ["category"],
    registry=REGISTRY,
)

dead_letter_size = Gauge(
    "notification_dead_letter_size",
    "Entries currently held in the dead-letter queue",
    registry=REGISTRY,
)

batch_size = Histogram(
    "notification_batch_size",
    "Notifications per batch dispatch",
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000),
    registry=REGISTRY,
)
