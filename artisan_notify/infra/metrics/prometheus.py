"""Shared Prometheus registry."""

from __future__ import annotations

from prometheus_client import CollectorRegistry

# Custom registry so /metrics only exposes this service's collectors.
REGISTRY = CollectorRegistry()

# Gateway round trips, 10ms to 30s (the default gateway timeout).
GATEWAY_LATENCY_BUCKETS = (
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
)
