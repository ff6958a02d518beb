"""Metrics infrastructure for Prometheus monitoring."""

from __future__ import annotations

from prometheus_client import generate_latest

from artisan_notify.infra.metrics.prometheus import GATEWAY_LATENCY_BUCKETS, REGISTRY

__all__ = [
    "GATEWAY_LATENCY_BUCKETS",
    "REGISTRY",
    "generate_latest",
]
