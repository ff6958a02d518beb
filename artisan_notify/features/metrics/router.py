"""Prometheus metrics endpoint.

Exposes the collectors registered on the service registry: dispatch
outcomes, gateway attempts and latency, retries, fallback decisions,
rate-limit rejections, webhook merges and the tracked record gauge.
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from artisan_notify.infra.metrics.prometheus import REGISTRY

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )
