"""Pydantic schemas for health endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class LivenessResponse(BaseModel):
    status: Literal["alive"] = "alive"
    service: str
    version: str
    timestamp: datetime


class ReadinessResponse(BaseModel):
    """Readiness of the notification engine.

    ``rate_limit_protection`` is ``degraded`` while the rate-limit backend is
    unreachable and sends are let through uncounted.
    """

    status: Literal["ready", "degraded", "not_ready"]
    timestamp: datetime
    rate_limit_backend: str | None = None
    rate_limit_protection: str | None = None
    retention_sweeper_running: bool = False
    tracked_records: int = Field(default=0, ge=0)
