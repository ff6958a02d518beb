"""Shared response schemas."""

from __future__ import annotations

from artisan_notify.core.schemas.problem_details import (
    FieldError,
    ProblemDetails,
    ValidationProblemDetails,
)

__all__ = [
    "FieldError",
    "ProblemDetails",
    "ValidationProblemDetails",
]
