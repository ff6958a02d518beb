"""CLI utilities for running async operations and formatting output."""

from artisan_notify.cli.utils.async_runner import coro
from artisan_notify.cli.utils.formatters import error, info, success, warning

__all__ = [
    "coro",
    "error",
    "info",
    "success",
    "warning",
]
