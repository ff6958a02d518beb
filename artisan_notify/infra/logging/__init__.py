"""Logging infrastructure.

Structured JSONL logging with automatic context injection:

    from artisan_notify.infra.logging import set_log_context
    import logging

    logger = logging.getLogger(__name__)

    set_log_context(correlation_id="5f0c...", channel="rich")
    logger.info("Dispatching notification")  # record carries both fields
"""

from artisan_notify.infra.logging.config import configure_logging, setup_logging, shutdown
from artisan_notify.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    remove_from_log_context,
    set_log_context,
)
from artisan_notify.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "clear_log_context",
    "configure_logging",
    "get_log_context",
    "remove_from_log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
