"""Tests for structured logging infrastructure."""
from __future__ import annotations

import json
import logging
import sys

import pytest

from artisan_notify.infra.logging import (
    ContextInjectingFilter,
    JSONFormatter,
    clear_log_context,
    get_log_context,
    remove_from_log_context,
    set_log_context,
    setup_logging,
    shutdown,
)
from artisan_notify.infra.logging import config as logging_config


def _record(msg: str = "hello %s", args: tuple = ("world",), **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="artisan_notify.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _reset_context():
    clear_log_context()
    yield
    clear_log_context()


@pytest.mark.unit
class TestJSONFormatter:
    """Test suite for JSONFormatter."""

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "artisan_notify.test"
        assert data["message"] == "hello world"
        assert data["timestamp"].endswith("Z")

    def test_static_and_extra_fields(self):
        """Test that static fields and extra= attributes become top-level keys."""
        formatter = JSONFormatter(static={"service": "artisan-notify"})

        data = json.loads(formatter.format(_record(channel="rich", attempt=2)))

        assert data["service"] == "artisan-notify"
        assert data["channel"] == "rich"
        assert data["attempt"] == 2
        assert "msg" not in data
        assert "args" not in data

    def test_exception_on_single_line(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        output = JSONFormatter().format(record)

        assert "\n" not in output
        assert "ValueError: boom" in json.loads(output)["exception"]

    def test_non_serializable_values_use_str(self):
        data = json.loads(JSONFormatter().format(_record(payload=object())))

        assert data["payload"].startswith("<object object")


@pytest.mark.unit
class TestLogContext:
    """Test suite for contextvars log context."""

    def test_set_get_remove(self):
        set_log_context(correlation_id="c1", channel="rich")
        remove_from_log_context("channel")

        assert get_log_context() == {"correlation_id": "c1"}

    def test_get_returns_copy(self):
        set_log_context(correlation_id="c1")
        get_log_context()["correlation_id"] = "mutated"

        assert get_log_context()["correlation_id"] == "c1"

    def test_filter_injects_context(self):
        set_log_context(correlation_id="c1", channel="plain")
        record = _record()

        assert ContextInjectingFilter().filter(record) is True
        assert record.correlation_id == "c1"
        assert record.channel == "plain"

    def test_filter_keeps_explicit_extra(self):
        """Test that extra= values win over context values."""
        set_log_context(channel="plain")
        record = _record(channel="rich")

        ContextInjectingFilter().filter(record)

        assert record.channel == "rich"


@pytest.mark.unit
class TestSetupLogging:
    """Test suite for setup_logging and shutdown."""

    def test_idempotent_until_shutdown(self, tmp_path):
        log_file = tmp_path / "app.jsonl"
        try:
            setup_logging(console_enabled=False, file_path=str(log_file), force=True)
            handler = logging_config._queue_handler
            setup_logging(console_enabled=False, file_path=str(log_file))

            assert logging_config._queue_handler is handler
            assert handler in logging.getLogger().handlers
        finally:
            shutdown()

        assert logging_config._LOGGING_INITIALIZED is False
        assert handler not in logging.getLogger().handlers

    def test_records_written_to_file(self, tmp_path):
        """Test that context fields reach the JSONL file."""
        log_file = tmp_path / "app.jsonl"
        try:
            setup_logging(
                console_enabled=False, file_path=str(log_file), log_level="INFO", force=True,
            )
            set_log_context(correlation_id="corr-9")
            logging.getLogger("artisan_notify.test").info("Delivered", extra={"channel": "rich"})
        finally:
            shutdown()

        lines = log_file.read_text(encoding="utf-8").splitlines()
        entries = [json.loads(line) for line in lines]
        delivered = next(e for e in entries if e["message"] == "Delivered")
        assert delivered["correlation_id"] == "corr-9"
        assert delivered["channel"] == "rich"
        assert delivered["service"] == "artisan-notify"
