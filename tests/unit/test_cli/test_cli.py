"""Tests for the artisan-notify command line interface."""
from __future__ import annotations

import json

import click
import pytest
from click.testing import CliRunner

from artisan_notify import __version__
from artisan_notify.cli.commands import send as send_module
from artisan_notify.cli.main import cli
from artisan_notify.core.settings import clear_all_caches
from artisan_notify.features.notifications.errors import GatewayError


@pytest.fixture
def runner():
    clear_all_caches()
    yield CliRunner()
    clear_all_caches()


@pytest.fixture
def patched_engine(monkeypatch, engine):
    """Route the send command through the fake-gateway engine."""
    monkeypatch.setattr(
        send_module.NotificationEngine, "from_settings", lambda *args, **kwargs: engine,
    )
    return engine


@pytest.mark.unit
class TestCliGroup:
    """Test suite for the top-level command group."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("serve", "send", "config"):
            assert command in result.output


@pytest.mark.unit
class TestConfigShow:
    """Test suite for `config show`."""

    def test_json_masks_secrets(self, runner, monkeypatch):
        monkeypatch.setenv("GATEWAY_API_KEY", "live-key-123")

        result = runner.invoke(cli, ["config", "show", "--format", "json"])

        assert result.exit_code == 0
        assert "live-key-123" not in result.output
        assert '"api_key": "***"' in result.output
        assert '"notifications"' in result.output

    def test_show_secrets(self, runner, monkeypatch):
        monkeypatch.setenv("GATEWAY_API_KEY", "live-key-123")

        result = runner.invoke(cli, ["config", "show", "--format", "yaml", "--show-secrets"])

        assert result.exit_code == 0
        assert "api_key: live-key-123" in result.output
        assert "Secrets are hidden" not in result.output

    def test_table_sections(self, runner):
        result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0
        for section in ("[APP]", "[LOGGING]", "[GATEWAY]", "[NOTIFICATIONS]"):
            assert section in result.output

    def test_invalid_configuration(self, runner, monkeypatch):
        monkeypatch.setenv("NOTIFY_RICH_RATE_LIMIT", "0")

        result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


@pytest.mark.unit
class TestSendCommand:
    """Test suite for `send`."""

    def test_requires_content(self, runner):
        result = runner.invoke(cli, ["send", "--to", "+919876543210"])

        assert result.exit_code == 2
        assert "Provide --message" in result.output

    def test_bad_param(self, runner):
        result = runner.invoke(
            cli, ["send", "--to", "+919876543210", "--template", "order_shipped", "--param", "oops"],
        )

        assert result.exit_code == 2
        assert "KEY=VALUE" in result.output

    def test_template_send(self, runner, patched_engine, fake_gateway):
        result = runner.invoke(
            cli,
            [
                "send",
                "--to", "+919876543210",
                "--template", "order_shipped",
                "--param", "name=Asha",
                "--param", "order_id=42",
            ],
        )

        assert result.exit_code == 0
        assert '"channel": "rich"' in result.output
        assert "Sent on rich channel" in result.output
        assert fake_gateway.calls[0].payload["params"] == {"name": "Asha", "order_id": "42"}

    def test_failed_send_exits_nonzero(self, runner, patched_engine, fake_gateway):
        fake_gateway.script("plain", GatewayError("DND", gateway_code="DND_NUMBER"))

        result = runner.invoke(cli, ["send", "--to", "+919876543210", "--message", "Hello"])

        assert result.exit_code == 1
        assert "Delivery failed: DND_NUMBER" in result.output


@pytest.mark.unit
class TestParseParams:
    """Test suite for --param parsing."""

    def test_parses_pairs(self):
        assert send_module._parse_params(("a=1", "b=x=y")) == {"a": "1", "b": "x=y"}

    @pytest.mark.parametrize("raw", ["novalue", "=value"])
    def test_rejects_malformed(self, raw):
        with pytest.raises(click.BadParameter):
            send_module._parse_params((raw,))


def test_result_json_is_parseable(runner, patched_engine):
    """Test that the JSON document on stdout parses on its own."""
    result = runner.invoke(cli, ["send", "--to", "+919876543210", "--message", "Hello"])

    stdout = result.stdout
    document = stdout[stdout.index("{") : stdout.rindex("}") + 1]
    assert json.loads(document)["success"] is True


@pytest.mark.unit
class TestEntryPoint:
    """Test suite for the unified entry point."""

    def test_server_flag_runs_api(self, monkeypatch):
        from artisan_notify import main as entry

        def fake_server() -> None:
            raise SystemExit(0)

        monkeypatch.setattr(entry.sys, "argv", ["artisan-notify", "--server"])
        monkeypatch.setattr(entry, "run_fastapi_server", fake_server)
        monkeypatch.setattr(entry, "run_cli", lambda: pytest.fail("CLI should not run"))

        with pytest.raises(SystemExit):
            entry.main()

        assert "--server" not in entry.sys.argv
