"""Configuration commands."""

import json
import sys

import click
import yaml
from pydantic import ValidationError

from artisan_notify.cli.utils import error, warning
from artisan_notify.core.settings import (
    get_app_settings,
    get_gateway_settings,
    get_logging_settings,
    get_notification_settings,
)


@click.group(name="config")
def config() -> None:
    """Configuration management commands."""


def _effective_config(show_secrets: bool) -> dict[str, dict[str, object]]:
    app = get_app_settings()
    gateway = get_gateway_settings()
    logs = get_logging_settings()
    notify = get_notification_settings()

    def secret(value: object) -> object:
        if value is None:
            return None
        return value.get_secret_value() if show_secrets else "***"

    gateway_values = gateway.model_dump(mode="json")
    gateway_values["api_key"] = secret(gateway.api_key)
    gateway_values["webhook_secret"] = secret(gateway.webhook_secret)

    notify_values = notify.model_dump(mode="json")
    if not show_secrets:
        notify_values["redis_url"] = "***"

    return {
        "app": app.model_dump(mode="json"),
        "logging": logs.model_dump(mode="json"),
        "gateway": gateway_values,
        "notifications": notify_values,
    }


@config.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "yaml", "table"]),
    default="table",
    help="Output format",
)
@click.option(
    "--show-secrets/--hide-secrets",
    default=False,
    help="Show sensitive values (API keys, webhook secret, Redis URL)",
)
def show(output_format: str, show_secrets: bool) -> None:
    """Display the effective configuration."""
    try:
        config_dict = _effective_config(show_secrets)
    except ValidationError as e:
        error(f"Invalid configuration: {e}")
        sys.exit(1)

    if not show_secrets:
        warning("Secrets are hidden. Use --show-secrets to display them.")

    if output_format == "json":
        click.echo(json.dumps(config_dict, indent=2, default=str))
    elif output_format == "yaml":
        click.echo(yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=False))
    else:
        for section, values in config_dict.items():
            click.echo(f"\n[{section.upper()}]")
            for key, value in values.items():
                click.echo(f"  {key:30} = {value}")
