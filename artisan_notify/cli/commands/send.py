"""One-shot notification dispatch."""

import json
import sys

import click

from artisan_notify.cli.utils import coro, error, info, success
from artisan_notify.core.settings import get_gateway_settings, get_notification_settings
from artisan_notify.features.notifications.models import NotificationRequest, Priority
from artisan_notify.features.notifications.schemas import NotificationResultResponse
from artisan_notify.features.notifications.service import NotificationEngine


def _parse_params(values: tuple[str, ...]) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            msg = f"Expected KEY=VALUE, got {item!r}"
            raise click.BadParameter(msg, param_hint="--param")
        params[key] = value
    return params


@click.command(name="send")
@click.option("--to", "to", required=True, help="Recipient phone number")
@click.option("--message", default=None, help="Plain text body")
@click.option("--template", "template_name", default=None, help="Rich channel template name")
@click.option("--param", "params", multiple=True, help="Template parameter as KEY=VALUE (repeatable)")
@click.option("--language", default="en", show_default=True, help="Template language code")
@click.option(
    "--priority",
    type=click.Choice([p.value for p in Priority]),
    default=Priority.MEDIUM.value,
    show_default=True,
)
@click.option("--fallback/--no-fallback", default=True, help="Allow channel fallback")
@coro
async def send(
    to: str,
    message: str | None,
    template_name: str | None,
    params: tuple[str, ...],
    language: str,
    priority: str,
    fallback: bool,
) -> None:
    """Send one notification through the configured gateway and print the result as JSON."""
    if not message and not template_name:
        raise click.UsageError("Provide --message, --template, or both")

    request = NotificationRequest(
        to=to,
        message=message,
        template_name=template_name,
        template_params=_parse_params(params),
        language=language,
        priority=Priority(priority),
        enable_fallback=fallback,
    )

    gateway_settings = get_gateway_settings()
    if not gateway_settings.is_configured:
        info("GATEWAY_API_KEY is not set; the gateway will likely reject the request")

    engine = NotificationEngine.from_settings(get_notification_settings(), gateway_settings)
    try:
        result = await engine.dispatcher.send(request)
    finally:
        await engine.aclose()

    response = NotificationResultResponse.from_result(result)
    click.echo(json.dumps(response.model_dump(mode="json"), indent=2))
    if result.success:
        success(f"Sent on {result.channel.value} channel")
    else:
        error(f"Delivery failed: {result.error.code.value if result.error else 'unknown'}")
        sys.exit(1)
