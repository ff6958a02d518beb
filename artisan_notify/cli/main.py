"""Main CLI entry point for artisan-notify."""

import click

from artisan_notify import __version__
from artisan_notify.cli.commands import config, send, server
from artisan_notify.infra.logging import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="artisan-notify")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """artisan-notify: multi-channel notification delivery.

    \b
    Commands:
      serve        Run the HTTP API
      send         Send one notification and print the result
      config show  Print the effective configuration

    \b
    Quick Start:
      artisan-notify config show
      artisan-notify send --to +919876543210 --message "Your order shipped"
      artisan-notify serve --port 8000
    """
    ctx.ensure_object(dict)


cli.add_command(server.serve)
cli.add_command(send.send)
cli.add_command(config.config)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
