"""Output formatting utilities for CLI commands.

Status lines go to stderr so command output (JSON results) stays pipeable.
"""

import click


def success(message: str) -> None:
    click.secho(f"✓ {message}", fg="green", err=True)


def error(message: str) -> None:
    click.secho(f"✗ {message}", fg="red", err=True)


def warning(message: str) -> None:
    click.secho(f"⚠ {message}", fg="yellow", err=True)


def info(message: str) -> None:
    click.secho(f"ℹ {message}", fg="blue", err=True)
