"""parley providers -- list providers and whether each is configured."""

from __future__ import annotations

import json

import typer
from rich.console import Console

from parley.cli.output import render_providers
from parley.errors import ConfigurationError
from parley.providers.registry import available_providers


def providers(
    format_json: bool = typer.Option(False, "--json", help="Output pure JSON to stdout"),
) -> None:
    """List the available providers and their configuration status."""
    try:
        infos = available_providers()
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2)

    if format_json:
        typer.echo(json.dumps(infos, indent=2))
    else:
        render_providers(infos, Console())
