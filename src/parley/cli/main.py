"""Parley CLI entry point."""

import typer
from dotenv import load_dotenv

from parley import __version__
from parley.cli.providers_cmd import providers
from parley.cli.run_cmd import run
from parley.cli.validate_cmd import validate

app = typer.Typer(
    name="parley",
    help="Automated testing for conversational agents",
    no_args_is_help=True,
)

# Register subcommands
app.command()(run)
app.command()(providers)
app.command()(validate)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"parley {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Automated testing for conversational agents."""
    load_dotenv()
