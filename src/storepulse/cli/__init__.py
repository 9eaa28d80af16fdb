"""storepulse CLI."""

import typer

from storepulse.cli._console import console, setup_logging
from storepulse.cli.convert import csv_cmd
from storepulse.cli.report import report_cmd
from storepulse.config import get_settings
from storepulse.logging import configure_logging

app = typer.Typer(
    name="storepulse",
    help="Inspect storefront performance reports.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        from storepulse import __version__

        console.print(f"[bold]storepulse[/bold] [dim]{__version__}[/dim]")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    """Performance telemetry and request batching for storefront APIs."""
    settings = get_settings()
    debug = verbose or settings.debug
    if settings.log_format == "json":
        configure_logging(log_format="json", debug=debug)
    else:
        setup_logging(debug)


# Register commands
app.command("report")(report_cmd)
app.command("csv")(csv_cmd)
