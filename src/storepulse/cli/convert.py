"""Convert a saved JSON report to CSV."""

from pathlib import Path

import typer

from storepulse.cli._console import console, nl, success
from storepulse.cli._loader import load_report
from storepulse.monitor.export import report_to_csv


def csv_cmd(
    file: Path = typer.Argument(..., help="JSON report exported by storepulse"),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write CSV here instead of stdout"
    ),
) -> None:
    """Convert a JSON report to CSV."""
    csv_text = report_to_csv(load_report(file))

    if output is None:
        console.print(csv_text, markup=False, soft_wrap=True)
        return

    output.write_text(csv_text + "\n")
    nl()
    success(f"Wrote {output}")
    nl()
