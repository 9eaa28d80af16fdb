"""Load saved performance reports."""

import json
from pathlib import Path
from typing import Any

import typer

from storepulse.cli._console import error, nl


def load_report(path: Path) -> dict[str, Any]:
    """Read a JSON report written by ``MetricsCollector.export_data()``."""
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        nl()
        error(f"Report not found: {path}")
        nl()
        raise typer.Exit(1)
    except (OSError, ValueError) as e:
        nl()
        error(f"Could not read report {path}: {e}")
        nl()
        raise typer.Exit(1)

    if not isinstance(data, dict):
        nl()
        error(f"Not a performance report: {path}")
        nl()
        raise typer.Exit(1)
    return data
