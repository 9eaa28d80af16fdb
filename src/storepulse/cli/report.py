"""Render a saved performance report."""

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import typer
from rich.box import ROUNDED
from rich.table import Table

from storepulse.cli._console import console, dim, header, nl, status
from storepulse.cli._loader import load_report

def _ms(value: Any) -> str:
    return f"{float(value or 0):.1f}ms"


def _api_table(api: dict[str, Any]) -> Table:
    table = Table(box=ROUNDED, border_style="dim", header_style="bold")
    table.add_column("Endpoint")
    table.add_column("Count", justify="right")
    table.add_column("Average", justify="right")
    table.add_column("P95", justify="right")
    table.add_column("P99", justify="right")
    table.add_column("Max", justify="right")
    for endpoint, stats in sorted(api.items()):
        table.add_row(
            endpoint,
            str(stats.get("count", 0)),
            _ms(stats.get("average")),
            _ms(stats.get("p95")),
            _ms(stats.get("p99")),
            _ms(stats.get("max")),
        )
    return table


def _vitals_table(vitals: dict[str, Any]) -> Table:
    table = Table(box=ROUNDED, border_style="dim", header_style="bold")
    table.add_column("Vital")
    table.add_column("Value", justify="right")
    table.add_column("Rating")
    for name, vital in vitals.items():
        value = vital.get("value", 0)
        shown = f"{value:.3f}" if name == "cls" else _ms(value)
        table.add_row(name.upper(), shown, status(vital.get("rating")))
    return table


def _bottleneck_table(bottlenecks: list[dict[str, Any]]) -> Table:
    table = Table(box=ROUNDED, border_style="dim", header_style="bold")
    table.add_column("Kind")
    table.add_column("Subject")
    table.add_column("Duration", justify="right")
    table.add_column("Threshold", justify="right")
    table.add_column("Severity")
    for item in bottlenecks:
        table.add_row(
            str(item.get("kind", "")),
            str(item.get("subject", "")),
            _ms(item.get("duration_ms")),
            _ms(item.get("threshold_ms")),
            status(item.get("severity")),
        )
    return table


def report_cmd(
    file: Path = typer.Argument(..., help="JSON report exported by storepulse"),
    limit: int = typer.Option(10, "--limit", "-n", help="Bottlenecks to show"),
) -> None:
    """Show API latency, Web Vitals, memory and bottlenecks from a report."""
    report = load_report(file)

    timestamp = report.get("timestamp")
    if isinstance(timestamp, (int, float)):
        captured = datetime.fromtimestamp(timestamp / 1000, UTC).isoformat()
        header(f"Performance report · {captured}")
    else:
        header("Performance report")

    api = report.get("api") or {}
    console.print("[bold]API[/bold]")
    if api:
        console.print(_api_table(api))
    else:
        dim("No API samples")
    nl()

    vitals = report.get("web_vitals") or {}
    console.print("[bold]Web Vitals[/bold]")
    if vitals:
        console.print(_vitals_table(vitals))
    else:
        dim("No Web Vitals recorded")
    nl()

    memory = report.get("memory") or {}
    console.print("[bold]Memory[/bold]")
    dim(
        f"current={memory.get('current', 0)} peak={memory.get('peak', 0)} "
        f"average={float(memory.get('average', 0)):.0f} trend={memory.get('trend', 'stable')}"
    )
    nl()

    bottlenecks = report.get("bottlenecks") or []
    console.print(f"[bold]Bottlenecks[/bold] [dim]({len(bottlenecks)})[/dim]")
    if bottlenecks:
        console.print(_bottleneck_table(bottlenecks[: max(limit, 0)]))
    else:
        dim("None")
    nl()
