"""Shared console and formatting utilities."""

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

# Force colors unless explicitly disabled (NO_COLOR standard)
no_color = os.environ.get("NO_COLOR", "").lower() in ("1", "true", "yes")

console = Console(
    highlight=False,
    force_terminal=not no_color,
    no_color=no_color,
)


# Web Vitals ratings and bottleneck severities
STATUS_STYLES = {
    "good": "green",
    "needs-improvement": "yellow",
    "poor": "red",
    "medium": "yellow",
    "high": "red",
}


def status(value: object) -> str:
    """Markup a rating or severity in its traffic-light color."""
    text = str(value or "")
    style = STATUS_STYLES.get(text, "white")
    return f"[{style}]{text}[/{style}]"


def header(title: str) -> None:
    """Print a minimal header."""
    console.print()
    console.print(f"[bold]{title}[/bold]")
    console.print()


def success(msg: str) -> None:
    """Print success message."""
    console.print(f"  [green]✓[/green] {msg}")


def error(msg: str) -> None:
    """Print error message."""
    console.print(f"  [red]✗[/red] {msg}")


def dim(msg: str) -> None:
    """Print dimmed text."""
    console.print(f"  [dim]{msg}[/dim]")


def nl() -> None:
    """Print newline."""
    console.print()


def setup_logging(verbose: bool = False) -> None:
    """Route storepulse and aiohttp logs through the rich console."""
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    handler = RichHandler(
        console=console,
        show_time=False,
        show_path=False,
        rich_tracebacks=True,
        markup=True,
        keywords=[],
    )

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[handler],
        force=True,
    )
    logging.getLogger("storepulse").setLevel(level)
