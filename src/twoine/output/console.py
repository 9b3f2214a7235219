"""Rich Console factory and theme for twoine output.

Consoles render to a StringIO buffer so formatting stays a pure
``ServiceResult -> str`` function. In non-TTY environments (tests,
pipes) Rich drops the color codes on its own.
"""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.theme import Theme

TWOINE_THEME = Theme(
    {
        "tw.ok": "bold green",
        "tw.error": "bold red",
        "tw.warning": "bold yellow",
        "tw.op": "bold cyan",
        "tw.key": "dim",
        "tw.id": "bold blue",
        "tw.name": "bold",
        "tw.port": "magenta",
        "tw.secret": "bold yellow",
        "tw.status.active": "green",
        "tw.status.running": "green",
        "tw.status.stopped": "dim",
        "tw.status.pending": "yellow",
        "tw.status.error": "red",
        "tw.status.failed": "red",
    }
)


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    """Create a Console that renders to a StringIO buffer."""
    return Console(
        file=StringIO(),
        theme=TWOINE_THEME,
        no_color=no_color,
        highlight=False,
        width=width or 120,
    )


def get_output(console: Console) -> str:
    """Extract rendered text from a StringIO-backed Console."""
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()


def style_for_status(status: str) -> str:
    """Theme style for a lifecycle status, or no style."""
    name = f"tw.status.{status}"
    return name if name in TWOINE_THEME.styles else ""
