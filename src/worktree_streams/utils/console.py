"""Console output helpers.

Diagnostics go to stderr so stdout stays free for machine-readable output.
The prefixes double as log levels that the stream runner strips when it
extracts a reason line from a child's output.
"""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape

console = Console(stderr=True, highlight=False, soft_wrap=True)

STEP_PREFIX = "==>"
INFO_PREFIX = "[OK]"
WARN_PREFIX = "[!]"
ERROR_PREFIX = "[x]"

LOG_PREFIXES = (STEP_PREFIX, INFO_PREFIX, WARN_PREFIX, ERROR_PREFIX)


def log_step(msg: str) -> None:
    console.print(f"[bold blue]{STEP_PREFIX}[/bold blue] {escape(msg)}")


def log_info(msg: str) -> None:
    console.print(f"[green]{escape(INFO_PREFIX)}[/green] {escape(msg)}")


def log_warn(msg: str) -> None:
    console.print(f"[yellow]{escape(WARN_PREFIX)}[/yellow] {escape(msg)}")


def log_error(msg: str) -> None:
    console.print(f"[red]{escape(ERROR_PREFIX)}[/red] {escape(msg)}")


def log_detail(msg: str) -> None:
    """Unprefixed indented detail line."""
    console.print(f"  {escape(msg)}")


def confirm_continue(question: str) -> bool:
    """Blocking yes/no prompt on the terminal, defaulting to no."""
    return click.confirm(question, default=False, err=True)


def auto_continue(question: str) -> bool:
    """Decision callback for headless runs: always continue."""
    return True
