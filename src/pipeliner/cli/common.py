"""Shared helpers for the pipeliner CLI."""

from __future__ import annotations

from typing import NoReturn

import typer
from rich.console import Console

from pipeliner.executor.status import ExecutionStatus

console = Console()
err_console = Console(stderr=True)

#: Rich style per execution status.
STATUS_STYLES: dict[ExecutionStatus, str] = {
    ExecutionStatus.PENDING: "dim",
    ExecutionStatus.RUNNING: "cyan",
    ExecutionStatus.SUCCESS: "green",
    ExecutionStatus.FAILURE: "red",
    ExecutionStatus.UNSTABLE: "yellow",
    ExecutionStatus.SKIPPED: "dim",
    ExecutionStatus.TIMEOUT: "red",
    ExecutionStatus.ABORTED: "magenta",
}


def styled_status(status: ExecutionStatus) -> str:
    """Return ``status`` wrapped in rich markup."""
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/]"


def exit_error(message: str, code: int = 1) -> NoReturn:
    """Print ``message`` in red and exit with ``code``."""
    console.print(f"[red]{message}[/]")
    raise typer.Exit(code=code)


__all__ = [
    "STATUS_STYLES",
    "console",
    "err_console",
    "exit_error",
    "styled_status",
]
