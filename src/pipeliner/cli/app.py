"""Main pipeliner CLI application."""

from __future__ import annotations

from typing import Annotated

import typer

from pipeliner import meta
from pipeliner.cli.commands import check, matrix, run
from pipeliner.cli.common import console

app = typer.Typer(
    name=meta.__app_name__,
    help=meta.__description__,
    no_args_is_help=True,
    add_completion=False,
)

app.command("run")(run.run)
app.command("check")(check.check)
app.command("matrix")(matrix.matrix)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"{meta.__app_name__} {meta.__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show the version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Define and run Jenkins-style pipelines."""


def main() -> None:
    """Entry point of the ``pipeliner`` console script."""
    app()


__all__ = [
    "app",
    "main",
]


if __name__ == "__main__":  # pragma: no cover
    main()
