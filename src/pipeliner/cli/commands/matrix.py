"""List the cells of a matrix stage."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from pipeliner.cli.common import console, exit_error
from pipeliner.exceptions import ExecutorError, PipelineValidationError
from pipeliner.pipeline import load_pipeline


def matrix(
    file: Annotated[Path, typer.Argument(help="Pipeline definition (YAML).")],
    stage: Annotated[str, typer.Argument(help="Name of the matrix stage.")],
) -> None:
    """Show the cells a matrix stage expands into.

    Expression axes are expanded from the current environment; file axes
    are read relative to the pipeline file.

    Examples:
        pipeliner matrix pipeline.yml Test
    """
    try:
        pipeline = load_pipeline(file)
    except PipelineValidationError as exc:
        exit_error(f"Invalid pipeline: {exc}")

    target = pipeline.get_stage(stage)
    if target is None:
        exit_error(f"Stage '{stage}' not found. Available: {', '.join(pipeline.stage_names)}")
    if target.matrix is None:
        exit_error(f"Stage '{stage}' has no matrix")

    try:
        cells = target.matrix.generate_cells(os.path.expandvars, file.resolve().parent)
    except ExecutorError as exc:
        exit_error(str(exc))

    axes = [axis.name for axis in target.matrix.axes]
    table = Table(title=f"Matrix of '{stage}'", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Cell", style="cyan")
    for name in axes:
        table.add_column(name)
    for cell in cells:
        table.add_row(str(cell.index), cell.name, *(cell.values[name] for name in axes))
    console.print(table)
    console.print(f"\n{len(cells)} cell(s)")


__all__ = [
    "matrix",
]
