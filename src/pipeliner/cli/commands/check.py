"""Validate a pipeline definition."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from pipeliner.cli.common import console, exit_error
from pipeliner.exceptions import PipelineValidationError
from pipeliner.pipeline import Pipeline, Stage, load_pipeline


def _stage_body(stage: Stage) -> str:
    if stage.matrix is not None:
        axes = ", ".join(axis.name for axis in stage.matrix.axes)
        return f"matrix ({axes})"
    if stage.parallel:
        return f"parallel ({', '.join(branch.name for branch in stage.parallel)})"
    return f"{len(stage.steps)} step(s)"


def _build_table(pipeline: Pipeline) -> Table:
    table = Table(title=f"Pipeline '{pipeline.name}'", show_lines=False)
    table.add_column("Stage", style="cyan")
    table.add_column("Body")
    table.add_column("Agent", justify="center")
    table.add_column("When", justify="center")
    table.add_column("Post", style="dim")
    for stage in pipeline.stages:
        agent = stage.agent.kind.value if stage.agent else "-"
        when = stage.when.kind.value if stage.when else "-"
        post = ", ".join(post.kind.value for post in stage.post) or "-"
        table.add_row(stage.name, _stage_body(stage), agent, when, post)
    return table


def check(
    file: Annotated[Path, typer.Argument(help="Pipeline definition (YAML).")],
) -> None:
    """Validate a pipeline definition and print its structure.

    Examples:
        pipeliner check pipeline.yml
    """
    try:
        pipeline = load_pipeline(file)
    except PipelineValidationError as exc:
        exit_error(f"Invalid pipeline: {exc}")

    console.print(_build_table(pipeline))
    steps = sum(1 for _ in pipeline.iter_steps())
    console.print(
        f"\n[green]✓[/] {len(pipeline.stages)} stage(s), {steps} step(s), "
        f"{len(pipeline.parameters)} parameter(s), agent [bold]{pipeline.agent.kind.value}[/]"
    )


__all__ = [
    "check",
]
