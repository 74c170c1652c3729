"""Run a pipeline definition."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

import typer
from box import Box
from rich.table import Table

from pipeliner.cli.common import console, exit_error, styled_status
from pipeliner.config import ExecutionConfig, load_config
from pipeliner.exceptions import ConfigError, PipelineValidationError
from pipeliner.executor import EventType, ExecutionEvent, ExecutionResult, ExecutionStatus, PipelineExecutor
from pipeliner.executor.plugins import InputRequest
from pipeliner.logging import configure_logging
from pipeliner.pipeline import load_pipeline

# ─────────────────────────────────────────────────────────────────────────────
# Live output
# ─────────────────────────────────────────────────────────────────────────────


class ConsoleListener:
    """Print stage transitions and step output to the rich console."""

    def __init__(self, *, verbose: bool = False) -> None:
        """Initialize ConsoleListener.

        Args:
            verbose: Also print step transitions and command output.
        """
        self._verbose = verbose

    def on_event(self, event: ExecutionEvent) -> None:
        """Render ``event``."""
        match event.type:
            case EventType.STAGE_STARTED:
                console.print(f"[bold cyan]▶[/] {event.stage}")
            case EventType.STAGE_COMPLETED | EventType.STAGE_FAILED:
                if event.status is not None:
                    detail = f" [dim]{event.message}[/]" if event.message else ""
                    console.print(f"  {event.stage}: {styled_status(event.status)}{detail}")
            case EventType.LOG_OUTPUT if self._verbose or event.data.get("stream") == "echo":
                console.print(event.message or "", markup=False, highlight=False)
            case EventType.STEP_FAILED:
                console.print(f"  [red]✗[/] {event.step}: {event.message or ''}", highlight=False)
            case EventType.STEP_COMPLETED if self._verbose:
                console.print(f"  [green]✓[/] {event.step}", highlight=False)


def _confirm(request: InputRequest) -> bool:
    return typer.confirm(request.message, default=True)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def parse_assignments(values: list[str] | None, option: str) -> dict[str, str]:
    """Parse repeated ``KEY=VALUE`` options.

    Raises:
        typer.BadParameter: If an entry has no ``=``.
    """
    parsed: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint=option)
        parsed[key.strip()] = value
    return parsed


def _section(settings: Box, name: str) -> dict[str, Any]:
    value = settings.get(name)
    if isinstance(value, Box):
        return value.to_dict()
    if value:
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return {}


def _render_summary(result: ExecutionResult) -> None:
    table = Table(title="Stages", show_lines=False)
    table.add_column("Stage", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Duration", justify="right")
    table.add_column("Error", style="dim")
    for stage in result.stage_results:
        name = f"  {stage.parent} / {stage.name}" if stage.parent else stage.name
        table.add_row(name, styled_status(stage.status), f"{stage.duration:.2f}s", stage.error or "")
    console.print(table)

    for post_error in result.post_errors:
        console.print(f"[yellow]post:[/] {post_error}")
    console.print(
        f"\nPipeline {styled_status(result.status)} in {result.duration:.2f}s "
        f"({result.stages_executed} stages, {result.steps_executed} steps"
        f"{f', {result.attempts} attempts' if result.attempts > 1 else ''})"
    )
    if result.error:
        console.print(f"[red]Error:[/] {result.error}", highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Command
# ─────────────────────────────────────────────────────────────────────────────


def run(
    file: Annotated[Path, typer.Argument(help="Pipeline definition (YAML).")],
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Log commands instead of running them.")] = False,
    workdir: Annotated[
        Path | None,
        typer.Option("--workdir", "-w", help="Working directory of the run (default: current directory)."),
    ] = None,
    env: Annotated[
        list[str] | None,
        typer.Option("--env", "-e", help="Extra variable KEY=VALUE (repeatable)."),
    ] = None,
    param: Annotated[
        list[str] | None,
        typer.Option("--param", "-p", help="Build parameter KEY=VALUE (repeatable)."),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", help="Global timeout of the run, in seconds."),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the JSON run snapshot to this file."),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Log level (TRACE, DEBUG, INFO, WARNING, ERROR)."),
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to pipeliner.conf.yml."),
    ] = None,
    interactive: Annotated[
        bool,
        typer.Option("--interactive", "-i", help="Ask for confirmation on input steps."),
    ] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show every step and its output.")] = False,
) -> None:
    """Run a pipeline.

    Exits with 0 when the pipeline ends ``success`` or ``unstable``, 1 otherwise.

    Examples:
        # Run a pipeline from the current directory
        pipeliner run pipeline.yml

        # Dry run with an extra variable
        pipeliner run pipeline.yml --dry-run -e BRANCH_NAME=main
    """
    extra_env = parse_assignments(env, "--env")
    parameters = parse_assignments(param, "--param")

    try:
        settings = load_config(config_file)
        logging_section = _section(settings, "logging")
        configure_logging(preset=logging_section.pop("preset", None), config=logging_section, level=log_level)

        section = _section(settings, "execution")
        section["environment"] = {**(section.get("environment") or {}), **extra_env}
        config = ExecutionConfig.from_mapping(
            section,
            working_dir=workdir,
            global_timeout=timeout,
            output_file=output,
            dry_run=dry_run or None,
        )
        pipeline = load_pipeline(file)
    except (ConfigError, PipelineValidationError, ValueError) as exc:
        exit_error(str(exc))

    executor = PipelineExecutor(
        config,
        listeners=[ConsoleListener(verbose=verbose)],
        input_handler=_confirm if interactive else None,
    )
    console.print(f"[bold]Pipeline[/] {pipeline.name} [dim]({file})[/]" + (" [yellow]dry-run[/]" if dry_run else ""))
    result = executor.run_sync(pipeline, parameters=parameters)
    _render_summary(result)

    if not (result.status.is_success or result.status is ExecutionStatus.UNSTABLE):
        raise typer.Exit(code=1)


__all__ = [
    "ConsoleListener",
    "parse_assignments",
    "run",
]
