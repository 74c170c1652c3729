"""Matrix and parallel example.

Demonstrates matrix expansion with an exclusion, parallel branches,
a when-condition and live events through a custom listener.

Usage:
    BRANCH_NAME=main python examples/pipeline/02_matrix_parallel.py
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from pipeliner.config import ExecutionConfig
from pipeliner.executor import EventType, ExecutionEvent, PipelineExecutor
from pipeliner.pipeline import (
    MatrixAxis,
    MatrixConfig,
    MatrixExclude,
    ParallelBranch,
    Pipeline,
    Stage,
    WhenCondition,
)
from pipeliner.pipeline.steps import Echo, Shell


class PrintListener:
    """Print stage transitions."""

    def on_event(self, event: ExecutionEvent) -> None:
        """Print stage events only."""
        if event.type in (EventType.STAGE_COMPLETED, EventType.STAGE_FAILED):
            print(f"  {event.stage:<30} {event.status.value if event.status else ''}")


def build_pipeline() -> Pipeline:
    """Return a pipeline with a matrix stage and parallel checks."""
    matrix = MatrixConfig(
        axes=(
            MatrixAxis.of_values("os", "linux", "windows"),
            MatrixAxis.of_values("py", "3.11", "3.12"),
        ),
        excludes=(MatrixExclude({"os": "windows", "py": "3.11"}, reason="unsupported"),),
        max_parallel=2,
    )
    return Pipeline(
        name="matrix-parallel",
        stages=(
            Stage(
                "Checks",
                parallel=(
                    ParallelBranch.of(Stage("lint", steps=(Shell("echo linting"),))),
                    ParallelBranch.of(Stage("types", steps=(Shell("echo type checking"),))),
                ),
            ),
            Stage("Test", matrix=matrix, steps=(Shell("echo testing on ${os} with python ${py}"),)),
            Stage(
                "Release",
                when=WhenCondition.branch("main"),
                steps=(Echo("releasing from ${BRANCH_NAME}"),),
            ),
        ),
    )


def main() -> None:
    """Run the pipeline and print every stage transition."""
    with tempfile.TemporaryDirectory() as workdir:
        executor = PipelineExecutor(ExecutionConfig(working_dir=Path(workdir)), listeners=[PrintListener()])
        result = executor.run_sync(build_pipeline())

    print(f"\nPipeline {result.status.value}: {result.stages_executed} stage(s), {result.steps_executed} step(s)")
    if result.error:
        print(f"Error: {result.error}")


if __name__ == "__main__":
    main()
