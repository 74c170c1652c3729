"""Basic stages example.

Demonstrates a pipeline built in code: sequential stages, a retried
command, a post-condition and a stash shared between stages.

Usage:
    python examples/pipeline/01_basic_stages.py
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from pipeliner.config import ExecutionConfig
from pipeliner.executor import PipelineExecutor
from pipeliner.pipeline import Pipeline, PostCondition, PostKind, Stage
from pipeliner.pipeline.steps import Echo, Retry, Shell, Stash, Unstash


def build_pipeline() -> Pipeline:
    """Return a three-stage build/test/package pipeline."""
    return Pipeline(
        name="basic-stages",
        environment={"APP": "demo"},
        stages=(
            Stage(
                "Build",
                steps=(
                    Shell("mkdir -p dist && echo '${APP} build' > dist/app.txt"),
                    Stash("dist", includes="dist/**"),
                ),
            ),
            Stage(
                "Test",
                steps=(Retry(2, Shell("test -f dist/app.txt")),),
                post=(PostCondition(PostKind.ALWAYS, (Echo("tests finished"),)),),
            ),
            Stage(
                "Package",
                steps=(
                    Shell("rm -rf dist"),
                    Unstash("dist"),
                    Shell("cat dist/app.txt"),
                ),
            ),
        ),
    )


def main() -> None:
    """Run the pipeline in a temporary directory."""
    with tempfile.TemporaryDirectory() as workdir:
        config = ExecutionConfig(working_dir=Path(workdir), step_retry_delay=0.2)
        result = PipelineExecutor(config).run_sync(build_pipeline())

    print(f"\nPipeline {result.status.value} in {result.duration:.3f}s")
    print(f"Stages: {result.stages_executed}, steps: {result.steps_executed}")
    for step in result.step_results:
        print(f"  [{step.status.value.upper():>7}] {step.stage}: {step.name}")
        if step.stdout.strip():
            for line in step.stdout.strip().splitlines():
                print(f"            {line}")


if __name__ == "__main__":
    main()
