"""Config-driven pipeline example.

Demonstrates loading a pipeline from pipeline.yml and its execution
settings from pipeliner.conf.yml, then running it in dry-run mode.

Usage:
    cd examples/pipeline
    python 03_config_driven.py
"""

from __future__ import annotations

from pathlib import Path

from pipeliner.config import execution_config_from_file, load_config
from pipeliner.exceptions import PipelinerError
from pipeliner.executor import LoggingListener, PipelineExecutor
from pipeliner.logging import configure_logging
from pipeliner.pipeline import load_pipeline

HERE = Path(__file__).resolve().parent


def main() -> None:
    """Run the YAML pipeline with the settings of pipeliner.conf.yml."""
    config_file = HERE / "pipeliner.conf.yml"
    settings = load_config(config_file)
    logging_section = settings.logging.to_dict()
    configure_logging(preset=logging_section.pop("preset", None), config=logging_section)

    try:
        config = execution_config_from_file(config_file, working_dir=HERE, dry_run=True)
        pipeline = load_pipeline(HERE / "pipeline.yml")
    except PipelinerError as e:
        print(f"Invalid setup: {e}")
        return

    print(f"Pipeline: {pipeline.name}")
    print(f"Stages: {', '.join(pipeline.stage_names)}")
    print(f"Global timeout: {config.global_timeout}s")
    print()

    executor = PipelineExecutor(config, listeners=[LoggingListener()])
    result = executor.run_sync(pipeline, parameters={"TARGET": "prod"})

    print(f"\nCompleted in {result.duration:.3f}s -> {result.status.value}")
    for stage in result.stage_results:
        prefix = f"{stage.parent} / " if stage.parent else ""
        print(f"  [{stage.status.value:>7}] {prefix}{stage.name}")
    if config.output_file is not None:
        print(f"\nSnapshot written to {config.output_file}")


if __name__ == "__main__":
    main()
