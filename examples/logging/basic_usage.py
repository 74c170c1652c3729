"""Basic logging usage examples.

This script demonstrates the pipeliner.logging module:
- Presets (dev, prod, debug)
- Custom configuration merged over a preset
- The TRACE level used for backend command lines
- Routing execution events to the log with LoggingListener

Run this script:
    python examples/logging/basic_usage.py
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from pipeliner.config import ExecutionConfig
from pipeliner.executor import LoggingListener, PipelineExecutor
from pipeliner.logging import configure_logging, trace
from pipeliner.pipeline import Pipeline, Stage
from pipeliner.pipeline.steps import Echo, Shell


# Example 1: Presets
def demo_presets(log_dir: Path) -> None:
    """Demonstrate logging presets."""
    print("\n=== Presets Demo ===\n")

    print("1. Dev preset (console, DEBUG):")
    logger = configure_logging(preset="dev", logger_name="demo.dev")
    logger.debug("Dev mode debug message")

    print("\n2. Prod preset (rotating file, INFO):")
    logger = configure_logging(
        preset="prod",
        config={"file": {"log_path": str(log_dir)}},
        logger_name="demo.prod",
    )
    logger.debug("This won't be written (DEBUG < INFO)")
    logger.info("Prod mode info message (file only)")
    print(f"   → Check {log_dir / 'logs' / 'pipeliner.log'}")

    print("\n✅ Presets configure handlers for different environments\n")


# Example 2: Custom configuration and TRACE
def demo_custom_config() -> None:
    """Demonstrate explicit settings and the TRACE level."""
    print("\n=== Custom Config Demo ===\n")

    logger = configure_logging(config={"console": {"level": "WARNING"}}, logger_name="demo.custom")
    logger.info("This won't show (INFO < WARNING)")
    logger.warning("This shows (WARNING >= WARNING)")

    logger = configure_logging(level="TRACE", logger_name="demo.trace")
    trace(logger, "argv=%s", ["docker", "run", "--rm", "alpine", "sh", "-c", "make"])

    print("\n✅ Handlers filter; the TRACE level is the most verbose\n")


# Example 3: Execution events in the log
def demo_event_logging(workdir: Path) -> None:
    """Run a small pipeline with the pipeliner logger configured."""
    print("\n=== Event Logging Demo ===\n")

    configure_logging(preset="dev")
    pipeline = Pipeline(
        name="logging-demo",
        stages=(
            Stage("Build", steps=(Shell("echo compiling"), Echo("built"))),
            Stage("Broken", steps=(Shell("exit 2"),)),
        ),
    )
    executor = PipelineExecutor(ExecutionConfig(working_dir=workdir), listeners=[LoggingListener()])
    result = executor.run_sync(pipeline)
    logging.getLogger("pipeliner.examples").info("Run ended with %s", result.status.value)

    print("\n✅ Stage and pipeline events are logged by LoggingListener\n")


if __name__ == "__main__":
    print("\n" + "=" * 60)
    print("PIPELINER LOGGING - BASIC USAGE EXAMPLES")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        demo_presets(Path(tmp))
        demo_custom_config()
        demo_event_logging(Path(tmp))
