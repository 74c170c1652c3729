"""Jenkins-style pipelines for Python.

pipeliner defines pipelines as immutable trees of stages and steps and runs
them on an asyncio engine with retries, timeouts, stashes, matrices,
parallel branches and post-conditions.

Examples:
    >>> from pipeliner import ExecutionConfig, PipelineExecutor
    >>> from pipeliner.pipeline import Pipeline, Shell, Stage
    >>> pipeline = Pipeline(stages=(Stage("Build", steps=(Shell("make build"),)),))
    >>> result = PipelineExecutor(ExecutionConfig()).run_sync(pipeline)  # doctest: +SKIP
    >>> result.status  # doctest: +SKIP
    <ExecutionStatus.SUCCESS: 'success'>
"""

from pipeliner.config import ExecutionConfig, load_config
from pipeliner.exceptions import (
    ExecutorError,
    PipelinerError,
    PipelineValidationError,
)
from pipeliner.executor import (
    ExecutionResult,
    ExecutionStatus,
    PipelineExecutor,
)
from pipeliner.meta import __version__
from pipeliner.pipeline import Pipeline, Stage, load_pipeline

__all__ = [
    "ExecutionConfig",
    "ExecutionResult",
    "ExecutionStatus",
    "ExecutorError",
    "Pipeline",
    "PipelineExecutor",
    "PipelineValidationError",
    "PipelinerError",
    "Stage",
    "__version__",
    "load_config",
    "load_pipeline",
]
