"""Pipeline execution engine.

Examples:
    >>> from pipeliner.config import ExecutionConfig
    >>> from pipeliner.executor import PipelineExecutor, RecordingListener
    >>> recorder = RecordingListener()
    >>> executor = PipelineExecutor(ExecutionConfig(dry_run=True), listeners=[recorder])
    >>> result = executor.run_sync(pipeline)  # doctest: +SKIP
"""

from pipeliner.executor.backends import (
    Backend,
    BackendSet,
    CommandOutput,
    ContainerBackend,
    DryRunBackend,
    KubernetesBackend,
    LocalBackend,
)
from pipeliner.executor.conditions import evaluate_expression, evaluate_when
from pipeliner.executor.context import ExecutionContext, SharedState
from pipeliner.executor.events import (
    CompositeListener,
    EventType,
    ExecutionEvent,
    ExecutionListener,
    LoggingListener,
    RecordingListener,
)
from pipeliner.executor.interpreter import StepInterpreter
from pipeliner.executor.orchestrator import PipelineExecutor, PreviousRun, should_run
from pipeliner.executor.plugins import CustomStepRegistry, InputRequest
from pipeliner.executor.status import ExecutionResult, ExecutionStatus, StageResult, StepResult

__all__ = [
    "Backend",
    "BackendSet",
    "CommandOutput",
    "CompositeListener",
    "ContainerBackend",
    "CustomStepRegistry",
    "DryRunBackend",
    "EventType",
    "ExecutionContext",
    "ExecutionEvent",
    "ExecutionListener",
    "ExecutionResult",
    "ExecutionStatus",
    "InputRequest",
    "KubernetesBackend",
    "LocalBackend",
    "LoggingListener",
    "PipelineExecutor",
    "PreviousRun",
    "RecordingListener",
    "SharedState",
    "StageResult",
    "StepInterpreter",
    "StepResult",
    "evaluate_expression",
    "evaluate_when",
    "should_run",
]
