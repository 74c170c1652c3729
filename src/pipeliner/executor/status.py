"""Execution statuses and results.

This module defines the result types produced by a run:

- ExecutionStatus: Enum for the lifecycle/terminal status of a step, stage or run
- StepResult: Mutable record of a single step execution
- StageResult: Mutable record of a stage execution (including branches and cells)
- ExecutionResult: Aggregate result of a pipeline run
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ExecutionStatus(str, Enum):
    """Status of a step, stage or pipeline.

    Attributes:
        PENDING: Not started yet.
        RUNNING: In progress.
        SUCCESS: Completed successfully.
        FAILURE: Completed with an error (failing).
        UNSTABLE: Completed with warnings (non-fatal).
        SKIPPED: Not executed because a when-condition was false (non-fatal).
        TIMEOUT: Deadline exceeded (failing).
        ABORTED: Stopped by a rejection or cancellation (failing).
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    UNSTABLE = "unstable"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"
    ABORTED = "aborted"

    @property
    def is_success(self) -> bool:
        """Whether the status is ``success``."""
        return self is ExecutionStatus.SUCCESS

    @property
    def is_failure(self) -> bool:
        """Whether the status stops a sequence and halts the pipeline."""
        return self in _FAILING

    @property
    def is_terminal(self) -> bool:
        """Whether the status is final."""
        return self not in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)


_FAILING = frozenset({ExecutionStatus.FAILURE, ExecutionStatus.TIMEOUT, ExecutionStatus.ABORTED})


@dataclass(slots=True)
class StepResult:
    """Result of a single step execution.

    Attributes:
        name: Step display name.
        kind: Step kind value (``sh``, ``echo``...).
        status: Terminal status.
        stage: Name of the stage the step ran in.
        stdout: Captured standard output (command steps).
        stderr: Captured standard error (command steps).
        exit_code: Process exit code (command steps).
        duration: Execution duration in seconds.
        error: Error detail when the step did not succeed.

    Examples:
        >>> StepResult(name="build", kind="sh", status=ExecutionStatus.SUCCESS).status
        <ExecutionStatus.SUCCESS: 'success'>
    """

    name: str
    kind: str
    status: ExecutionStatus
    stage: str | None = None
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    duration: float = 0.0
    error: str | None = None


@dataclass(slots=True)
class StageResult:
    """Result of a stage execution.

    Attributes:
        name: Stage name (branch or cell name for sub-runs).
        status: Primary status of the stage body.
        duration: Execution duration in seconds.
        error: Error detail when the stage did not succeed.
        parent: Name of the enclosing stage for branches and matrix cells.
        post_errors: Failures reported by post-condition step lists. They
            never change ``status``.
    """

    name: str
    status: ExecutionStatus
    duration: float = 0.0
    error: str | None = None
    parent: str | None = None
    post_errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible representation."""
        return {
            "name": self.name,
            "status": self.status.value,
            "duration": round(self.duration, 3),
            "error": self.error,
            "parent": self.parent,
            "post_errors": list(self.post_errors),
        }


@dataclass(slots=True)
class ExecutionResult:
    """Aggregate result of a pipeline run.

    Attributes:
        status: Final status of the run.
        duration: Wall-clock duration in seconds.
        stages_executed: Number of top-level stages that were not skipped.
        steps_executed: Number of step executions, nested steps included.
        error: Error message when the run did not succeed.
        execution_id: Identifier of the run.
        stage_results: Recorded stage results, sub-runs included.
        step_results: Recorded step results.
        post_errors: Failures of pipeline-level post-conditions.
        attempts: Number of whole-pipeline attempts made.

    Examples:
        >>> result = ExecutionResult.success(1.5, stages=2, steps=4)
        >>> result.is_success
        True
    """

    status: ExecutionStatus
    duration: float = 0.0
    stages_executed: int = 0
    steps_executed: int = 0
    error: str | None = None
    execution_id: str | None = None
    stage_results: list[StageResult] = field(default_factory=list)
    step_results: list[StepResult] = field(default_factory=list)
    post_errors: list[str] = field(default_factory=list)
    attempts: int = 1

    @classmethod
    def success(cls, duration: float, *, stages: int, steps: int) -> ExecutionResult:
        """Return a successful result."""
        return cls(ExecutionStatus.SUCCESS, duration, stages, steps)

    @classmethod
    def failure(cls, duration: float, error: str, *, stages: int = 0, steps: int = 0) -> ExecutionResult:
        """Return a failed result carrying ``error``."""
        return cls(ExecutionStatus.FAILURE, duration, stages, steps, error)

    @property
    def is_success(self) -> bool:
        """Whether the run succeeded."""
        return self.status.is_success

    @property
    def is_failure(self) -> bool:
        """Whether the run ended with a failing status."""
        return self.status.is_failure

    def stage_status(self, name: str) -> ExecutionStatus | None:
        """Return the status recorded for the stage called ``name``, if any."""
        for stage in self.stage_results:
            if stage.name == name and stage.parent is None:
                return stage.status
        return None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible snapshot of the run."""
        return {
            "execution_id": self.execution_id,
            "status": self.status.value,
            "duration": round(self.duration, 3),
            "stages_executed": self.stages_executed,
            "steps_executed": self.steps_executed,
            "error": self.error,
            "attempts": self.attempts,
            "stages": [stage.to_dict() for stage in self.stage_results],
            "post_errors": list(self.post_errors),
        }


__all__ = [
    "ExecutionResult",
    "ExecutionStatus",
    "StageResult",
    "StepResult",
]
