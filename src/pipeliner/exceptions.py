"""Specialized exceptions raised by pipeliner.

Execution *outcomes* (a failing shell command, a timed out step, a skipped
stage) are statuses, not exceptions. The classes below cover the other two
families: definition errors caught before a run starts, and operational
errors raised while a run is in flight.

Exception hierarchy::

    PipelinerError
        PipelineValidationError (invalid definition, also ValueError)
        ConfigError (invalid configuration file, also ValueError)
        ExecutorError (base for operational errors during a run)
            CommandParseError (command that cannot be passed to a process)
            StepExecutionError (step could not be carried out)
            StashNotFoundError (unstash of an unknown stash)
            ExecutorIOError (file copy/glob failure)
            AgentAllocationError (agent runtime unavailable)
            BackendError (backend failed to run a command)
            RetryExhaustedError (retry attempts used up)
            ConditionError (when-condition could not be evaluated)
            UnexpectedTerminationError (internal error caught at top level)
"""

from __future__ import annotations


class PipelinerError(Exception):
    """Base exception for all pipeliner errors."""


class PipelineValidationError(PipelinerError, ValueError):
    """Pipeline definition is invalid.

    Raised when a pipeline, stage, step, matrix or trigger definition
    violates a structural constraint. A run never starts with an invalid
    definition.
    """


class ConfigError(PipelinerError, ValueError):
    """Execution configuration is invalid or cannot be loaded."""


class ExecutorError(PipelinerError):
    """Base exception for operational errors raised during a run.

    The orchestrator converts any ``ExecutorError`` escaping a step sequence
    into a ``Failure`` stage result carrying the error message.
    """


class CommandParseError(ExecutorError):
    """A command cannot be handed to a process (for example a NUL byte).

    Attributes:
        command: The offending command string.
        reason: Why the command was rejected.
    """

    def __init__(self, command: str, reason: str) -> None:
        """Initialize CommandParseError.

        Args:
            command: The offending command string.
            reason: Why the command was rejected.
        """
        super().__init__(f"Cannot parse command {command!r}: {reason}")
        self.command = command
        self.reason = reason


class StepExecutionError(ExecutorError):
    """A step could not be carried out.

    Attributes:
        step_name: Name of the step that failed.
        reason: Description of the failure.
    """

    def __init__(self, step_name: str, reason: str) -> None:
        """Initialize StepExecutionError.

        Args:
            step_name: Name of the step that failed.
            reason: Description of the failure.
        """
        super().__init__(f"Step '{step_name}' failed: {reason}")
        self.step_name = step_name
        self.reason = reason


class StashNotFoundError(ExecutorError):
    """No stash is registered under the requested name.

    Attributes:
        stash_name: Name that was looked up.
    """

    def __init__(self, stash_name: str) -> None:
        """Initialize StashNotFoundError.

        Args:
            stash_name: Name that was looked up.
        """
        super().__init__(f"stash not found: {stash_name}")
        self.stash_name = stash_name


class ExecutorIOError(ExecutorError):
    """A filesystem operation failed during stash, unstash or archive.

    Attributes:
        path: Path involved in the failed operation.
        reason: Underlying OS error message.
    """

    def __init__(self, path: str, reason: str) -> None:
        """Initialize ExecutorIOError.

        Args:
            path: Path involved in the failed operation.
            reason: Underlying OS error message.
        """
        super().__init__(f"I/O error on '{path}': {reason}")
        self.path = path
        self.reason = reason


class AgentAllocationError(ExecutorError):
    """The runtime for an agent could not be located or started.

    Attributes:
        agent: Agent kind that could not be allocated.
        reason: Description of the failure.
    """

    def __init__(self, agent: str, reason: str) -> None:
        """Initialize AgentAllocationError.

        Args:
            agent: Agent kind that could not be allocated.
            reason: Description of the failure.
        """
        super().__init__(f"Cannot allocate agent '{agent}': {reason}")
        self.agent = agent
        self.reason = reason


class BackendError(ExecutorError):
    """A backend failed to run a command for reasons other than its exit code."""


class RetryExhaustedError(ExecutorError):
    """All retry attempts of a step were used up.

    Attributes:
        attempts: Total number of attempts made.
        last_error: Description of the last failed attempt.
    """

    def __init__(self, attempts: int, last_error: str | None = None) -> None:
        """Initialize RetryExhaustedError.

        Args:
            attempts: Total number of attempts made.
            last_error: Description of the last failed attempt.
        """
        message = f"retry exhausted after {attempts} attempts"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class ConditionError(ExecutorError):
    """A when-condition expression is malformed or uses unsupported syntax.

    Attributes:
        expression: The expression text.
        reason: Description of the problem.
    """

    def __init__(self, expression: str, reason: str) -> None:
        """Initialize ConditionError.

        Args:
            expression: The expression text.
            reason: Description of the problem.
        """
        super().__init__(f"Invalid expression {expression!r}: {reason}")
        self.expression = expression
        self.reason = reason


class UnexpectedTerminationError(ExecutorError):
    """An unexpected internal error ended the run.

    Attributes:
        reason: Description of the underlying error.
    """

    def __init__(self, reason: str) -> None:
        """Initialize UnexpectedTerminationError.

        Args:
            reason: Description of the underlying error.
        """
        super().__init__(f"unexpected termination: {reason}")
        self.reason = reason


__all__ = [
    "AgentAllocationError",
    "BackendError",
    "CommandParseError",
    "ConditionError",
    "ConfigError",
    "ExecutorError",
    "ExecutorIOError",
    "PipelineValidationError",
    "PipelinerError",
    "RetryExhaustedError",
    "StashNotFoundError",
    "StepExecutionError",
    "UnexpectedTerminationError",
]
