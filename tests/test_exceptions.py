"""Tests for the pipeliner exception hierarchy."""

from __future__ import annotations

import pytest

from pipeliner.exceptions import (
    AgentAllocationError,
    BackendError,
    CommandParseError,
    ConditionError,
    ConfigError,
    ExecutorError,
    ExecutorIOError,
    PipelinerError,
    PipelineValidationError,
    RetryExhaustedError,
    StashNotFoundError,
    StepExecutionError,
    UnexpectedTerminationError,
)


class TestHierarchy:
    """Tests for exception inheritance."""

    @pytest.mark.parametrize("exc_type", [PipelineValidationError, ConfigError])
    def test_definition_errors_are_value_errors(self, exc_type: type[Exception]) -> None:
        """Definition errors can be caught as ValueError."""
        assert issubclass(exc_type, PipelinerError)
        assert issubclass(exc_type, ValueError)

    @pytest.mark.parametrize(
        "exc_type",
        [
            CommandParseError,
            StepExecutionError,
            StashNotFoundError,
            ExecutorIOError,
            AgentAllocationError,
            BackendError,
            RetryExhaustedError,
            ConditionError,
            UnexpectedTerminationError,
        ],
    )
    def test_operational_errors(self, exc_type: type[Exception]) -> None:
        """Operational errors derive from ExecutorError."""
        assert issubclass(exc_type, ExecutorError)
        assert not issubclass(exc_type, ValueError)


class TestMessages:
    """Tests for exception messages and attributes."""

    def test_command_parse_error(self) -> None:
        """Carry command and reason."""
        exc = CommandParseError("echo 'x", "No closing quotation")
        assert exc.command == "echo 'x"
        assert "No closing quotation" in str(exc)

    def test_stash_not_found(self) -> None:
        """Message names the stash."""
        exc = StashNotFoundError("dist")
        assert str(exc) == "stash not found: dist"
        assert exc.stash_name == "dist"

    def test_retry_exhausted(self) -> None:
        """Message includes attempts and the last error when known."""
        assert str(RetryExhaustedError(3)) == "retry exhausted after 3 attempts"
        exc = RetryExhaustedError(2, "exit code 1")
        assert str(exc) == "retry exhausted after 2 attempts: exit code 1"
        assert exc.attempts == 2

    def test_step_execution_error(self) -> None:
        """Message names the step."""
        exc = StepExecutionError("deploy", "handler crashed")
        assert str(exc) == "Step 'deploy' failed: handler crashed"

    def test_agent_allocation_error(self) -> None:
        """Message names the agent kind."""
        exc = AgentAllocationError("docker", "docker not found in PATH")
        assert "Cannot allocate agent 'docker'" in str(exc)
        assert exc.reason == "docker not found in PATH"

    def test_condition_error(self) -> None:
        """Message quotes the expression."""
        exc = ConditionError("${A} ==", "unexpected end")
        assert str(exc) == "Invalid expression '${A} ==': unexpected end"

    def test_io_error(self) -> None:
        """Message names the path."""
        assert "I/O error on 'dist'" in str(ExecutorIOError("dist", "permission denied"))

    def test_unexpected_termination(self) -> None:
        """Message wraps the reason."""
        exc = UnexpectedTerminationError("boom")
        assert str(exc) == "unexpected termination: boom"
        assert exc.reason == "boom"
