"""Shared pytest fixtures for the pipeliner test suite."""

from __future__ import annotations

# Disable Rich colors and force wide terminal BEFORE any imports
# Rich checks these at import time
import os

os.environ["NO_COLOR"] = "1"
os.environ["TERM"] = "dumb"
os.environ["FORCE_COLOR"] = "0"
os.environ["COLUMNS"] = "200"  # Prevent text wrapping in CLI output

import asyncio
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path

import pytest

from pipeliner.config import ExecutionConfig
from pipeliner.executor.backends import CommandOutput
from pipeliner.executor.context import ExecutionContext
from pipeliner.pipeline.agent import Agent

# pylint: disable=redefined-outer-name


@dataclass(frozen=True)
class BackendCall:
    """One command received by the recording backend."""

    command: str
    cwd: Path
    env: dict[str, str]
    agent: Agent


class RecordingBackend:
    """In-memory backend: records commands and returns scripted exit codes.

    Commands without a script exit with 0. A script is a list of exit codes
    consumed one per invocation; the last one repeats. With
    ``shares_filesystem=False`` it stands in for a remote (pod) backend.
    """

    def __init__(self, shares_filesystem: bool = True) -> None:
        self.shares_filesystem = shares_filesystem
        self.calls: list[BackendCall] = []
        self._scripts: dict[str, list[int | BaseException]] = {}
        self._delays: dict[str, float] = {}

    def script(self, command: str, *outcomes: int | BaseException) -> None:
        """Script the exit codes (or exceptions) returned for ``command``."""
        self._scripts[command] = list(outcomes)

    def delay(self, command: str, seconds: float) -> None:
        """Make ``command`` take ``seconds`` to complete."""
        self._delays[command] = seconds

    @property
    def commands(self) -> list[str]:
        """Commands received, in order."""
        return [call.command for call in self.calls]

    def count(self, command: str) -> int:
        """Number of times ``command`` was run."""
        return self.commands.count(command)

    async def run(self, command: str, cwd: Path, env: Mapping[str, str], agent: Agent) -> CommandOutput:
        self.calls.append(BackendCall(command, cwd, dict(env), agent))
        if command in self._delays:
            await asyncio.sleep(self._delays[command])
        outcomes = self._scripts.get(command)
        outcome: int | BaseException = 0
        if outcomes:
            outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        stderr = "" if outcome == 0 else f"{command}: failed"
        return CommandOutput(exit_code=outcome, stdout=f"ran {command}\n", stderr=stderr)


@pytest.fixture(autouse=True)
def reset_pipeliner_logger() -> Iterator[None]:
    """Undo configure_logging() so caplog keeps seeing pipeliner records."""
    yield
    logger = logging.getLogger("pipeliner")
    for handler in [h for h in logger.handlers if getattr(h, "_pipeliner_handler", False)]:
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def backend() -> RecordingBackend:
    """Fresh recording backend."""
    return RecordingBackend()


@pytest.fixture
def config(tmp_path: Path) -> ExecutionConfig:
    """Execution config rooted in a temporary directory, without delays."""
    return ExecutionConfig(working_dir=tmp_path, retry_delay=0, step_retry_delay=0)


@pytest.fixture
def context(config: ExecutionConfig) -> ExecutionContext:
    """Execution context bound to ``config``."""
    return ExecutionContext(config)
