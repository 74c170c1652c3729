"""Backend protocol and subprocess helper shared by the concrete backends."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pipeliner.exceptions import BackendError

if TYPE_CHECKING:
    from pipeliner.pipeline.agent import Agent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandOutput:
    """Outcome of one command.

    Attributes:
        exit_code: Process exit code.
        stdout: Captured standard output.
        stderr: Captured standard error.
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        """Whether the command exited with status 0."""
        return self.exit_code == 0


@runtime_checkable
class Backend(Protocol):
    """Protocol for "run this resolved command under this agent".

    ``env`` holds the variables declared by the run (config, pipeline,
    stage, parameters). Host backends apply it on top of the process
    environment; container backends pass it into the container.

    Attributes:
        shares_filesystem: Whether commands see the host paths of the run
            (the working directory and the files written under it).
    """

    shares_filesystem: bool

    async def run(
        self,
        command: str,
        cwd: Path,
        env: Mapping[str, str],
        agent: Agent,
    ) -> CommandOutput:
        """Run ``command`` and return its exit status and captured output.

        Raises:
            BackendError: If the command could not be started.
            AgentAllocationError: If the agent runtime is unavailable.
        """
        ...


async def run_process(
    argv: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandOutput:
    """Run ``argv`` as a subprocess and capture its output.

    The process is killed if the awaiting task is cancelled (for example by
    a ``timeout`` step), and the cancellation is propagated.

    Args:
        argv: Program and arguments.
        cwd: Working directory.
        env: Full environment of the process (None inherits).

    Returns:
        CommandOutput with exit code, stdout and stderr.

    Raises:
        BackendError: If the process cannot be started.
    """
    logger.debug("Spawning %s (cwd=%s)", list(argv), cwd)
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise BackendError(f"Cannot start {argv[0]!r}: {exc}") from exc

    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            logger.debug("Killing pid %d after cancellation", proc.pid)
            proc.kill()
            await proc.wait()
        raise

    return CommandOutput(
        exit_code=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


__all__ = [
    "Backend",
    "CommandOutput",
    "run_process",
]
