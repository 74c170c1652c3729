"""Docker and Podman backends.

Each command runs in a fresh ``--rm`` container::

    <runtime> run --rm -v <workspace>:<workspace> -w <cwd> -e K=V ... <args> <image> sh -c <command>

The workspace (the run's working directory) is mounted at the same path
so that relative paths, stashes and scripts resolve identically inside and
outside the container.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from pipeliner.exceptions import AgentAllocationError
from pipeliner.executor.backends.base import CommandOutput, run_process
from pipeliner.logging.manager import trace

if TYPE_CHECKING:
    from pipeliner.pipeline.agent import Agent

logger = logging.getLogger(__name__)

#: Supported container runtimes.
CONTAINER_RUNTIMES = ("docker", "podman")


class ContainerBackend:
    """Run commands inside Docker or Podman containers.

    Args:
        runtime: ``docker`` or ``podman``.
        workspace: Host directory mounted into the container.
        binary: Explicit runtime binary path (default: looked up in PATH).
        shell: Shell used inside the container.

    Raises:
        ValueError: If ``runtime`` is not supported.
    """

    shares_filesystem = True

    def __init__(
        self,
        runtime: str = "docker",
        *,
        workspace: Path | None = None,
        binary: str | None = None,
        shell: str = "sh",
    ) -> None:
        """Initialize ContainerBackend.

        Args:
            runtime: ``docker`` or ``podman``.
            workspace: Host directory mounted into the container.
            binary: Explicit runtime binary path.
            shell: Shell used inside the container.
        """
        if runtime not in CONTAINER_RUNTIMES:
            raise ValueError(f"Unsupported container runtime {runtime!r} (expected one of {CONTAINER_RUNTIMES})")
        self._runtime = runtime
        self._workspace = workspace
        self._binary = binary
        self._shell = shell

    @property
    def runtime(self) -> str:
        """Container runtime name."""
        return self._runtime

    def _find_binary(self) -> str:
        if self._binary is None:
            found = shutil.which(self._runtime)
            if found is None:
                raise AgentAllocationError(self._runtime, f"'{self._runtime}' not found in PATH")
            self._binary = found
        return self._binary

    def build_command(
        self,
        command: str,
        cwd: Path,
        env: Mapping[str, str],
        agent: Agent,
    ) -> list[str]:
        """Return the runtime argv for ``command``.

        Raises:
            AgentAllocationError: If the runtime binary or the image is missing.
        """
        image = agent.full_image
        if not image:
            raise AgentAllocationError(agent.kind.value, "no container image configured")

        argv = [self._find_binary(), "run", "--rm"]
        workspace = self._workspace or cwd
        argv += ["-v", f"{workspace}:{workspace}", "-w", str(cwd)]
        if agent.network:
            argv += ["--network", agent.network]
        for key, value in {**agent.environment, **env}.items():
            argv += ["-e", f"{key}={value}"]
        argv += list(agent.args)
        argv += [image, self._shell, "-c", command]
        return argv

    async def run(
        self,
        command: str,
        cwd: Path,
        env: Mapping[str, str],
        agent: Agent,
    ) -> CommandOutput:
        """Run ``command`` in a fresh container.

        Raises:
            AgentAllocationError: If the runtime binary or the image is missing.
            BackendError: If the runtime cannot be started.
        """
        argv = self.build_command(command, cwd, env, agent)
        logger.debug("ContainerBackend (%s, %s): %s", self._runtime, agent.full_image, command)
        trace(logger, "argv: %s", argv)
        return await run_process(argv)


__all__ = [
    "CONTAINER_RUNTIMES",
    "ContainerBackend",
]
