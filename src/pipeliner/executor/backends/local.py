"""Host shell backend."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from pipeliner.exceptions import BackendError
from pipeliner.executor.backends.base import CommandOutput, run_process

if TYPE_CHECKING:
    from pipeliner.pipeline.agent import Agent

logger = logging.getLogger(__name__)


class LocalBackend:
    """Run commands with ``<shell> -c`` on the host.

    The run variables are applied on top of the process environment.

    Args:
        shell: Shell executable.

    Examples:
        >>> import asyncio
        >>> from pathlib import Path
        >>> from pipeliner.pipeline.agent import Agent
        >>> out = asyncio.run(LocalBackend().run("echo hi", Path("."), {}, Agent()))  # doctest: +SKIP
        >>> out.stdout  # doctest: +SKIP
        'hi\\n'
    """

    shares_filesystem = True

    def __init__(self, shell: str = "sh") -> None:
        """Initialize LocalBackend.

        Args:
            shell: Shell executable.
        """
        self._shell = shell

    @property
    def shell(self) -> str:
        """Shell executable."""
        return self._shell

    async def run(
        self,
        command: str,
        cwd: Path,
        env: Mapping[str, str],
        agent: Agent,
    ) -> CommandOutput:
        """Run ``command`` in ``cwd``.

        Raises:
            BackendError: If ``cwd`` does not exist or the shell cannot start.
        """
        if not cwd.is_dir():
            raise BackendError(f"Working directory does not exist: {cwd}")
        logger.debug("LocalBackend (%s agent): %s", agent.kind.value, command)
        return await run_process([self._shell, "-c", command], cwd=cwd, env={**os.environ, **env})


__all__ = [
    "LocalBackend",
]
