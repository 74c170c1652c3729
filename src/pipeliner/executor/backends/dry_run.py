"""Dry-run backend: logs intended commands without side effects."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from pipeliner.executor.backends.base import CommandOutput

if TYPE_CHECKING:
    from pipeliner.pipeline.agent import Agent

logger = logging.getLogger(__name__)


class DryRunBackend:
    """Record commands and report success without running them."""

    shares_filesystem = True

    def __init__(self) -> None:
        """Initialize an empty command log."""
        self.commands: list[str] = []

    async def run(
        self,
        command: str,
        cwd: Path,
        env: Mapping[str, str],
        agent: Agent,
    ) -> CommandOutput:
        """Log ``command`` and return exit code 0."""
        logger.info("[DRY RUN] (%s agent, cwd=%s): %s", agent.kind.value, cwd, command)
        self.commands.append(command)
        return CommandOutput(exit_code=0, stdout=f"[dry-run] would execute: {command}")


__all__ = [
    "DryRunBackend",
]
