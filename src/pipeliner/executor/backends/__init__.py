"""Execution backends.

A backend runs one resolved command under an agent and returns its exit
status and captured output. ``BackendSet`` maps agent kinds to backends so
that the interpreter stays agnostic of where commands actually run.

Examples:
    >>> from pipeliner.config import ExecutionConfig
    >>> backends = BackendSet.defaults(ExecutionConfig())
    >>> type(backends.for_kind(AgentKind.ANY)).__name__
    'LocalBackend'
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

from pipeliner.exceptions import AgentAllocationError
from pipeliner.executor.backends.base import Backend, CommandOutput, run_process
from pipeliner.executor.backends.container import CONTAINER_RUNTIMES, ContainerBackend
from pipeliner.executor.backends.dry_run import DryRunBackend
from pipeliner.executor.backends.kubernetes import KubernetesBackend
from pipeliner.executor.backends.local import LocalBackend
from pipeliner.pipeline.agent import Agent, AgentKind

if TYPE_CHECKING:
    from pipeliner.config import ExecutionConfig


class BackendSet:
    """Agent kind to backend mapping.

    Args:
        backends: Backend per agent kind.
        fallback: Backend used for kinds without an explicit entry.
    """

    def __init__(self, backends: Mapping[AgentKind, Backend] | None = None, fallback: Backend | None = None) -> None:
        """Initialize BackendSet.

        Args:
            backends: Backend per agent kind.
            fallback: Backend used for kinds without an explicit entry.
        """
        self._backends: dict[AgentKind, Backend] = dict(backends or {})
        self._fallback = fallback

    @classmethod
    def defaults(cls, config: ExecutionConfig) -> BackendSet:
        """Return the standard host/container/pod backends for ``config``."""
        local = LocalBackend(config.shell)
        return cls(
            {
                AgentKind.ANY: local,
                AgentKind.NONE: local,
                AgentKind.LABEL: local,
                AgentKind.DOCKER: ContainerBackend("docker", workspace=config.working_dir, shell=config.shell),
                AgentKind.PODMAN: ContainerBackend("podman", workspace=config.working_dir, shell=config.shell),
                AgentKind.KUBERNETES: KubernetesBackend(shell=config.shell),
            }
        )

    @classmethod
    def single(cls, backend: Backend) -> BackendSet:
        """Return a set routing every agent kind to ``backend``."""
        return cls(fallback=backend)

    def register(self, kind: AgentKind, backend: Backend) -> None:
        """Route ``kind`` to ``backend``."""
        self._backends[kind] = backend

    def for_kind(self, kind: AgentKind) -> Backend:
        """Return the backend for ``kind``.

        Raises:
            AgentAllocationError: If no backend handles ``kind``.
        """
        backend = self._backends.get(kind, self._fallback)
        if backend is None:
            raise AgentAllocationError(kind.value, "no backend registered for this agent kind")
        return backend

    def for_agent(self, agent: Agent) -> Backend:
        """Return the backend for ``agent``."""
        return self.for_kind(agent.kind)


__all__ = [
    "CONTAINER_RUNTIMES",
    "Backend",
    "BackendSet",
    "CommandOutput",
    "ContainerBackend",
    "DryRunBackend",
    "KubernetesBackend",
    "LocalBackend",
    "run_process",
]
