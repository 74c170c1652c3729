"""Kubernetes backend driven through ``kubectl run``."""

from __future__ import annotations

import logging
import shlex
import shutil
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from pipeliner.exceptions import AgentAllocationError
from pipeliner.executor.backends.base import CommandOutput, run_process
from pipeliner.logging.manager import trace

if TYPE_CHECKING:
    from pipeliner.pipeline.agent import Agent

logger = logging.getLogger(__name__)


class KubernetesBackend:
    """Run each command in a short-lived pod.

    The pod is attached (``-i``), removed on exit (``--rm``) and never
    restarted. The host working directory is not mounted; commands run in
    the image's default directory unless ``workdir`` is set.

    Args:
        binary: Explicit ``kubectl`` path (default: looked up in PATH).
        workdir: Directory to ``cd`` into inside the pod.
        shell: Shell used inside the pod.
    """

    shares_filesystem = False

    def __init__(self, *, binary: str | None = None, workdir: str | None = None, shell: str = "sh") -> None:
        """Initialize KubernetesBackend.

        Args:
            binary: Explicit ``kubectl`` path.
            workdir: Directory to ``cd`` into inside the pod.
            shell: Shell used inside the pod.
        """
        self._binary = binary
        self._workdir = workdir
        self._shell = shell

    def _find_binary(self) -> str:
        if self._binary is None:
            found = shutil.which("kubectl")
            if found is None:
                raise AgentAllocationError("kubernetes", "'kubectl' not found in PATH")
            self._binary = found
        return self._binary

    def build_command(self, command: str, env: Mapping[str, str], agent: Agent) -> list[str]:
        """Return the ``kubectl run`` argv for ``command``.

        Raises:
            AgentAllocationError: If ``kubectl`` or the image is missing.
        """
        image = agent.full_image
        if not image:
            raise AgentAllocationError("kubernetes", "no container image configured")

        pod_name = f"{agent.container_name}-{uuid.uuid4().hex[:8]}"
        argv = [self._find_binary()]
        if agent.kubeconfig:
            argv += ["--kubeconfig", agent.kubeconfig]
        argv += [
            "run",
            pod_name,
            "--namespace",
            agent.namespace,
            "--image",
            image,
            "--restart=Never",
            "--rm",
            "-i",
            "--quiet",
        ]
        if agent.label:
            argv += ["--labels", agent.label]
        for key, value in {**agent.environment, **env}.items():
            argv += ["--env", f"{key}={value}"]
        script = f"cd {shlex.quote(self._workdir)} && {command}" if self._workdir else command
        argv += ["--command", "--", self._shell, "-c", script]
        return argv

    async def run(
        self,
        command: str,
        cwd: Path,
        env: Mapping[str, str],
        agent: Agent,
    ) -> CommandOutput:
        """Run ``command`` in a new pod.

        Raises:
            AgentAllocationError: If ``kubectl`` or the image is missing.
            BackendError: If ``kubectl`` cannot be started.
        """
        argv = self.build_command(command, env, agent)
        logger.debug("KubernetesBackend (%s/%s): %s", agent.namespace, agent.full_image, command)
        trace(logger, "argv: %s", argv)
        return await run_process(argv, cwd=cwd if cwd.is_dir() else None)


__all__ = [
    "KubernetesBackend",
]
