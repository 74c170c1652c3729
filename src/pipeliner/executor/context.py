"""Per-run execution context.

An ``ExecutionContext`` carries the state a step needs: working directory
stack, variable overlays, the current stage/step markers and the agent in
effect. Branch-local state is copied by ``fork()`` so that parallel
branches and matrix cells cannot race on ``dir`` pushes or parameter
injection. Global run state (stash registry, recorded results, metadata)
lives in one ``SharedState`` reachable from every fork and guarded by a
lock held only for the duration of each read or write.
"""

from __future__ import annotations

import os
import re
import threading
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pipeliner.pipeline.agent import Agent

if TYPE_CHECKING:
    from pipeliner.config import ExecutionConfig
    from pipeliner.executor.status import StageResult, StepResult

#: ``${VAR}`` placeholder.
_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class SharedState:
    """Run-wide state shared by every fork of a context.

    All accessors take the internal lock for a single read or write and
    never while awaiting.
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._lock = threading.Lock()
        self._stashes: dict[str, Path] = {}
        self._stage_results: list[StageResult] = []
        self._step_results: list[StepResult] = []
        self._metadata: dict[str, Any] = {}

    def add_stash(self, name: str, path: Path) -> None:
        """Register (or replace) the stash called ``name``."""
        with self._lock:
            self._stashes[name] = path

    def get_stash(self, name: str) -> Path | None:
        """Return the location of stash ``name``, if registered."""
        with self._lock:
            return self._stashes.get(name)

    def stash_names(self) -> list[str]:
        """Return the registered stash names."""
        with self._lock:
            return sorted(self._stashes)

    def record_stage(self, result: StageResult) -> None:
        """Append a stage result."""
        with self._lock:
            self._stage_results.append(result)

    def record_step(self, result: StepResult) -> None:
        """Append a step result."""
        with self._lock:
            self._step_results.append(result)

    @property
    def stage_results(self) -> list[StageResult]:
        """Snapshot of recorded stage results."""
        with self._lock:
            return list(self._stage_results)

    @property
    def step_results(self) -> list[StepResult]:
        """Snapshot of recorded step results."""
        with self._lock:
            return list(self._step_results)

    def set_metadata(self, key: str, value: Any) -> None:
        """Store a run-wide metadata value."""
        with self._lock:
            self._metadata[key] = value

    def append_metadata(self, key: str, value: Any) -> None:
        """Append ``value`` to the metadata list stored under ``key``."""
        with self._lock:
            self._metadata.setdefault(key, []).append(value)

    @property
    def metadata(self) -> dict[str, Any]:
        """Snapshot of run metadata."""
        with self._lock:
            return dict(self._metadata)


@dataclass(slots=True)
class ExecutionContext:
    """Mutable state of one run (or one branch/cell of it).

    Attributes:
        config: Execution configuration of the run.
        agent: Agent in effect for commands.
        environment: Variables overlaying the process environment
            (pipeline variables overlaid by stage variables).
        parameters: Build parameters and matrix bindings; they take
            precedence over ``environment``.
        shared: Run-wide shared store.
        execution_id: Identifier of the run.
        start_time: Start of the run (UTC).
        current_stage: Stage being executed, for logs and events.
        current_step: Step being executed, for logs and events.
        last_error: Error detail of the last step that did not succeed.

    Examples:
        >>> from pipeliner.config import ExecutionConfig
        >>> ctx = ExecutionContext(ExecutionConfig(working_dir="/tmp"), parameters={"V": "1"})
        >>> ctx.expand("v=${V} other=${UNSET_PIPELINER_VAR}")
        'v=1 other=${UNSET_PIPELINER_VAR}'
    """

    config: ExecutionConfig
    agent: Agent = field(default_factory=Agent)
    environment: dict[str, str] = field(default_factory=dict)
    parameters: dict[str, str] = field(default_factory=dict)
    shared: SharedState = field(default_factory=SharedState)
    execution_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    current_stage: str | None = None
    current_step: str | None = None
    last_error: str | None = None
    _dir_stack: list[Path] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self._dir_stack:
            self._dir_stack.append(self.config.working_dir)

    # ------------------------------------------------------------------
    # Working directory
    # ------------------------------------------------------------------

    @property
    def cwd(self) -> Path:
        """Current working directory."""
        return self._dir_stack[-1]

    @property
    def dir_depth(self) -> int:
        """Number of entries on the directory stack."""
        return len(self._dir_stack)

    def push_dir(self, path: str | Path) -> Path:
        """Enter ``path``; relative paths resolve against the current directory.

        Args:
            path: Directory to enter.

        Returns:
            The new current directory.
        """
        target = Path(self.expand(str(path)))
        if not target.is_absolute():
            target = self.cwd / target
        self._dir_stack.append(target)
        return target

    def pop_dir(self) -> Path:
        """Leave the current directory.

        Returns:
            The directory left.

        Raises:
            RuntimeError: If only the root directory remains.
        """
        if len(self._dir_stack) <= 1:
            raise RuntimeError("directory stack underflow")
        return self._dir_stack.pop()

    @contextmanager
    def pushd(self, path: str | Path) -> Iterator[Path]:
        """Scoped ``push_dir``: the directory is popped even on error."""
        target = self.push_dir(path)
        try:
            yield target
        finally:
            self.pop_dir()

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def resolve(self, name: str) -> str | None:
        """Look ``name`` up in parameters, then environment, then config and process env."""
        if name in self.parameters:
            return self.parameters[name]
        if name in self.environment:
            return self.environment[name]
        if name in self.config.environment:
            return self.config.environment[name]
        return os.environ.get(name)

    def expand(self, text: str) -> str:
        """Replace ``${VAR}`` placeholders; unresolved placeholders are kept."""

        def replacer(match: re.Match[str]) -> str:
            value = self.resolve(match.group(1))
            return match.group(0) if value is None else value

        return _VAR_PATTERN.sub(replacer, text)

    def overlay_env(self) -> dict[str, str]:
        """Variables exported to commands on top of the process environment."""
        return {**self.config.environment, **self.environment, **self.parameters}

    def variables(self) -> dict[str, str]:
        """All visible variables, process environment included."""
        return {**os.environ, **self.overlay_env()}

    # ------------------------------------------------------------------
    # Forking
    # ------------------------------------------------------------------

    def fork(
        self,
        *,
        environment: Mapping[str, str] | None = None,
        parameters: Mapping[str, str] | None = None,
        agent: Agent | None = None,
        stage: str | None = None,
    ) -> ExecutionContext:
        """Return an isolated copy sharing the run-wide store.

        Args:
            environment: Variables overlaid on the copied environment.
            parameters: Parameters overlaid on the copied parameters.
            agent: Agent override for the copy.
            stage: Stage marker of the copy.

        Returns:
            A new context with its own directory stack and variable maps.
        """
        return ExecutionContext(
            config=self.config,
            agent=agent or self.agent,
            environment={**self.environment, **(environment or {})},
            parameters={**self.parameters, **(parameters or {})},
            shared=self.shared,
            execution_id=self.execution_id,
            start_time=self.start_time,
            current_stage=stage if stage is not None else self.current_stage,
            _dir_stack=list(self._dir_stack),
        )

    # ------------------------------------------------------------------
    # Shared store shortcuts
    # ------------------------------------------------------------------

    @property
    def stage_results(self) -> list[StageResult]:
        """Recorded stage results of the run."""
        return self.shared.stage_results

    @property
    def step_results(self) -> list[StepResult]:
        """Recorded step results of the run."""
        return self.shared.step_results


__all__ = [
    "ExecutionContext",
    "SharedState",
]
