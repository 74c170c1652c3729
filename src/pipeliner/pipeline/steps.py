"""Step definitions.

A step is one of a closed set of kinds. Each kind is a frozen dataclass
deriving from ``Step``; ``Retry``, ``Timeout`` and ``Dir`` own nested steps,
which makes a stage body a finite tree walked by the step interpreter.

Every kind accepts three keyword-only overrides from ``Step``:

- ``name``: display name used in logs, events and results.
- ``timeout``: per-step deadline, equivalent to wrapping in ``Timeout``.
- ``retry``: per-step retry count, equivalent to wrapping in ``Retry``.

Examples:
    >>> step = Retry(2, Shell("make test"), name="tests")
    >>> step.kind
    <StepKind.RETRY: 'retry'>
    >>> step.display_name
    'tests'
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import KW_ONLY, dataclass, field
from enum import Enum
from typing import Any, ClassVar

from pipeliner.exceptions import PipelineValidationError
from pipeliner.pipeline.options import Parameter
from pipeliner.pipeline.validators import (
    validate_non_empty,
    validate_retry_count,
    validate_timeout,
)


class StepKind(str, Enum):
    """Tag of a step kind."""

    SHELL = "sh"
    ECHO = "echo"
    RETRY = "retry"
    TIMEOUT = "timeout"
    STASH = "stash"
    UNSTASH = "unstash"
    INPUT = "input"
    DIR = "dir"
    SCRIPT = "script"
    ARCHIVE = "archive"
    CUSTOM = "custom"


def _as_patterns(value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
    """Normalize a comma separated string or a sequence into a tuple of globs."""
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return tuple(value)


@dataclass(frozen=True, slots=True)
class Step:
    """Base of all step kinds.

    Attributes:
        name: Optional display name.
        timeout: Optional per-step deadline in seconds.
        retry: Optional per-step retry count.
    """

    kind: ClassVar[StepKind]

    _: KW_ONLY
    name: str | None = None
    timeout: float | None = None
    retry: int | None = None

    def __post_init__(self) -> None:
        """Validate the common overrides.

        Raises:
            PipelineValidationError: If timeout or retry is invalid.
        """
        if self.timeout is not None:
            validate_timeout(self.timeout, owner=f"Step '{self.display_name}'")
        if self.retry is not None:
            validate_retry_count(self.retry, owner=f"Step '{self.display_name}'")

    @property
    def display_name(self) -> str:
        """Name used in logs and results."""
        return self.name or self.describe()

    def describe(self) -> str:
        """Return a short description of the step."""
        return self.kind.value

    @property
    def children(self) -> tuple[Step, ...]:
        """Directly nested steps."""
        return ()

    def walk(self) -> Iterator[Step]:
        """Yield this step and all nested steps, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()


def _shorten(text: str, width: int = 40) -> str:
    first_line = text.strip().splitlines()[0] if text.strip() else ""
    return first_line if len(first_line) <= width else f"{first_line[: width - 3]}..."


@dataclass(frozen=True, slots=True)
class Shell(Step):
    """Run a shell command through the stage agent's backend."""

    kind: ClassVar[StepKind] = StepKind.SHELL
    command: str

    def __post_init__(self) -> None:
        validate_non_empty(self.command, field_name="Shell command")
        Step.__post_init__(self)

    def describe(self) -> str:
        return f"sh: {_shorten(self.command)}"


@dataclass(frozen=True, slots=True)
class Echo(Step):
    """Emit a message. Always succeeds."""

    kind: ClassVar[StepKind] = StepKind.ECHO
    message: str

    def describe(self) -> str:
        return f"echo: {_shorten(self.message)}"


@dataclass(frozen=True, slots=True)
class Retry(Step):
    """Run ``step`` up to ``count + 1`` times until it succeeds."""

    kind: ClassVar[StepKind] = StepKind.RETRY
    count: int
    step: Step

    def __post_init__(self) -> None:
        validate_retry_count(self.count, owner="Retry step")
        Step.__post_init__(self)

    def describe(self) -> str:
        return f"retry({self.count})"

    @property
    def children(self) -> tuple[Step, ...]:
        return (self.step,)


@dataclass(frozen=True, slots=True)
class Timeout(Step):
    """Run ``step`` under a deadline of ``duration`` seconds."""

    kind: ClassVar[StepKind] = StepKind.TIMEOUT
    duration: float
    step: Step

    def __post_init__(self) -> None:
        validate_timeout(self.duration, owner="Timeout step")
        Step.__post_init__(self)

    def describe(self) -> str:
        return f"timeout({self.duration:g}s)"

    @property
    def children(self) -> tuple[Step, ...]:
        return (self.step,)


@dataclass(frozen=True, slots=True)
class Stash(Step):
    """Save files matching ``includes`` under ``stash_name``.

    ``includes`` and ``excludes`` accept a tuple of globs or a Jenkins-style
    comma separated string. A path is excluded when it contains any
    ``excludes`` entry as a substring.
    """

    kind: ClassVar[StepKind] = StepKind.STASH
    stash_name: str
    includes: tuple[str, ...] = ("**",)
    excludes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        validate_non_empty(self.stash_name, field_name="Stash name")
        object.__setattr__(self, "includes", _as_patterns(self.includes))
        object.__setattr__(self, "excludes", _as_patterns(self.excludes))
        if not self.includes:
            raise PipelineValidationError(f"Stash '{self.stash_name}': 'includes' cannot be empty")
        Step.__post_init__(self)

    def describe(self) -> str:
        return f"stash({self.stash_name})"


@dataclass(frozen=True, slots=True)
class Unstash(Step):
    """Restore a previously stashed file set into the current directory."""

    kind: ClassVar[StepKind] = StepKind.UNSTASH
    stash_name: str

    def __post_init__(self) -> None:
        validate_non_empty(self.stash_name, field_name="Unstash name")
        Step.__post_init__(self)

    def describe(self) -> str:
        return f"unstash({self.stash_name})"


@dataclass(frozen=True, slots=True)
class Input(Step):
    """Wait for a human decision.

    Without an approval handler on the executor the step is a no-op.
    """

    kind: ClassVar[StepKind] = StepKind.INPUT
    message: str
    default: str | None = None
    parameters: tuple[Parameter, ...] = ()

    def describe(self) -> str:
        return f"input: {_shorten(self.message)}"


@dataclass(frozen=True, slots=True)
class Dir(Step):
    """Run ``steps`` with ``path`` as the working directory."""

    kind: ClassVar[StepKind] = StepKind.DIR
    path: str
    steps: tuple[Step, ...] = ()

    def __post_init__(self) -> None:
        validate_non_empty(self.path, field_name="Dir path")
        object.__setattr__(self, "steps", tuple(self.steps))
        if not self.steps:
            raise PipelineValidationError(f"Dir step '{self.path}' must contain at least one step")
        Step.__post_init__(self)

    def describe(self) -> str:
        return f"dir({self.path})"

    @property
    def children(self) -> tuple[Step, ...]:
        return self.steps


@dataclass(frozen=True, slots=True)
class Script(Step):
    """Run a multi-line shell script (from a temporary file where the backend can see one)."""

    kind: ClassVar[StepKind] = StepKind.SCRIPT
    content: str

    def __post_init__(self) -> None:
        validate_non_empty(self.content, field_name="Script content")
        Step.__post_init__(self)

    def describe(self) -> str:
        return f"script: {_shorten(self.content)}"


@dataclass(frozen=True, slots=True)
class Archive(Step):
    """Copy files matching ``patterns`` into the archive directory."""

    kind: ClassVar[StepKind] = StepKind.ARCHIVE
    patterns: tuple[str, ...]
    excludes: tuple[str, ...] = ()
    fingerprint: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "patterns", _as_patterns(self.patterns))
        object.__setattr__(self, "excludes", _as_patterns(self.excludes))
        if not self.patterns:
            raise PipelineValidationError("Archive step requires at least one pattern")
        Step.__post_init__(self)

    def describe(self) -> str:
        return f"archive({', '.join(self.patterns)})"


@dataclass(frozen=True, slots=True)
class Custom(Step):
    """Delegate to a handler registered under ``plugin``."""

    kind: ClassVar[StepKind] = StepKind.CUSTOM
    plugin: str
    config: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        validate_non_empty(self.plugin, field_name="Custom step plugin")
        Step.__post_init__(self)

    def describe(self) -> str:
        return f"custom({self.plugin})"


__all__ = [
    "Archive",
    "Custom",
    "Dir",
    "Echo",
    "Input",
    "Retry",
    "Script",
    "Shell",
    "Stash",
    "Step",
    "StepKind",
    "Timeout",
    "Unstash",
]
