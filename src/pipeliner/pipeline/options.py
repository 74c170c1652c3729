"""Pipeline options, build parameters and triggers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pipeliner.exceptions import PipelineValidationError
from pipeliner.pipeline.validators import (
    ENV_NAME_PATTERN,
    validate_cron,
    validate_non_empty,
    validate_timeout,
)


class ParameterType(str, Enum):
    """Kind of a build parameter.

    Attributes:
        STRING: Free-form string.
        BOOLEAN: ``true``/``false`` flag.
        CHOICE: One value out of a fixed list.
    """

    STRING = "string"
    BOOLEAN = "boolean"
    CHOICE = "choice"


@dataclass(frozen=True, slots=True)
class Parameter:
    """Build parameter declared by a pipeline.

    Parameter defaults seed the run's parameter overlay, which takes
    precedence over environment variables during ``${VAR}`` expansion.

    Attributes:
        name: Parameter name (a valid variable identifier).
        type: Parameter kind.
        default: Default value (string or boolean).
        description: Help text.
        choices: Allowed values for ``choice`` parameters.

    Examples:
        >>> Parameter("TARGET", ParameterType.CHOICE, choices=("dev", "prod")).default_value
        'dev'
        >>> Parameter("DEBUG", ParameterType.BOOLEAN, default=True).default_value
        'true'
    """

    name: str
    type: ParameterType = ParameterType.STRING
    default: str | bool | None = None
    description: str = ""
    choices: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate the parameter.

        Raises:
            PipelineValidationError: If the name, default or choices are invalid.
        """
        if not ENV_NAME_PATTERN.match(self.name or ""):
            raise PipelineValidationError(f"Invalid parameter name {self.name!r}")
        if self.type == ParameterType.CHOICE:
            if not self.choices:
                raise PipelineValidationError(f"Parameter '{self.name}': choice parameter requires 'choices'")
            if self.default is not None and self.default not in self.choices:
                raise PipelineValidationError(
                    f"Parameter '{self.name}': default {self.default!r} is not one of {list(self.choices)}"
                )
        elif self.choices:
            raise PipelineValidationError(f"Parameter '{self.name}': only choice parameters accept 'choices'")

    @property
    def default_value(self) -> str:
        """Default rendered as the string injected into the run."""
        if self.type == ParameterType.CHOICE and self.default is None:
            return self.choices[0]
        if self.type == ParameterType.BOOLEAN:
            return "true" if self.default is True or str(self.default).lower() == "true" else "false"
        if self.default is None:
            return ""
        return str(self.default)


class TriggerType(str, Enum):
    """Kind of a pipeline trigger.

    Attributes:
        CRON: Time-based schedule.
        POLL_SCM: Periodic source control polling.
        UPSTREAM: Completion of an upstream project.
        MANUAL: Explicit user action.
    """

    CRON = "cron"
    POLL_SCM = "poll_scm"
    UPSTREAM = "upstream"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class Trigger:
    """Declared pipeline trigger.

    Triggers are metadata for schedulers; the executor does not act on them.

    Attributes:
        type: Trigger kind.
        expression: Cron expression (``cron``).
        timezone: Optional timezone for the cron expression.
        interval: Polling interval in minutes (``poll_scm``).
        project: Upstream project name (``upstream``).
        threshold: Upstream result threshold (``upstream``).
    """

    type: TriggerType
    expression: str | None = None
    timezone: str | None = None
    interval: int | None = None
    project: str | None = None
    threshold: str = "SUCCESS"

    def __post_init__(self) -> None:
        """Validate trigger fields for the selected kind.

        Raises:
            PipelineValidationError: If the trigger is malformed.
        """
        if self.type == TriggerType.CRON:
            validate_cron(self.expression or "")
        elif self.type == TriggerType.POLL_SCM:
            if self.interval is None or self.interval <= 0:
                raise PipelineValidationError("Poll interval must be positive")
        elif self.type == TriggerType.UPSTREAM:
            validate_non_empty(self.project or "", field_name="Upstream project")

    @classmethod
    def cron(cls, expression: str, timezone: str | None = None) -> Trigger:
        """Return a cron trigger."""
        return cls(TriggerType.CRON, expression=expression, timezone=timezone)

    @classmethod
    def poll_scm(cls, interval: int) -> Trigger:
        """Return a poll-SCM trigger."""
        return cls(TriggerType.POLL_SCM, interval=interval)

    @classmethod
    def upstream(cls, project: str, threshold: str = "SUCCESS") -> Trigger:
        """Return an upstream trigger."""
        return cls(TriggerType.UPSTREAM, project=project, threshold=threshold)


@dataclass(frozen=True, slots=True)
class BuildDiscarder:
    """Retention policy for build records.

    Attributes:
        num_to_keep: Number of builds to keep.
        days_to_keep: Maximum age of kept builds, in days.
    """

    num_to_keep: int = 10
    days_to_keep: int | None = None

    def __post_init__(self) -> None:
        """Validate retention values.

        Raises:
            PipelineValidationError: If a value is not positive.
        """
        if self.num_to_keep <= 0:
            raise PipelineValidationError(f"build_discarder: num_to_keep must be positive, got {self.num_to_keep}")
        if self.days_to_keep is not None and self.days_to_keep <= 0:
            raise PipelineValidationError(f"build_discarder: days_to_keep must be positive, got {self.days_to_keep}")


@dataclass(frozen=True, slots=True)
class PipelineOptions:
    """Pipeline-wide options.

    Attributes:
        timeout: Wall-clock bound for the whole run, in seconds.
        retry: Number of whole-pipeline re-runs after a failing run.
        skip_default_checkout: Informational Jenkins flag.
        build_discarder: Build retention policy.
    """

    timeout: float | None = None
    retry: int | None = None
    skip_default_checkout: bool = False
    build_discarder: BuildDiscarder | None = None

    def __post_init__(self) -> None:
        """Validate option values.

        Raises:
            PipelineValidationError: If timeout or retry is invalid.
        """
        if self.timeout is not None:
            validate_timeout(self.timeout, owner="Pipeline options")
        if self.retry is not None and self.retry <= 0:
            raise PipelineValidationError(f"Pipeline options: retry must be positive, got {self.retry}")


__all__ = [
    "BuildDiscarder",
    "Parameter",
    "ParameterType",
    "PipelineOptions",
    "Trigger",
    "TriggerType",
]
