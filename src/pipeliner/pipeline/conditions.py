"""When-conditions and post-conditions attached to stages and pipelines."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pipeliner.exceptions import PipelineValidationError
from pipeliner.pipeline.steps import Step
from pipeliner.pipeline.validators import validate_non_empty


class WhenKind(str, Enum):
    """Kind of a when-condition node.

    Attributes:
        BRANCH: Branch name matches a glob pattern.
        TAG: Tag name matches a glob pattern.
        ENVIRONMENT: A variable equals a value or matches a glob pattern.
        EXPRESSION: A boolean expression over run variables.
        ALL_OF: Every child condition holds.
        ANY_OF: At least one child condition holds.
        NOT: The child condition does not hold.
    """

    BRANCH = "branch"
    TAG = "tag"
    ENVIRONMENT = "environment"
    EXPRESSION = "expression"
    ALL_OF = "all_of"
    ANY_OF = "any_of"
    NOT = "not"


@dataclass(frozen=True, slots=True)
class WhenCondition:
    """Recursive boolean guard deciding whether a stage runs.

    Attributes:
        kind: Node kind.
        pattern: Glob pattern (``branch``, ``tag``, ``environment``).
        name: Variable name (``environment``).
        value: Exact expected value (``environment``).
        expression: Expression text (``expression``).
        conditions: Child conditions (``all_of``, ``any_of``, ``not``).

    Examples:
        >>> cond = WhenCondition.all_of(
        ...     WhenCondition.branch("main"),
        ...     WhenCondition.not_(WhenCondition.environment("SKIP", "true")),
        ... )
        >>> len(cond.conditions)
        2
    """

    kind: WhenKind
    pattern: str | None = None
    name: str | None = None
    value: str | None = None
    expression: str | None = None
    conditions: tuple[WhenCondition, ...] = ()

    def __post_init__(self) -> None:
        """Validate the node.

        Raises:
            PipelineValidationError: If required fields are missing.
        """
        if self.kind in (WhenKind.BRANCH, WhenKind.TAG):
            validate_non_empty(self.pattern or "", field_name=f"{self.kind.value.capitalize()} pattern")
        elif self.kind == WhenKind.ENVIRONMENT:
            validate_non_empty(self.name or "", field_name="Environment condition name")
            if self.value is None and self.pattern is None:
                raise PipelineValidationError(f"Environment condition '{self.name}' requires 'value' or 'pattern'")
        elif self.kind == WhenKind.EXPRESSION:
            validate_non_empty(self.expression or "", field_name="Expression")
        elif self.kind == WhenKind.NOT:
            if len(self.conditions) != 1:
                raise PipelineValidationError("'not' condition requires exactly one child condition")
        elif not self.conditions:
            raise PipelineValidationError(f"'{self.kind.value}' condition requires at least one child condition")

    @classmethod
    def branch(cls, pattern: str) -> WhenCondition:
        """Return a branch condition."""
        return cls(WhenKind.BRANCH, pattern=pattern)

    @classmethod
    def tag(cls, pattern: str) -> WhenCondition:
        """Return a tag condition."""
        return cls(WhenKind.TAG, pattern=pattern)

    @classmethod
    def environment(cls, name: str, value: str | None = None, *, pattern: str | None = None) -> WhenCondition:
        """Return an environment condition matching ``value`` exactly or ``pattern`` as a glob."""
        return cls(WhenKind.ENVIRONMENT, name=name, value=value, pattern=pattern)

    @classmethod
    def expr(cls, expression: str) -> WhenCondition:
        """Return an expression condition."""
        return cls(WhenKind.EXPRESSION, expression=expression)

    @classmethod
    def all_of(cls, *conditions: WhenCondition) -> WhenCondition:
        """Return a conjunction."""
        return cls(WhenKind.ALL_OF, conditions=tuple(conditions))

    @classmethod
    def any_of(cls, *conditions: WhenCondition) -> WhenCondition:
        """Return a disjunction."""
        return cls(WhenKind.ANY_OF, conditions=tuple(conditions))

    @classmethod
    def not_(cls, condition: WhenCondition) -> WhenCondition:
        """Return a negation."""
        return cls(WhenKind.NOT, conditions=(condition,))


class PostKind(str, Enum):
    """Trigger class of a post-condition.

    Attributes:
        ALWAYS: Every terminal status.
        SUCCESS: Status is ``success``.
        FAILURE: Status is failing (failure, timeout, aborted).
        UNSTABLE: Status is ``unstable`` or failing.
        CHANGED: Status differs from the previous run.
        CLEANUP: Every terminal status, after all other post-conditions.
    """

    ALWAYS = "always"
    SUCCESS = "success"
    FAILURE = "failure"
    UNSTABLE = "unstable"
    CHANGED = "changed"
    CLEANUP = "cleanup"


@dataclass(frozen=True, slots=True)
class PostCondition:
    """Step list run after a stage or pipeline, selected by its result.

    Attributes:
        kind: Trigger class.
        steps: Steps to run when the trigger matches.
    """

    kind: PostKind
    steps: tuple[Step, ...]

    def __post_init__(self) -> None:
        """Validate the step list.

        Raises:
            PipelineValidationError: If no step is declared.
        """
        object.__setattr__(self, "steps", tuple(self.steps))
        if not self.steps:
            raise PipelineValidationError(f"Post condition '{self.kind.value}' must contain at least one step")


def ordered_posts(posts: tuple[PostCondition, ...]) -> list[PostCondition]:
    """Return post-conditions in execution order: declared order, cleanup last."""
    return [p for p in posts if p.kind != PostKind.CLEANUP] + [p for p in posts if p.kind == PostKind.CLEANUP]


__all__ = [
    "PostCondition",
    "PostKind",
    "WhenCondition",
    "WhenKind",
    "ordered_posts",
]
