"""Data models for pipeline definitions.

This module defines the immutable tree executed by ``pipeliner.executor``:

- Stage: Named unit of work (steps, parallel branches or a matrix)
- ParallelBranch: Named stage run concurrently with its siblings
- Pipeline: Ordered stages plus pipeline-wide agent, environment,
  parameters, options, triggers and post-conditions

All models are frozen dataclasses validated in ``__post_init__``. Building a
model is the validation step: an invalid definition raises
``PipelineValidationError`` and never reaches the executor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pipeliner.exceptions import PipelineValidationError
from pipeliner.pipeline.agent import Agent, AgentKind
from pipeliner.pipeline.conditions import PostCondition, WhenCondition
from pipeliner.pipeline.matrix import MatrixConfig
from pipeliner.pipeline.options import Parameter, PipelineOptions, Trigger
from pipeliner.pipeline.validators import (
    validate_env,
    validate_non_empty,
    validate_stage_name,
    validate_unique_names,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from pipeliner.pipeline.steps import Step


@dataclass(frozen=True, slots=True)
class Stage:
    """A named stage.

    Attributes:
        name: Stage name, unique within its pipeline.
        steps: Ordered steps (the stage body).
        agent: Agent override for this stage.
        environment: Stage-local variables, overlaying pipeline variables.
        parallel: Branches run concurrently instead of ``steps``.
        matrix: Matrix expansion of ``steps``.
        when: Guard deciding whether the stage runs.
        post: Post-conditions evaluated after the stage body.

    Examples:
        >>> from pipeliner.pipeline.steps import Shell
        >>> Stage("Build", steps=(Shell("make"),)).name
        'Build'
        >>> Stage("Empty")
        Traceback (most recent call last):
            ...
        pipeliner.exceptions.PipelineValidationError: Stage 'Empty' must have steps, parallel branches or a matrix
    """

    name: str
    steps: tuple[Step, ...] = ()
    agent: Agent | None = None
    environment: dict[str, str] = field(default_factory=dict)
    parallel: tuple[ParallelBranch, ...] = ()
    matrix: MatrixConfig | None = None
    when: WhenCondition | None = None
    post: tuple[PostCondition, ...] = ()

    def __post_init__(self) -> None:
        """Validate the stage.

        Raises:
            PipelineValidationError: If the stage is empty or malformed.
        """
        validate_stage_name(self.name)
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "parallel", tuple(self.parallel))
        object.__setattr__(self, "post", tuple(self.post))
        if not self.steps and not self.parallel and self.matrix is None:
            raise PipelineValidationError(f"Stage '{self.name}' must have steps, parallel branches or a matrix")
        if self.matrix is not None and not self.steps:
            raise PipelineValidationError(f"Stage '{self.name}': a matrix stage requires steps to run in each cell")
        if self.environment:
            validate_env(self.environment, owner=f"Stage '{self.name}'")
        validate_unique_names((branch.name for branch in self.parallel), kind=f"parallel branch in '{self.name}'")

    def iter_steps(self) -> Iterator[Step]:
        """Yield every step of the stage, nested and post steps included."""
        for step in self.steps:
            yield from step.walk()
        for branch in self.parallel:
            yield from branch.stage.iter_steps()
        for post in self.post:
            for step in post.steps:
                yield from step.walk()


@dataclass(frozen=True, slots=True)
class ParallelBranch:
    """A stage run concurrently with its sibling branches.

    Attributes:
        name: Branch name.
        stage: Stage executed by the branch.
    """

    name: str
    stage: Stage

    def __post_init__(self) -> None:
        """Validate the branch name.

        Raises:
            PipelineValidationError: If the name is empty.
        """
        validate_non_empty(self.name, field_name="Parallel branch name")

    @classmethod
    def of(cls, stage: Stage) -> ParallelBranch:
        """Return a branch named after ``stage``."""
        return cls(stage.name, stage)


@dataclass(frozen=True, slots=True)
class Pipeline:
    """A complete pipeline definition.

    Attributes:
        stages: Ordered stages.
        name: Pipeline name.
        agent: Default agent for stages without an override.
        environment: Pipeline-wide variables.
        parameters: Build parameters; their defaults seed the run.
        options: Pipeline-wide options (timeout, retry, ...).
        triggers: Declared triggers.
        post: Pipeline-level post-conditions.

    Examples:
        >>> from pipeliner.pipeline.steps import Shell
        >>> pipeline = Pipeline(stages=(Stage("Build", steps=(Shell("make"),)),), name="demo")
        >>> pipeline.stage_names
        ['Build']
    """

    stages: tuple[Stage, ...]
    name: str = "pipeline"
    agent: Agent = field(default_factory=Agent)
    environment: dict[str, str] = field(default_factory=dict)
    parameters: tuple[Parameter, ...] = ()
    options: PipelineOptions = field(default_factory=PipelineOptions)
    triggers: tuple[Trigger, ...] = ()
    post: tuple[PostCondition, ...] = ()

    def __post_init__(self) -> None:
        """Validate the pipeline.

        Raises:
            PipelineValidationError: If the pipeline is empty or malformed.
        """
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(self, "parameters", tuple(self.parameters))
        object.__setattr__(self, "triggers", tuple(self.triggers))
        object.__setattr__(self, "post", tuple(self.post))
        validate_non_empty(self.name, field_name="Pipeline name")
        if not self.stages:
            raise PipelineValidationError("Pipeline must have at least one stage")
        validate_unique_names(self.stage_names, kind="stage")
        validate_unique_names((p.name for p in self.parameters), kind="parameter")
        if self.environment:
            validate_env(self.environment, owner=f"Pipeline '{self.name}'")
        if self.agent.kind == AgentKind.NONE:
            missing = [stage.name for stage in self.stages if stage.agent is None and not stage.parallel]
            if missing:
                raise PipelineValidationError(
                    f"Pipeline declares 'agent none' but stages {missing} have no agent of their own"
                )

    @property
    def stage_names(self) -> list[str]:
        """Names of the top-level stages, in order."""
        return [stage.name for stage in self.stages]

    def get_stage(self, name: str) -> Stage | None:
        """Return the top-level stage called ``name``, if any."""
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def iter_steps(self) -> Iterator[Step]:
        """Yield every step of the pipeline, nested and post steps included."""
        for stage in self.stages:
            yield from stage.iter_steps()
        for post in self.post:
            for step in post.steps:
                yield from step.walk()


__all__ = [
    "ParallelBranch",
    "Pipeline",
    "Stage",
]
