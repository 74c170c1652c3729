"""Pipeline definitions for pipeliner.

This package holds the immutable definition tree consumed by the executor:
agents, steps, when/post conditions, matrix configurations, options and
the ``Pipeline``/``Stage`` models. Definitions can be built in Python or
loaded from YAML.

Examples:
    Programmatic pipeline:

    >>> from pipeliner.pipeline import Pipeline, Shell, Stage
    >>> pipeline = Pipeline(
    ...     name="demo",
    ...     stages=(Stage("Build", steps=(Shell("make build"),)),),
    ... )

    YAML pipeline:

    >>> from pipeliner.pipeline import load_pipeline
    >>> pipeline = load_pipeline("pipeline.yml")  # doctest: +SKIP
"""

from pipeliner.pipeline.agent import Agent, AgentKind
from pipeliner.pipeline.conditions import PostCondition, PostKind, WhenCondition, WhenKind
from pipeliner.pipeline.loader import load_pipeline, parse_pipeline, parse_step
from pipeliner.pipeline.matrix import AxisKind, MatrixAxis, MatrixCell, MatrixConfig, MatrixExclude
from pipeliner.pipeline.models import ParallelBranch, Pipeline, Stage
from pipeliner.pipeline.options import (
    BuildDiscarder,
    Parameter,
    ParameterType,
    PipelineOptions,
    Trigger,
    TriggerType,
)
from pipeliner.pipeline.steps import (
    Archive,
    Custom,
    Dir,
    Echo,
    Input,
    Retry,
    Script,
    Shell,
    Stash,
    Step,
    StepKind,
    Timeout,
    Unstash,
)

__all__ = [
    "Agent",
    "AgentKind",
    "Archive",
    "AxisKind",
    "BuildDiscarder",
    "Custom",
    "Dir",
    "Echo",
    "Input",
    "MatrixAxis",
    "MatrixCell",
    "MatrixConfig",
    "MatrixExclude",
    "ParallelBranch",
    "Parameter",
    "ParameterType",
    "Pipeline",
    "PipelineOptions",
    "PostCondition",
    "PostKind",
    "Retry",
    "Script",
    "Shell",
    "Stage",
    "Stash",
    "Step",
    "StepKind",
    "Timeout",
    "Trigger",
    "TriggerType",
    "Unstash",
    "WhenCondition",
    "WhenKind",
    "load_pipeline",
    "parse_pipeline",
    "parse_step",
]
