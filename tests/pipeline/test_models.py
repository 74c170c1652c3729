"""Tests for the pipeliner.pipeline.models module."""

from __future__ import annotations

import pytest

from pipeliner.exceptions import PipelineValidationError
from pipeliner.pipeline.agent import Agent, AgentKind
from pipeliner.pipeline.conditions import PostCondition, PostKind, WhenCondition
from pipeliner.pipeline.matrix import MatrixAxis, MatrixConfig
from pipeliner.pipeline.models import ParallelBranch, Pipeline, Stage
from pipeliner.pipeline.options import Parameter
from pipeliner.pipeline.steps import Dir, Echo, Retry, Shell

# ============================================================================
# Stage tests
# ============================================================================


class TestStage:
    """Tests for Stage validation."""

    def test_steps_stage(self) -> None:
        """Create a stage with a step list."""
        stage = Stage("Build", steps=(Shell("make"),))
        assert stage.name == "Build"
        assert len(stage.steps) == 1
        assert stage.agent is None

    def test_list_steps_normalized(self) -> None:
        """Step lists are stored as tuples."""
        stage = Stage("Build", steps=[Shell("make")])  # type: ignore[arg-type]
        assert isinstance(stage.steps, tuple)

    def test_empty_stage_rejected(self) -> None:
        """Reject a stage without steps, branches or matrix."""
        with pytest.raises(PipelineValidationError, match="must have steps, parallel branches or a matrix"):
            Stage("Empty")

    def test_empty_name_rejected(self) -> None:
        """Reject an empty stage name."""
        with pytest.raises(PipelineValidationError, match="cannot be empty"):
            Stage("  ", steps=(Shell("make"),))

    def test_long_name_rejected(self) -> None:
        """Reject a stage name longer than 100 characters."""
        with pytest.raises(PipelineValidationError, match="too long"):
            Stage("x" * 101, steps=(Shell("make"),))

    def test_matrix_requires_steps(self) -> None:
        """A matrix stage needs steps to run in each cell."""
        matrix = MatrixConfig(axes=(MatrixAxis.of_values("os", "linux"),))
        with pytest.raises(PipelineValidationError, match="matrix stage requires steps"):
            Stage("Test", matrix=matrix)

    def test_parallel_stage(self) -> None:
        """A stage may consist of parallel branches only."""
        stage = Stage(
            "Checks",
            parallel=(
                ParallelBranch.of(Stage("Lint", steps=(Shell("lint"),))),
                ParallelBranch.of(Stage("Unit", steps=(Shell("pytest"),))),
            ),
        )
        assert [branch.name for branch in stage.parallel] == ["Lint", "Unit"]

    def test_duplicate_branch_names_rejected(self) -> None:
        """Parallel branch names must be unique."""
        branch = ParallelBranch.of(Stage("Lint", steps=(Shell("lint"),)))
        with pytest.raises(PipelineValidationError, match="Duplicate"):
            Stage("Checks", parallel=(branch, branch))

    def test_invalid_env_name_rejected(self) -> None:
        """Stage environment keys must be valid variable names."""
        with pytest.raises(PipelineValidationError, match="invalid variable name"):
            Stage("Build", steps=(Shell("make"),), environment={"1BAD": "x"})

    def test_iter_steps_walks_nested_and_post(self) -> None:
        """iter_steps yields nested, branch and post steps."""
        stage = Stage(
            "Build",
            steps=(Retry(1, Shell("flaky")), Dir("sub", (Echo("in"),))),
            post=(PostCondition(PostKind.ALWAYS, (Echo("done"),)),),
        )
        kinds = [step.kind.value for step in stage.iter_steps()]
        assert kinds == ["retry", "sh", "dir", "echo", "echo"]


# ============================================================================
# Pipeline tests
# ============================================================================


class TestPipeline:
    """Tests for Pipeline validation."""

    def test_minimal_pipeline(self) -> None:
        """Create a one-stage pipeline with defaults."""
        pipeline = Pipeline(stages=(Stage("Build", steps=(Shell("make"),)),))
        assert pipeline.name == "pipeline"
        assert pipeline.agent.kind is AgentKind.ANY
        assert pipeline.stage_names == ["Build"]

    def test_empty_pipeline_rejected(self) -> None:
        """Reject a pipeline without stages."""
        with pytest.raises(PipelineValidationError, match="at least one stage"):
            Pipeline(stages=())

    def test_duplicate_stage_names_rejected(self) -> None:
        """Stage names must be unique."""
        stage = Stage("Build", steps=(Shell("make"),))
        with pytest.raises(PipelineValidationError, match="Duplicate stage name"):
            Pipeline(stages=(stage, stage))

    def test_duplicate_parameter_names_rejected(self) -> None:
        """Parameter names must be unique."""
        with pytest.raises(PipelineValidationError, match="Duplicate parameter name"):
            Pipeline(
                stages=(Stage("Build", steps=(Shell("make"),)),),
                parameters=(Parameter("TARGET"), Parameter("TARGET")),
            )

    def test_agent_none_requires_stage_agents(self) -> None:
        """With 'agent none' every stage must declare its own agent."""
        with pytest.raises(PipelineValidationError, match="agent none"):
            Pipeline(
                stages=(Stage("Build", steps=(Shell("make"),)),),
                agent=Agent(kind=AgentKind.NONE),
            )

    def test_agent_none_with_stage_agents(self) -> None:
        """'agent none' is valid when stages bring their own agent."""
        pipeline = Pipeline(
            stages=(Stage("Build", steps=(Shell("make"),), agent=Agent.docker("gcc:13")),),
            agent=Agent(kind=AgentKind.NONE),
        )
        assert pipeline.stages[0].agent is not None

    def test_get_stage(self) -> None:
        """Look up a top-level stage by name."""
        build = Stage("Build", steps=(Shell("make"),))
        pipeline = Pipeline(stages=(build, Stage("Test", steps=(Shell("make test"),))))
        assert pipeline.get_stage("Build") is build
        assert pipeline.get_stage("Deploy") is None

    def test_iter_steps_includes_pipeline_post(self) -> None:
        """Pipeline iter_steps includes pipeline-level post steps."""
        pipeline = Pipeline(
            stages=(Stage("Build", steps=(Shell("make"),), when=WhenCondition.branch("main")),),
            post=(PostCondition(PostKind.FAILURE, (Echo("notify"),)),),
        )
        assert len(list(pipeline.iter_steps())) == 2
