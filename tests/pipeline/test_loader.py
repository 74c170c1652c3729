"""Tests for building pipelines from mappings and YAML files."""

from __future__ import annotations

from pathlib import Path

import pytest

from pipeliner.exceptions import PipelineValidationError
from pipeliner.pipeline.agent import AgentKind
from pipeliner.pipeline.conditions import PostKind, WhenKind
from pipeliner.pipeline.loader import (
    load_pipeline,
    parse_agent,
    parse_duration,
    parse_pipeline,
    parse_step,
)
from pipeliner.pipeline.options import ParameterType, TriggerType
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
    Timeout,
    Unstash,
)

PIPELINE_YAML = """\
agent: any
environment:
  APP: web
parameters:
  - name: TARGET
    type: choice
    choices: [dev, prod]
  - name: DEBUG
    type: boolean
    default: true
options:
  timeout: 30m
  retry: 1
triggers:
  - cron: "H 2 * * *"
  - manual
stages:
  - name: Build
    steps:
      - sh: make build
      - stash:
          name: dist
          includes: "dist/**"
  - name: Test
    agent:
      docker:
        image: python:3.12
        args: [--rm]
    when:
      branch: main
    parallel:
      Unit:
        steps:
          - sh: pytest
      Lint:
        steps:
          - sh: ruff check
  - name: Matrix
    matrix:
      axes:
        - name: os
          values: [linux, mac]
        - name: py
          range: {start: 11, end: 12}
      exclude:
        - {os: mac, py: "11"}
    steps:
      - echo: "${os} ${py}"
post:
  always:
    - echo: done
  failure:
    - sh: ./notify.sh
"""


# ============================================================================
# Steps
# ============================================================================


class TestParseStep:
    """Tests for parse_step."""

    def test_bare_string_is_shell(self) -> None:
        """A bare string is a shell step."""
        assert parse_step("make") == Shell("make")

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ({"sh": "make"}, Shell("make")),
            ({"shell": "make"}, Shell("make")),
            ({"echo": "hi"}, Echo("hi")),
            ({"script": "a\nb"}, Script("a\nb")),
            ({"unstash": "dist"}, Unstash("dist")),
            ({"unstash": {"name": "dist"}}, Unstash("dist")),
            ({"input": "Deploy?"}, Input("Deploy?")),
            ({"custom": "notify"}, Custom("notify")),
            ({"archive": "dist/*.whl"}, Archive(("dist/*.whl",))),
            ({"archive_artifacts": ["a", "b"]}, Archive(("a", "b"))),
            ({"stash": "all"}, Stash("all")),
        ],
    )
    def test_simple_forms(self, raw: dict[str, object], expected: object) -> None:
        """Short forms build the expected step."""
        assert parse_step(raw) == expected

    def test_retry(self) -> None:
        """Retry wraps a nested step."""
        step = parse_step({"retry": {"count": 3, "step": {"sh": "flaky"}}})
        assert step == Retry(3, Shell("flaky"))

    def test_timeout_with_units(self) -> None:
        """Timeout durations accept unit suffixes."""
        step = parse_step({"timeout": {"duration": "2m", "step": "sleep 1"}})
        assert isinstance(step, Timeout)
        assert step.duration == 120.0

    def test_dir(self) -> None:
        """Dir holds a nested step list."""
        step = parse_step({"dir": {"path": "app", "steps": ["make", {"echo": "built"}]}})
        assert step == Dir("app", (Shell("make"), Echo("built")))

    def test_stash_mapping(self) -> None:
        """Stash mapping form carries includes and excludes."""
        step = parse_step({"stash": {"name": "dist", "includes": ["dist/**"], "excludes": "tmp"}})
        assert isinstance(step, Stash)
        assert step.includes == ("dist/**",)
        assert step.excludes == ("tmp",)

    def test_archive_mapping(self) -> None:
        """Archive mapping form carries fingerprint."""
        step = parse_step({"archive": {"patterns": "*.whl", "fingerprint": True}})
        assert isinstance(step, Archive)
        assert step.fingerprint is True

    def test_custom_mapping(self) -> None:
        """Custom mapping form carries its config."""
        step = parse_step({"custom": {"plugin": "notify", "config": {"channel": "ci"}}})
        assert step == Custom("notify", {"channel": "ci"})

    def test_input_mapping(self) -> None:
        """Input mapping form carries parameters."""
        step = parse_step({"input": {"message": "Go?", "default": "yes", "parameters": [{"name": "WHO"}]}})
        assert isinstance(step, Input)
        assert step.default == "yes"
        assert step.parameters[0].name == "WHO"

    def test_overrides(self) -> None:
        """name, timeout and retry sit next to the kind key."""
        step = parse_step({"sh": "make", "name": "build", "timeout": "30s", "retry": 2})
        assert step.name == "build"
        assert step.timeout == 30.0
        assert step.retry == 2

    def test_unknown_kind(self) -> None:
        """Unknown kinds are reported with their location."""
        with pytest.raises(PipelineValidationError, match=r"stages\[0\]: unknown step kind 'bogus'"):
            parse_step({"bogus": "x"}, "stages[0]")

    def test_several_kinds(self) -> None:
        """A step mapping holds exactly one kind."""
        with pytest.raises(PipelineValidationError, match="exactly one step kind"):
            parse_step({"sh": "a", "echo": "b"})

    def test_retry_requires_step(self) -> None:
        """Retry without a nested step is rejected."""
        with pytest.raises(PipelineValidationError, match="requires a 'step'"):
            parse_step({"retry": {"count": 1}})

    def test_bad_integer(self) -> None:
        """Non-integer counts are rejected."""
        with pytest.raises(PipelineValidationError, match="expected an integer"):
            parse_step({"sh": "make", "retry": "many"})


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(90, 90.0), (1.5, 1.5), ("45", 45.0), ("30s", 30.0), ("5m", 300.0), ("1h", 3600.0), ("1d", 86400.0), ("500ms", 0.5)],
    )
    def test_valid(self, value: object, expected: float) -> None:
        """Numbers and unit literals are converted to seconds."""
        assert parse_duration(value, "timeout") == expected

    @pytest.mark.parametrize("value", ["soon", "5 weeks", True])
    def test_invalid(self, value: object) -> None:
        """Anything else is rejected."""
        with pytest.raises(PipelineValidationError, match="invalid duration"):
            parse_duration(value, "timeout")


class TestParseAgent:
    """Tests for parse_agent."""

    def test_string_forms(self) -> None:
        """any and none are plain strings."""
        assert parse_agent("any").kind is AgentKind.ANY
        assert parse_agent("none").kind is AgentKind.NONE

    def test_shorthand(self) -> None:
        """{kind: value} sets the label or image."""
        assert parse_agent({"label": "linux"}).label == "linux"
        assert parse_agent({"docker": "alpine"}).image == "alpine"

    def test_kind_key(self) -> None:
        """A 'kind' key selects the agent kind."""
        agent = parse_agent({"kind": "kubernetes", "image": "alpine", "namespace": "ci"})
        assert agent.kind is AgentKind.KUBERNETES
        assert agent.namespace == "ci"

    def test_unknown(self) -> None:
        """Unknown agents and keys are rejected."""
        with pytest.raises(PipelineValidationError, match="unknown agent"):
            parse_agent("somewhere")
        with pytest.raises(PipelineValidationError, match="unknown keys"):
            parse_agent({"docker": {"image": "alpine", "gpu": True}})


# ============================================================================
# Pipelines
# ============================================================================


class TestParsePipeline:
    """Tests for parse_pipeline and load_pipeline."""

    def test_load_full_file(self, tmp_path: Path) -> None:
        """Load every section of a YAML definition."""
        path = tmp_path / "release.yml"
        path.write_text(PIPELINE_YAML, encoding="utf-8")

        pipeline = load_pipeline(path)

        assert pipeline.name == "release"
        assert pipeline.environment == {"APP": "web"}
        assert pipeline.stage_names == ["Build", "Test", "Matrix"]
        assert pipeline.parameters[0].type is ParameterType.CHOICE
        assert pipeline.parameters[1].default is True
        assert pipeline.options.timeout == 1800.0
        assert [t.type for t in pipeline.triggers] == [TriggerType.CRON, TriggerType.MANUAL]
        assert [p.kind for p in pipeline.post] == [PostKind.ALWAYS, PostKind.FAILURE]

        test = pipeline.stages[1]
        assert test.agent is not None and test.agent.image == "python:3.12"
        assert test.agent.args == ("--rm",)
        assert test.when is not None and test.when.kind is WhenKind.BRANCH
        assert [branch.name for branch in test.parallel] == ["Unit", "Lint"]

        matrix = pipeline.stages[2].matrix
        assert matrix is not None
        assert matrix.cell_count() == 3

    def test_name_from_data(self, tmp_path: Path) -> None:
        """An explicit name wins over the file stem."""
        path = tmp_path / "x.yml"
        path.write_text("name: demo\nstages:\n  - name: A\n    steps: [make]\n", encoding="utf-8")
        assert load_pipeline(path).name == "demo"

    def test_implicit_all_of(self) -> None:
        """Several when keys form an implicit all_of."""
        pipeline = parse_pipeline(
            {
                "stages": [
                    {
                        "name": "Deploy",
                        "steps": ["make deploy"],
                        "when": {"branch": "main", "environment": {"name": "CI", "value": "true"}},
                    }
                ]
            }
        )
        when = pipeline.stages[0].when
        assert when is not None
        assert when.kind is WhenKind.ALL_OF
        assert [c.kind for c in when.conditions] == [WhenKind.BRANCH, WhenKind.ENVIRONMENT]

    def test_nested_when(self) -> None:
        """Composite when conditions nest."""
        pipeline = parse_pipeline(
            {
                "stages": [
                    {
                        "name": "Deploy",
                        "steps": ["make deploy"],
                        "when": {"any_of": [{"tag": "v*"}, {"not": {"expression": "${SKIP} == true"}}]},
                    }
                ]
            }
        )
        when = pipeline.stages[0].when
        assert when is not None
        assert when.conditions[1].kind is WhenKind.NOT

    def test_parallel_list_form(self) -> None:
        """Parallel branches may be given as a list of stages."""
        pipeline = parse_pipeline(
            {"stages": [{"name": "Checks", "parallel": [{"name": "A", "steps": ["a"]}, {"name": "B", "steps": ["b"]}]}]}
        )
        assert [b.name for b in pipeline.stages[0].parallel] == ["A", "B"]

    def test_errors_carry_location(self) -> None:
        """Validation errors name the offending node."""
        with pytest.raises(PipelineValidationError, match=r"stages\[1\]: stage missing 'name'"):
            parse_pipeline({"stages": [{"name": "A", "steps": ["a"]}, {"steps": ["b"]}]})
        with pytest.raises(PipelineValidationError, match=r"stages\[0\]: unknown keys \['stepz'\]"):
            parse_pipeline({"stages": [{"name": "A", "stepz": ["a"]}]})
        with pytest.raises(PipelineValidationError, match="unknown post condition 'sometimes'"):
            parse_pipeline({"stages": [{"name": "A", "steps": ["a"]}], "post": {"sometimes": ["a"]}})

    def test_structural_errors(self) -> None:
        """Model validation still applies."""
        with pytest.raises(PipelineValidationError, match="at least one stage"):
            parse_pipeline({"stages": []})

    def test_bad_files(self, tmp_path: Path) -> None:
        """Unreadable, invalid and non-mapping files are rejected."""
        with pytest.raises(PipelineValidationError, match="Cannot read"):
            load_pipeline(tmp_path / "missing.yml")
        bad = tmp_path / "bad.yml"
        bad.write_text("stages: [unclosed\n", encoding="utf-8")
        with pytest.raises(PipelineValidationError, match="Invalid YAML"):
            load_pipeline(bad)
        listing = tmp_path / "list.yml"
        listing.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(PipelineValidationError, match="must contain a mapping"):
            load_pipeline(listing)
