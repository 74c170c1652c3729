"""Tests for the pipeliner CLI application.

These tests drive the typer app through CliRunner.
"""

import json
import shutil
from pathlib import Path

import pytest
from typer.testing import CliRunner

from pipeliner import meta
from pipeliner.cli.app import app

# Mark all tests in this module as CLI tests
# Run with: pytest -m cli
pytestmark = pytest.mark.cli

runner = CliRunner()

# pylint: disable=redefined-outer-name

PIPELINE = """\
environment:
  APP: web
parameters:
  - name: TARGET
    default: dev
stages:
  - name: Build
    steps:
      - echo: "building ${APP} for ${TARGET}"
  - name: Test
    matrix:
      axes:
        - name: os
          values: [linux, mac]
        - name: py
          values: ["11", "12"]
      exclude:
        - {os: mac, py: "11"}
    steps:
      - echo: "testing ${os}/${py}"
  - name: Greet
    steps:
      - echo: "hello ${GREETING}"
"""


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Temporary working directory without any config file."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PIPELINER_CONFIG", raising=False)
    return tmp_path


@pytest.fixture
def pipeline_file(workspace: Path) -> Path:
    """Valid pipeline definition."""
    path = workspace / "pipeline.yml"
    path.write_text(PIPELINE, encoding="utf-8")
    return path


def _write(workspace: Path, name: str, content: str) -> Path:
    path = workspace / name
    path.write_text(content, encoding="utf-8")
    return path


# ============================================================================
# App
# ============================================================================


def test_app_help() -> None:
    """--help lists the commands."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("run", "check", "matrix"):
        assert command in result.stdout


def test_app_version() -> None:
    """--version prints the name and version."""
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"{meta.__app_name__} {meta.__version__}" in result.stdout


# ============================================================================
# check
# ============================================================================


def test_check_valid(pipeline_file: Path) -> None:
    """check prints the stage table and a summary."""
    result = runner.invoke(app, ["check", str(pipeline_file)])
    assert result.exit_code == 0
    assert "Pipeline 'pipeline'" in result.stdout
    assert "matrix (os, py)" in result.stdout
    assert "✓ 3 stage(s), 3 step(s), 1 parameter(s)" in result.stdout


def test_check_invalid(workspace: Path) -> None:
    """An invalid definition exits with 1."""
    path = _write(workspace, "bad.yml", "stages:\n  - name: Empty\n")
    result = runner.invoke(app, ["check", str(path)])
    assert result.exit_code == 1
    assert "Invalid pipeline" in result.stdout


def test_check_missing_file(workspace: Path) -> None:
    """A missing file is reported as an invalid pipeline."""
    result = runner.invoke(app, ["check", str(workspace / "nope.yml")])
    assert result.exit_code == 1
    assert "Invalid pipeline" in result.stdout


# ============================================================================
# matrix
# ============================================================================


def test_matrix_cells(pipeline_file: Path) -> None:
    """matrix lists the cells left after exclusions."""
    result = runner.invoke(app, ["matrix", str(pipeline_file), "Test"])
    assert result.exit_code == 0
    assert "os=linux-py=11" in result.stdout
    assert "os=mac-py=12" in result.stdout
    assert "os=mac-py=11" not in result.stdout
    assert "3 cell(s)" in result.stdout


def test_matrix_unknown_stage(pipeline_file: Path) -> None:
    """An unknown stage lists the available ones."""
    result = runner.invoke(app, ["matrix", str(pipeline_file), "Deploy"])
    assert result.exit_code == 1
    assert "Stage 'Deploy' not found" in result.stdout
    assert "Build, Test, Greet" in result.stdout


def test_matrix_without_matrix(pipeline_file: Path) -> None:
    """A plain stage has no cells."""
    result = runner.invoke(app, ["matrix", str(pipeline_file), "Build"])
    assert result.exit_code == 1
    assert "has no matrix" in result.stdout


# ============================================================================
# run
# ============================================================================


def test_run_dry_run(pipeline_file: Path, workspace: Path) -> None:
    """A dry run succeeds and prints the summary."""
    result = runner.invoke(app, ["run", str(pipeline_file), "--dry-run", "-w", str(workspace)])
    assert result.exit_code == 0, result.stdout
    assert "dry-run" in result.stdout
    assert "building web for dev" in result.stdout
    assert "testing linux/11" in result.stdout
    assert "Pipeline success" in result.stdout


def test_run_params_and_env(pipeline_file: Path, workspace: Path) -> None:
    """-p overrides parameters and -e adds variables."""
    output = workspace / "out.json"
    result = runner.invoke(
        app,
        [
            "run",
            str(pipeline_file),
            "--dry-run",
            "-w",
            str(workspace),
            "-p",
            "TARGET=prod",
            "-e",
            "GREETING=world",
            "-o",
            str(output),
        ],
    )
    assert result.exit_code == 0, result.stdout
    assert "building web for prod" in result.stdout
    assert "hello world" in result.stdout
    snapshot = json.loads(output.read_text(encoding="utf-8"))
    assert snapshot["status"] == "success"
    assert snapshot["stages_executed"] == 3


def test_run_bad_assignment(pipeline_file: Path) -> None:
    """-e entries must be KEY=VALUE."""
    result = runner.invoke(app, ["run", str(pipeline_file), "--dry-run", "-e", "NOEQUALS"])
    assert result.exit_code == 2


def test_run_invalid_pipeline(workspace: Path) -> None:
    """An invalid definition exits with 1 before running anything."""
    path = _write(workspace, "bad.yml", "stages: []\n")
    result = runner.invoke(app, ["run", str(path), "--dry-run"])
    assert result.exit_code == 1
    assert "at least one stage" in result.stdout


def test_run_with_config_file(pipeline_file: Path, workspace: Path) -> None:
    """Execution settings come from the config file."""
    config = _write(workspace, "custom.conf.yml", "execution:\n  environment:\n    GREETING: config\n")
    result = runner.invoke(app, ["run", str(pipeline_file), "--dry-run", "-c", str(config), "-w", str(workspace)])
    assert result.exit_code == 0, result.stdout
    assert "hello config" in result.stdout


def test_run_bad_config_key(pipeline_file: Path, workspace: Path) -> None:
    """Unknown execution keys are rejected."""
    config = _write(workspace, "bad.conf.yml", "execution:\n  turbo: true\n")
    result = runner.invoke(app, ["run", str(pipeline_file), "-c", str(config)])
    assert result.exit_code == 1
    assert "Unknown execution config keys" in result.stdout


@pytest.mark.skipif(shutil.which("sh") is None, reason="requires a POSIX shell")
def test_run_failure_exit_code(workspace: Path) -> None:
    """A failing pipeline exits with 1 and shows the error."""
    path = _write(workspace, "fail.yml", "stages:\n  - name: Broken\n    steps:\n      - sh: exit 3\n")
    result = runner.invoke(app, ["run", str(path), "-w", str(workspace)])
    assert result.exit_code == 1
    assert "stage 'Broken' failed" in result.stdout
