"""Tests for ExecutionContext and SharedState."""

from __future__ import annotations

from pathlib import Path

import pytest

from pipeliner.config import ExecutionConfig
from pipeliner.executor.context import ExecutionContext, SharedState
from pipeliner.executor.status import ExecutionStatus, StageResult
from pipeliner.pipeline.agent import Agent

# ============================================================================
# Working directory stack
# ============================================================================


class TestDirectoryStack:
    """Tests for push_dir/pop_dir/pushd."""

    def test_starts_at_working_dir(self, context: ExecutionContext, tmp_path: Path) -> None:
        """The stack starts at the configured working directory."""
        assert context.cwd == tmp_path.resolve()
        assert context.dir_depth == 1

    def test_relative_push(self, context: ExecutionContext) -> None:
        """Relative paths resolve against the current directory."""
        root = context.cwd
        context.push_dir("a")
        context.push_dir("b")
        assert context.cwd == root / "a" / "b"
        assert context.pop_dir() == root / "a" / "b"
        assert context.cwd == root / "a"

    def test_absolute_push(self, context: ExecutionContext, tmp_path: Path) -> None:
        """Absolute paths replace the current directory."""
        target = tmp_path / "elsewhere"
        assert context.push_dir(target) == target

    def test_push_expands_variables(self, context: ExecutionContext) -> None:
        """Variables in the path are expanded."""
        context.parameters["MOD"] = "core"
        assert context.push_dir("src/${MOD}").name == "core"

    def test_underflow(self, context: ExecutionContext) -> None:
        """The root directory cannot be popped."""
        with pytest.raises(RuntimeError, match="underflow"):
            context.pop_dir()

    def test_pushd_restores_on_error(self, context: ExecutionContext) -> None:
        """pushd pops the directory even when the body raises."""
        root = context.cwd
        with pytest.raises(ValueError, match="boom"):
            with context.pushd("sub"):
                assert context.cwd == root / "sub"
                raise ValueError("boom")
        assert context.cwd == root


# ============================================================================
# Variables
# ============================================================================


class TestVariables:
    """Tests for resolve/expand/overlay_env."""

    def test_precedence(self, config: ExecutionConfig, monkeypatch: pytest.MonkeyPatch) -> None:
        """Parameters win over environment, then config variables, then the process env."""
        monkeypatch.setenv("PIPELINER_CTX_VAR", "process")
        ctx = ExecutionContext(config)
        assert ctx.resolve("PIPELINER_CTX_VAR") == "process"
        config.environment["PIPELINER_CTX_VAR"] = "config"
        assert ctx.resolve("PIPELINER_CTX_VAR") == "config"
        ctx.environment["PIPELINER_CTX_VAR"] = "env"
        assert ctx.resolve("PIPELINER_CTX_VAR") == "env"
        ctx.parameters["PIPELINER_CTX_VAR"] = "param"
        assert ctx.resolve("PIPELINER_CTX_VAR") == "param"

    def test_expand_keeps_unresolved(self, context: ExecutionContext, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unknown placeholders are kept verbatim."""
        monkeypatch.delenv("PIPELINER_CTX_MISSING", raising=False)
        context.environment["NAME"] = "web"
        assert context.expand("app=${NAME} x=${PIPELINER_CTX_MISSING} $NAME") == (
            "app=web x=${PIPELINER_CTX_MISSING} $NAME"
        )

    def test_overlay_env(self, tmp_path: Path) -> None:
        """Config, context environment and parameters are layered."""
        config = ExecutionConfig(working_dir=tmp_path, environment={"A": "config", "B": "config"})
        ctx = ExecutionContext(config, environment={"B": "stage", "C": "stage"}, parameters={"C": "param"})
        assert ctx.overlay_env() == {"A": "config", "B": "stage", "C": "param"}
        assert ctx.variables()["C"] == "param"


# ============================================================================
# Forking
# ============================================================================


class TestFork:
    """Tests for ExecutionContext.fork."""

    def test_fork_isolates_local_state(self, context: ExecutionContext) -> None:
        """Directory stack and variable maps are copied."""
        context.environment["X"] = "1"
        child = context.fork(environment={"Y": "2"}, parameters={"P": "3"}, stage="Build")
        child.push_dir("sub")
        child.environment["Z"] = "4"

        assert context.dir_depth == 1
        assert "Y" not in context.environment
        assert "Z" not in context.environment
        assert child.environment == {"X": "1", "Y": "2", "Z": "4"}
        assert child.parameters == {"P": "3"}
        assert child.current_stage == "Build"

    def test_fork_shares_run_state(self, context: ExecutionContext) -> None:
        """Stashes and results are visible from every fork."""
        child = context.fork()
        child.shared.add_stash("dist", Path("/tmp/dist"))
        child.shared.record_stage(StageResult("Build", ExecutionStatus.SUCCESS))
        assert context.shared.get_stash("dist") == Path("/tmp/dist")
        assert [r.name for r in context.stage_results] == ["Build"]
        assert child.execution_id == context.execution_id

    def test_fork_agent_override(self, context: ExecutionContext) -> None:
        """The agent is inherited unless overridden."""
        docker = Agent.docker("alpine")
        assert context.fork().agent == context.agent
        assert context.fork(agent=docker).agent is docker

    def test_fork_keeps_stage_marker(self, context: ExecutionContext) -> None:
        """Without a stage argument the marker is inherited."""
        context.current_stage = "Test"
        assert context.fork().current_stage == "Test"


class TestSharedState:
    """Tests for SharedState."""

    def test_stashes(self) -> None:
        """Register, replace and list stashes."""
        shared = SharedState()
        assert shared.get_stash("x") is None
        shared.add_stash("b", Path("/b"))
        shared.add_stash("a", Path("/a1"))
        shared.add_stash("a", Path("/a2"))
        assert shared.get_stash("a") == Path("/a2")
        assert shared.stash_names() == ["a", "b"]

    def test_metadata(self) -> None:
        """Metadata values and lists."""
        shared = SharedState()
        shared.set_metadata("commit", "abc")
        shared.append_metadata("fingerprints", {"path": "a"})
        shared.append_metadata("fingerprints", {"path": "b"})
        assert shared.metadata == {"commit": "abc", "fingerprints": [{"path": "a"}, {"path": "b"}]}

    def test_snapshots_are_copies(self) -> None:
        """Result snapshots do not alias the internal lists."""
        shared = SharedState()
        snapshot = shared.stage_results
        snapshot.append(StageResult("X", ExecutionStatus.SUCCESS))
        assert shared.stage_results == []
