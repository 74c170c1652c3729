"""Tests for the custom step registry."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from pipeliner.exceptions import PipelineValidationError
from pipeliner.executor.context import ExecutionContext
from pipeliner.executor.plugins import CustomStepRegistry, InputRequest


def _noop(config: Mapping[str, Any], context: ExecutionContext) -> None:
    return None


class TestCustomStepRegistry:
    """Tests for CustomStepRegistry."""

    def test_register_direct(self) -> None:
        """Register a handler by call."""
        registry = CustomStepRegistry()
        assert registry.register("notify", _noop) is _noop
        assert registry.get("notify") is _noop
        assert "notify" in registry
        assert len(registry) == 1

    def test_register_decorator(self) -> None:
        """Register a handler as a decorator."""
        registry = CustomStepRegistry()

        @registry.register("deploy")
        async def deploy(config: Mapping[str, Any], context: ExecutionContext) -> bool:
            return True

        assert registry.get("deploy") is deploy

    def test_duplicate_rejected(self) -> None:
        """A name cannot be registered twice unless replace is set."""
        registry = CustomStepRegistry()
        registry.register("notify", _noop)
        with pytest.raises(PipelineValidationError, match="already registered"):
            registry.register("notify", _noop)

        def other(config: Mapping[str, Any], context: ExecutionContext) -> None:
            return None

        registry.register("notify", other, replace=True)
        assert registry.get("notify") is other

    def test_empty_name_rejected(self) -> None:
        """Names cannot be empty."""
        with pytest.raises(PipelineValidationError, match="cannot be empty"):
            CustomStepRegistry().register(" ", _noop)

    def test_unregister_and_names(self) -> None:
        """unregister is idempotent; names are sorted."""
        registry = CustomStepRegistry()
        registry.register("b", _noop)
        registry.register("a", _noop)
        assert registry.names() == ["a", "b"]
        registry.unregister("b")
        registry.unregister("missing")
        assert registry.names() == ["a"]
        assert registry.get("b") is None


class TestInputRequest:
    """Tests for InputRequest."""

    def test_defaults(self) -> None:
        """Only the message is required."""
        request = InputRequest("Deploy?")
        assert request.default is None
        assert request.parameters == ()
        assert request.stage is None
