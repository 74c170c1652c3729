"""Registry of handlers for ``custom`` steps and the input approval hook."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from pipeliner.exceptions import PipelineValidationError

if TYPE_CHECKING:
    from pipeliner.executor.context import ExecutionContext
    from pipeliner.executor.status import ExecutionStatus
    from pipeliner.pipeline.options import Parameter

logger = logging.getLogger(__name__)

#: Value a custom step handler may return: a status, a bool, or None for success.
HandlerResult = Union["ExecutionStatus", bool, None]

#: Custom step handler: ``handler(config, context)``, sync or async.
CustomStepHandler = Callable[[Mapping[str, Any], "ExecutionContext"], Union[HandlerResult, Awaitable[HandlerResult]]]


@dataclass(frozen=True, slots=True)
class InputRequest:
    """Question asked by an ``input`` step.

    Attributes:
        message: Prompt shown to the approver.
        default: Default answer.
        parameters: Parameters the approver may fill in.
        stage: Stage waiting for the answer.
    """

    message: str
    default: str | None = None
    parameters: tuple[Parameter, ...] = ()
    stage: str | None = None


#: Input approval handler: returns True to proceed, False to abort. Sync or async.
InputHandler = Callable[[InputRequest], Union[bool, Awaitable[bool]]]


class CustomStepRegistry:
    """Named handlers for ``custom`` steps.

    Examples:
        >>> registry = CustomStepRegistry()
        >>> @registry.register("notify")
        ... def notify(config, context):
        ...     return None
        >>> "notify" in registry
        True
        >>> registry.names()
        ['notify']
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._handlers: dict[str, CustomStepHandler] = {}

    def register(
        self,
        name: str,
        handler: CustomStepHandler | None = None,
        *,
        replace: bool = False,
    ) -> Any:
        """Register ``handler`` under ``name``; usable as a decorator.

        Args:
            name: Plugin name referenced by ``Custom(plugin=...)``.
            handler: Handler callable; omit to use as a decorator.
            replace: Allow overriding an existing registration.

        Returns:
            The handler (or a decorator when ``handler`` is omitted).

        Raises:
            PipelineValidationError: If ``name`` is empty or already registered.
        """
        if not name or not name.strip():
            raise PipelineValidationError("Custom step name cannot be empty")

        def decorator(func: CustomStepHandler) -> CustomStepHandler:
            if name in self._handlers and not replace:
                raise PipelineValidationError(f"Custom step '{name}' is already registered")
            self._handlers[name] = func
            logger.debug("Registered custom step handler '%s'", name)
            return func

        if handler is None:
            return decorator
        return decorator(handler)

    def unregister(self, name: str) -> None:
        """Remove the handler registered under ``name``, if any."""
        self._handlers.pop(name, None)

    def get(self, name: str) -> CustomStepHandler | None:
        """Return the handler registered under ``name``, if any."""
        return self._handlers.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def names(self) -> list[str]:
        """Return registered names, sorted."""
        return sorted(self._handlers)


__all__ = [
    "CustomStepHandler",
    "CustomStepRegistry",
    "HandlerResult",
    "InputHandler",
    "InputRequest",
]
