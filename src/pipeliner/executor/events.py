"""Execution events and listeners.

The executor emits one ``ExecutionEvent`` at each transition point of a
run. Listeners implement ``ExecutionListener`` and receive every event
synchronously; they decide how to persist or display them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pipeliner.executor.context import ExecutionContext
    from pipeliner.executor.status import ExecutionStatus

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Transition points of a run."""

    PIPELINE_STARTED = "pipeline_started"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_FAILED = "pipeline_failed"
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    STAGE_FAILED = "stage_failed"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    LOG_OUTPUT = "log_output"
    ARTIFACT_ARCHIVED = "artifact_archived"
    STASH_CREATED = "stash_created"
    STASH_RESTORED = "stash_restored"


@dataclass(frozen=True, slots=True)
class ExecutionEvent:
    """A single run event.

    Attributes:
        type: Transition point.
        execution_id: Identifier of the run.
        stage: Stage the event belongs to.
        step: Step the event belongs to.
        status: Status reached, for completion/failure events.
        message: Human-readable detail (log line, error...).
        data: Additional structured payload.
        timestamp: Emission time (UTC).
    """

    type: EventType
    execution_id: str
    stage: str | None = None
    step: str | None = None
    status: ExecutionStatus | None = None
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@runtime_checkable
class ExecutionListener(Protocol):
    """Protocol for event consumers.

    Examples:
        >>> class Printer:
        ...     def on_event(self, event: ExecutionEvent) -> None:
        ...         print(event.type.value)
        >>> isinstance(Printer(), ExecutionListener)
        True
    """

    def on_event(self, event: ExecutionEvent) -> None:
        """Handle one event."""
        ...


class CompositeListener:
    """Fan events out to several listeners.

    A failing listener is logged and does not prevent delivery to the
    others, nor does it affect the run.

    Args:
        listeners: Initial listeners.
    """

    def __init__(self, listeners: Iterable[ExecutionListener] = ()) -> None:
        """Initialize CompositeListener.

        Args:
            listeners: Initial listeners.
        """
        self._listeners: list[ExecutionListener] = list(listeners)

    def add(self, listener: ExecutionListener) -> None:
        """Register an additional listener."""
        self._listeners.append(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    def on_event(self, event: ExecutionEvent) -> None:
        """Deliver ``event`` to every listener."""
        for listener in self._listeners:
            try:
                listener.on_event(event)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Listener %r failed on %s", listener, event.type.value)

    def emit(
        self,
        event_type: EventType,
        context: ExecutionContext,
        *,
        status: ExecutionStatus | None = None,
        message: str | None = None,
        **data: Any,
    ) -> None:
        """Build an event from ``context`` markers and deliver it.

        Args:
            event_type: Transition point.
            context: Context supplying run id, stage and step markers.
            status: Status reached, if any.
            message: Human-readable detail.
            **data: Additional structured payload.
        """
        if not self._listeners:
            return
        self.on_event(
            ExecutionEvent(
                type=event_type,
                execution_id=context.execution_id,
                stage=context.current_stage,
                step=context.current_step,
                status=status,
                message=message,
                data=data,
            )
        )


class LoggingListener:
    """Turn events into log records on the ``pipeliner.events`` logger."""

    _ERROR_TYPES = frozenset({EventType.PIPELINE_FAILED, EventType.STAGE_FAILED, EventType.STEP_FAILED})
    _DEBUG_TYPES = frozenset(
        {EventType.STEP_STARTED, EventType.STEP_COMPLETED, EventType.LOG_OUTPUT, EventType.STASH_RESTORED}
    )

    def __init__(self, name: str = "pipeliner.events") -> None:
        """Initialize LoggingListener.

        Args:
            name: Logger name.
        """
        self._logger = logging.getLogger(name)

    def on_event(self, event: ExecutionEvent) -> None:
        """Log ``event``."""
        if event.type in self._ERROR_TYPES:
            level = logging.ERROR
        elif event.type in self._DEBUG_TYPES:
            level = logging.DEBUG
        else:
            level = logging.INFO
        where = "/".join(part for part in (event.stage, event.step) if part) or "-"
        status = f" [{event.status.value}]" if event.status is not None else ""
        message = f": {event.message}" if event.message else ""
        self._logger.log(level, "%s %s%s%s", event.type.value, where, status, message)


class RecordingListener:
    """Keep every received event in memory."""

    def __init__(self) -> None:
        """Initialize an empty recording."""
        self.events: list[ExecutionEvent] = []

    def on_event(self, event: ExecutionEvent) -> None:
        """Record ``event``."""
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[ExecutionEvent]:
        """Return recorded events of ``event_type``, in emission order."""
        return [event for event in self.events if event.type == event_type]

    @property
    def types(self) -> list[EventType]:
        """Recorded event types, in emission order."""
        return [event.type for event in self.events]


__all__ = [
    "CompositeListener",
    "EventType",
    "ExecutionEvent",
    "ExecutionListener",
    "LoggingListener",
    "RecordingListener",
]
