"""Pipeline orchestrator.

``PipelineExecutor`` owns the top-level run loop:

1. Stages run in declaration order. A false ``when`` condition marks the
   stage ``skipped`` without running its steps or post-conditions.
2. A matrix stage runs its step list once per generated cell with the
   cell's values injected as parameters; parallel branches run
   concurrently, each in an isolated fork of the context; otherwise the
   stage's steps run in sequence.
3. Stage post-conditions run after the body and never change its status.
4. The first failing stage halts the attempt. Pipeline-level retry re-runs
   the whole pipeline with a fresh context.
5. No exception escapes ``run()``: unexpected errors end the run with a
   ``failure`` status.

Examples:
    >>> from pipeliner.config import ExecutionConfig
    >>> from pipeliner.pipeline import Echo, Pipeline, Stage
    >>> executor = PipelineExecutor(ExecutionConfig(dry_run=True, cleanup=False))
    >>> pipeline = Pipeline(stages=(Stage("Hello", steps=(Echo("hi"),)),))
    >>> executor.run_sync(pipeline).status.value  # doctest: +SKIP
    'success'
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pipeliner.config import ExecutionConfig
from pipeliner.exceptions import ExecutorError, UnexpectedTerminationError
from pipeliner.executor.backends import Backend, BackendSet, DryRunBackend
from pipeliner.executor.conditions import evaluate_when
from pipeliner.executor.context import ExecutionContext
from pipeliner.executor.events import CompositeListener, EventType, ExecutionListener
from pipeliner.executor.interpreter import StepInterpreter
from pipeliner.executor.plugins import CustomStepRegistry, InputHandler
from pipeliner.executor.status import ExecutionResult, ExecutionStatus, StageResult
from pipeliner.pipeline.conditions import PostCondition, PostKind, ordered_posts
from pipeliner.pipeline.matrix import MatrixCell
from pipeliner.pipeline.models import ParallelBranch, Pipeline, Stage

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PreviousRun:
    """Statuses of the previous run, consulted by ``changed`` post-conditions.

    Attributes:
        status: Final status of the previous run.
        stages: Status per top-level stage name.
    """

    status: ExecutionStatus | None = None
    stages: dict[str, ExecutionStatus] = field(default_factory=dict)

    @classmethod
    def from_result(cls, result: ExecutionResult) -> PreviousRun:
        """Build from an in-memory result."""
        stages = {stage.name: stage.status for stage in result.stage_results if stage.parent is None}
        return cls(result.status, stages)

    @classmethod
    def from_snapshot(cls, data: Mapping[str, Any]) -> PreviousRun:
        """Build from a JSON snapshot written by a previous run.

        Unknown status values are ignored.
        """
        status = _parse_status(data.get("status"))
        stages: dict[str, ExecutionStatus] = {}
        for entry in data.get("stages") or []:
            if not isinstance(entry, Mapping) or entry.get("parent") is not None:
                continue
            stage_status = _parse_status(entry.get("status"))
            if stage_status is not None and isinstance(entry.get("name"), str):
                stages[entry["name"]] = stage_status
        return cls(status, stages)


def _parse_status(value: Any) -> ExecutionStatus | None:
    try:
        return ExecutionStatus(value)
    except ValueError:
        return None


def should_run(kind: PostKind, status: ExecutionStatus, previous: ExecutionStatus | None) -> bool:
    """Decide whether a post-condition of ``kind`` fires for ``status``.

    Args:
        kind: Post-condition trigger class.
        status: Primary status of the stage or pipeline.
        previous: Status of the same stage or pipeline in the previous
            run, if known.

    Examples:
        >>> should_run(PostKind.FAILURE, ExecutionStatus.TIMEOUT, None)
        True
        >>> should_run(PostKind.CHANGED, ExecutionStatus.SUCCESS, ExecutionStatus.SUCCESS)
        False
    """
    match kind:
        case PostKind.ALWAYS | PostKind.CLEANUP:
            return True
        case PostKind.SUCCESS:
            return status.is_success
        case PostKind.FAILURE:
            return status.is_failure
        case PostKind.UNSTABLE:
            return status is ExecutionStatus.UNSTABLE or status.is_failure
        case PostKind.CHANGED:
            return previous is None or previous != status
    return False


class PipelineExecutor:
    """Run pipelines.

    Args:
        config: Execution configuration (default: ``ExecutionConfig()``).
        backend: Single backend used for every agent kind.
        backends: Explicit backend routing; takes precedence over ``backend``.
        listeners: Event listeners.
        registry: Handlers for ``custom`` steps.
        input_handler: Approval callback for ``input`` steps.

    In dry-run mode every agent kind is routed to a ``DryRunBackend``.
    """

    def __init__(
        self,
        config: ExecutionConfig | None = None,
        *,
        backend: Backend | None = None,
        backends: BackendSet | None = None,
        listeners: Iterable[ExecutionListener] = (),
        registry: CustomStepRegistry | None = None,
        input_handler: InputHandler | None = None,
    ) -> None:
        """Initialize PipelineExecutor.

        Args:
            config: Execution configuration.
            backend: Single backend used for every agent kind.
            backends: Explicit backend routing.
            listeners: Event listeners.
            registry: Handlers for ``custom`` steps.
            input_handler: Approval callback for ``input`` steps.
        """
        self._config = config or ExecutionConfig()
        if self._config.dry_run:
            backends = BackendSet.single(DryRunBackend())
        elif backends is None:
            backends = BackendSet.single(backend) if backend is not None else BackendSet.defaults(self._config)
        self._listener = CompositeListener(listeners)
        self._registry = registry or CustomStepRegistry()
        self._interpreter = StepInterpreter(self._config, backends, self._listener, self._registry, input_handler)
        self._last_result: ExecutionResult | None = None

    @property
    def config(self) -> ExecutionConfig:
        """Execution configuration."""
        return self._config

    @property
    def registry(self) -> CustomStepRegistry:
        """Custom step registry."""
        return self._registry

    @property
    def last_result(self) -> ExecutionResult | None:
        """Result of the most recent run of this executor."""
        return self._last_result

    def add_listener(self, listener: ExecutionListener) -> None:
        """Register an additional event listener."""
        self._listener.add(listener)

    # ========================================================================
    # Run loop
    # ========================================================================

    def run_sync(self, pipeline: Pipeline, *, parameters: Mapping[str, Any] | None = None) -> ExecutionResult:
        """Blocking wrapper around :meth:`run`."""
        return asyncio.run(self.run(pipeline, parameters=parameters))

    async def run(self, pipeline: Pipeline, *, parameters: Mapping[str, Any] | None = None) -> ExecutionResult:
        """Execute ``pipeline``.

        Args:
            pipeline: Validated pipeline definition.
            parameters: Build parameter values overriding declared defaults.

        Returns:
            The result of the last attempt. Never raises for run failures.
        """
        start = time.monotonic()
        overrides = {key: _as_param(value) for key, value in (parameters or {}).items()}
        previous = self._previous_run()
        max_attempts = self._max_attempts(pipeline)
        logger.info(
            "Pipeline '%s' started (%d stages, max_attempts=%d%s)",
            pipeline.name,
            len(pipeline.stages),
            max_attempts,
            ", dry_run=True" if self._config.dry_run else "",
        )

        result: ExecutionResult | None = None
        attempt = 0
        try:
            for attempt in range(1, max_attempts + 1):
                if attempt > 1:
                    logger.warning(
                        "Pipeline '%s' attempt %d/%d failed, retrying in %.1fs",
                        pipeline.name,
                        attempt - 1,
                        max_attempts,
                        self._config.retry_delay,
                    )
                    if self._config.retry_delay > 0:
                        await asyncio.sleep(self._config.retry_delay)
                result = await self._attempt(pipeline, overrides, previous, attempt)
                if not result.is_failure:
                    break
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Pipeline '%s' terminated unexpectedly", pipeline.name)
            result = ExecutionResult.failure(0.0, str(UnexpectedTerminationError(str(exc))))

        if result is None:
            result = ExecutionResult.failure(0.0, str(UnexpectedTerminationError("no attempt was made")))
        result.duration = time.monotonic() - start
        result.attempts = max(attempt, 1)
        self._last_result = result
        self._write_snapshot(result)
        self._cleanup()
        logger.info(
            "Pipeline '%s' finished in %.3fs -> %s (stages=%d, steps=%d)",
            pipeline.name,
            result.duration,
            result.status.value,
            result.stages_executed,
            result.steps_executed,
        )
        return result

    def _max_attempts(self, pipeline: Pipeline) -> int:
        if self._config.retry_on_failure:
            return 1 + self._config.max_retries
        return 1 + (pipeline.options.retry or 0)

    def _new_context(self, pipeline: Pipeline, overrides: Mapping[str, str]) -> ExecutionContext:
        parameters = {parameter.name: parameter.default_value for parameter in pipeline.parameters}
        parameters.update(overrides)
        return ExecutionContext(
            config=self._config,
            agent=pipeline.agent,
            environment=dict(pipeline.environment),
            parameters=parameters,
        )

    async def _attempt(
        self,
        pipeline: Pipeline,
        overrides: Mapping[str, str],
        previous: PreviousRun,
        attempt: int,
    ) -> ExecutionResult:
        context = self._new_context(pipeline, overrides)
        start = time.monotonic()
        self._listener.emit(EventType.PIPELINE_STARTED, context, message=pipeline.name, attempt=attempt)

        timeout = self._config.global_timeout or pipeline.options.timeout
        try:
            if timeout:
                status, error = await asyncio.wait_for(self._run_stages(pipeline, context, previous), timeout)
            else:
                status, error = await self._run_stages(pipeline, context, previous)
        except asyncio.TimeoutError:
            status, error = ExecutionStatus.TIMEOUT, "pipeline timeout exceeded"
            logger.error("Pipeline '%s' exceeded its timeout of %ss", pipeline.name, timeout)

        post_errors = await self._run_posts(pipeline.post, status, previous.status, context, owner=pipeline.name)

        stage_results = context.stage_results
        result = ExecutionResult(
            status=status,
            duration=time.monotonic() - start,
            stages_executed=sum(
                1 for stage in stage_results if stage.parent is None and stage.status is not ExecutionStatus.SKIPPED
            ),
            steps_executed=len(context.step_results),
            error=error,
            execution_id=context.execution_id,
            stage_results=stage_results,
            step_results=context.step_results,
            post_errors=post_errors,
        )
        if result.is_failure:
            self._listener.emit(EventType.PIPELINE_FAILED, context, status=status, message=error)
        else:
            self._listener.emit(EventType.PIPELINE_COMPLETED, context, status=status)
        return result

    async def _run_stages(
        self,
        pipeline: Pipeline,
        context: ExecutionContext,
        previous: PreviousRun,
    ) -> tuple[ExecutionStatus, str | None]:
        unstable = False
        for stage in pipeline.stages:
            result = await self._run_stage(stage, context, previous)
            if result.status.is_failure:
                reason = result.error or result.status.value
                return ExecutionStatus.FAILURE, f"stage '{stage.name}' failed: {reason}"
            unstable = unstable or result.status is ExecutionStatus.UNSTABLE
        return (ExecutionStatus.UNSTABLE if unstable else ExecutionStatus.SUCCESS), None

    # ========================================================================
    # Stages
    # ========================================================================

    async def _run_stage(
        self,
        stage: Stage,
        parent_context: ExecutionContext,
        previous: PreviousRun,
        *,
        parent: str | None = None,
        name: str | None = None,
    ) -> StageResult:
        name = name or stage.name
        label = f"{parent}/{name}" if parent else name
        context = parent_context.fork(environment=stage.environment, agent=stage.agent, stage=label)
        result = StageResult(name=name, status=ExecutionStatus.RUNNING, parent=parent)
        start = time.monotonic()

        try:
            run_stage = stage.when is None or evaluate_when(stage.when, context)
        except ExecutorError as exc:
            run_stage = False
            result.status = ExecutionStatus.FAILURE
            result.error = str(exc)
        if not run_stage and result.error is None:
            logger.info("Stage '%s' skipped (when condition is false)", label)
            result.status = ExecutionStatus.SKIPPED
            context.shared.record_stage(result)
            self._listener.emit(EventType.STAGE_COMPLETED, context, status=result.status, skipped=True)
            return result

        self._listener.emit(EventType.STAGE_STARTED, context)
        logger.info("Stage '%s' started", label)
        if run_stage:
            try:
                result.status = await self._run_body(stage, context, previous, result)
            except ExecutorError as exc:
                result.status = ExecutionStatus.FAILURE
                result.error = str(exc)
            except asyncio.CancelledError:
                result.status = ExecutionStatus.ABORTED
                result.error = "cancelled"
                result.duration = time.monotonic() - start
                context.shared.record_stage(result)
                self._listener.emit(EventType.STAGE_FAILED, context, status=result.status, message=result.error)
                raise
        if not result.status.is_success and result.error is None:
            result.error = context.last_error or result.status.value

        previous_status = previous.stages.get(name) if parent is None else None
        result.post_errors = await self._run_posts(stage.post, result.status, previous_status, context, owner=label)
        result.duration = time.monotonic() - start
        context.shared.record_stage(result)

        logger.info("Stage '%s' -> %s (%.3fs)", label, result.status.value, result.duration)
        if result.status.is_failure:
            self._listener.emit(EventType.STAGE_FAILED, context, status=result.status, message=result.error)
        else:
            self._listener.emit(EventType.STAGE_COMPLETED, context, status=result.status)
        return result

    async def _run_body(
        self,
        stage: Stage,
        context: ExecutionContext,
        previous: PreviousRun,
        result: StageResult,
    ) -> ExecutionStatus:
        if stage.matrix is not None:
            return await self._run_matrix(stage, context, result)
        if stage.parallel:
            return await self._run_parallel(stage, context, previous, result)
        return await self._interpreter.execute_steps(stage.steps, context)

    async def _run_matrix(self, stage: Stage, context: ExecutionContext, result: StageResult) -> ExecutionStatus:
        matrix = stage.matrix
        assert matrix is not None
        cells = matrix.generate_cells(context.expand, context.cwd)
        if not cells:
            logger.warning("Stage '%s': matrix produced no cells", stage.name)
            return ExecutionStatus.SUCCESS
        logger.info(
            "Stage '%s': running %d matrix cell(s)%s",
            stage.name,
            len(cells),
            f" (max_parallel={matrix.max_parallel})" if matrix.max_parallel else "",
        )

        if matrix.max_parallel:
            semaphore = asyncio.Semaphore(matrix.max_parallel)

            async def limited(cell: MatrixCell) -> StageResult:
                async with semaphore:
                    return await self._run_cell(stage, cell, context)

            cell_results = list(await asyncio.gather(*(limited(cell) for cell in cells)))
        else:
            cell_results = [await self._run_cell(stage, cell, context) for cell in cells]

        failed = [cell for cell in cell_results if cell.status.is_failure]
        if failed:
            result.error = f"{len(failed)} of {len(cell_results)} matrix cell(s) failed, first: {failed[0].name}"
            if failed[0].error:
                result.error = f"{result.error} ({failed[0].error})"
            return ExecutionStatus.FAILURE
        return ExecutionStatus.SUCCESS

    async def _run_cell(self, stage: Stage, cell: MatrixCell, context: ExecutionContext) -> StageResult:
        label = f"{stage.name}/{cell.name}"
        cell_context = context.fork(parameters=cell.values, stage=label)
        result = StageResult(name=cell.name, status=ExecutionStatus.RUNNING, parent=stage.name)
        start = time.monotonic()
        self._listener.emit(EventType.STAGE_STARTED, cell_context, cell=cell.index, values=dict(cell.values))
        try:
            result.status = await self._interpreter.execute_steps(stage.steps, cell_context)
        except ExecutorError as exc:
            result.status = ExecutionStatus.FAILURE
            result.error = str(exc)
        if not result.status.is_success and result.error is None:
            result.error = cell_context.last_error or result.status.value
        result.duration = time.monotonic() - start
        context.shared.record_stage(result)
        logger.info("Matrix cell '%s' -> %s (%.3fs)", label, result.status.value, result.duration)
        if result.status.is_failure:
            self._listener.emit(EventType.STAGE_FAILED, cell_context, status=result.status, message=result.error)
        else:
            self._listener.emit(EventType.STAGE_COMPLETED, cell_context, status=result.status)
        return result

    async def _run_parallel(
        self,
        stage: Stage,
        context: ExecutionContext,
        previous: PreviousRun,
        result: StageResult,
    ) -> ExecutionStatus:
        logger.info("Stage '%s': running %d parallel branch(es)", stage.name, len(stage.parallel))

        async def run_branch(branch: ParallelBranch) -> StageResult:
            return await self._run_stage(branch.stage, context, previous, parent=stage.name, name=branch.name)

        outcomes = await asyncio.gather(*(run_branch(branch) for branch in stage.parallel), return_exceptions=True)

        unexpected: BaseException | None = None
        unstable = False
        for branch, outcome in zip(stage.parallel, outcomes):
            if isinstance(outcome, BaseException):
                unexpected = unexpected or outcome
                continue
            if outcome.status.is_failure and result.error is None:
                result.error = f"branch '{branch.name}' failed: {outcome.error or outcome.status.value}"
            unstable = unstable or outcome.status is ExecutionStatus.UNSTABLE
        if unexpected is not None:
            raise unexpected
        if result.error is not None:
            return ExecutionStatus.FAILURE
        return ExecutionStatus.UNSTABLE if unstable else ExecutionStatus.SUCCESS

    # ========================================================================
    # Post-conditions
    # ========================================================================

    async def _run_posts(
        self,
        posts: tuple[PostCondition, ...],
        status: ExecutionStatus,
        previous: ExecutionStatus | None,
        context: ExecutionContext,
        *,
        owner: str,
    ) -> list[str]:
        errors: list[str] = []
        for post in ordered_posts(posts):
            if not should_run(post.kind, status, previous):
                continue
            logger.debug("Running '%s' post-condition of '%s'", post.kind.value, owner)
            try:
                post_status = await self._interpreter.execute_steps(post.steps, context)
            except ExecutorError as exc:
                errors.append(f"{post.kind.value}: {exc}")
                logger.error("Post-condition '%s' of '%s' failed: %s", post.kind.value, owner, exc)
                continue
            if not post_status.is_success:
                detail = context.last_error or post_status.value
                errors.append(f"{post.kind.value}: {detail}")
                logger.error("Post-condition '%s' of '%s' -> %s", post.kind.value, owner, post_status.value)
        return errors

    # ========================================================================
    # Snapshot / cleanup
    # ========================================================================

    def _previous_run(self) -> PreviousRun:
        if self._last_result is not None:
            return PreviousRun.from_result(self._last_result)
        output = self._config.output_file
        if output is None or not Path(output).is_file():
            return PreviousRun()
        try:
            data = json.loads(Path(output).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Cannot read previous run snapshot %s: %s", output, exc)
            return PreviousRun()
        if not isinstance(data, Mapping):
            return PreviousRun()
        return PreviousRun.from_snapshot(data)

    def _write_snapshot(self, result: ExecutionResult) -> None:
        output = self._config.output_file
        if output is None:
            return
        path = Path(output)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Cannot write run snapshot %s: %s", path, exc)
        else:
            logger.debug("Run snapshot written to %s", path)

    def _cleanup(self) -> None:
        if not self._config.cleanup:
            return
        stash_dir = self._config.stash_dir
        if stash_dir.exists():
            shutil.rmtree(stash_dir, ignore_errors=True)
            logger.debug("Removed stash directory %s", stash_dir)


def _as_param(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


__all__ = [
    "PipelineExecutor",
    "PreviousRun",
    "should_run",
]
