"""Step interpreter.

Executes one step (and, recursively, its nested steps) under an
``ExecutionContext`` and returns the resulting ``ExecutionStatus``. Every
invocation, nested ones included, is recorded as a ``StepResult`` in the
run's shared store and reported through ``step_started`` /
``step_completed`` / ``step_failed`` events.

Operational problems (a backend that cannot start, a missing stash
directory, an exhausted retry...) are raised as ``ExecutorError``
subclasses after the failing step has been recorded; the orchestrator turns
them into a failed stage.
"""

from __future__ import annotations

import asyncio
import dataclasses
import glob
import hashlib
import inspect
import logging
import shlex
import shutil
import time
import uuid
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pipeliner.exceptions import (
    CommandParseError,
    ExecutorError,
    ExecutorIOError,
    RetryExhaustedError,
    StashNotFoundError,
    StepExecutionError,
)
from pipeliner.executor.backends import BackendSet, DryRunBackend
from pipeliner.executor.events import CompositeListener, EventType
from pipeliner.executor.plugins import CustomStepRegistry, InputHandler, InputRequest
from pipeliner.executor.status import ExecutionStatus, StepResult
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
    Timeout,
    Unstash,
)

if TYPE_CHECKING:
    from pipeliner.config import ExecutionConfig
    from pipeliner.executor.backends import Backend, CommandOutput
    from pipeliner.executor.context import ExecutionContext

logger = logging.getLogger(__name__)

#: Directory name never collected by stash or archive globs.
_INTERNAL_DIR = ".pipeliner"


class StepInterpreter:
    """Run steps against backends.

    Args:
        config: Execution configuration of the run.
        backends: Backend routing per agent kind (default: standard set,
            or dry-run for every kind when ``config.dry_run``).
        listener: Event fan-out.
        registry: Handlers for ``custom`` steps.
        input_handler: Approval callback for ``input`` steps.

    Examples:
        >>> from pipeliner.config import ExecutionConfig
        >>> from pipeliner.executor.context import ExecutionContext
        >>> from pipeliner.pipeline.steps import Echo
        >>> config = ExecutionConfig(dry_run=True)
        >>> interpreter = StepInterpreter(config)
        >>> asyncio.run(interpreter.execute(Echo("hi"), ExecutionContext(config))).value
        'success'
    """

    def __init__(
        self,
        config: ExecutionConfig,
        backends: BackendSet | None = None,
        listener: CompositeListener | None = None,
        registry: CustomStepRegistry | None = None,
        input_handler: InputHandler | None = None,
    ) -> None:
        """Initialize StepInterpreter.

        Args:
            config: Execution configuration of the run.
            backends: Backend routing per agent kind.
            listener: Event fan-out.
            registry: Handlers for ``custom`` steps.
            input_handler: Approval callback for ``input`` steps.
        """
        self._config = config
        if backends is None:
            backends = BackendSet.single(DryRunBackend()) if config.dry_run else BackendSet.defaults(config)
        self._backends = backends
        self._listener = listener or CompositeListener()
        self._registry = registry or CustomStepRegistry()
        self._input_handler = input_handler

    @property
    def backends(self) -> BackendSet:
        """Backend routing in use."""
        return self._backends

    # ========================================================================
    # Entry points
    # ========================================================================

    async def execute(self, step: Step, context: ExecutionContext) -> ExecutionStatus:
        """Execute ``step`` and return its status.

        The per-step ``retry`` override wraps the step in a retry loop and
        the ``timeout`` override applies to each attempt.

        Raises:
            ExecutorError: On operational failures.
        """
        if step.retry is not None:
            inner = dataclasses.replace(step, retry=None)
            return await self._record(Retry(step.retry, inner, name=step.name), context)
        if step.timeout is not None:
            inner = dataclasses.replace(step, timeout=None)
            return await self._record(Timeout(step.timeout, inner, name=step.name), context)
        return await self._record(step, context)

    async def execute_steps(self, steps: Iterable[Step], context: ExecutionContext) -> ExecutionStatus:
        """Run ``steps`` in order, stopping at the first non-success status.

        Returns:
            ``SUCCESS`` when every step succeeded, otherwise the first
            non-success status.
        """
        for step in steps:
            status = await self.execute(step, context)
            if not status.is_success:
                return status
        return ExecutionStatus.SUCCESS

    # ========================================================================
    # Recording
    # ========================================================================

    async def _record(self, step: Step, context: ExecutionContext) -> ExecutionStatus:
        name = step.display_name
        previous_step = context.current_step
        context.current_step = name
        result = StepResult(name=name, kind=step.kind.value, status=ExecutionStatus.RUNNING, stage=context.current_stage)
        self._listener.emit(EventType.STEP_STARTED, context, kind=step.kind.value)
        logger.debug("Step '%s' started", name)
        start = time.monotonic()
        try:
            result.status = await self._dispatch(step, context, result)
        except ExecutorError as exc:
            result.status = ExecutionStatus.FAILURE
            result.error = str(exc)
            raise
        except asyncio.CancelledError:
            result.status = ExecutionStatus.ABORTED
            result.error = "cancelled"
            raise
        finally:
            result.duration = time.monotonic() - start
            context.shared.record_step(result)
            if not result.status.is_success:
                context.last_error = result.error or result.status.value
            self._finish(result, context)
            context.current_step = previous_step
        return result.status

    def _finish(self, result: StepResult, context: ExecutionContext) -> None:
        logger.info("Step '%s' -> %s (%.3fs)", result.name, result.status.value, result.duration)
        if result.status.is_failure:
            self._listener.emit(EventType.STEP_FAILED, context, status=result.status, message=result.error)
        else:
            self._listener.emit(EventType.STEP_COMPLETED, context, status=result.status)

    async def _dispatch(self, step: Step, context: ExecutionContext, result: StepResult) -> ExecutionStatus:
        match step:
            case Shell():
                return await self._shell(step, context, result)
            case Echo():
                return self._echo(step, context)
            case Retry():
                return await self._retry(step, context, result)
            case Timeout():
                return await self._timeout(step, context, result)
            case Stash():
                return await self._stash(step, context)
            case Unstash():
                return await self._unstash(step, context, result)
            case Input():
                return await self._input(step, context, result)
            case Dir():
                return await self._dir(step, context)
            case Script():
                return await self._script(step, context, result)
            case Archive():
                return await self._archive(step, context)
            case Custom():
                return await self._custom(step, context, result)
        raise StepExecutionError(step.display_name, f"unsupported step kind {step.kind.value!r}")

    # ========================================================================
    # Command steps
    # ========================================================================

    async def _run_command(
        self,
        command: str,
        context: ExecutionContext,
        result: StepResult,
        backend: Backend | None = None,
    ) -> ExecutionStatus:
        # Syntax errors are left to the shell and surface as a non-zero exit.
        if "\0" in command:
            raise CommandParseError(command, "embedded NUL character")
        if backend is None:
            backend = self._backends.for_agent(context.agent)
        output: CommandOutput = await backend.run(command, context.cwd, context.overlay_env(), context.agent)
        result.stdout = output.stdout
        result.stderr = output.stderr
        result.exit_code = output.exit_code
        for stream, text in (("stdout", output.stdout), ("stderr", output.stderr)):
            if text:
                self._listener.emit(EventType.LOG_OUTPUT, context, message=text.rstrip("\n"), stream=stream)
        if output.success:
            return ExecutionStatus.SUCCESS
        result.error = output.stderr.strip() or f"exit code {output.exit_code}"
        return ExecutionStatus.FAILURE

    async def _shell(self, step: Shell, context: ExecutionContext, result: StepResult) -> ExecutionStatus:
        return await self._run_command(context.expand(step.command), context, result)

    async def _script(self, step: Script, context: ExecutionContext, result: StepResult) -> ExecutionStatus:
        """Run a script body.

        The body is written to a temporary file under ``.pipeliner/`` and run
        with the configured shell. Backends that do not see the host
        filesystem (and dry runs, which must not write anything) receive the
        body inline as ``<shell> -c <content>`` instead.
        """
        content = context.expand(step.content)
        backend = self._backends.for_agent(context.agent)
        if self._config.dry_run or not backend.shares_filesystem:
            command = f"{self._config.shell} -c {shlex.quote(content)}"
            return await self._run_command(command, context, result, backend)

        script_dir = self._config.pipeliner_dir
        path = script_dir / f"script-{uuid.uuid4().hex[:12]}.sh"
        try:
            script_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise ExecutorIOError(str(path), str(exc)) from exc
        try:
            return await self._run_command(f"{self._config.shell} {shlex.quote(str(path))}", context, result, backend)
        finally:
            path.unlink(missing_ok=True)

    def _echo(self, step: Echo, context: ExecutionContext) -> ExecutionStatus:
        message = context.expand(step.message)
        logger.info("[%s] %s", context.current_stage or "pipeline", message)
        self._listener.emit(EventType.LOG_OUTPUT, context, message=message, stream="echo")
        return ExecutionStatus.SUCCESS

    # ========================================================================
    # Control steps
    # ========================================================================

    async def _retry(self, step: Retry, context: ExecutionContext, result: StepResult) -> ExecutionStatus:
        attempts = step.count + 1
        last_error: str | None = None
        for attempt in range(1, attempts + 1):
            try:
                status = await self.execute(step.step, context)
            except ExecutorError as exc:
                last_error = str(exc)
                logger.warning("Retry '%s' attempt %d/%d raised: %s", result.name, attempt, attempts, exc)
            else:
                if not status.is_failure:
                    return status
                last_error = context.last_error or status.value
                logger.warning("Retry '%s' attempt %d/%d -> %s", result.name, attempt, attempts, status.value)
            if attempt < attempts and self._config.step_retry_delay > 0:
                await asyncio.sleep(self._config.step_retry_delay)
        raise RetryExhaustedError(attempts, last_error)

    async def _timeout(self, step: Timeout, context: ExecutionContext, result: StepResult) -> ExecutionStatus:
        try:
            return await asyncio.wait_for(self.execute(step.step, context), timeout=step.duration)
        except asyncio.TimeoutError:
            result.error = f"timed out after {step.duration:g}s"
            logger.warning("Step '%s' %s", result.name, result.error)
            return ExecutionStatus.TIMEOUT

    async def _dir(self, step: Dir, context: ExecutionContext) -> ExecutionStatus:
        with context.pushd(step.path) as target:
            if not self._config.dry_run:
                try:
                    target.mkdir(parents=True, exist_ok=True)
                except OSError as exc:
                    raise ExecutorIOError(str(target), str(exc)) from exc
            return await self.execute_steps(step.steps, context)

    async def _input(self, step: Input, context: ExecutionContext, result: StepResult) -> ExecutionStatus:
        if self._input_handler is None:
            logger.warning("Input step '%s' has no approval handler, continuing", result.name)
            return ExecutionStatus.SUCCESS
        request = InputRequest(
            message=context.expand(step.message),
            default=step.default,
            parameters=step.parameters,
            stage=context.current_stage,
        )
        try:
            answer = self._input_handler(request)
            if inspect.isawaitable(answer):
                answer = await answer
        except ExecutorError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            raise StepExecutionError(result.name, f"input handler failed: {exc}") from exc
        if answer:
            return ExecutionStatus.SUCCESS
        result.error = "input rejected"
        return ExecutionStatus.ABORTED

    async def _custom(self, step: Custom, context: ExecutionContext, result: StepResult) -> ExecutionStatus:
        handler = self._registry.get(step.plugin)
        if handler is None:
            logger.warning("No handler registered for custom step '%s', skipping", step.plugin)
            return ExecutionStatus.SUCCESS
        try:
            outcome: Any = handler(step.config, context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except ExecutorError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            raise StepExecutionError(result.name, str(exc)) from exc
        if outcome is None:
            return ExecutionStatus.SUCCESS
        if isinstance(outcome, ExecutionStatus):
            return outcome
        if isinstance(outcome, bool):
            if not outcome:
                result.error = f"custom step '{step.plugin}' reported failure"
            return ExecutionStatus.SUCCESS if outcome else ExecutionStatus.FAILURE
        raise StepExecutionError(result.name, f"unsupported handler result {outcome!r}")

    # ========================================================================
    # File steps
    # ========================================================================

    async def _stash(self, step: Stash, context: ExecutionContext) -> ExecutionStatus:
        files = collect_files(context.cwd, step.includes, step.excludes)
        target = self._config.stash_dir / stash_key(step.stash_name)
        if not files:
            logger.warning("Stash '%s': no files matched %s", step.stash_name, ", ".join(step.includes))
        if not self._config.dry_run:
            await asyncio.to_thread(_copy_files, context.cwd, files, target, True)
        context.shared.add_stash(step.stash_name, target)
        self._listener.emit(EventType.STASH_CREATED, context, message=step.stash_name, files=len(files))
        logger.debug("Stash '%s' created with %d file(s)", step.stash_name, len(files))
        return ExecutionStatus.SUCCESS

    async def _unstash(self, step: Unstash, context: ExecutionContext, result: StepResult) -> ExecutionStatus:
        source = context.shared.get_stash(step.stash_name)
        if source is None:
            result.error = f"stash not found: {step.stash_name}"
            return ExecutionStatus.FAILURE
        if not self._config.dry_run:
            if not source.is_dir():
                raise StashNotFoundError(step.stash_name)
            await asyncio.to_thread(_restore, source, context.cwd)
        self._listener.emit(EventType.STASH_RESTORED, context, message=step.stash_name)
        return ExecutionStatus.SUCCESS

    async def _archive(self, step: Archive, context: ExecutionContext) -> ExecutionStatus:
        files = collect_files(context.cwd, step.patterns, step.excludes)
        if not files:
            logger.warning("Archive: no files matched %s", ", ".join(step.patterns))
            return ExecutionStatus.SUCCESS
        target = self._config.archive_dir
        if not self._config.dry_run:
            await asyncio.to_thread(_copy_files, context.cwd, files, target, False)
        for relative in files:
            data: dict[str, Any] = {"path": relative}
            if step.fingerprint and not self._config.dry_run:
                digest = await asyncio.to_thread(_sha256, target / relative)
                data["sha256"] = digest
                context.shared.append_metadata("fingerprints", {"path": relative, "sha256": digest})
            self._listener.emit(EventType.ARTIFACT_ARCHIVED, context, message=relative, **data)
        logger.info("Archived %d file(s) into %s", len(files), target)
        return ExecutionStatus.SUCCESS


# ============================================================================
# Filesystem helpers
# ============================================================================


def collect_files(root: Path, includes: Sequence[str], excludes: Sequence[str] = ()) -> list[str]:
    """Return files under ``root`` matching ``includes``, relative and sorted.

    Directories matched by a pattern contribute every file below them.
    Paths containing an ``excludes`` entry as a substring are dropped, and
    the ``.pipeliner`` work directory is never collected.

    Examples:
        >>> collect_files(Path("/nonexistent"), ["**"])
        []
    """
    if not root.is_dir():
        return []
    found: set[str] = set()
    for pattern in includes:
        for match in glob.glob(pattern, root_dir=root, recursive=True):
            path = root / match
            if path.is_dir():
                found.update(str(child.relative_to(root)) for child in path.rglob("*") if child.is_file())
            elif path.is_file():
                found.add(str(Path(match)))
    return sorted(
        relative
        for relative in found
        if Path(relative).parts[0] != _INTERNAL_DIR and not any(exclude in relative for exclude in excludes)
    )


def stash_key(name: str) -> str:
    """Return the directory name holding stash ``name``.

    The readable part is sanitized for the filesystem; the digest suffix
    keeps names that sanitize alike (``x/y``, ``x y``, ``x_y``) apart.

    Examples:
        >>> stash_key("x/y") != stash_key("x_y")
        True
    """
    safe = "".join(char if char.isalnum() or char in "-_." else "_" for char in name)
    return f"{safe}-{hashlib.sha256(name.encode('utf-8')).hexdigest()[:12]}"


def _copy_files(root: Path, files: Sequence[str], target: Path, replace: bool) -> None:
    try:
        if replace and target.exists():
            shutil.rmtree(target)
        target.mkdir(parents=True, exist_ok=True)
        for relative in files:
            destination = target / relative
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(root / relative, destination)
    except OSError as exc:
        raise ExecutorIOError(str(target), str(exc)) from exc


def _restore(source: Path, destination: Path) -> None:
    try:
        shutil.copytree(source, destination, dirs_exist_ok=True)
    except OSError as exc:
        raise ExecutorIOError(str(destination), str(exc)) from exc


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    try:
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(65536), b""):
                digest.update(chunk)
    except OSError as exc:
        raise ExecutorIOError(str(path), str(exc)) from exc
    return digest.hexdigest()


__all__ = [
    "StepInterpreter",
    "collect_files",
    "stash_key",
]
