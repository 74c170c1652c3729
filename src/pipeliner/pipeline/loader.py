"""Build pipeline definitions from mappings and YAML files.

The mapping layout mirrors the dataclass fields. Steps use their kind as
the single key, optionally next to the ``name``/``timeout``/``retry``
overrides::

    name: demo
    agent: any
    environment:
      APP: web
    stages:
      - name: Build
        steps:
          - sh: make build
          - retry:
              count: 2
              step: {sh: make test}
        post:
          always:
            - echo: done

Every structural problem raises ``PipelineValidationError`` with the
location of the offending node (for example ``stages[0].steps[1]``).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from pipeliner.exceptions import PipelineValidationError
from pipeliner.pipeline.agent import Agent, AgentKind
from pipeliner.pipeline.conditions import PostCondition, PostKind, WhenCondition, WhenKind
from pipeliner.pipeline.matrix import AxisKind, MatrixAxis, MatrixConfig, MatrixExclude
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

logger = logging.getLogger(__name__)

#: Keys accepted next to the kind key of a step.
_STEP_OVERRIDES = frozenset({"name", "timeout", "retry"})

#: Duration literal such as ``90``, ``30s``, ``5m`` or ``1h``.
_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$")

_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, "d": 86400.0}

#: Aliases accepted for step kinds.
_STEP_ALIASES = {"shell": StepKind.SHELL.value, "archive_artifacts": StepKind.ARCHIVE.value}


# ============================================================================
# Public API
# ============================================================================


def load_pipeline(path: str | Path) -> Pipeline:
    """Load and validate a pipeline from a YAML file.

    Args:
        path: Path of the YAML definition.

    Returns:
        Validated Pipeline.

    Raises:
        PipelineValidationError: If the file cannot be read or is invalid.

    Examples:
        >>> pipeline = load_pipeline("pipeline.yml")  # doctest: +SKIP
    """
    import yaml

    source = Path(path)
    try:
        content = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise PipelineValidationError(f"Cannot read pipeline file '{source}': {exc}") from exc

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise PipelineValidationError(f"Invalid YAML in '{source}': {exc}") from exc

    if not isinstance(data, Mapping):
        raise PipelineValidationError(f"Pipeline file '{source}' must contain a mapping")

    data = dict(data)
    data.setdefault("name", source.stem)
    logger.debug("Loading pipeline '%s' from %s", data["name"], source)
    return parse_pipeline(data)


def parse_pipeline(data: Mapping[str, Any]) -> Pipeline:
    """Build a validated Pipeline from a plain mapping.

    Args:
        data: Raw pipeline mapping (typically parsed YAML).

    Returns:
        Validated Pipeline.

    Raises:
        PipelineValidationError: If the mapping is invalid.
    """
    _check_keys(
        data,
        {"name", "agent", "environment", "parameters", "options", "triggers", "stages", "post"},
        "pipeline",
    )
    raw_stages = _as_list(data.get("stages"), "stages")
    stages = tuple(_parse_stage(raw, f"stages[{i}]") for i, raw in enumerate(raw_stages))

    kwargs: dict[str, Any] = {"stages": stages}
    if "name" in data:
        kwargs["name"] = str(data["name"])
    if data.get("agent") is not None:
        kwargs["agent"] = parse_agent(data["agent"], "agent")
    if data.get("environment"):
        kwargs["environment"] = _parse_env(data["environment"], "environment")
    if data.get("parameters"):
        params = _as_list(data["parameters"], "parameters")
        kwargs["parameters"] = tuple(_parse_parameter(raw, f"parameters[{i}]") for i, raw in enumerate(params))
    if data.get("options"):
        kwargs["options"] = _parse_options(data["options"], "options")
    if data.get("triggers"):
        triggers = _as_list(data["triggers"], "triggers")
        kwargs["triggers"] = tuple(_parse_trigger(raw, f"triggers[{i}]") for i, raw in enumerate(triggers))
    if data.get("post"):
        kwargs["post"] = _parse_post(data["post"], "post")
    return Pipeline(**kwargs)


def parse_step(data: Any, where: str = "step") -> Step:
    """Build a single Step from its mapping form.

    Args:
        data: ``{kind: payload}`` mapping, optionally with overrides.
        where: Location used in error messages.

    Returns:
        Validated Step.

    Raises:
        PipelineValidationError: If the mapping is invalid.

    Examples:
        >>> parse_step({"sh": "make", "retry": 2}).retry
        2
    """
    if isinstance(data, str):
        return Shell(data)
    mapping = _as_mapping(data, where)
    kind_keys = [key for key in mapping if key not in _STEP_OVERRIDES]
    if len(kind_keys) != 1:
        raise PipelineValidationError(f"{where}: expected exactly one step kind, got {sorted(kind_keys) or 'none'}")

    key = kind_keys[0]
    try:
        kind = StepKind(_STEP_ALIASES.get(key, key))
    except ValueError:
        raise PipelineValidationError(f"{where}: unknown step kind {key!r}") from None

    overrides: dict[str, Any] = {}
    if mapping.get("name") is not None:
        overrides["name"] = str(mapping["name"])
    if mapping.get("timeout") is not None:
        overrides["timeout"] = parse_duration(mapping["timeout"], f"{where}.timeout")
    if mapping.get("retry") is not None:
        overrides["retry"] = _as_int(mapping["retry"], f"{where}.retry")

    builder = _STEP_BUILDERS[kind]
    return builder(mapping[key], f"{where}.{key}", overrides)


def parse_agent(data: Any, where: str = "agent") -> Agent:
    """Build an Agent from ``any``, ``none``, ``{label: ...}`` or ``{docker: {...}}`` forms.

    Args:
        data: Raw agent definition.
        where: Location used in error messages.

    Returns:
        Validated Agent.

    Raises:
        PipelineValidationError: If the definition is invalid.
    """
    if isinstance(data, str):
        try:
            return Agent(kind=AgentKind(data))
        except ValueError:
            raise PipelineValidationError(f"{where}: unknown agent {data!r}") from None

    mapping = _as_mapping(data, where)
    if "kind" in mapping:
        fields = dict(mapping)
        raw_kind = fields.pop("kind")
    else:
        if len(mapping) != 1:
            raise PipelineValidationError(f"{where}: expected a single agent kind key")
        raw_kind, payload = next(iter(mapping.items()))
        if isinstance(payload, str):
            fields = {"label": payload} if raw_kind == AgentKind.LABEL.value else {"image": payload}
        else:
            fields = dict(_as_mapping(payload, f"{where}.{raw_kind}"))

    try:
        kind = AgentKind(raw_kind)
    except ValueError:
        raise PipelineValidationError(f"{where}: unknown agent kind {raw_kind!r}") from None

    _check_keys(
        fields,
        {"label", "image", "args", "environment", "registry", "network", "namespace", "container_name", "kubeconfig"},
        where,
    )
    if "args" in fields:
        fields["args"] = tuple(str(arg) for arg in _as_list(fields["args"], f"{where}.args"))
    if "environment" in fields:
        fields["environment"] = _parse_env(fields["environment"], f"{where}.environment")
    return Agent(kind=kind, **fields)


def parse_duration(value: Any, where: str) -> float:
    """Parse a duration given as seconds or as ``<n><unit>`` text.

    Args:
        value: Number of seconds, or text such as ``30s``, ``5m``, ``1h``.
        where: Location used in error messages.

    Returns:
        Duration in seconds.

    Raises:
        PipelineValidationError: If the value is not a duration.

    Examples:
        >>> parse_duration("5m", "timeout")
        300.0
        >>> parse_duration(12, "timeout")
        12.0
    """
    if isinstance(value, bool):
        raise PipelineValidationError(f"{where}: invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION_PATTERN.match(str(value))
    if not match:
        raise PipelineValidationError(f"{where}: invalid duration {value!r}")
    number, unit = match.groups()
    return float(number) * _DURATION_UNITS[unit or "s"]


# ============================================================================
# Stage helpers
# ============================================================================


def _parse_stage(data: Any, where: str) -> Stage:
    mapping = _as_mapping(data, where)
    _check_keys(mapping, {"name", "steps", "agent", "environment", "parallel", "matrix", "when", "post"}, where)
    if not mapping.get("name"):
        raise PipelineValidationError(f"{where}: stage missing 'name'")

    kwargs: dict[str, Any] = {"name": str(mapping["name"])}
    if mapping.get("steps"):
        kwargs["steps"] = _parse_steps(mapping["steps"], f"{where}.steps")
    if mapping.get("agent") is not None:
        kwargs["agent"] = parse_agent(mapping["agent"], f"{where}.agent")
    if mapping.get("environment"):
        kwargs["environment"] = _parse_env(mapping["environment"], f"{where}.environment")
    if mapping.get("parallel"):
        kwargs["parallel"] = _parse_parallel(mapping["parallel"], f"{where}.parallel")
    if mapping.get("matrix"):
        kwargs["matrix"] = _parse_matrix(mapping["matrix"], f"{where}.matrix")
    if mapping.get("when"):
        kwargs["when"] = _parse_when(mapping["when"], f"{where}.when")
    if mapping.get("post"):
        kwargs["post"] = _parse_post(mapping["post"], f"{where}.post")
    return Stage(**kwargs)


def _parse_parallel(data: Any, where: str) -> tuple[ParallelBranch, ...]:
    branches: list[ParallelBranch] = []
    if isinstance(data, Mapping):
        # {branch name: stage body}
        for name, body in data.items():
            body_map = dict(_as_mapping(body, f"{where}.{name}"))
            body_map.setdefault("name", name)
            branches.append(ParallelBranch(str(name), _parse_stage(body_map, f"{where}.{name}")))
        return tuple(branches)
    for i, raw in enumerate(_as_list(data, where)):
        stage = _parse_stage(raw, f"{where}[{i}]")
        branches.append(ParallelBranch.of(stage))
    return tuple(branches)


def _parse_steps(data: Any, where: str) -> tuple[Step, ...]:
    return tuple(parse_step(raw, f"{where}[{i}]") for i, raw in enumerate(_as_list(data, where)))


def _parse_post(data: Any, where: str) -> tuple[PostCondition, ...]:
    mapping = _as_mapping(data, where)
    posts: list[PostCondition] = []
    for key, raw_steps in mapping.items():
        try:
            kind = PostKind(key)
        except ValueError:
            raise PipelineValidationError(f"{where}: unknown post condition {key!r}") from None
        posts.append(PostCondition(kind, _parse_steps(raw_steps, f"{where}.{key}")))
    return tuple(posts)


def _parse_when(data: Any, where: str) -> WhenCondition:
    mapping = _as_mapping(data, where)
    if len(mapping) == 1:
        key, payload = next(iter(mapping.items()))
    else:
        # Several keys at the same level are an implicit all_of.
        return WhenCondition.all_of(*(_parse_when({k: v}, f"{where}.{k}") for k, v in mapping.items()))

    try:
        kind = WhenKind(key)
    except ValueError:
        raise PipelineValidationError(f"{where}: unknown when condition {key!r}") from None

    if kind in (WhenKind.BRANCH, WhenKind.TAG):
        return WhenCondition(kind, pattern=str(payload))
    if kind == WhenKind.EXPRESSION:
        return WhenCondition.expr(str(payload))
    if kind == WhenKind.ENVIRONMENT:
        env = _as_mapping(payload, f"{where}.environment")
        _check_keys(env, {"name", "value", "pattern"}, f"{where}.environment")
        value = env.get("value")
        pattern = env.get("pattern")
        return WhenCondition.environment(
            str(env.get("name", "")),
            None if value is None else str(value),
            pattern=None if pattern is None else str(pattern),
        )
    if kind == WhenKind.NOT:
        return WhenCondition.not_(_parse_when(payload, f"{where}.not"))
    children = _as_list(payload, f"{where}.{key}")
    return WhenCondition(kind, conditions=tuple(_parse_when(c, f"{where}.{key}[{i}]") for i, c in enumerate(children)))


def _parse_matrix(data: Any, where: str) -> MatrixConfig:
    mapping = _as_mapping(data, where)
    _check_keys(mapping, {"axes", "excludes", "exclude", "name_template", "max_parallel"}, where)
    axes = tuple(_parse_axis(raw, f"{where}.axes[{i}]") for i, raw in enumerate(_as_list(mapping.get("axes"), where)))

    excludes: list[MatrixExclude] = []
    raw_excludes = mapping.get("excludes", mapping.get("exclude")) or []
    for i, raw in enumerate(_as_list(raw_excludes, f"{where}.excludes")):
        rule = _as_mapping(raw, f"{where}.excludes[{i}]")
        if "axes" in rule:
            excludes.append(MatrixExclude(_as_mapping(rule["axes"], f"{where}.excludes[{i}].axes"), rule.get("reason")))
        else:
            excludes.append(MatrixExclude(rule))

    max_parallel = mapping.get("max_parallel")
    return MatrixConfig(
        axes=axes,
        excludes=tuple(excludes),
        name_template=mapping.get("name_template"),
        max_parallel=None if max_parallel is None else _as_int(max_parallel, f"{where}.max_parallel"),
    )


def _parse_axis(data: Any, where: str) -> MatrixAxis:
    mapping = _as_mapping(data, where)
    _check_keys(mapping, {"name", "values", "range", "file", "separator", "expression"}, where)
    name = str(mapping.get("name", ""))
    if "values" in mapping:
        return MatrixAxis.of_values(name, *(str(v) for v in _as_list(mapping["values"], f"{where}.values")))
    if "range" in mapping:
        opts = _as_mapping(mapping["range"], f"{where}.range")
        return MatrixAxis.of_range(
            name,
            _as_int(opts.get("start", 0), f"{where}.range.start"),
            _as_int(opts.get("end", 0), f"{where}.range.end"),
            _as_int(opts.get("step", 1), f"{where}.range.step"),
        )
    if "file" in mapping:
        return MatrixAxis.of_file(name, str(mapping["file"]), str(mapping.get("separator", ",")))
    if "expression" in mapping:
        return MatrixAxis.of_expression(name, str(mapping["expression"]))
    raise PipelineValidationError(f"{where}: axis needs one of 'values', 'range', 'file' or 'expression'")


# ============================================================================
# Pipeline-level helpers
# ============================================================================


def _parse_parameter(data: Any, where: str) -> Parameter:
    mapping = _as_mapping(data, where)
    _check_keys(mapping, {"name", "type", "default", "description", "choices"}, where)
    raw_type = mapping.get("type", "string")
    try:
        param_type = ParameterType(raw_type)
    except ValueError:
        raise PipelineValidationError(f"{where}: invalid parameter type {raw_type!r}") from None
    choices = tuple(str(c) for c in _as_list(mapping.get("choices") or [], f"{where}.choices"))
    default = mapping.get("default")
    if default is not None and not isinstance(default, bool):
        default = str(default)
    return Parameter(
        name=str(mapping.get("name", "")),
        type=param_type,
        default=default,
        description=str(mapping.get("description", "")),
        choices=choices,
    )


def _parse_options(data: Any, where: str) -> PipelineOptions:
    mapping = _as_mapping(data, where)
    _check_keys(mapping, {"timeout", "retry", "skip_default_checkout", "build_discarder"}, where)
    discarder = None
    if mapping.get("build_discarder"):
        raw = _as_mapping(mapping["build_discarder"], f"{where}.build_discarder")
        _check_keys(raw, {"num_to_keep", "days_to_keep"}, f"{where}.build_discarder")
        days = raw.get("days_to_keep")
        discarder = BuildDiscarder(
            num_to_keep=_as_int(raw.get("num_to_keep", 10), f"{where}.build_discarder.num_to_keep"),
            days_to_keep=None if days is None else _as_int(days, f"{where}.build_discarder.days_to_keep"),
        )
    timeout = mapping.get("timeout")
    retry = mapping.get("retry")
    return PipelineOptions(
        timeout=None if timeout is None else parse_duration(timeout, f"{where}.timeout"),
        retry=None if retry is None else _as_int(retry, f"{where}.retry"),
        skip_default_checkout=bool(mapping.get("skip_default_checkout", False)),
        build_discarder=discarder,
    )


def _parse_trigger(data: Any, where: str) -> Trigger:
    if data == TriggerType.MANUAL.value:
        return Trigger(TriggerType.MANUAL)
    mapping = _as_mapping(data, where)
    if len(mapping) != 1:
        raise PipelineValidationError(f"{where}: expected a single trigger kind key")
    key, payload = next(iter(mapping.items()))
    try:
        kind = TriggerType(key)
    except ValueError:
        raise PipelineValidationError(f"{where}: unknown trigger {key!r}") from None

    if kind == TriggerType.CRON:
        if isinstance(payload, Mapping):
            return Trigger.cron(str(payload.get("expression", "")), payload.get("timezone"))
        return Trigger.cron(str(payload))
    if kind == TriggerType.POLL_SCM:
        return Trigger.poll_scm(_as_int(payload, f"{where}.poll_scm"))
    if kind == TriggerType.UPSTREAM:
        if isinstance(payload, Mapping):
            return Trigger.upstream(str(payload.get("project", "")), str(payload.get("threshold", "SUCCESS")))
        return Trigger.upstream(str(payload))
    return Trigger(TriggerType.MANUAL)


# ============================================================================
# Step builders
# ============================================================================


def _build_shell(payload: Any, where: str, overrides: dict[str, Any]) -> Step:
    return Shell(_as_text(payload, where), **overrides)


def _build_echo(payload: Any, where: str, overrides: dict[str, Any]) -> Step:
    return Echo(_as_text(payload, where), **overrides)


def _build_script(payload: Any, where: str, overrides: dict[str, Any]) -> Step:
    return Script(_as_text(payload, where), **overrides)


def _build_retry(payload: Any, where: str, overrides: dict[str, Any]) -> Step:
    opts = _as_mapping(payload, where)
    _check_keys(opts, {"count", "step"}, where)
    if "step" not in opts:
        raise PipelineValidationError(f"{where}: retry requires a 'step'")
    return Retry(_as_int(opts.get("count", 0), f"{where}.count"), parse_step(opts["step"], f"{where}.step"), **overrides)


def _build_timeout(payload: Any, where: str, overrides: dict[str, Any]) -> Step:
    opts = _as_mapping(payload, where)
    _check_keys(opts, {"duration", "step"}, where)
    if "step" not in opts or "duration" not in opts:
        raise PipelineValidationError(f"{where}: timeout requires 'duration' and 'step'")
    return Timeout(
        parse_duration(opts["duration"], f"{where}.duration"), parse_step(opts["step"], f"{where}.step"), **overrides
    )


def _build_stash(payload: Any, where: str, overrides: dict[str, Any]) -> Step:
    if isinstance(payload, str):
        return Stash(payload, **overrides)
    opts = _as_mapping(payload, where)
    _check_keys(opts, {"name", "includes", "excludes"}, where)
    return Stash(
        str(opts.get("name", "")),
        opts.get("includes", ("**",)),
        opts.get("excludes", ()),
        **overrides,
    )


def _build_unstash(payload: Any, where: str, overrides: dict[str, Any]) -> Step:
    if isinstance(payload, Mapping):
        payload = payload.get("name", "")
    return Unstash(_as_text(payload, where), **overrides)


def _build_input(payload: Any, where: str, overrides: dict[str, Any]) -> Step:
    if isinstance(payload, str):
        return Input(payload, **overrides)
    opts = _as_mapping(payload, where)
    _check_keys(opts, {"message", "default", "parameters"}, where)
    params = _as_list(opts.get("parameters") or [], f"{where}.parameters")
    default = opts.get("default")
    return Input(
        str(opts.get("message", "")),
        None if default is None else str(default),
        tuple(_parse_parameter(raw, f"{where}.parameters[{i}]") for i, raw in enumerate(params)),
        **overrides,
    )


def _build_dir(payload: Any, where: str, overrides: dict[str, Any]) -> Step:
    opts = _as_mapping(payload, where)
    _check_keys(opts, {"path", "steps"}, where)
    return Dir(str(opts.get("path", "")), _parse_steps(opts.get("steps") or [], f"{where}.steps"), **overrides)


def _build_archive(payload: Any, where: str, overrides: dict[str, Any]) -> Step:
    if isinstance(payload, (str, list)):
        return Archive(payload, **overrides)
    opts = _as_mapping(payload, where)
    _check_keys(opts, {"patterns", "excludes", "fingerprint"}, where)
    return Archive(
        opts.get("patterns", ()),
        opts.get("excludes", ()),
        bool(opts.get("fingerprint", False)),
        **overrides,
    )


def _build_custom(payload: Any, where: str, overrides: dict[str, Any]) -> Step:
    if isinstance(payload, str):
        return Custom(payload, **overrides)
    opts = _as_mapping(payload, where)
    _check_keys(opts, {"plugin", "config"}, where)
    return Custom(str(opts.get("plugin", "")), dict(_as_mapping(opts.get("config") or {}, f"{where}.config")), **overrides)


_STEP_BUILDERS: dict[StepKind, Callable[[Any, str, dict[str, Any]], Step]] = {
    StepKind.SHELL: _build_shell,
    StepKind.ECHO: _build_echo,
    StepKind.RETRY: _build_retry,
    StepKind.TIMEOUT: _build_timeout,
    StepKind.STASH: _build_stash,
    StepKind.UNSTASH: _build_unstash,
    StepKind.INPUT: _build_input,
    StepKind.DIR: _build_dir,
    StepKind.SCRIPT: _build_script,
    StepKind.ARCHIVE: _build_archive,
    StepKind.CUSTOM: _build_custom,
}


# ============================================================================
# Type helpers
# ============================================================================


def _as_mapping(data: Any, where: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise PipelineValidationError(f"{where}: expected a mapping, got {type(data).__name__}")
    return data


def _as_list(data: Any, where: str) -> list[Any]:
    if data is None:
        return []
    if not isinstance(data, (list, tuple)):
        raise PipelineValidationError(f"{where}: expected a list, got {type(data).__name__}")
    return list(data)


def _as_text(data: Any, where: str) -> str:
    if isinstance(data, (Mapping, list, tuple)) or data is None:
        raise PipelineValidationError(f"{where}: expected a string")
    return str(data)


def _as_int(data: Any, where: str) -> int:
    if isinstance(data, bool):
        raise PipelineValidationError(f"{where}: expected an integer, got {data!r}")
    try:
        return int(data)
    except (TypeError, ValueError):
        raise PipelineValidationError(f"{where}: expected an integer, got {data!r}") from None


def _parse_env(data: Any, where: str) -> dict[str, str]:
    mapping = _as_mapping(data, where)
    return {str(key): "" if value is None else str(value) for key, value in mapping.items()}


def _check_keys(data: Mapping[str, Any], allowed: set[str], where: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise PipelineValidationError(f"{where}: unknown keys {unknown}")


__all__ = [
    "load_pipeline",
    "parse_agent",
    "parse_duration",
    "parse_pipeline",
    "parse_step",
]
