"""Execution configuration.

Two layers are provided:

- ``ExecutionConfig``: the explicit configuration object threaded into the
  executor at construction time (no process-wide state).
- ``load_config``: reads ``pipeliner.conf.yml`` into a ``Box`` so the CLI
  and library users can keep defaults in a file.

Config file lookup order:

1. Explicit ``path`` argument
2. ``PIPELINER_CONFIG`` environment variable
3. ``./pipeliner.conf.yml``
4. ``~/.config/pipeliner/pipeliner.conf.yml``

String values support ``${VAR}`` and ``${VAR:-default}`` expansion from the
process environment.

Example ``pipeliner.conf.yml``::

    execution:
      global_timeout: 1800
      retry_on_failure: false
      max_retries: 2
      retry_delay: 5
      cleanup: true
      output_file: .pipeliner/last-run.json
    logging:
      preset: dev
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from box import Box

from pipeliner.exceptions import ConfigError

logger = logging.getLogger(__name__)

#: Default config file name.
CONFIG_FILENAME = "pipeliner.conf.yml"

#: Environment variable pointing at a config file.
CONFIG_ENV_VAR = "PIPELINER_CONFIG"

# Pattern for environment variable substitution: ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)(?::-([^}]*))?\}")


@dataclass(slots=True)
class ExecutionConfig:
    """Configuration of one pipeline run.

    Attributes:
        working_dir: Root directory of the run. Stashes, archives and
            scripts live under ``<working_dir>/.pipeliner``.
        environment: Variables overlaying the process environment.
        global_timeout: Wall-clock bound for the whole run, in seconds.
        retry_on_failure: Re-run the whole pipeline after a failing run.
        max_retries: Number of re-runs when ``retry_on_failure`` is set.
        retry_delay: Delay between whole-pipeline attempts, in seconds.
        step_retry_delay: Delay between ``retry`` step attempts, in seconds.
        cleanup: Remove stashes and temporary scripts when the run ends.
        output_file: JSON snapshot written at the end of the run; the
            previous snapshot feeds ``changed`` post-conditions.
        dry_run: Log commands instead of executing them.
        shell: Shell used to run commands and scripts.

    Examples:
        >>> config = ExecutionConfig(global_timeout=60)
        >>> config.pipeliner_dir.name
        '.pipeliner'
    """

    working_dir: Path = field(default_factory=Path.cwd)
    environment: dict[str, str] = field(default_factory=dict)
    global_timeout: float | None = None
    retry_on_failure: bool = False
    max_retries: int = 3
    retry_delay: float = 1.0
    step_retry_delay: float = 1.0
    cleanup: bool = True
    output_file: Path | None = None
    dry_run: bool = False
    shell: str = "sh"

    def __post_init__(self) -> None:
        """Normalize paths and validate numeric values.

        Raises:
            ConfigError: If a value is out of range.
        """
        self.working_dir = Path(self.working_dir).resolve()
        if self.output_file is not None:
            output = Path(self.output_file)
            self.output_file = output if output.is_absolute() else self.working_dir / output
        if self.global_timeout is not None and self.global_timeout <= 0:
            raise ConfigError(f"global_timeout must be positive, got {self.global_timeout}")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries cannot be negative, got {self.max_retries}")
        if self.retry_delay < 0 or self.step_retry_delay < 0:
            raise ConfigError("retry delays cannot be negative")
        if not self.shell:
            raise ConfigError("shell cannot be empty")

    @property
    def pipeliner_dir(self) -> Path:
        """Root of the run's private files."""
        return self.working_dir / ".pipeliner"

    @property
    def stash_dir(self) -> Path:
        """Directory holding one sub-directory per stash."""
        return self.pipeliner_dir / "stashes"

    @property
    def archive_dir(self) -> Path:
        """Directory receiving archived artifacts."""
        return self.pipeliner_dir / "archive"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], **overrides: Any) -> ExecutionConfig:
        """Build an ExecutionConfig from a mapping (e.g. the ``execution`` config section).

        Args:
            data: Raw mapping.
            **overrides: Values taking precedence over ``data``.

        Returns:
            Validated ExecutionConfig.

        Raises:
            ConfigError: If a key is unknown or a value has the wrong type.
        """
        known = {f.name for f in fields(cls)}
        merged = {**dict(data), **{k: v for k, v in overrides.items() if v is not None}}
        unknown = sorted(set(merged) - known)
        if unknown:
            raise ConfigError(f"Unknown execution config keys: {unknown}")

        kwargs: dict[str, Any] = {}
        for key, value in merged.items():
            try:
                kwargs[key] = _coerce(key, value)
            except (TypeError, ValueError):
                raise ConfigError(f"Invalid value for execution.{key}: {value!r}") from None
        return cls(**kwargs)


def _coerce(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key in ("working_dir", "output_file"):
        return Path(str(value)).expanduser()
    if key == "environment":
        if not isinstance(value, Mapping):
            raise TypeError(key)
        return {str(k): str(v) for k, v in value.items()}
    if key in ("global_timeout", "retry_delay", "step_retry_delay"):
        if isinstance(value, bool):
            raise TypeError(key)
        return float(value)
    if key == "max_retries":
        if isinstance(value, bool):
            raise TypeError(key)
        return int(value)
    if key in ("retry_on_failure", "cleanup", "dry_run"):
        if not isinstance(value, bool):
            raise TypeError(key)
        return value
    return str(value)


# ============================================================================
# Config file
# ============================================================================


def expand_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` from the process environment.

    Unset variables without a default are left untouched.

    Args:
        value: String potentially containing ``${VAR}`` patterns.

    Returns:
        String with environment variables expanded.

    Examples:
        >>> import os
        >>> os.environ["PIPELINER_DOC_VAR"] = "hello"
        >>> expand_env_vars("${PIPELINER_DOC_VAR} world")
        'hello world'
        >>> expand_env_vars("${PIPELINER_MISSING:-fallback}")
        'fallback'
    """

    def replacer(match: re.Match[str]) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        if match.group(2) is not None:
            return match.group(2)
        return match.group(0)

    return _ENV_VAR_PATTERN.sub(replacer, value)


def _expand_recursive(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: _expand_recursive(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_expand_recursive(item) for item in data]
    if isinstance(data, str):
        return expand_env_vars(data)
    return data


def find_config_file(path: str | Path | None = None) -> Path | None:
    """Locate the config file according to the lookup order.

    Args:
        path: Explicit path; must exist when given.

    Returns:
        Path of the config file, or None when no file is found.

    Raises:
        ConfigError: If an explicit or env-provided path does not exist.
    """
    explicit = path or os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidate = Path(explicit).expanduser()
        if not candidate.is_file():
            raise ConfigError(f"Config file not found: {candidate}")
        return candidate
    for candidate in (Path.cwd() / CONFIG_FILENAME, Path.home() / ".config" / "pipeliner" / CONFIG_FILENAME):
        if candidate.is_file():
            return candidate
    return None


def load_config(path: str | Path | None = None) -> Box:
    """Load ``pipeliner.conf.yml`` into a Box.

    Args:
        path: Explicit config file path.

    Returns:
        Box with the config content (empty when no file is found).

    Raises:
        ConfigError: If the file cannot be read or parsed.

    Examples:
        >>> config = load_config()  # doctest: +SKIP
        >>> config.execution.max_retries  # doctest: +SKIP
        2
    """
    import yaml

    source = find_config_file(path)
    if source is None:
        logger.debug("No %s found, using defaults", CONFIG_FILENAME)
        return Box(default_box=True)

    try:
        data = yaml.safe_load(source.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read config file '{source}': {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config file '{source}': {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{source}' must contain a mapping")

    logger.debug("Loaded config from %s", source)
    return Box(_expand_recursive(data), default_box=True)


def execution_config_from_file(path: str | Path | None = None, **overrides: Any) -> ExecutionConfig:
    """Build an ExecutionConfig from the ``execution`` section of the config file.

    Args:
        path: Explicit config file path.
        **overrides: Values taking precedence over the file (None is ignored).

    Returns:
        Validated ExecutionConfig.
    """
    config = load_config(path)
    section = config.get("execution") or {}
    if isinstance(section, Box):
        section = section.to_dict()
    return ExecutionConfig.from_mapping(section, **overrides)


__all__ = [
    "CONFIG_ENV_VAR",
    "CONFIG_FILENAME",
    "ExecutionConfig",
    "execution_config_from_file",
    "expand_env_vars",
    "find_config_file",
    "load_config",
]
