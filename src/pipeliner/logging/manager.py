"""Logging setup for pipeliner.

Library modules log through ``logging.getLogger(__name__)`` and never
install handlers themselves. ``configure_logging`` attaches handlers to the
``pipeliner`` logger:

- console: ``rich.logging.RichHandler``
- file: ``logging.handlers.RotatingFileHandler``

Configuration is merged from three layers, later ones winning:

1. ``FALLBACK_DEFAULTS``
2. a preset (``dev``, ``prod``, ``debug``)
3. an explicit ``config`` mapping (e.g. the ``logging`` section of
   ``pipeliner.conf.yml``)

Examples:
    >>> logger = configure_logging(preset="dev")  # doctest: +SKIP
    >>> logger = configure_logging(config={"output": "file", "file": {"log_name": "run.log"}})  # doctest: +SKIP
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from box import Box
from rich.console import Console
from rich.logging import RichHandler

#: Custom level below DEBUG for very verbose diagnostics (backend argv, env).
TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")

#: Root logger of the package.
ROOT_LOGGER_NAME = "pipeliner"

#: Valid ``output`` values.
OUTPUT_MODES = ("console", "file", "both")

FALLBACK_DEFAULTS: dict[str, Any] = {
    "output": "console",
    "console": {
        "level": "INFO",
        "show_path": False,
        "show_time": True,
        "rich_tracebacks": True,
    },
    "file": {
        "log_path": ".",
        "log_dir": "logs",
        "log_name": "pipeliner.log",
        "level": "DEBUG",
        "max_bytes": 10 * 1024 * 1024,
        "backup_count": 5,
        "format": "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    },
}

PRESETS: dict[str, dict[str, Any]] = {
    "dev": {
        "output": "console",
        "console": {"level": "DEBUG", "show_path": True},
    },
    "prod": {
        "output": "file",
        "file": {"level": "INFO"},
    },
    "debug": {
        "output": "both",
        "console": {"level": "TRACE", "show_path": True},
        "file": {"level": "TRACE"},
    },
}

_MARKER = "_pipeliner_handler"


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _to_level(value: str | int) -> int:
    if isinstance(value, int):
        return value
    name = value.upper()
    if name == "TRACE":
        return TRACE_LEVEL
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value!r}")
    return level


def resolve_logging_config(
    preset: str | None = None,
    config: Mapping[str, Any] | None = None,
) -> Box:
    """Return the merged logging configuration.

    An unknown preset is ignored with a warning.

    Raises:
        ValueError: If ``output`` is not one of ``console``, ``file``, ``both``.
    """
    merged = copy.deepcopy(FALLBACK_DEFAULTS)
    if preset:
        if preset in PRESETS:
            _deep_merge(merged, PRESETS[preset])
        else:
            logging.getLogger(__name__).warning("Unknown logging preset %r, using defaults", preset)
    if config:
        overrides = dict(config)
        overrides.pop("preset", None)
        _deep_merge(merged, overrides)
    if merged["output"] not in OUTPUT_MODES:
        raise ValueError(f"Invalid logging output {merged['output']!r} (expected one of {OUTPUT_MODES})")
    return Box(merged)


def _console_handler(settings: Box, console: Console | None) -> logging.Handler:
    handler = RichHandler(
        console=console,
        show_path=settings.show_path,
        show_time=settings.show_time,
        rich_tracebacks=settings.rich_tracebacks,
        markup=False,
    )
    handler.setLevel(_to_level(settings.level))
    return handler


def _file_handler(settings: Box, log_file: str | Path | None) -> logging.Handler:
    path = Path(log_file) if log_file else Path(settings.log_path) / settings.log_dir / settings.log_name
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=int(settings.max_bytes),
        backupCount=int(settings.backup_count),
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(settings.format))
    handler.setLevel(_to_level(settings.level))
    return handler


def configure_logging(
    preset: str | None = None,
    config: Mapping[str, Any] | None = None,
    *,
    level: str | int | None = None,
    log_file: str | Path | None = None,
    console: Console | None = None,
    logger_name: str = ROOT_LOGGER_NAME,
) -> logging.Logger:
    """Install pipeliner's handlers on ``logger_name``.

    Handlers installed by a previous call are replaced, so calling this
    twice does not duplicate output.

    Args:
        preset: ``dev``, ``prod`` or ``debug``.
        config: Explicit settings merged over the preset.
        level: Level forced on every handler (e.g. from ``--log-level``).
        log_file: Explicit log file; implies file output in addition to
            the configured output.
        console: Rich console for the console handler.
        logger_name: Logger receiving the handlers.

    Returns:
        The configured logger.
    """
    settings = resolve_logging_config(preset, config)
    logger = logging.getLogger(logger_name)
    for handler in [h for h in logger.handlers if getattr(h, _MARKER, False)]:
        logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = []
    if settings.output in ("console", "both"):
        handlers.append(_console_handler(settings.console, console))
    if settings.output in ("file", "both") or log_file:
        handlers.append(_file_handler(settings.file, log_file))

    for handler in handlers:
        if level is not None:
            handler.setLevel(_to_level(level))
        setattr(handler, _MARKER, True)
        logger.addHandler(handler)

    # Handlers filter; the logger lets everything through.
    logger.setLevel(TRACE_LEVEL)
    logger.propagate = False
    return logger


def trace(logger: logging.Logger, msg: str, *args: Any) -> None:
    """Log ``msg`` at TRACE level if enabled."""
    if logger.isEnabledFor(TRACE_LEVEL):
        logger.log(TRACE_LEVEL, msg, *args)


__all__ = [
    "FALLBACK_DEFAULTS",
    "OUTPUT_MODES",
    "PRESETS",
    "ROOT_LOGGER_NAME",
    "TRACE_LEVEL",
    "configure_logging",
    "resolve_logging_config",
    "trace",
]
