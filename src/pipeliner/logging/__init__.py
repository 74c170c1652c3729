"""Logging configuration for pipeliner."""

from pipeliner.logging.manager import (
    PRESETS,
    TRACE_LEVEL,
    configure_logging,
    resolve_logging_config,
    trace,
)

__all__ = [
    "PRESETS",
    "TRACE_LEVEL",
    "configure_logging",
    "resolve_logging_config",
    "trace",
]
