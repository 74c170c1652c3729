"""Tests for the logging manager module.

Covers presets, configuration merging, output modes and the TRACE level.
"""

import io
import logging
from collections.abc import Iterator
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest
from rich.console import Console
from rich.logging import RichHandler

from pipeliner.logging import PRESETS, TRACE_LEVEL, configure_logging, resolve_logging_config, trace

# pylint: disable=redefined-outer-name


@pytest.fixture
def logger_name() -> Iterator[str]:
    """Dedicated logger name, with its handlers closed afterwards."""
    name = "pipeliner_test_manager"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


def test_trace_level_registered() -> None:
    """TRACE sits below DEBUG and has a name."""
    assert TRACE_LEVEL < logging.DEBUG
    assert logging.getLevelName(TRACE_LEVEL) == "TRACE"


def test_resolve_defaults() -> None:
    """Without preset or config, console output at INFO."""
    settings = resolve_logging_config()
    assert settings.output == "console"
    assert settings.console.level == "INFO"
    assert settings.file.log_name == "pipeliner.log"


def test_resolve_presets() -> None:
    """Presets override the defaults."""
    assert set(PRESETS) == {"dev", "prod", "debug"}
    assert resolve_logging_config("dev").console.level == "DEBUG"
    assert resolve_logging_config("prod").output == "file"
    debug = resolve_logging_config("debug")
    assert debug.output == "both"
    assert debug.file.level == "TRACE"
    # Untouched keys keep their defaults
    assert debug.file.backup_count == 5


def test_resolve_config_wins_over_preset() -> None:
    """Explicit settings are deep-merged over the preset."""
    settings = resolve_logging_config("prod", {"preset": "dev", "file": {"level": "WARNING"}})
    assert settings.output == "file"
    assert settings.file.level == "WARNING"
    assert settings.file.log_dir == "logs"


def test_resolve_unknown_preset(caplog: pytest.LogCaptureFixture) -> None:
    """An unknown preset falls back to defaults with a warning."""
    with caplog.at_level(logging.WARNING, logger="pipeliner.logging.manager"):
        settings = resolve_logging_config("verbose")
    assert settings.output == "console"
    assert "Unknown logging preset" in caplog.text


def test_resolve_invalid_output() -> None:
    """Only console, file and both are valid outputs."""
    with pytest.raises(ValueError, match="Invalid logging output"):
        resolve_logging_config(config={"output": "syslog"})


def test_configure_console(logger_name: str) -> None:
    """Console output installs a single RichHandler."""
    logger = configure_logging(logger_name=logger_name)
    assert logger.level == TRACE_LEVEL  # Logger allows all levels, handlers filter
    assert not logger.propagate
    assert len(logger.handlers) == 1
    handler = logger.handlers[0]
    assert isinstance(handler, RichHandler)
    assert handler.level == logging.INFO


def test_configure_twice_does_not_duplicate(logger_name: str) -> None:
    """Handlers from a previous call are replaced."""
    configure_logging(logger_name=logger_name)
    logger = configure_logging("dev", logger_name=logger_name)
    assert len(logger.handlers) == 1
    assert logger.handlers[0].level == logging.DEBUG


def test_configure_keeps_foreign_handlers(logger_name: str) -> None:
    """Handlers not installed by configure_logging survive."""
    foreign = logging.NullHandler()
    logging.getLogger(logger_name).addHandler(foreign)
    logger = configure_logging(logger_name=logger_name)
    configure_logging(logger_name=logger_name)
    assert foreign in logger.handlers
    assert len(logger.handlers) == 2


def test_configure_file_output(tmp_path: Path, logger_name: str) -> None:
    """File output writes formatted records to the configured path."""
    config = {"output": "file", "file": {"log_path": str(tmp_path), "log_dir": "logs", "log_name": "run.log"}}
    logger = configure_logging(config=config, logger_name=logger_name)
    assert [type(h) for h in logger.handlers] == [RotatingFileHandler]
    logger.info("stage started")
    for handler in logger.handlers:
        handler.flush()
    content = (tmp_path / "logs" / "run.log").read_text(encoding="utf-8")
    assert "INFO" in content
    assert "stage started" in content


def test_configure_log_file_adds_file_handler(tmp_path: Path, logger_name: str) -> None:
    """An explicit log file is added on top of console output."""
    log_file = tmp_path / "explicit.log"
    logger = configure_logging(log_file=log_file, logger_name=logger_name)
    kinds = {type(h) for h in logger.handlers}
    assert kinds == {RichHandler, RotatingFileHandler}
    assert log_file.exists()


def test_configure_forced_level(logger_name: str) -> None:
    """level overrides every handler, TRACE included."""
    logger = configure_logging("prod", {"output": "console"}, level="trace", logger_name=logger_name)
    assert all(h.level == TRACE_LEVEL for h in logger.handlers)
    logger = configure_logging(level=logging.WARNING, logger_name=logger_name)
    assert logger.handlers[0].level == logging.WARNING


def test_configure_unknown_level(logger_name: str) -> None:
    """Unknown level names are rejected."""
    with pytest.raises(ValueError, match="Unknown log level"):
        configure_logging(level="chatty", logger_name=logger_name)


def test_console_output(logger_name: str) -> None:
    """Records reach the supplied rich console."""
    buffer = io.StringIO()
    console = Console(file=buffer, width=200, no_color=True)
    logger = configure_logging(logger_name=logger_name, console=console)
    logger.warning("matrix produced no cells")
    assert "matrix produced no cells" in buffer.getvalue()


def test_trace_helper(logger_name: str) -> None:
    """trace() emits only when TRACE is enabled on a handler path."""
    buffer = io.StringIO()
    console = Console(file=buffer, width=200, no_color=True)
    logger = configure_logging(level="TRACE", logger_name=logger_name, console=console)
    trace(logger, "argv=%s", ["docker", "run"])
    assert "argv=['docker', 'run']" in buffer.getvalue()

    quiet = logging.getLogger(f"{logger_name}.quiet")
    quiet.setLevel(logging.INFO)
    trace(quiet, "hidden")
    assert "hidden" not in buffer.getvalue()
    quiet.setLevel(logging.NOTSET)
