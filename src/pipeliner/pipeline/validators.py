"""Input validation for pipeline definitions.

This module provides the validation functions called from the model
``__post_init__`` hooks. Every check raises ``PipelineValidationError`` so a
malformed definition is rejected before a run starts.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

from pipeliner.exceptions import PipelineValidationError

# ============================================================================
# Constants - Hard Limits
# ============================================================================

#: Maximum stage name length.
MAX_STAGE_NAME_LENGTH = 100

#: Maximum timeout accepted anywhere in a definition (7 days, in seconds).
MAX_TIMEOUT_SECONDS = 7 * 86400

#: Pattern for valid environment variable names.
ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

#: Accepted field counts for a cron expression.
CRON_FIELD_COUNTS = frozenset({5, 6})


# ============================================================================
# Validation Functions
# ============================================================================


def validate_stage_name(name: str) -> str:
    """Validate and return a stage name.

    Rules:
    - Cannot be empty or whitespace only
    - Max 100 characters (hard limit)

    Args:
        name: Stage name to validate.

    Returns:
        The validated stage name (unchanged).

    Raises:
        PipelineValidationError: If name is invalid.

    Examples:
        >>> validate_stage_name("Build")
        'Build'
        >>> validate_stage_name("")
        Traceback (most recent call last):
            ...
        pipeliner.exceptions.PipelineValidationError: Stage name cannot be empty
    """
    if not name or not name.strip():
        raise PipelineValidationError("Stage name cannot be empty")
    if len(name) > MAX_STAGE_NAME_LENGTH:
        raise PipelineValidationError(f"Stage name too long (max {MAX_STAGE_NAME_LENGTH} chars): {name[:20]!r}...")
    return name


def validate_timeout(value: float, *, owner: str) -> float:
    """Validate a timeout duration in seconds.

    Args:
        value: Timeout in seconds.
        owner: Human-readable owner used in the error message.

    Returns:
        The validated timeout (unchanged).

    Raises:
        PipelineValidationError: If the timeout is not positive or too large.
    """
    if value <= 0:
        raise PipelineValidationError(f"{owner}: timeout must be positive, got {value}")
    if value > MAX_TIMEOUT_SECONDS:
        raise PipelineValidationError(f"{owner}: timeout exceeds maximum of 7 days, got {value}")
    return value


def validate_retry_count(count: int, *, owner: str) -> int:
    """Validate a retry count.

    Args:
        count: Number of retries after the first attempt.
        owner: Human-readable owner used in the error message.

    Returns:
        The validated count (unchanged).

    Raises:
        PipelineValidationError: If the count is negative.
    """
    if count < 0:
        raise PipelineValidationError(f"{owner}: retry count cannot be negative, got {count}")
    return count


def validate_env(env: Mapping[str, str], *, owner: str = "environment") -> Mapping[str, str]:
    """Validate environment variable names.

    Args:
        env: Mapping of variable names to values.
        owner: Human-readable owner used in the error message.

    Returns:
        The validated mapping (unchanged).

    Raises:
        PipelineValidationError: If a name is not a valid variable identifier.

    Examples:
        >>> validate_env({"CI": "true"})
        {'CI': 'true'}
    """
    for key in env:
        if not ENV_NAME_PATTERN.match(key):
            raise PipelineValidationError(f"{owner}: invalid variable name {key!r}")
    return env


def validate_unique_names(names: Iterable[str], *, kind: str) -> None:
    """Reject duplicated names.

    Args:
        names: Names to check, in declaration order.
        kind: What the names designate (``stage``, ``parameter``...).

    Raises:
        PipelineValidationError: On the first duplicated name.
    """
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise PipelineValidationError(f"Duplicate {kind} name: {name!r}")
        seen.add(name)


def validate_cron(expression: str) -> str:
    """Validate a cron expression by field count.

    Args:
        expression: Cron expression (5 or 6 space separated fields).

    Returns:
        The validated expression (unchanged).

    Raises:
        PipelineValidationError: If the expression is empty or malformed.
    """
    if not expression.strip():
        raise PipelineValidationError("Cron expression cannot be empty")
    if len(expression.split()) not in CRON_FIELD_COUNTS:
        raise PipelineValidationError(f"Invalid cron expression: {expression!r}")
    return expression


def validate_non_empty(value: str, *, field_name: str) -> str:
    """Reject an empty or whitespace-only string.

    Args:
        value: Value to check.
        field_name: Field name used in the error message.

    Returns:
        The validated value (unchanged).

    Raises:
        PipelineValidationError: If the value is empty.
    """
    if not value or not value.strip():
        raise PipelineValidationError(f"{field_name} cannot be empty")
    return value


__all__ = [
    "CRON_FIELD_COUNTS",
    "ENV_NAME_PATTERN",
    "MAX_STAGE_NAME_LENGTH",
    "MAX_TIMEOUT_SECONDS",
    "validate_cron",
    "validate_env",
    "validate_non_empty",
    "validate_retry_count",
    "validate_stage_name",
    "validate_timeout",
    "validate_unique_names",
]
