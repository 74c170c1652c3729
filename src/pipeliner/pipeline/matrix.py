"""Matrix configuration and cell generation.

A matrix expands one stage into a set of cells, one per combination of axis
values. Cells are generated by cartesian product in declaration order with
later axes varying fastest, minus the combinations matched by an exclusion
rule. Generation is a pure function of the configuration, except for
``file`` axes (which read a file) and ``expression`` axes (which expand run
variables through the ``resolve`` callback).

Examples:
    >>> matrix = MatrixConfig(
    ...     axes=(MatrixAxis.of_values("os", "linux", "mac"), MatrixAxis.of_range("py", 10, 12)),
    ...     excludes=(MatrixExclude({"os": "mac", "py": "10"}),),
    ... )
    >>> [cell.name for cell in matrix.generate_cells()]
    ['os=linux-py=10', 'os=linux-py=11', 'os=linux-py=12', 'os=mac-py=11', 'os=mac-py=12']
"""

from __future__ import annotations

import itertools
import re
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pipeliner.exceptions import ExecutorIOError, PipelineValidationError
from pipeliner.pipeline.validators import validate_non_empty, validate_unique_names

#: Separators accepted between values of an expression axis.
_EXPRESSION_SPLIT = re.compile(r"[,\s]+")

#: Placeholder syntax in a cell name template.
_TEMPLATE_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


class AxisKind(str, Enum):
    """Source of an axis' values.

    Attributes:
        VALUES: Literal list of values.
        RANGE: Inclusive integer range with a positive step.
        FILE: Values read from a file, split on ``separator``.
        EXPRESSION: Variable-expanded text split on commas or whitespace.
    """

    VALUES = "values"
    RANGE = "range"
    FILE = "file"
    EXPRESSION = "expression"


@dataclass(frozen=True, slots=True)
class MatrixAxis:
    """One dimension of a matrix.

    Attributes:
        name: Axis name, injected as a run parameter in each cell.
        kind: Source of the values.
        values: Literal values (``values``).
        start: First value (``range``).
        end: Last value, inclusive (``range``).
        step: Increment (``range``).
        file: Path of the values file (``file``).
        separator: Separator used in the values file (``file``).
        expression: Text to expand (``expression``).
    """

    name: str
    kind: AxisKind = AxisKind.VALUES
    values: tuple[str, ...] = ()
    start: int = 0
    end: int = 0
    step: int = 1
    file: str | None = None
    separator: str = ","
    expression: str | None = None

    def __post_init__(self) -> None:
        """Validate the axis.

        Raises:
            PipelineValidationError: If the axis cannot produce values.
        """
        validate_non_empty(self.name, field_name="Matrix axis name")
        object.__setattr__(self, "values", tuple(str(v) for v in self.values))
        if self.kind == AxisKind.VALUES and not self.values:
            raise PipelineValidationError(f"Matrix axis '{self.name}' must have at least one value")
        if self.kind == AxisKind.RANGE:
            if self.step <= 0:
                raise PipelineValidationError(f"Matrix axis '{self.name}' step must be positive")
            if self.start > self.end:
                raise PipelineValidationError(f"Matrix axis '{self.name}' start must be <= end")
        if self.kind == AxisKind.FILE:
            validate_non_empty(self.file or "", field_name=f"Matrix axis '{self.name}' file")
            if not self.separator:
                raise PipelineValidationError(f"Matrix axis '{self.name}' separator cannot be empty")
        if self.kind == AxisKind.EXPRESSION:
            validate_non_empty(self.expression or "", field_name=f"Matrix axis '{self.name}' expression")

    @classmethod
    def of_values(cls, name: str, *values: str) -> MatrixAxis:
        """Return a literal axis."""
        return cls(name, AxisKind.VALUES, values=values)

    @classmethod
    def of_range(cls, name: str, start: int, end: int, step: int = 1) -> MatrixAxis:
        """Return an inclusive integer range axis."""
        return cls(name, AxisKind.RANGE, start=start, end=end, step=step)

    @classmethod
    def of_file(cls, name: str, file: str, separator: str = ",") -> MatrixAxis:
        """Return an axis whose values are read from ``file``."""
        return cls(name, AxisKind.FILE, file=file, separator=separator)

    @classmethod
    def of_expression(cls, name: str, expression: str) -> MatrixAxis:
        """Return an axis whose values come from an expanded expression."""
        return cls(name, AxisKind.EXPRESSION, expression=expression)

    def resolve_values(
        self,
        resolve: Callable[[str], str] | None = None,
        base_dir: Path | None = None,
    ) -> list[str]:
        """Return the concrete values of this axis.

        Args:
            resolve: Variable expander applied to expression axes.
            base_dir: Directory relative ``file`` paths are resolved against.

        Returns:
            Values in declaration order.

        Raises:
            ExecutorIOError: If the values file cannot be read.
        """
        if self.kind == AxisKind.VALUES:
            return list(self.values)
        if self.kind == AxisKind.RANGE:
            return [str(v) for v in range(self.start, self.end + 1, self.step)]
        if self.kind == AxisKind.FILE:
            path = Path(self.file or "")
            if base_dir is not None and not path.is_absolute():
                path = base_dir / path
            try:
                content = path.read_text(encoding="utf-8")
            except OSError as exc:
                raise ExecutorIOError(str(path), str(exc)) from exc
            return [v.strip() for v in content.split(self.separator) if v.strip()]
        text = resolve(self.expression or "") if resolve else (self.expression or "")
        return [v for v in _EXPRESSION_SPLIT.split(text.strip()) if v]


@dataclass(frozen=True, slots=True)
class MatrixExclude:
    """Exclusion rule: removes every cell matching all ``axes`` pairs.

    Attributes:
        axes: Axis name to value pairs.
        reason: Optional explanation.
    """

    axes: Mapping[str, str]
    reason: str | None = None

    def __post_init__(self) -> None:
        """Normalize values to strings and reject empty rules.

        Raises:
            PipelineValidationError: If the rule is empty.
        """
        if not self.axes:
            raise PipelineValidationError("Matrix exclusion must name at least one axis")
        object.__setattr__(self, "axes", {str(k): str(v) for k, v in self.axes.items()})

    def matches(self, values: Mapping[str, str]) -> bool:
        """Whether the cell ``values`` match every pair of this rule."""
        return all(values.get(key) == value for key, value in self.axes.items())


@dataclass(frozen=True, slots=True)
class MatrixCell:
    """One generated combination of axis values.

    Attributes:
        index: Position among generated cells, after exclusions.
        values: Axis name to value mapping.
        name: Derived cell name.
    """

    index: int
    values: dict[str, str] = field(default_factory=dict)
    name: str = ""


@dataclass(frozen=True, slots=True)
class MatrixConfig:
    """Matrix expansion of a stage.

    Attributes:
        axes: Axes, in declaration order.
        excludes: Exclusion rules.
        name_template: Cell name template. ``{idx}`` is replaced by the cell
            index and ``{<axis>}`` by the axis value. Colliding names get
            an ``-<index>`` suffix.
        max_parallel: Number of cells allowed to run concurrently. Cells run
            one after another when unset.
    """

    axes: tuple[MatrixAxis, ...]
    excludes: tuple[MatrixExclude, ...] = ()
    name_template: str | None = None
    max_parallel: int | None = None

    def __post_init__(self) -> None:
        """Validate the matrix.

        Raises:
            PipelineValidationError: If there is no axis, an axis name is
                duplicated, or ``max_parallel`` is not positive.
        """
        object.__setattr__(self, "axes", tuple(self.axes))
        object.__setattr__(self, "excludes", tuple(self.excludes))
        if not self.axes:
            raise PipelineValidationError("Matrix must have at least one axis")
        validate_unique_names((axis.name for axis in self.axes), kind="matrix axis")
        if self.max_parallel is not None and self.max_parallel <= 0:
            raise PipelineValidationError(f"Matrix max_parallel must be positive, got {self.max_parallel}")

    def generate_cells(
        self,
        resolve: Callable[[str], str] | None = None,
        base_dir: Path | None = None,
    ) -> list[MatrixCell]:
        """Generate matrix cells.

        Args:
            resolve: Variable expander applied to expression axes.
            base_dir: Directory relative ``file`` axis paths are resolved against.

        Returns:
            Cells in nested-loop order, later axes varying fastest. When
            rendered names collide, the colliding cells get an ``-<index>``
            suffix so that every cell name is unique.
        """
        names = [axis.name for axis in self.axes]
        value_lists = [axis.resolve_values(resolve, base_dir) for axis in self.axes]
        kept: list[dict[str, str]] = []
        for combo in itertools.product(*value_lists):
            values = dict(zip(names, combo))
            if not any(rule.matches(values) for rule in self.excludes):
                kept.append(values)

        rendered = [self._cell_name(values, index) for index, values in enumerate(kept)]
        counts = Counter(rendered)
        return [
            MatrixCell(index=index, values=values, name=f"{name}-{index}" if counts[name] > 1 else name)
            for index, (values, name) in enumerate(zip(kept, rendered))
        ]

    def cell_count(self, resolve: Callable[[str], str] | None = None, base_dir: Path | None = None) -> int:
        """Return the number of cells after exclusions."""
        return len(self.generate_cells(resolve, base_dir))

    def _cell_name(self, values: Mapping[str, str], index: int) -> str:
        if self.name_template:

            def replace(match: re.Match[str]) -> str:
                key = match.group(1)
                if key == "idx":
                    return str(index)
                return values.get(key, match.group(0))

            return _TEMPLATE_PLACEHOLDER.sub(replace, self.name_template)
        return "-".join(f"{key}={value}" for key, value in values.items())


__all__ = [
    "AxisKind",
    "MatrixAxis",
    "MatrixCell",
    "MatrixConfig",
    "MatrixExclude",
]
