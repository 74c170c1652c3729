"""Tests for matrix configuration and cell generation."""

from __future__ import annotations

from pathlib import Path

import pytest

from pipeliner.exceptions import ExecutorIOError, PipelineValidationError
from pipeliner.pipeline.matrix import AxisKind, MatrixAxis, MatrixConfig, MatrixExclude

# ============================================================================
# Axes
# ============================================================================


class TestMatrixAxis:
    """Tests for MatrixAxis."""

    def test_values_stringified(self) -> None:
        """Literal values are stored as strings."""
        axis = MatrixAxis("py", values=(3, 4))  # type: ignore[arg-type]
        assert axis.values == ("3", "4")

    def test_values_required(self) -> None:
        """A literal axis needs at least one value."""
        with pytest.raises(PipelineValidationError, match="at least one value"):
            MatrixAxis("os")

    def test_range_inclusive(self) -> None:
        """Range axes include both bounds."""
        assert MatrixAxis.of_range("n", 1, 7, 3).resolve_values() == ["1", "4", "7"]

    def test_range_validation(self) -> None:
        """Range bounds and step are validated."""
        with pytest.raises(PipelineValidationError, match="start must be <= end"):
            MatrixAxis.of_range("n", 5, 1)
        with pytest.raises(PipelineValidationError, match="step must be positive"):
            MatrixAxis.of_range("n", 1, 5, 0)

    def test_file_axis(self, tmp_path: Path) -> None:
        """File axes read separated values relative to base_dir."""
        (tmp_path / "targets.txt").write_text("x86, arm64 ,\n", encoding="utf-8")
        axis = MatrixAxis.of_file("arch", "targets.txt")
        assert axis.kind is AxisKind.FILE
        assert axis.resolve_values(base_dir=tmp_path) == ["x86", "arm64"]

    def test_file_axis_missing(self, tmp_path: Path) -> None:
        """A missing values file raises ExecutorIOError."""
        axis = MatrixAxis.of_file("arch", "missing.txt")
        with pytest.raises(ExecutorIOError):
            axis.resolve_values(base_dir=tmp_path)

    def test_expression_axis(self) -> None:
        """Expression axes are expanded then split on commas and spaces."""
        axis = MatrixAxis.of_expression("browser", "${BROWSERS}")
        values = axis.resolve_values(lambda text: text.replace("${BROWSERS}", "firefox, chrome safari"))
        assert values == ["firefox", "chrome", "safari"]


# ============================================================================
# Cell generation
# ============================================================================


class TestMatrixConfig:
    """Tests for MatrixConfig.generate_cells."""

    def test_cartesian_product_order(self) -> None:
        """Later axes vary fastest."""
        matrix = MatrixConfig(axes=(MatrixAxis.of_values("os", "linux", "mac"), MatrixAxis.of_values("py", "3.11", "3.12")))
        cells = matrix.generate_cells()
        assert [cell.values for cell in cells] == [
            {"os": "linux", "py": "3.11"},
            {"os": "linux", "py": "3.12"},
            {"os": "mac", "py": "3.11"},
            {"os": "mac", "py": "3.12"},
        ]
        assert [cell.index for cell in cells] == [0, 1, 2, 3]

    def test_exclusions(self) -> None:
        """Excluded combinations are dropped and indexes stay dense."""
        matrix = MatrixConfig(
            axes=(MatrixAxis.of_values("os", "linux", "windows"), MatrixAxis.of_values("arch", "x86", "arm")),
            excludes=(MatrixExclude({"os": "windows", "arch": "arm"}),),
        )
        cells = matrix.generate_cells()
        assert matrix.cell_count() == 3
        assert {"os": "windows", "arch": "arm"} not in [cell.values for cell in cells]
        assert [cell.index for cell in cells] == [0, 1, 2]

    def test_partial_exclusion(self) -> None:
        """A rule naming one axis removes every cell with that value."""
        matrix = MatrixConfig(
            axes=(MatrixAxis.of_values("os", "linux", "mac"), MatrixAxis.of_range("py", 1, 3)),
            excludes=(MatrixExclude({"os": "mac"}, reason="no runners"),),
        )
        assert matrix.cell_count() == 3

    def test_default_cell_name(self) -> None:
        """Default names join axis=value pairs."""
        matrix = MatrixConfig(axes=(MatrixAxis.of_values("os", "linux"), MatrixAxis.of_values("py", "3.12")))
        assert matrix.generate_cells()[0].name == "os=linux-py=3.12"

    def test_name_template(self) -> None:
        """Templates substitute axis values and the cell index."""
        matrix = MatrixConfig(
            axes=(MatrixAxis.of_values("os", "linux", "mac"),),
            name_template="build-{idx}-{os}-{unknown}",
        )
        assert [cell.name for cell in matrix.generate_cells()] == ["build-0-linux-{unknown}", "build-1-mac-{unknown}"]

    def test_constant_template_names_are_unique(self) -> None:
        """A template without placeholders gets the cell index appended."""
        matrix = MatrixConfig(
            axes=(MatrixAxis.of_values("os", "linux", "mac"), MatrixAxis.of_values("py", "3.11", "3.12")),
            name_template="build",
        )
        assert [cell.name for cell in matrix.generate_cells()] == ["build-0", "build-1", "build-2", "build-3"]

    def test_only_colliding_names_get_suffix(self) -> None:
        """Cells whose rendered name is already unique keep it."""
        matrix = MatrixConfig(
            axes=(MatrixAxis.of_values("os", "linux", "mac"), MatrixAxis.of_values("py", "3.11", "3.12")),
            name_template="{os}",
            excludes=(MatrixExclude({"os": "mac", "py": "3.12"}),),
        )
        assert [cell.name for cell in matrix.generate_cells()] == ["linux-0", "linux-1", "mac"]

    def test_validation(self) -> None:
        """Matrix-level validation."""
        with pytest.raises(PipelineValidationError, match="at least one axis"):
            MatrixConfig(axes=())
        axis = MatrixAxis.of_values("os", "linux")
        with pytest.raises(PipelineValidationError, match="Duplicate matrix axis name"):
            MatrixConfig(axes=(axis, axis))
        with pytest.raises(PipelineValidationError, match="max_parallel"):
            MatrixConfig(axes=(axis,), max_parallel=0)

    def test_empty_exclusion_rejected(self) -> None:
        """An exclusion rule must name an axis."""
        with pytest.raises(PipelineValidationError, match="at least one axis"):
            MatrixExclude({})
