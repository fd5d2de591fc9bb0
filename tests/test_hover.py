"""
Unit tests for hover point resolution.

Tests cover:
- Nearest axis lookup
- Matrix access with invalid indices
- Paired hints, linear indices and coordinate fallback
- Hover readouts with projection to lon/lat
"""
import pytest

from mine_quant.domain.models import VisualizationGrid
from mine_quant.utils.hover import (
    describe_hover,
    find_closest_axis_index,
    get_matrix_value,
    infer_grid_indices,
)


AXIS_X = [0.0, 10.0, 20.0]
AXIS_Y = [100.0, 110.0]


@pytest.fixture
def grid(sample_grid) -> VisualizationGrid:
    return VisualizationGrid(**sample_grid)


# ============================================================
# Axis Lookup Tests
# ============================================================

class TestFindClosestAxisIndex:
    """Tests for nearest axis value lookup."""

    def test_nearest_value(self):
        assert find_closest_axis_index(12, [0, 10, 20]) == 1

    def test_tie_keeps_lowest_index(self):
        assert find_closest_axis_index(5, [0, 10, 20]) == 0

    def test_non_finite_entries_are_ignored(self):
        assert find_closest_axis_index(1, [None, float("nan"), 4]) == 2

    def test_string_value_is_parsed(self):
        assert find_closest_axis_index("19", AXIS_X) == 2

    @pytest.mark.parametrize("value,axis", [(None, AXIS_X), (3, []), (3, [None, None]), ("abc", AXIS_X)])
    def test_unresolvable(self, value, axis):
        assert find_closest_axis_index(value, axis) is None


class TestGetMatrixValue:
    """Tests for safe matrix access."""

    MATRIX = [[1.0, 2.0], [3.0, None]]

    def test_valid_cell(self):
        assert get_matrix_value(self.MATRIX, 1, 0) == 3.0

    def test_null_cell(self):
        assert get_matrix_value(self.MATRIX, 1, 1) is None

    @pytest.mark.parametrize("row,column", [(None, 0), (0, None), (2, 0), (0, 2), (-1, 0)])
    def test_invalid_indices(self, row, column):
        assert get_matrix_value(self.MATRIX, row, column) is None

    def test_missing_matrix(self):
        assert get_matrix_value(None, 0, 0) is None


# ============================================================
# Index Inference Tests
# ============================================================

class TestInferGridIndices:
    """Tests for point to (row, column) resolution."""

    def test_pair_hint_row_column(self):
        assert infer_grid_indices({"pointIndex": [1, 2]}, 2, 3, AXIS_X, AXIS_Y) == (1, 2)

    def test_pair_hint_swapped(self):
        """A (column, row) hint is accepted when (row, column) is out of range."""
        assert infer_grid_indices({"pointIndex": [2, 1]}, 2, 3, AXIS_X, AXIS_Y) == (1, 2)

    def test_partial_pair_seeds_one_half(self):
        """Only the row half is valid; the column comes from the x coordinate."""
        point = {"point_index": [1, 9], "x": 19}

        assert infer_grid_indices(point, 2, 3, AXIS_X, AXIS_Y) == (1, 2)

    def test_linear_index(self):
        assert infer_grid_indices({"pointNumber": 4}, 2, 3, AXIS_X, AXIS_Y) == (1, 1)

    def test_linear_index_out_of_range(self):
        row, column = infer_grid_indices({"pointNumber": 6}, 2, 3, AXIS_X, AXIS_Y)

        assert (row, column) == (None, None)

    def test_coordinate_fallback(self):
        assert infer_grid_indices({"x": 11, "y": 108}, 2, 3, AXIS_X, AXIS_Y) == (1, 1)

    def test_explicit_candidates_win_over_point(self):
        point = {"x": 0, "y": 100}

        assert infer_grid_indices(point, 2, 3, AXIS_X, AXIS_Y, x_candidate=20, y_candidate=110) == (1, 2)

    def test_empty_point(self):
        assert infer_grid_indices(None, 2, 3, AXIS_X, AXIS_Y) == (None, None)


# ============================================================
# Hover Readout Tests
# ============================================================

class TestDescribeHover:
    """Tests for hover readouts."""

    def test_readout_values(self, grid):
        readout = describe_hover(grid, {"x": 500011, "y": 2300009})

        assert readout.row == 1
        assert readout.column == 1
        assert readout.elevation == 96.0
        assert readout.depth == 4.0
        assert readout.x == 500010.0
        assert readout.lon is None

    def test_projection_to_lonlat(self, grid):
        readout = describe_hover(grid, {"pointIndex": [0, 0]}, crs="EPSG:32645")

        assert readout.lon == pytest.approx(87.0, abs=0.1)
        assert 20.0 < readout.lat < 21.5

    def test_unknown_crs_leaves_lonlat_empty(self, grid):
        readout = describe_hover(grid, {"pointIndex": [0, 0]}, crs="not-a-crs")

        assert readout.elevation == 100.0
        assert readout.lon is None
        assert readout.lat is None

    def test_null_cell(self, grid):
        readout = describe_hover(grid, {"pointIndex": [1, 2]})

        assert readout.elevation is None
        assert readout.depth is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
