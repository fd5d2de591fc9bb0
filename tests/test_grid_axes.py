"""
Unit tests for grid axis reconstruction.

Tests cover:
- Each step of the axis priority chain
- Gap filling with interpolation and flat edges
- Length and finiteness of every result
"""
import math

import pytest

from mine_quant.utils.grid_axes import compute_axis_positions, fill_axis_gaps


# ============================================================
# Priority Chain Tests
# ============================================================

class TestComputeAxisPositions:
    """Tests for compute_axis_positions."""

    def test_complete_axis_returned_unchanged(self):
        """A fully specified finite axis wins over extent metadata."""
        provided = [3.0, 1.0, 7.5]

        assert compute_axis_positions(provided, 3, minimum=0, maximum=100, resolution=5) == provided

    def test_resolution_from_minimum(self):
        assert compute_axis_positions(None, 4, minimum=100, resolution=10) == [100, 110, 120, 130]

    def test_resolution_from_maximum(self):
        assert compute_axis_positions(None, 3, maximum=50, resolution=10) == [30, 40, 50]

    def test_negative_resolution_uses_magnitude(self):
        assert compute_axis_positions(None, 3, minimum=0, resolution=-2) == [0, 2, 4]

    def test_resolution_beats_interpolation(self):
        """Resolution with a minimum takes priority over min/max interpolation."""
        assert compute_axis_positions(None, 3, minimum=0, maximum=100, resolution=1) == [0, 1, 2]

    def test_min_max_interpolation(self):
        assert compute_axis_positions(None, 5, minimum=0, maximum=100) == [0, 25, 50, 75, 100]

    def test_min_max_single_entry(self):
        assert compute_axis_positions(None, 1, minimum=5, maximum=10) == [5]

    def test_zero_resolution_is_unknown(self):
        assert compute_axis_positions(None, 3, minimum=0, maximum=10, resolution=0) == [0, 5, 10]

    def test_partial_axis_is_gap_filled(self):
        assert compute_axis_positions([0, None, 10], 3) == [0, 5, 10]

    def test_wrong_length_axis_falls_back_to_indices(self):
        assert compute_axis_positions([1, 2], 4) == [0, 1, 2, 3]

    def test_index_fallback(self):
        assert compute_axis_positions(None, 3) == [0, 1, 2]

    def test_non_positive_count(self):
        assert compute_axis_positions([1, 2], 0) == []

    @pytest.mark.parametrize("provided,count,extent", [
        (None, 6, {}),
        ([None, None, None], 3, {}),
        (["a", 2, None], 3, {"minimum": "x"}),
        ([1, float("nan"), 3], 3, {}),
        (None, 4, {"minimum": 10}),
        (None, 4, {"maximum": 10}),
        (None, 4, {"maximum": 10, "resolution": 0.5}),
    ])
    def test_always_count_finite_numbers(self, provided, count, extent):
        axis = compute_axis_positions(provided, count, **extent)

        assert len(axis) == count
        assert all(isinstance(value, float) and math.isfinite(value) for value in axis)


# ============================================================
# Gap Filling Tests
# ============================================================

class TestFillAxisGaps:
    """Tests for fill_axis_gaps."""

    def test_interior_gap_is_interpolated(self):
        assert fill_axis_gaps([0.0, None, None, 30.0]) == [0, 10, 20, 30]

    def test_edges_take_nearest_known_value(self):
        assert fill_axis_gaps([None, 5.0, None, 9.0, None]) == [5, 5, 7, 9, 9]

    def test_no_known_value(self):
        assert fill_axis_gaps([None, None]) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
