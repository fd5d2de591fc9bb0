"""
Resolution of plot interaction points back to grid cells.

Plotting front-ends report hover/click points in different shapes: paired
index hints, a single linear index, or just raw axis coordinates. The
functions here reduce any of them to a (row, column) pair on a
VisualizationGrid.
"""
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Optional

import numpy as np

from mine_quant.domain.models import HoverReadout, VisualizationGrid
from mine_quant.utils.field_resolver import (
    first_present,
    is_finite_number,
    parse_int,
    parse_numeric,
)
from mine_quant.utils.geo_projection import project_to_lonlat

logger = logging.getLogger(__name__)

PAIR_HINT_KEYS = ("pointIndex", "point_index", "pointNumber", "point_number")
LINEAR_INDEX_KEYS = ("pointNumber", "point_number", "pointIndex", "point_index")


def _is_pair(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes)) and len(value) >= 2


def find_closest_axis_index(value: Any, axis: Sequence[Any]) -> Optional[int]:
    """
    Find the axis index whose value is nearest to ``value``.

    Only finite axis entries are considered. Ties keep the lowest index.

    Args:
        value: Raw coordinate
        axis: Axis values

    Returns:
        Index of the closest entry, or None if value is missing or the axis
        has no finite entries
    """
    target = parse_numeric(value)
    if target is None or not axis:
        return None

    values = np.array(
        [entry if is_finite_number(entry) else np.nan for entry in axis],
        dtype=float,
    )
    finite = np.isfinite(values)
    if not finite.any():
        return None

    distances = np.where(finite, np.abs(values - target), np.inf)
    # argmin returns the first occurrence on ties
    return int(np.argmin(distances))


def get_matrix_value(
    matrix: Optional[Sequence[Any]],
    row: Optional[int],
    column: Optional[int],
) -> Optional[float]:
    """Return matrix[row][column] when both indices are valid and the cell is a finite number."""
    if row is None or column is None or not isinstance(matrix, Sequence):
        return None
    if row < 0 or row >= len(matrix):
        return None
    values = matrix[row]
    if not isinstance(values, Sequence) or isinstance(values, (str, bytes)):
        return None
    if column < 0 or column >= len(values):
        return None
    cell = values[column]
    return float(cell) if is_finite_number(cell) else None


def _valid_index(value: Any, upper: int) -> Optional[int]:
    index = parse_int(value)
    if index is None or index < 0 or index >= upper:
        return None
    return index


def _resolve_pair_hint(
    point: Mapping[str, Any],
    row_count: int,
    column_count: int,
) -> tuple[Optional[int], Optional[int]]:
    for key in PAIR_HINT_KEYS:
        hint = point.get(key)
        if not _is_pair(hint):
            continue
        first, second = hint[0], hint[1]

        for row_value, column_value in ((first, second), (second, first)):
            row = _valid_index(row_value, row_count)
            column = _valid_index(column_value, column_count)
            if row is not None and column is not None:
                return row, column

        # Neither ordering is fully valid; keep whichever half resolves
        row = _valid_index(first, row_count)
        column = _valid_index(second, column_count)
        if row is None and column is None:
            row = _valid_index(second, row_count)
            column = _valid_index(first, column_count)
        if row is not None or column is not None:
            return row, column
    return None, None


def _resolve_linear_index(
    point: Mapping[str, Any],
    row_count: int,
    column_count: int,
) -> tuple[Optional[int], Optional[int]]:
    if column_count <= 0:
        return None, None
    for key in LINEAR_INDEX_KEYS:
        raw = point.get(key)
        if _is_pair(raw):
            continue
        index = parse_int(raw)
        if index is None or index < 0:
            continue
        row, column = divmod(index, column_count)
        if row < row_count:
            return row, column
    return None, None


def infer_grid_indices(
    point: Optional[Mapping[str, Any]],
    row_count: int,
    column_count: int,
    axis_x: Sequence[Any],
    axis_y: Sequence[Any],
    x_candidate: Any = None,
    y_candidate: Any = None,
) -> tuple[Optional[int], Optional[int]]:
    """
    Map an interaction point to a (row, column) grid position.

    Resolution order:
    1. paired index hint, trying (row, column) then (column, row); a hint
       where only one half is valid seeds that half
    2. linear index decomposed as divmod(index, column_count)
    3. nearest axis value for whatever is still unresolved, using the raw
       coordinate candidates (defaulting to the point's own x/y)

    Args:
        point: Interaction point payload
        row_count: Number of grid rows
        column_count: Number of grid columns
        axis_x: Column axis
        axis_y: Row axis
        x_candidate: Raw x coordinate
        y_candidate: Raw y coordinate

    Returns:
        (row, column) with None for any half that could not be resolved
    """
    point = point if isinstance(point, Mapping) else {}

    row, column = _resolve_pair_hint(point, row_count, column_count)

    if row is None and column is None:
        row, column = _resolve_linear_index(point, row_count, column_count)

    if row is None:
        candidate = first_present(y_candidate, point.get("y"))
        row = _valid_index(find_closest_axis_index(candidate, axis_y), row_count)
    if column is None:
        candidate = first_present(x_candidate, point.get("x"))
        column = _valid_index(find_closest_axis_index(candidate, axis_x), column_count)

    return row, column


def describe_hover(
    grid: VisualizationGrid,
    point: Optional[Mapping[str, Any]],
    crs: Optional[str] = None,
) -> HoverReadout:
    """
    Build a hover readout for a point on a block's visualization grid.

    Args:
        grid: Visualization grid of the block
        point: Interaction point payload
        crs: Projected CRS of the grid axes, used for the lon/lat readout

    Returns:
        HoverReadout; unresolved fields are None
    """
    point = point if isinstance(point, Mapping) else {}
    row, column = infer_grid_indices(
        point,
        grid.row_count,
        grid.column_count,
        grid.x,
        grid.y,
    )

    x = grid.x[column] if column is not None and column < len(grid.x) else None
    y = grid.y[row] if row is not None and row < len(grid.y) else None

    lon = lat = None
    if crs and x is not None and y is not None:
        projected = project_to_lonlat(x, y, crs)
        if projected:
            lon, lat = projected

    readout = HoverReadout(
        row=row,
        column=column,
        x=x,
        y=y,
        elevation=get_matrix_value(grid.elevation, row, column),
        depth=get_matrix_value(grid.depth, row, column),
        lon=lon,
        lat=lat,
    )
    logger.debug(f"Hover resolved to row={row}, column={column}")
    return readout
