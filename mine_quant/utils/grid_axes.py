"""
Coordinate axis reconstruction for 2D visualization grids.

Elevation grids from the quantitative backend carry their x/y axes in
varying states of completeness: fully populated, partially null, missing
entirely, or replaced by extent/resolution metadata. ``compute_axis_positions``
turns any of these into an ordered numeric axis of the required length.
"""
import logging
from collections.abc import Sequence
from typing import Any, Optional

import numpy as np

from mine_quant.utils.field_resolver import parse_numeric

logger = logging.getLogger(__name__)


def _coerce_axis(provided: Any) -> Optional[list[Optional[float]]]:
    if not isinstance(provided, Sequence) or isinstance(provided, (str, bytes)):
        return None
    return [parse_numeric(value) for value in provided]


def fill_axis_gaps(values: list[Optional[float]]) -> Optional[list[float]]:
    """
    Fill missing entries of a partially known axis.

    Gaps between two known values are linearly interpolated; entries before
    the first known value take that value, entries after the last known
    value take the last one.

    Args:
        values: Axis entries, None where unknown

    Returns:
        Fully finite axis, or None when no entry is known
    """
    known_indices = [index for index, value in enumerate(values) if value is not None]
    if not known_indices:
        return None

    known_values = [values[index] for index in known_indices]
    # np.interp holds the edge values constant outside the known range
    filled = np.interp(np.arange(len(values)), known_indices, known_values)
    if not np.all(np.isfinite(filled)):
        return None
    return [float(value) for value in filled]


def compute_axis_positions(
    provided: Any,
    count: int,
    minimum: Any = None,
    maximum: Any = None,
    resolution: Any = None,
) -> list[float]:
    """
    Derive an ordered numeric axis of ``count`` entries.

    Priority chain:
    1. ``provided`` has exactly ``count`` finite entries: returned as-is
    2. resolution and at least one of minimum/maximum known: arithmetic
       sequence starting at minimum, or ending at maximum
    3. minimum and maximum known: linear interpolation, both inclusive
    4. ``provided`` has ``count`` entries with gaps: gap-filled
    5. index sequence 0..count-1

    Args:
        provided: Axis values as received (may be None or partial)
        count: Required axis length
        minimum: Lower extent of the axis
        maximum: Upper extent of the axis
        resolution: Spacing between consecutive entries (sign ignored)

    Returns:
        List of exactly ``count`` finite floats (empty when count <= 0)
    """
    if count <= 0:
        return []

    values = _coerce_axis(provided)
    if values is not None and len(values) == count and all(value is not None for value in values):
        return [float(value) for value in values]

    lower = parse_numeric(minimum)
    upper = parse_numeric(maximum)
    step = parse_numeric(resolution)
    if step is not None:
        step = abs(step)

    if step and (lower is not None or upper is not None):
        start = lower if lower is not None else upper - step * (count - 1)
        return [float(start + step * index) for index in range(count)]

    if lower is not None and upper is not None:
        if count == 1:
            return [lower]
        return [float(value) for value in np.linspace(lower, upper, count)]

    if values is not None and len(values) == count:
        filled = fill_axis_gaps(values)
        if filled is not None:
            return filled

    logger.debug(f"Falling back to index axis of length {count}")
    return [float(index) for index in range(count)]
