"""
Geometry normalization for heterogeneous polygon and bounds encodings.

Block geometries arrive as GeoJSON Polygon / MultiPolygon objects, bare
coordinate arrays, literal bbox tuples, or lists of corner coordinates.
Everything here degrades to None on malformed input instead of raising.
"""
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Optional

from shapely.geometry import MultiPoint

from mine_quant.utils.field_resolver import is_finite_number, parse_numeric

logger = logging.getLogger(__name__)

Coordinate = list[float]
Ring = list[Coordinate]
Bounds = tuple[float, float, float, float]

MIN_RING_POINTS = 3


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def normalize_coordinate(value: Any) -> Optional[Coordinate]:
    """
    Normalize a coordinate into [lon, lat].

    Args:
        value: Sequence with at least two elements (extra elements such as
            elevation are ignored)

    Returns:
        [lon, lat] when both parse to finite numbers, else None
    """
    if not _is_sequence(value) or len(value) < 2:
        return None
    lon = parse_numeric(value[0])
    lat = parse_numeric(value[1])
    if lon is None or lat is None:
        return None
    return [lon, lat]


def _envelope(points: list[Coordinate]) -> Bounds:
    min_x, min_y, max_x, max_y = MultiPoint(points).bounds
    return (float(min_x), float(min_y), float(max_x), float(max_y))


def normalize_bounds_tuple(raw: Any) -> Optional[Bounds]:
    """
    Normalize a bounds encoding into (min_lon, min_lat, max_lon, max_lat).

    Accepts a literal 4-number tuple (returned as-is) or a sequence of
    coordinate pairs, in which case the envelope of the valid pairs is used.

    Args:
        raw: Bounds tuple or list of [lon, lat] pairs

    Returns:
        Bounds tuple, or None when fewer than two valid coordinates exist
    """
    if not _is_sequence(raw):
        return None

    if len(raw) == 4 and all(not _is_sequence(value) for value in raw):
        parsed = [parse_numeric(value) for value in raw]
        if all(value is not None for value in parsed):
            return (parsed[0], parsed[1], parsed[2], parsed[3])
        logger.debug(f"Discarding bounds tuple with non-numeric entries: {raw!r}")
        return None

    points = [point for point in (normalize_coordinate(item) for item in raw) if point]
    if len(points) < 2:
        return None
    return _envelope(points)


def _normalize_ring(raw_ring: Any) -> Optional[Ring]:
    if not _is_sequence(raw_ring):
        return None
    points = [point for point in (normalize_coordinate(item) for item in raw_ring) if point]
    if len(points) < MIN_RING_POINTS:
        return None
    return points


def _collect_rings(raw_rings: Any) -> list[Ring]:
    if not _is_sequence(raw_rings):
        return []
    return [ring for ring in (_normalize_ring(item) for item in raw_rings) if ring]


def _nesting_depth(value: Any) -> int:
    """Depth of nested sequences until the first number (a coordinate is depth 1)."""
    depth = 0
    current = value
    while _is_sequence(current) and len(current) > 0:
        depth += 1
        current = current[0]
    return depth if is_finite_number(current) or isinstance(current, str) else 0


def normalize_polygon_rings(geometry: Any) -> Optional[list[Ring]]:
    """
    Normalize a polygon-like geometry into a flat list of rings.

    Dispatches on the GeoJSON ``type`` discriminator:
    - Polygon: each ring with at least three valid points is kept
    - MultiPolygon: rings are flattened across all member polygons
    - bare coordinate arrays: the nesting depth decides whether the array is
      a single ring, a polygon, or a multipolygon

    Args:
        geometry: GeoJSON geometry mapping or bare coordinate array

    Returns:
        List of rings ([lon, lat] lists), or None if no valid ring remains
    """
    rings: list[Ring] = []

    if isinstance(geometry, Mapping):
        geometry_type = geometry.get("type")
        coordinates = geometry.get("coordinates")
        if geometry_type == "Polygon":
            rings = _collect_rings(coordinates)
        elif geometry_type == "MultiPolygon":
            if _is_sequence(coordinates):
                for polygon in coordinates:
                    rings.extend(_collect_rings(polygon))
        elif coordinates is not None:
            return normalize_polygon_rings(coordinates)
        else:
            logger.debug(f"Unsupported geometry type: {geometry_type!r}")
    elif _is_sequence(geometry):
        depth = _nesting_depth(geometry)
        if depth == 2:
            ring = _normalize_ring(geometry)
            rings = [ring] if ring else []
        elif depth == 3:
            rings = _collect_rings(geometry)
        elif depth == 4:
            for polygon in geometry:
                rings.extend(_collect_rings(polygon))
        else:
            logger.debug(f"Unrecognized coordinate nesting depth {depth}")

    return rings or None


def bounds_from_polygon(rings: Optional[list[Ring]]) -> Optional[Bounds]:
    """Envelope over every point of every ring; None when there are no rings."""
    if not rings:
        return None
    points = [point for ring in rings for point in ring]
    if not points:
        return None
    return _envelope(points)


def normalize_geometry_bounds(geometry: Any) -> Optional[Bounds]:
    """Convenience composition: geometry -> rings -> envelope."""
    return bounds_from_polygon(normalize_polygon_rings(geometry))
