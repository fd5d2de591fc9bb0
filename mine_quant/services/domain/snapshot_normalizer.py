"""
Domain service: normalization of quantitative compute responses.

Compute responses and stored snapshots reach us with mixed spellings, missing
sections, and partially populated visualization grids. Everything is folded
into a QuantitativeSnapshot here, once, before any other component looks at
it.
"""
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Optional

from mine_quant.domain.models import (
    BlockHighlight,
    BlockVisualization,
    Centroid,
    DemDescriptor,
    ExecutiveSummary,
    QuantitativeBlockMetric,
    QuantitativeSnapshot,
    QuantitativeStep,
    QuantitativeSummary,
    VisualizationGrid,
)
from mine_quant.utils.field_resolver import (
    first_numeric,
    first_present,
    first_text,
    parse_int,
    parse_numeric,
    resolve_field,
)
from mine_quant.utils.geometry import normalize_bounds_tuple
from mine_quant.utils.grid_axes import compute_axis_positions

logger = logging.getLogger(__name__)

MAX_STEP_DETAILS = 25


def _mapping(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _is_list(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def to_iso_timestamp(value: Any) -> Optional[str]:
    """
    Convert a datetime or parseable timestamp string to ISO-8601.

    Args:
        value: datetime, ISO string, or epoch milliseconds

    Returns:
        ISO-8601 string, or None when the value cannot be parsed
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text).isoformat()
        except ValueError:
            logger.debug(f"Unparseable timestamp: {value!r}")
            return None
    millis = parse_numeric(value)
    if millis is not None:
        try:
            return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            return None
    return None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_matrix(raw: Any) -> Optional[list[list[Optional[float]]]]:
    """
    Normalize a row-major matrix of nullable numbers.

    Returns None when the input is not a list of equally long rows.
    """
    if not _is_list(raw):
        return None
    rows: list[list[Optional[float]]] = []
    for raw_row in raw:
        if not _is_list(raw_row):
            return None
        rows.append([parse_numeric(value) for value in raw_row])
    widths = {len(row) for row in rows}
    if len(widths) > 1:
        return None
    return rows


def normalize_grid(raw_grid: Any, extent: Optional[Mapping[str, Any]] = None) -> Optional[VisualizationGrid]:
    """
    Normalize a visualization grid and reconstruct its axes.

    The elevation matrix defines the grid shape; a ragged or empty elevation
    matrix means there is no grid. A depth matrix whose shape differs from
    the elevation matrix is dropped. Axes are rebuilt from the provided
    values, the UTM extent and the per-axis resolution.

    Args:
        raw_grid: Grid mapping from the compute response
        extent: ``extentUTM`` mapping (minX/maxX/minY/maxY)

    Returns:
        VisualizationGrid, or None
    """
    if not isinstance(raw_grid, Mapping):
        return None

    elevation = normalize_matrix(raw_grid.get("elevation"))
    if not elevation or not elevation[0]:
        return None
    row_count = len(elevation)
    column_count = len(elevation[0])

    depth = normalize_matrix(raw_grid.get("depth"))
    if depth is not None and (len(depth) != row_count or any(len(row) != column_count for row in depth)):
        logger.debug("Dropping depth matrix with mismatched shape")
        depth = None

    extent = extent if isinstance(extent, Mapping) else {}
    resolution_x = resolve_field(raw_grid, ("resolutionX", "resolution_x", "resolution"))
    resolution_y = resolve_field(raw_grid, ("resolutionY", "resolution_y", "resolution"))

    x = compute_axis_positions(
        raw_grid.get("x"),
        column_count,
        minimum=first_present(extent.get("minX"), extent.get("min_x")),
        maximum=first_present(extent.get("maxX"), extent.get("max_x")),
        resolution=resolution_x,
    )
    y = compute_axis_positions(
        raw_grid.get("y"),
        row_count,
        minimum=first_present(extent.get("minY"), extent.get("min_y")),
        maximum=first_present(extent.get("maxY"), extent.get("max_y")),
        resolution=resolution_y,
    )

    unit = raw_grid.get("unit")
    return VisualizationGrid(
        x=x,
        y=y,
        elevation=elevation,
        depth=depth or None,
        rim_elevation=resolve_field(raw_grid, ("rimElevation", "rim_elevation")),
        resolution_x=resolution_x,
        resolution_y=resolution_y,
        unit=unit if isinstance(unit, str) and unit else "meters",
    )


def normalize_visualization(raw: Any) -> Optional[BlockVisualization]:
    if not isinstance(raw, Mapping):
        return None
    extent = first_present(raw.get("extentUTM"), raw.get("extent_utm"))
    extent = extent if isinstance(extent, Mapping) else None
    stats = raw.get("stats")
    metadata = raw.get("metadata")
    return BlockVisualization(
        grid=normalize_grid(raw.get("grid"), extent),
        stats=dict(stats) if isinstance(stats, Mapping) else None,
        extent_utm=dict(extent) if extent else None,
        metadata=dict(metadata) if isinstance(metadata, Mapping) else None,
    )


def normalize_block_metric(raw: Any) -> QuantitativeBlockMetric:
    """Normalize one block record from a compute response or stored snapshot."""
    block = _mapping(raw)
    label = first_text(block.get("blockLabel"), block.get("label"), block.get("block_id")) or "Mine Block"
    block_id = first_text(block.get("blockId"), block.get("block_id")) or label

    area_m2 = resolve_field(block, ("areaSquareMeters", "area_sq_m", "area_m2"))
    area_ha = resolve_field(block, ("areaHectares", "area_ha"))
    if area_ha is None and area_m2:
        area_ha = area_m2 / 10_000

    centroid_raw = block.get("centroid")
    centroid = None
    if isinstance(centroid_raw, Mapping):
        lon = parse_numeric(centroid_raw.get("lon"))
        lat = parse_numeric(centroid_raw.get("lat"))
        if lon is not None and lat is not None:
            centroid = Centroid(lon=lon, lat=lat)

    return QuantitativeBlockMetric(
        block_id=block_id,
        block_label=label,
        persistent_id=first_text(block.get("persistentId"), block.get("persistent_id")),
        source=first_text(block.get("source")),
        area_square_meters=area_m2,
        area_hectares=area_ha,
        rim_elevation_meters=resolve_field(block, ("rimElevationMeters", "rim_elevation")),
        max_depth_meters=resolve_field(block, ("maxDepthMeters", "max_depth")),
        mean_depth_meters=resolve_field(block, ("meanDepthMeters", "mean_depth")),
        median_depth_meters=resolve_field(block, ("medianDepthMeters", "median_depth")),
        volume_cubic_meters=resolve_field(block, ("volumeCubicMeters", "volume_m3")),
        volume_trapezoidal_cubic_meters=resolve_field(
            block, ("volumeTrapezoidalCubicMeters", "volume_trapezoidal")
        ),
        pixel_count=resolve_field(block, ("pixelCount", "pixels"), parser=parse_int),
        centroid=centroid,
        visualization=normalize_visualization(block.get("visualization")),
        computed_at=to_iso_timestamp(first_present(block.get("computedAt"), block.get("computed_at"))),
    )


def _normalize_highlight(raw: Any, default_label: str) -> Optional[BlockHighlight]:
    if not isinstance(raw, Mapping):
        return None
    label = raw.get("label")
    return BlockHighlight(
        label=label if isinstance(label, str) else default_label,
        max_depth_meters=parse_numeric(raw.get("maxDepthMeters")),
        volume_cubic_meters=parse_numeric(raw.get("volumeCubicMeters")),
        area_hectares=parse_numeric(raw.get("areaHectares")),
    )


def normalize_summary(raw: Any) -> QuantitativeSummary:
    summary = _mapping(raw)
    if not summary:
        return QuantitativeSummary()

    total_area_m2 = first_numeric(summary.get("totalAreaSquareMeters"), summary.get("total_area_m2")) or 0.0
    total_area_ha = first_numeric(summary.get("totalAreaHectares"), summary.get("total_area_ha"))
    return QuantitativeSummary(
        total_volume_cubic_meters=first_numeric(
            summary.get("totalVolumeCubicMeters"), summary.get("total_volume_m3")
        ) or 0.0,
        total_area_square_meters=total_area_m2,
        total_area_hectares=total_area_ha if total_area_ha is not None else total_area_m2 / 10_000,
        average_max_depth_meters=first_numeric(
            summary.get("averageMaxDepthMeters"), summary.get("average_max_depth")
        ) or 0.0,
        average_mean_depth_meters=first_numeric(
            summary.get("averageMeanDepthMeters"), summary.get("averageMeanDepth")
        ),
        block_count=parse_int(summary.get("blockCount")),
        deepest_block=_normalize_highlight(summary.get("deepestBlock"), "Deepest Block"),
        largest_block=_normalize_highlight(summary.get("largestBlock"), "Largest Block"),
    )


def normalize_steps(raw: Any, max_details: int = MAX_STEP_DETAILS) -> list[QuantitativeStep]:
    if not _is_list(raw):
        return []
    steps = []
    for item in raw:
        step = _mapping(item)
        name = step.get("name")
        details = step.get("details")
        steps.append(QuantitativeStep(
            name=name if isinstance(name, str) else "Processing Step",
            status="failed" if step.get("status") == "failed" else "completed",
            duration_ms=first_numeric(step.get("durationMs"), step.get("duration_ms")) or 0.0,
            details=[str(detail) for detail in details[:max_details]] if _is_list(details) else [],
        ))
    return steps


def normalize_dem(raw: Any) -> Optional[DemDescriptor]:
    if not isinstance(raw, Mapping):
        return None
    crs = raw.get("crs")
    return DemDescriptor(
        crs=crs if isinstance(crs, str) and crs else None,
        resolution_meters=resolve_field(raw, ("resolutionMeters", "resolution_m", "resolution")),
        tile_count=resolve_field(raw, ("tileCount", "tile_count"), parser=parse_int),
        bounds_utm=normalize_bounds_tuple(first_present(raw.get("boundsUTM"), raw.get("bounds_utm"))),
        bounds_wgs84=normalize_bounds_tuple(first_present(raw.get("boundsWGS84"), raw.get("bounds_wgs84"))),
    )


def normalize_executive_summary(raw: Any) -> Optional[ExecutiveSummary]:
    if not isinstance(raw, Mapping):
        return None
    priority = raw.get("priorityBlocks")
    return ExecutiveSummary(
        headline=_mapping(raw.get("headline")),
        priority_blocks=[dict(item) for item in priority if isinstance(item, Mapping)] if _is_list(priority) else [],
        insights=_mapping(raw.get("insights")),
        policy_flags=_mapping(raw.get("policyFlags")),
        updated_at=to_iso_timestamp(raw.get("updatedAt")),
    )


def normalize_snapshot(
    analysis_id: str,
    payload: Any,
    persisted: bool,
    max_step_details: int = MAX_STEP_DETAILS,
) -> QuantitativeSnapshot:
    """
    Normalize a compute response or stored snapshot.

    Args:
        analysis_id: Analysis the snapshot belongs to
        payload: Raw response / stored record
        persisted: Whether the payload came from storage
        max_step_details: Cap on detail lines kept per step

    Returns:
        QuantitativeSnapshot
    """
    data = _mapping(payload)
    raw_blocks = data.get("blocks")
    blocks = [normalize_block_metric(block) for block in raw_blocks] if _is_list(raw_blocks) else []

    summary = normalize_summary(data.get("summary"))
    if not summary.block_count:
        summary.block_count = len(blocks)

    metadata = _mapping(data.get("metadata"))
    status = data.get("status")
    block_count = parse_int(data.get("blockCount"))
    source = data.get("source")

    snapshot = QuantitativeSnapshot(
        analysis_id=analysis_id,
        status=status if isinstance(status, str) else "completed",
        block_count=block_count if block_count is not None else len(blocks),
        steps=normalize_steps(data.get("steps"), max_step_details),
        summary=summary,
        executive_summary=normalize_executive_summary(data.get("executiveSummary")),
        blocks=blocks,
        dem=normalize_dem(data.get("dem")),
        source=dict(source) if isinstance(source, Mapping) else None,
        metadata=metadata,
        executed_at=to_iso_timestamp(first_present(data.get("executedAt"), metadata.get("generatedAt"))),
        is_persisted=persisted,
    )
    logger.debug(
        f"Normalized snapshot for {analysis_id}: {len(blocks)} blocks, "
        f"dem={'yes' if snapshot.dem else 'no'}, persisted={persisted}"
    )
    return snapshot


def visualization_blocks(snapshot: Optional[QuantitativeSnapshot]) -> list[QuantitativeBlockMetric]:
    """Blocks whose visualization grid has at least one row and one column."""
    if snapshot is None:
        return []
    return [block for block in snapshot.blocks if block.grid is not None and block.grid.has_data]


def is_fresh(snapshot: Optional[QuantitativeSnapshot]) -> bool:
    """
    A snapshot is fresh when it has blocks, a DEM descriptor, and at least
    one block with a renderable elevation grid.
    """
    if snapshot is None or not snapshot.blocks or snapshot.dem is None:
        return False
    return bool(visualization_blocks(snapshot))


def build_persist_payload(snapshot: QuantitativeSnapshot) -> dict[str, Any]:
    """
    Build the camelCase payload stored for a snapshot.

    Args:
        snapshot: Normalized snapshot

    Returns:
        JSON-serializable mapping
    """
    executed_at = snapshot.executed_at or snapshot.metadata.get("generatedAt") or utc_now_iso()
    payload = {
        "status": snapshot.status,
        "executedAt": executed_at,
        "steps": [step.model_dump(mode="json", by_alias=True) for step in snapshot.steps],
        "summary": snapshot.summary.model_dump(mode="json", by_alias=True),
        "blocks": [block.model_dump(mode="json", by_alias=True) for block in snapshot.blocks],
        "metadata": {**snapshot.metadata, "blockCount": snapshot.block_count},
    }
    if snapshot.executive_summary is not None:
        payload["executiveSummary"] = snapshot.executive_summary.model_dump(mode="json", by_alias=True)
    if snapshot.dem is not None:
        payload["dem"] = snapshot.dem.model_dump(mode="json", by_alias=True)
    if snapshot.source is not None:
        payload["source"] = snapshot.source
    return payload
