"""
Domain service: reconciliation of detection blocks into canonical rows.

A detection result carries blocks at two granularities: merged mosaic
features and per-tile block features. This module merges both into one
ordered list of CanonicalMineBlockRow, attaching volumetric metrics and
imagery through multi-key lookups (persistent id, block id, label).
"""
import logging
from collections.abc import Mapping, Sequence
from functools import cmp_to_key
from typing import Any, Iterable, Optional

from mine_quant.domain.models import (
    BlockSource,
    CanonicalMineBlockRow,
    Centroid,
    QuantitativeBlockMetric,
)
from mine_quant.services.domain.imagery_matcher import (
    ImageryIndex,
    build_imagery_index,
    feature_list,
    tile_blocks,
    tile_identifier,
)
from mine_quant.utils.field_resolver import (
    first_present,
    first_text,
    normalize_percentage,
    parse_numeric,
    resolve_field,
)
from mine_quant.utils.geometry import normalize_bounds_tuple, normalize_geometry_bounds

logger = logging.getLogger(__name__)

SQUARE_METERS_PER_HECTARE = 10_000


def _is_merged_source(source: Optional[str]) -> bool:
    return bool(source) and "merged" in source.lower()


def build_metrics_index(metrics: Iterable[QuantitativeBlockMetric]) -> dict[str, QuantitativeBlockMetric]:
    """
    Index block metrics by persistent id, block id and label.

    The first metric registered under a key keeps it, except that a metric
    from the merged collection replaces a tile-level one.

    Args:
        metrics: Normalized block metrics

    Returns:
        Mapping from lookup key to metric
    """
    index: dict[str, QuantitativeBlockMetric] = {}
    for metric in metrics:
        for key in (metric.persistent_id, metric.block_id, metric.block_label):
            if not key:
                continue
            existing = index.get(key)
            if existing is None or (
                _is_merged_source(metric.source) and not _is_merged_source(existing.source)
            ):
                index[key] = metric
    return index


def lookup_metric(
    index: Mapping[str, QuantitativeBlockMetric],
    keys: Iterable[Optional[str]],
) -> Optional[QuantitativeBlockMetric]:
    """First metric found for the keys in priority order."""
    for key in keys:
        if key and key in index:
            return index[key]
    return None


def compare_rows(first: CanonicalMineBlockRow, second: CanonicalMineBlockRow) -> int:
    """
    Canonical row ordering.

    1. both rows have a block index: ascending block index
    2. different sources: Merged before Tile
    3. otherwise: larger area first
    """
    if first.block_index is not None and second.block_index is not None:
        return (first.block_index > second.block_index) - (first.block_index < second.block_index)
    if first.source != second.source:
        return -1 if first.source is BlockSource.MERGED else 1
    return (second.area_ha > first.area_ha) - (second.area_ha < first.area_ha)


def sort_rows(rows: list[CanonicalMineBlockRow]) -> list[CanonicalMineBlockRow]:
    # sorted() is stable, so equal rows keep their input order
    return sorted(rows, key=cmp_to_key(compare_rows))


def _centroid(properties: Mapping[str, Any]) -> Optional[Centroid]:
    position = properties.get("label_position")
    if position is None:
        position = properties.get("labelPosition")
    if not isinstance(position, Sequence) or isinstance(position, (str, bytes)) or len(position) < 2:
        return None
    lon = parse_numeric(position[0])
    lat = parse_numeric(position[1])
    if lon is None or lat is None:
        return None
    return Centroid(lon=lon, lat=lat)


class BlockReconciler:
    """
    Builds the canonical, ordered mine block row list for an analysis.

    Merged features and tile block features each become a row; rows are
    enriched with volumetric metrics and imagery, given unique persistent
    ids, and sorted. When the detection result yields no rows at all, rows
    are synthesized from the volumetric metrics.
    """

    def reconcile(
        self,
        results: Optional[Mapping[str, Any]],
        metrics: Optional[Sequence[QuantitativeBlockMetric]] = None,
        imagery_index: Optional[ImageryIndex] = None,
    ) -> list[CanonicalMineBlockRow]:
        """
        Reconcile an analysis result with its quantitative metrics.

        Args:
            results: AnalysisResult mapping (may be None)
            metrics: Normalized quantitative block metrics
            imagery_index: Prebuilt imagery index (built from results if omitted)

        Returns:
            Ordered list of CanonicalMineBlockRow
        """
        metrics = list(metrics or [])
        if not isinstance(results, Mapping):
            return self.rows_from_metrics(metrics)

        metrics_index = build_metrics_index(metrics)
        if imagery_index is None:
            imagery_index = build_imagery_index(results)

        merged = first_present(results.get("merged_blocks"), results.get("mergedBlocks"))
        rows = [
            self._merged_row(feature, position, metrics_index, imagery_index)
            for position, feature in enumerate(feature_list(merged))
        ]
        rows.extend(self._tile_rows(results.get("tiles"), metrics_index, imagery_index))

        if not rows:
            if metrics:
                logger.info(f"No detection blocks found; synthesizing {len(metrics)} rows from metrics")
            return self.rows_from_metrics(metrics)

        rows = self._ensure_unique_persistent_ids(rows)
        ordered = sort_rows(rows)
        logger.debug(f"Reconciled {len(ordered)} block rows ({len(metrics)} metrics available)")
        return ordered

    def rows_from_metrics(self, metrics: Sequence[QuantitativeBlockMetric]) -> list[CanonicalMineBlockRow]:
        """
        Synthesize rows directly from volumetric metrics.

        Confidence is None: detection confidence does not exist at this
        granularity.
        """
        rows = []
        for position, metric in enumerate(metrics):
            fallback_id = f"quant-block-{position}"
            area_ha = metric.area_hectares
            if area_ha is None and metric.area_square_meters is not None:
                area_ha = metric.area_square_meters / SQUARE_METERS_PER_HECTARE
            is_merged = _is_merged_source(metric.source)
            rows.append(CanonicalMineBlockRow(
                id=metric.block_id or fallback_id,
                label=metric.block_label or metric.block_id or f"Block {position + 1}",
                tile_id=metric.source or "quantitative",
                area_ha=area_ha or 0.0,
                confidence_pct=None,
                source=BlockSource.MERGED if is_merged else BlockSource.TILE,
                is_merged=is_merged,
                persistent_id=metric.persistent_id or metric.block_id or fallback_id,
                centroid=metric.centroid,
                rim_elevation_meters=metric.rim_elevation_meters,
                max_depth_meters=metric.max_depth_meters,
                mean_depth_meters=metric.mean_depth_meters,
                volume_cubic_meters=metric.volume_cubic_meters,
            ))
        return self._ensure_unique_persistent_ids(rows)

    def _merged_row(
        self,
        feature: Mapping[str, Any],
        position: int,
        metrics_index: Mapping[str, QuantitativeBlockMetric],
        imagery_index: ImageryIndex,
    ) -> CanonicalMineBlockRow:
        properties = feature.get("properties")
        properties = properties if isinstance(properties, Mapping) else {}
        block_id = first_text(properties.get("block_id"), properties.get("id")) or f"merged-{position}"
        label = first_text(properties.get("name")) or f"Merged Block {position + 1}"
        tile_id = first_text(properties.get("tile_id"), properties.get("tileId")) or "mosaic"
        return self._build_row(
            row_id=f"merged-{block_id}",
            block_id=block_id,
            label=label,
            tile_id=tile_id,
            source=BlockSource.MERGED,
            is_merged=True,
            feature=feature,
            properties=properties,
            metrics_index=metrics_index,
            imagery_index=imagery_index,
        )

    def _tile_rows(
        self,
        tiles: Any,
        metrics_index: Mapping[str, QuantitativeBlockMetric],
        imagery_index: ImageryIndex,
    ) -> list[CanonicalMineBlockRow]:
        if not isinstance(tiles, Sequence) or isinstance(tiles, (str, bytes)):
            return []

        rows = []
        for tile_position, tile in enumerate(tiles):
            if not isinstance(tile, Mapping):
                continue
            blocks = tile_blocks(tile)
            if not blocks:
                continue

            tile_id = tile_identifier(tile, tile_position)
            tile_label = first_text(tile.get("tile_label")) or tile_id
            for block_position, feature in enumerate(blocks):
                properties = feature.get("properties")
                properties = properties if isinstance(properties, Mapping) else {}
                block_id = first_text(properties.get("block_id")) or f"{tile_id}-block-{block_position + 1}"
                label = first_text(properties.get("name")) or f"{tile_label} · Block {block_position + 1}"
                rows.append(self._build_row(
                    row_id=f"tile-{block_id}",
                    block_id=block_id,
                    label=label,
                    tile_id=tile_id,
                    source=BlockSource.TILE,
                    is_merged=bool(properties.get("is_merged")),
                    feature=feature,
                    properties=properties,
                    metrics_index=metrics_index,
                    imagery_index=imagery_index,
                ))
        return rows

    def _build_row(
        self,
        row_id: str,
        block_id: str,
        label: str,
        tile_id: str,
        source: BlockSource,
        is_merged: bool,
        feature: Mapping[str, Any],
        properties: Mapping[str, Any],
        metrics_index: Mapping[str, QuantitativeBlockMetric],
        imagery_index: ImageryIndex,
    ) -> CanonicalMineBlockRow:
        persistent_id = first_text(properties.get("persistent_id"), properties.get("persistentId")) or block_id
        keys = [persistent_id, block_id, label]

        bounds = normalize_bounds_tuple(properties.get("bbox"))
        if bounds is None:
            bounds = normalize_geometry_bounds(feature.get("geometry"))

        area_m2 = resolve_field(properties, ("area_m2", "areaM2", "area_sq_m")) or 0.0
        confidence = normalize_percentage(first_present(
            properties.get("avg_confidence"),
            properties.get("confidence"),
            properties.get("mean_confidence"),
        ))

        metric = lookup_metric(metrics_index, keys)
        imagery = imagery_index.resolve(keys, tile_id)

        return CanonicalMineBlockRow(
            id=row_id,
            label=label,
            tile_id=tile_id,
            area_ha=area_m2 / SQUARE_METERS_PER_HECTARE,
            confidence_pct=confidence,
            source=source,
            is_merged=is_merged,
            persistent_id=persistent_id,
            block_index=parse_numeric(properties.get("block_index")),
            centroid=_centroid(properties),
            bounds=bounds,
            rim_elevation_meters=metric.rim_elevation_meters if metric else None,
            max_depth_meters=metric.max_depth_meters if metric else None,
            mean_depth_meters=metric.mean_depth_meters if metric else None,
            volume_cubic_meters=metric.volume_cubic_meters if metric else None,
            imagery=imagery,
        )

    @staticmethod
    def _ensure_unique_persistent_ids(rows: list[CanonicalMineBlockRow]) -> list[CanonicalMineBlockRow]:
        """Suffix repeated persistent ids (``<id>#2``, ``<id>#3``...); the first occurrence keeps the bare id."""
        seen: set[str] = {row.persistent_id for row in rows}
        counts: dict[str, int] = {}
        unique = []
        for row in rows:
            occurrence = counts.get(row.persistent_id, 0) + 1
            counts[row.persistent_id] = occurrence
            if occurrence > 1:
                suffix = occurrence
                candidate = f"{row.persistent_id}#{suffix}"
                while candidate in seen:
                    suffix += 1
                    candidate = f"{row.persistent_id}#{suffix}"
                seen.add(candidate)
                logger.debug(f"Duplicate persistent id {row.persistent_id!r} renamed to {candidate!r}")
                row = row.model_copy(update={"persistent_id": candidate})
            unique.append(row)
        return unique
