"""
Domain service: headline statistics for a detection result.

Tile area, mining area, coverage and confidence are scattered across tiles,
``summary``, ``statistics`` and ``detection_summary`` under many spellings.
All of them are resolved through ordered candidate lists.
"""
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Optional

import numpy as np

from mine_quant.domain.models import (
    BlockAnalytics,
    CanonicalMineBlockRow,
    ConfidenceMetrics,
    QuantitativeSnapshot,
    QuantitativeSummary,
    TileAreaMetrics,
)
from mine_quant.services.domain.imagery_matcher import feature_list, tile_blocks
from mine_quant.utils.field_resolver import (
    clamp_percent,
    first_present,
    normalize_percentage,
    parse_numeric,
    resolve_field,
)

logger = logging.getLogger(__name__)

DETECTION_SUMMARY_KEYS = ("detectionSummary", "detection_summary")

TILE_AREA_FIELDS = (
    "summary.total_tile_area_m2",
    "summary.totalAreaM2",
    "summary.total_area_m2",
    "summary.total_processed_area_m2",
    "summary.processedAreaM2",
    "statistics.total_tile_area_m2",
    "statistics.totalTileAreaM2",
    "statistics.total_area_m2",
    "statistics.total_processed_area_m2",
    "statistics.processed_area_m2",
    "detection_summary.total_tile_area_m2",
    "detection_summary.totalAreaM2",
    "detection_summary.total_processed_area_m2",
    "detection_summary.processed_area_m2",
    "area_m2",
    "areaM2",
)

MINING_AREA_FIELDS = (
    "summary.detected_mining_area_m2",
    "summary.total_mining_area_m2",
    "summary.miningAreaM2",
    "summary.detectedMiningAreaM2",
    "summary.detected_area_m2",
    "summary.mining_area_m2",
    "statistics.total_mining_area_m2",
    "statistics.totalMiningAreaM2",
    "statistics.mining_area_m2",
    "statistics.detected_area_m2",
    "detection_summary.total_mining_area_m2",
    "detection_summary.mining_area_m2",
    "detection_summary.detected_area_m2",
)

COVERAGE_FIELDS = (
    "summary.coverage_pct",
    "summary.coverage",
    "summary.miningCoverage",
    "summary.miningCoveragePct",
    "summary.mining_percentage",
    "summary.miningPercentage",
    "statistics.coverage_pct",
    "statistics.coveragePct",
    "statistics.coveragePercentage",
    "statistics.coverage_percentage",
    "statistics.miningCoveragePct",
    "statistics.mining_percentage",
    "statistics.miningPercentage",
    "detection_summary.coverage_pct",
    "detection_summary.miningCoveragePct",
    "detection_summary.mining_percentage",
    "detection_summary.miningPercentage",
)

SUMMARY_CONFIDENCE_FIELDS = (
    "statistics.avgConfidence",
    "statistics.averageConfidence",
    "statistics.average_confidence",
    "summary.confidence",
    "summary.avg_confidence",
    "detection_summary.avg_confidence",
)

TILE_AREA_KEYS = ("tile_area_m2", "tileAreaM2", "area_m2")
TILE_MINING_AREA_KEYS = ("total_area_m2", "mining_area_m2", "miningAreaM2")
BLOCK_AREA_KEYS = ("area_m2", "areaM2")
BLOCK_CONFIDENCE_KEYS = ("avg_confidence", "confidence", "mean_confidence")


def _with_detection_summary(results: Mapping[str, Any]) -> dict[str, Any]:
    """Expose the detection summary under its snake_case key for path lookups."""
    view = dict(results)
    view["detection_summary"] = first_present(*(results.get(key) for key in DETECTION_SUMMARY_KEYS))
    return view


def _tiles(results: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    tiles = results.get("tiles")
    if not isinstance(tiles, Sequence) or isinstance(tiles, (str, bytes)):
        return []
    return [tile for tile in tiles if isinstance(tile, Mapping)]


def _block_properties(results: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    properties = []
    for tile in _tiles(results):
        for block in tile_blocks(tile):
            props = block.get("properties")
            if isinstance(props, Mapping):
                properties.append(props)
    return properties


def _sum_tile_metrics(results: Mapping[str, Any]) -> TileAreaMetrics:
    total_tile_area = 0.0
    total_mining_area = 0.0
    for tile in _tiles(results):
        total_tile_area += resolve_field(tile, TILE_AREA_KEYS) or 0.0
        mining_area = resolve_field(tile, TILE_MINING_AREA_KEYS)
        if mining_area is None:
            mining_area = sum(
                resolve_field(block.get("properties"), BLOCK_AREA_KEYS) or 0.0
                for block in tile_blocks(tile)
            )
        total_mining_area += mining_area

    coverage = None
    if total_tile_area > 0:
        coverage = clamp_percent(total_mining_area / total_tile_area * 100)
    return TileAreaMetrics(
        total_tile_area_m2=total_tile_area,
        total_mining_area_m2=total_mining_area,
        coverage_pct=coverage,
    )


def derive_tile_area_metrics(
    results: Optional[Mapping[str, Any]],
    quantitative_summary: Optional[QuantitativeSummary] = None,
) -> TileAreaMetrics:
    """
    Derive total tile area, mining area and coverage for a result.

    Tile-level sums are used first; summary/statistics fields fill in what
    the tiles do not provide. Mining area never exceeds tile area and
    coverage is normalized to 0-100.

    Args:
        results: AnalysisResult mapping
        quantitative_summary: Volumetric summary, the last-resort area source

    Returns:
        TileAreaMetrics
    """
    if not isinstance(results, Mapping):
        results = {}
    view = _with_detection_summary(results)
    metrics = _sum_tile_metrics(results)
    tile_area = metrics.total_tile_area_m2
    mining_area = metrics.total_mining_area_m2
    coverage = metrics.coverage_pct
    quant_area = quantitative_summary.total_area_square_meters if quantitative_summary else None

    fallback_tile_area = first_present(resolve_field(view, TILE_AREA_FIELDS), parse_numeric(quant_area))
    if tile_area <= 0 and fallback_tile_area is not None and fallback_tile_area > 0:
        tile_area = fallback_tile_area

    fallback_mining_area = first_present(resolve_field(view, MINING_AREA_FIELDS), parse_numeric(quant_area))
    if mining_area <= 0 and fallback_mining_area is not None and fallback_mining_area >= 0:
        mining_area = min(fallback_mining_area, tile_area) if tile_area > 0 else fallback_mining_area

    if tile_area > 0 and mining_area > tile_area:
        mining_area = tile_area

    if coverage is None:
        coverage = normalize_percentage(resolve_field(view, COVERAGE_FIELDS))
        if coverage is None and tile_area > 0:
            coverage = clamp_percent(mining_area / tile_area * 100)

    return TileAreaMetrics(
        total_tile_area_m2=tile_area,
        total_mining_area_m2=mining_area,
        coverage_pct=coverage,
    )


def derive_confidence_metrics(results: Optional[Mapping[str, Any]]) -> ConfidenceMetrics:
    """
    Confidence statistics over detected blocks.

    Block confidences (model probabilities) are preferred; when no block
    carries one, the summary/statistics average is used as a single sample.
    """
    if not isinstance(results, Mapping):
        return ConfidenceMetrics()

    properties = _block_properties(results)
    if not properties:
        merged = first_present(results.get("merged_blocks"), results.get("mergedBlocks"))
        properties = [
            feature["properties"]
            for feature in feature_list(merged)
            if isinstance(feature.get("properties"), Mapping)
        ]

    samples = [
        value
        for value in (
            normalize_percentage(resolve_field(props, BLOCK_CONFIDENCE_KEYS)) for props in properties
        )
        if value is not None
    ]
    if samples:
        values = np.array(samples, dtype=float)
        return ConfidenceMetrics(
            average_pct=float(values.mean()),
            max_pct=float(values.max()),
            min_pct=float(values.min()),
            sample_count=len(samples),
            source="blocks",
        )

    fallback = normalize_percentage(resolve_field(_with_detection_summary(results), SUMMARY_CONFIDENCE_FIELDS))
    if fallback is None:
        return ConfidenceMetrics()
    logger.debug("No block confidences; using summary confidence")
    return ConfidenceMetrics(
        average_pct=fallback,
        max_pct=fallback,
        min_pct=fallback,
        sample_count=0,
        source="summary",
    )


def _finite_mean(values: list[Optional[float]]) -> Optional[float]:
    finite = [value for value in values if value is not None]
    return float(np.mean(finite)) if finite else None


def derive_block_analytics(
    rows: list[CanonicalMineBlockRow],
    snapshot: Optional[QuantitativeSnapshot] = None,
) -> BlockAnalytics:
    """
    Aggregate statistics over the canonical rows and volumetric blocks.

    Args:
        rows: Reconciled block rows
        snapshot: Quantitative snapshot, source of the depth/volume figures

    Returns:
        BlockAnalytics
    """
    if not rows:
        return BlockAnalytics()

    total_area = float(sum(row.area_ha for row in rows))
    confidences = [row.confidence_pct for row in rows if row.confidence_pct is not None]

    blocks = snapshot.blocks if snapshot else []
    volumes = [block.volume_cubic_meters for block in blocks if block.volume_cubic_meters is not None]
    total_volume = None
    if snapshot is not None and snapshot.summary is not None:
        total_volume = snapshot.summary.total_volume_cubic_meters
    if total_volume is None and volumes:
        total_volume = float(sum(volumes))

    return BlockAnalytics(
        count=len(rows),
        total_area_ha=total_area,
        average_block_area_ha=total_area / len(rows),
        average_confidence=_finite_mean(confidences),
        max_confidence=max(confidences) if confidences else None,
        min_confidence=min(confidences) if confidences else None,
        average_max_depth=_finite_mean([block.max_depth_meters for block in blocks]),
        average_mean_depth=_finite_mean([block.mean_depth_meters for block in blocks]),
        total_volume_cubic_meters=total_volume,
    )
