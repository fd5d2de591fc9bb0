"""
Unit tests for headline detection and volumetric statistics.
"""
import pytest

from mine_quant.domain.models import QuantitativeSummary
from mine_quant.services.domain.block_reconciler import BlockReconciler
from mine_quant.services.domain.results_metrics import (
    derive_block_analytics,
    derive_confidence_metrics,
    derive_tile_area_metrics,
)
from mine_quant.services.domain.snapshot_normalizer import normalize_snapshot


# ============================================================
# Tile Area Tests
# ============================================================

class TestTileAreaMetrics:
    """Tests for tile area, mining area and coverage."""

    def test_sums_from_tiles(self, sample_results):
        metrics = derive_tile_area_metrics(sample_results)

        assert metrics.total_tile_area_m2 == 40000.0
        assert metrics.total_mining_area_m2 == 20000.0
        assert metrics.coverage_pct == pytest.approx(50.0)

    def test_summary_fallbacks(self):
        """Mining area is clamped to the tile area; fractional coverage becomes a percent."""
        results = {"summary": {"totalAreaM2": "1000", "miningAreaM2": 1500, "coverage": 0.3}}

        metrics = derive_tile_area_metrics(results)

        assert metrics.total_tile_area_m2 == 1000.0
        assert metrics.total_mining_area_m2 == 1000.0
        assert metrics.coverage_pct == pytest.approx(30.0)

    def test_detection_summary_spelling(self):
        results = {"detectionSummary": {"total_tile_area_m2": 500, "mining_area_m2": 100}}

        metrics = derive_tile_area_metrics(results)

        assert metrics.total_tile_area_m2 == 500.0
        assert metrics.coverage_pct == pytest.approx(20.0)

    def test_percent_coverage_is_clamped(self):
        metrics = derive_tile_area_metrics({"statistics": {"coveragePct": 140}})

        assert metrics.coverage_pct == 100.0

    def test_quantitative_summary_as_last_resort(self):
        metrics = derive_tile_area_metrics({}, QuantitativeSummary(total_area_square_meters=2500.0))

        assert metrics.total_tile_area_m2 == 2500.0

    def test_no_data(self):
        metrics = derive_tile_area_metrics(None)

        assert metrics.total_tile_area_m2 == 0.0
        assert metrics.total_mining_area_m2 == 0.0
        assert metrics.coverage_pct is None


# ============================================================
# Confidence Tests
# ============================================================

class TestConfidenceMetrics:
    """Tests for confidence statistics."""

    def test_block_confidences(self, sample_results):
        metrics = derive_confidence_metrics(sample_results)

        assert metrics.source == "blocks"
        assert metrics.sample_count == 2
        assert metrics.average_pct == pytest.approx(80.0)
        assert metrics.max_pct == pytest.approx(90.0)
        assert metrics.min_pct == pytest.approx(70.0)

    def test_merged_blocks_when_tiles_have_none(self):
        results = {"merged_blocks": {"features": [{"properties": {"avg_confidence": 0.6}}]}}

        assert derive_confidence_metrics(results).average_pct == pytest.approx(60.0)

    def test_summary_fallback(self):
        metrics = derive_confidence_metrics({"statistics": {"avgConfidence": 0.75}})

        assert metrics.source == "summary"
        assert metrics.sample_count == 0
        assert metrics.average_pct == pytest.approx(75.0)

    def test_nothing_known(self):
        metrics = derive_confidence_metrics({"tiles": []})

        assert metrics.average_pct is None
        assert metrics.source is None


# ============================================================
# Block Analytics Tests
# ============================================================

class TestBlockAnalytics:
    """Tests for aggregate block statistics."""

    def test_analytics(self, sample_results, compute_payload):
        snapshot = normalize_snapshot("analysis-1", compute_payload, persisted=False)
        rows = BlockReconciler().reconcile(sample_results, snapshot.blocks)

        analytics = derive_block_analytics(rows, snapshot)

        assert analytics.count == 3
        assert analytics.total_area_ha == pytest.approx(4.0)
        assert analytics.average_block_area_ha == pytest.approx(4.0 / 3)
        assert analytics.average_confidence == pytest.approx(80.0)
        assert analytics.max_confidence == pytest.approx(90.0)
        assert analytics.min_confidence == pytest.approx(70.0)
        assert analytics.average_max_depth == pytest.approx(4.0)
        assert analytics.total_volume_cubic_meters == pytest.approx(5000.0)

    def test_empty(self):
        analytics = derive_block_analytics([])

        assert analytics.count == 0
        assert analytics.average_confidence is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
