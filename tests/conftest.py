"""
Shared pytest fixtures for all tests.

This module provides common fixtures including:
- Sample detection results (tiles, tile blocks, merged blocks)
- Sample quantitative compute responses (fresh and stale)
- Baselines and orchestrator factories with mocked collaborators
- FastAPI test client
"""
import copy

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from mine_quant.main import app
from mine_quant.domain.models import AnalysisBaseline
from mine_quant.services.domain.quantitative_orchestrator import QuantitativeOrchestrator


# ============================================================
# Sample Data Fixtures
# ============================================================

def _square(lon: float, lat: float, size: float = 0.001) -> dict:
    return {
        "type": "Polygon",
        "coordinates": [[
            [lon, lat],
            [lon + size, lat],
            [lon + size, lat + size],
            [lon, lat + size],
            [lon, lat],
        ]],
    }


@pytest.fixture
def sample_results() -> dict:
    """Detection result with one tile (two blocks) and one merged block."""
    return {
        "analysis_id": "analysis-1",
        "tiles": [
            {
                "tile_id": "tile_0",
                "tile_label": "Tile A",
                "tile_area_m2": 40000.0,
                "image_base64": "tile-image",
                "bounds": [85.0, 21.0, 85.01, 21.01],
                "mine_blocks": [
                    {
                        "type": "Feature",
                        "geometry": _square(85.001, 21.001),
                        "properties": {
                            "block_id": "t0-b1",
                            "persistent_id": "pb-1",
                            "name": "Tile A Block 1",
                            "area_m2": 12000.0,
                            "avg_confidence": 0.9,
                            "label_position": [85.0015, 21.0015],
                        },
                    },
                    {
                        "type": "Feature",
                        "geometry": _square(85.005, 21.005),
                        "properties": {
                            "block_id": "t0-b2",
                            "area_m2": 8000.0,
                            "avg_confidence": 70,
                        },
                    },
                ],
            }
        ],
        "merged_blocks": {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "geometry": _square(85.001, 21.001, 0.002),
                    "properties": {
                        "block_id": "m-1",
                        "persistent_id": "pb-1",
                        "name": "Merged Block 1",
                        "area_m2": 20000.0,
                        "avg_confidence": 0.8,
                    },
                }
            ],
        },
        "summary": {"mining_percentage": 0.5},
    }


@pytest.fixture
def sample_grid() -> dict:
    """2 x 3 elevation grid with matching depth matrix."""
    return {
        "x": [500000.0, 500010.0, 500020.0],
        "y": [2300000.0, 2300010.0],
        "elevation": [[100.0, 98.0, 97.5], [99.0, 96.0, None]],
        "depth": [[0.0, 2.0, 2.5], [1.0, 4.0, None]],
        "rimElevation": 100.0,
        "resolutionX": 10.0,
        "resolutionY": 10.0,
        "unit": "meters",
    }


@pytest.fixture
def compute_payload(sample_grid) -> dict:
    """Fresh compute response: blocks, DEM descriptor and a renderable grid."""
    return {
        "status": "completed",
        "blockCount": 1,
        "steps": [
            {"name": "Load DEM", "status": "completed", "duration_ms": 120.5, "details": ["1 tile"]},
        ],
        "summary": {
            "totalVolumeCubicMeters": 5000.0,
            "totalAreaSquareMeters": 20000.0,
            "averageMaxDepthMeters": 4.0,
            "deepestBlock": {"label": "Merged Block 1", "maxDepthMeters": 4.0},
        },
        "blocks": [
            {
                "blockLabel": "Merged Block 1",
                "blockId": "m-1",
                "persistentId": "pb-1",
                "source": "merged_blocks",
                "areaSquareMeters": 20000.0,
                "rimElevationMeters": 100.0,
                "maxDepthMeters": 4.0,
                "meanDepthMeters": 2.0,
                "volumeCubicMeters": 5000.0,
                "pixelCount": 6,
                "centroid": {"lon": 85.002, "lat": 21.002},
                "visualization": {
                    "grid": copy.deepcopy(sample_grid),
                    "extentUTM": {"minX": 500000.0, "maxX": 500020.0, "minY": 2300000.0, "maxY": 2300010.0},
                },
            }
        ],
        "dem": {
            "crs": "EPSG:32645",
            "resolutionMeters": 10.0,
            "tileCount": 1,
            "boundsWGS84": [85.0, 21.0, 85.01, 21.01],
        },
        "executedAt": "2024-05-01T10:00:00Z",
    }


@pytest.fixture
def stale_payload(compute_payload) -> dict:
    """Compute response without a DEM descriptor (not fresh)."""
    payload = copy.deepcopy(compute_payload)
    payload.pop("dem")
    return payload


@pytest.fixture
def baseline(sample_results) -> AnalysisBaseline:
    return AnalysisBaseline(
        analysis_id="analysis-1",
        results=sample_results,
        source="compute",
    )


# ============================================================
# Orchestrator Fixtures
# ============================================================

@pytest.fixture
def collaborators(baseline, compute_payload):
    """Mocked fetch / compute / persist callables."""
    return {
        "fetch_baseline": AsyncMock(return_value=baseline),
        "run_compute": AsyncMock(return_value=compute_payload),
        "persist_snapshot": AsyncMock(return_value={"ok": True}),
    }


@pytest.fixture
def make_orchestrator(collaborators):
    """Factory building an orchestrator around the mocked collaborators."""
    def factory(auto_compute: bool = True, analysis_id: str = "analysis-1") -> QuantitativeOrchestrator:
        return QuantitativeOrchestrator(
            analysis_id=analysis_id,
            auto_compute=auto_compute,
            **collaborators,
        )
    return factory


# ============================================================
# FastAPI Test Client Fixtures
# ============================================================

@pytest.fixture
def test_client() -> TestClient:
    """Create a synchronous test client for FastAPI."""
    return TestClient(app)


@pytest.fixture
def clear_overrides():
    """Reset dependency overrides after a test."""
    yield
    app.dependency_overrides.clear()
