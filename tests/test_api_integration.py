"""
Integration tests for API endpoints.

Tests the full HTTP request/response cycle with a mocked application service.
"""
import pytest
from unittest.mock import AsyncMock

from mine_quant.main import app
from mine_quant.api.dependencies import get_quantitative_service
from mine_quant.domain.models import (
    AnalysisOverview,
    HoverReadout,
    OrchestratorState,
    OrchestratorView,
    PersistState,
)
from mine_quant.infrastructure.external_api_client import BaselineUnavailableError
from mine_quant.services.application.quantitative_service import (
    BlockNotFoundError,
    QuantitativeService,
)
from mine_quant.services.domain.block_reconciler import BlockReconciler
from mine_quant.services.domain.quantitative_orchestrator import BaselineNotLoadedError
from mine_quant.services.domain.results_metrics import derive_tile_area_metrics
from mine_quant.services.domain.snapshot_normalizer import normalize_snapshot


QUANTITATIVE_PATH = "/api/v1/analyses/{analysis_id}/quantitative"


@pytest.fixture
def overview(sample_results, compute_payload) -> AnalysisOverview:
    snapshot = normalize_snapshot("a1", compute_payload, persisted=True)
    return AnalysisOverview(
        view=OrchestratorView(
            analysis_id="a1",
            state=OrchestratorState.READY,
            persist_state=PersistState.SAVED,
            baseline_source="compute",
            snapshot=snapshot,
        ),
        rows=BlockReconciler().reconcile(sample_results, snapshot.blocks),
        tile_area=derive_tile_area_metrics(sample_results),
    )


@pytest.fixture
def mock_service(clear_overrides) -> AsyncMock:
    """Mocked application service installed as the endpoint dependency."""
    service = AsyncMock(spec=QuantitativeService)
    app.dependency_overrides[get_quantitative_service] = lambda: service
    return service


# ============================================================
# Health Check Tests
# ============================================================

class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, test_client):
        """Root endpoint should return healthy status."""
        response = test_client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "service" in data
        assert "version" in data

    def test_health_endpoint(self, test_client):
        """Health endpoint should return healthy status."""
        response = test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["open_sessions"] >= 0


# ============================================================
# Quantitative Endpoint Tests
# ============================================================

class TestQuantitativeEndpoint:
    """Tests for the quantitative analysis endpoints."""

    def test_response_structure(self, test_client, mock_service, overview):
        """Should return the orchestrator view with camelCase domain payloads."""
        mock_service.get_overview.return_value = overview

        response = test_client.get(QUANTITATIVE_PATH.format(analysis_id="a1"))

        assert response.status_code == 200
        data = response.json()
        assert data["analysis_id"] == "a1"
        assert data["state"] == "ready"
        assert data["is_stale"] is False
        assert data["persist_state"] == "saved"
        assert data["baseline_source"] == "compute"
        assert data["snapshot"]["blockCount"] == 1
        assert data["snapshot"]["blocks"][0]["visualization"]["extentUTM"]["minX"] == 500000.0
        assert len(data["blocks"]) == 3
        assert data["blocks"][0]["persistentId"] == "pb-1"
        assert data["blocks"][0]["source"] == "Merged"
        assert data["tile_area"]["coveragePct"] == pytest.approx(50.0)
        mock_service.get_overview.assert_awaited_once_with("a1")

    def test_baseline_unavailable(self, test_client, mock_service):
        """Should return 502 when no baseline source answers."""
        mock_service.get_overview.side_effect = BaselineUnavailableError("a1", ["compute: down"])

        response = test_client.get(QUANTITATIVE_PATH.format(analysis_id="a1"))

        assert response.status_code == 502
        assert "compute: down" in response.json()["detail"]

    def test_recompute_started(self, test_client, mock_service, overview):
        mock_service.recompute.return_value = (True, overview)

        response = test_client.post(QUANTITATIVE_PATH.format(analysis_id="a1") + "/recompute")

        assert response.status_code == 202
        assert response.json()["compute_started"] is True

    def test_recompute_without_baseline(self, test_client, mock_service):
        """Should return 409 before the baseline is loaded."""
        mock_service.recompute.side_effect = BaselineNotLoadedError("Baseline detections are not available yet")

        response = test_client.post(QUANTITATIVE_PATH.format(analysis_id="a1") + "/recompute")

        assert response.status_code == 409
        assert "not available" in response.json()["detail"]

    def test_close_session(self, test_client, mock_service):
        mock_service.discard.return_value = True

        response = test_client.delete(QUANTITATIVE_PATH.format(analysis_id="a1"))

        assert response.status_code == 200
        assert response.json() == {"analysis_id": "a1", "closed": True}


# ============================================================
# Blocks Endpoint Tests
# ============================================================

class TestBlocksEndpoint:
    """Tests for the block table and hover endpoints."""

    def test_blocks(self, test_client, mock_service, overview):
        mock_service.get_rows.return_value = overview.rows

        response = test_client.get("/api/v1/analyses/a1/blocks")

        assert response.status_code == 200
        data = response.json()
        assert data["block_count"] == 3
        assert [block["id"] for block in data["blocks"]] == ["merged-m-1", "tile-t0-b1", "tile-t0-b2"]
        assert data["blocks"][1]["tileId"] == "tile_0"

    def test_hover(self, test_client, mock_service):
        mock_service.hover.return_value = HoverReadout(row=1, column=1, x=500010.0, y=2300010.0, elevation=96.0)

        response = test_client.post(
            "/api/v1/analyses/a1/blocks/m-1/hover",
            json={"x": 500011, "y": 2300009},
        )

        assert response.status_code == 200
        assert response.json()["elevation"] == 96.0
        mock_service.hover.assert_awaited_once_with("a1", "m-1", {"x": 500011.0, "y": 2300009.0})

    def test_hover_camel_case_hint(self, test_client, mock_service):
        mock_service.hover.return_value = HoverReadout()

        response = test_client.post(
            "/api/v1/analyses/a1/blocks/m-1/hover",
            json={"pointIndex": [0, 2]},
        )

        assert response.status_code == 200
        mock_service.hover.assert_awaited_once_with("a1", "m-1", {"point_index": [0, 2]})

    def test_hover_unknown_block(self, test_client, mock_service):
        mock_service.hover.side_effect = BlockNotFoundError("Block 'zz' not found in analysis a1")

        response = test_client.post("/api/v1/analyses/a1/blocks/zz/hover", json={"x": 1, "y": 2})

        assert response.status_code == 404


# ============================================================
# Response Format Tests
# ============================================================

class TestResponseFormats:
    """Tests for API response formats."""

    def test_openapi_schema_available(self, test_client):
        """OpenAPI schema should be available."""
        response = test_client.get("/openapi.json")

        assert response.status_code == 200
        data = response.json()
        assert "openapi" in data
        assert "paths" in data
        assert "/api/v1/analyses/{analysis_id}/quantitative" in data["paths"]
        assert "/api/v1/analyses/{analysis_id}/blocks/{block_id}/hover" in data["paths"]

    def test_docs_endpoint_available(self, test_client):
        """Swagger docs should be available."""
        response = test_client.get("/docs")

        assert response.status_code == 200
        assert "swagger" in response.text.lower() or "html" in response.headers.get("content-type", "")


# ============================================================
# CORS Tests
# ============================================================

class TestCORS:
    """Tests for CORS configuration."""

    def test_cors_headers_present(self, test_client):
        """CORS preflight should be answered."""
        response = test_client.options(
            QUANTITATIVE_PATH.format(analysis_id="a1"),
            headers={
                "Origin": "http://example.com",
                "Access-Control-Request-Method": "GET",
            }
        )

        assert response.status_code in [200, 405, 400]  # Depends on CORS config


# ============================================================
# Rate Limiting Tests
# ============================================================

class TestRateLimiting:
    """Tests for rate limiting functionality."""

    def test_rate_limit_documented_in_openapi(self, test_client):
        """Rate limit should be documented in OpenAPI."""
        response = test_client.get("/openapi.json")

        assert response.status_code == 200
        data = response.json()

        quantitative_path = data["paths"]["/api/v1/analyses/{analysis_id}/quantitative"]
        assert "429" in quantitative_path["get"]["responses"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
