"""
API request and response models using Pydantic.
"""
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from mine_quant.domain.models import (
    AnalysisOverview,
    BlockAnalytics,
    CanonicalMineBlockRow,
    ConfidenceMetrics,
    OrchestratorState,
    PersistState,
    QuantitativeSnapshot,
    TileAreaMetrics,
)


class HoverRequest(BaseModel):
    """Plot interaction point on a block's elevation grid."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    x: Optional[float] = Field(None, description="Easting under the cursor")
    y: Optional[float] = Field(None, description="Northing under the cursor")
    point_index: Optional[Any] = Field(
        None,
        description="Index hint from the plot: [row, column] pair or a linear index",
    )
    point_number: Optional[int] = Field(None, description="Linear (row-major) cell index")

    def to_point(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class QuantitativeResponse(BaseModel):
    """Response model for the quantitative analysis endpoints."""
    analysis_id: str = Field(description="Unique identifier for the analysis")
    state: OrchestratorState = Field(description="Lifecycle state of the quantitative analysis")
    is_stale: bool = Field(description="Snapshot lacks DEM or grid data and is being recomputed")
    persist_state: PersistState
    persist_error: Optional[str] = None
    error: Optional[str] = Field(None, description="Last compute or fetch error")
    baseline_source: Optional[str] = Field(None, description="Source that supplied the detection baseline")
    compute_started: Optional[bool] = Field(
        None,
        description="For recompute requests: whether a new compute was started",
    )
    snapshot: Optional[QuantitativeSnapshot] = None
    blocks: List[CanonicalMineBlockRow] = Field(default_factory=list)
    tile_area: TileAreaMetrics
    confidence: ConfidenceMetrics
    analytics: BlockAnalytics

    @classmethod
    def from_overview(
        cls,
        overview: AnalysisOverview,
        compute_started: Optional[bool] = None,
    ) -> "QuantitativeResponse":
        view = overview.view
        return cls(
            analysis_id=view.analysis_id,
            state=view.state,
            is_stale=view.is_stale,
            persist_state=view.persist_state,
            persist_error=view.persist_error,
            error=view.error,
            baseline_source=view.baseline_source,
            compute_started=compute_started,
            snapshot=view.snapshot,
            blocks=overview.rows,
            tile_area=overview.tile_area,
            confidence=overview.confidence,
            analytics=overview.analytics,
        )


class BlocksResponse(BaseModel):
    """Response model for the block table endpoint."""
    analysis_id: str
    block_count: int = Field(description="Number of reconciled blocks")
    blocks: List[CanonicalMineBlockRow]

    class Config:
        json_schema_extra = {
            "example": {
                "analysis_id": "analysis_123",
                "block_count": 1,
                "blocks": [
                    {
                        "id": "merged-b1",
                        "label": "Merged Block 1",
                        "tileId": "mosaic",
                        "areaHa": 1.25,
                        "confidencePct": 85.0,
                        "source": "Merged",
                        "isMerged": True,
                        "persistentId": "b1",
                    }
                ]
            }
        }


class SessionClosedResponse(BaseModel):
    analysis_id: str
    closed: bool = Field(description="Whether an open session existed and was torn down")
