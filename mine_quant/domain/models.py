"""
Domain models for mine blocks and quantitative (volumetric/DEM) analysis.

These models represent the canonical shapes produced by the normalization
pipeline and should be independent of any infrastructure concerns (API
clients, storage, etc.). Attributes are snake_case; serialization uses the
camelCase aliases the rest of the platform speaks.
"""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Bounds = tuple[float, float, float, float]


class DomainModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class BlockSource(str, Enum):
    MERGED = "Merged"
    TILE = "Tile"


class Centroid(DomainModel):
    lon: float
    lat: float


class BlockImagery(DomainModel):
    """Satellite/probability imagery attached to a block."""
    satellite_image: Optional[str] = Field(None, description="Base64-encoded RGB image")
    probability_image: Optional[str] = Field(None, description="Base64-encoded probability heatmap")
    bounds: Optional[Bounds] = None
    transform: Optional[list[float]] = None
    crs: Optional[str] = None
    source: str = Field("block", description="'block' for block-level imagery, 'tile' for whole-tile fallback")
    tile_id: Optional[str] = None

    @property
    def has_image(self) -> bool:
        return bool(self.satellite_image or self.probability_image)


class VisualizationGrid(DomainModel):
    """Dense elevation/depth grid for a block, row-major."""
    x: list[float] = Field(description="Column axis (length = column count)")
    y: list[float] = Field(description="Row axis (length = row count)")
    elevation: list[list[Optional[float]]]
    depth: Optional[list[list[Optional[float]]]] = None
    rim_elevation: Optional[float] = None
    resolution_x: Optional[float] = None
    resolution_y: Optional[float] = None
    unit: str = "meters"

    @property
    def row_count(self) -> int:
        return len(self.elevation)

    @property
    def column_count(self) -> int:
        return len(self.elevation[0]) if self.elevation else 0

    @property
    def has_data(self) -> bool:
        return self.row_count > 0 and self.column_count > 0


class BlockVisualization(DomainModel):
    grid: Optional[VisualizationGrid] = None
    stats: Optional[dict[str, Any]] = None
    extent_utm: Optional[dict[str, Any]] = Field(None, alias="extentUTM")
    metadata: Optional[dict[str, Any]] = None


class QuantitativeBlockMetric(DomainModel):
    """Volumetric metrics computed for one block."""
    block_id: str
    block_label: str
    persistent_id: Optional[str] = None
    source: Optional[str] = None
    area_square_meters: Optional[float] = None
    area_hectares: Optional[float] = None
    rim_elevation_meters: Optional[float] = None
    max_depth_meters: Optional[float] = None
    mean_depth_meters: Optional[float] = None
    median_depth_meters: Optional[float] = None
    volume_cubic_meters: Optional[float] = None
    volume_trapezoidal_cubic_meters: Optional[float] = None
    pixel_count: Optional[int] = None
    centroid: Optional[Centroid] = None
    visualization: Optional[BlockVisualization] = None
    computed_at: Optional[str] = None

    @property
    def grid(self) -> Optional[VisualizationGrid]:
        return self.visualization.grid if self.visualization else None


class BlockHighlight(DomainModel):
    label: str
    max_depth_meters: Optional[float] = None
    volume_cubic_meters: Optional[float] = None
    area_hectares: Optional[float] = None


class QuantitativeSummary(DomainModel):
    total_volume_cubic_meters: float = 0.0
    total_area_square_meters: float = 0.0
    total_area_hectares: float = 0.0
    average_max_depth_meters: float = 0.0
    average_mean_depth_meters: Optional[float] = None
    block_count: Optional[int] = None
    deepest_block: Optional[BlockHighlight] = None
    largest_block: Optional[BlockHighlight] = None


class ExecutiveSummary(DomainModel):
    headline: dict[str, Any] = Field(default_factory=dict)
    priority_blocks: list[dict[str, Any]] = Field(default_factory=list)
    insights: dict[str, Any] = Field(default_factory=dict)
    policy_flags: dict[str, Any] = Field(default_factory=dict)
    updated_at: Optional[str] = None


class DemDescriptor(DomainModel):
    crs: Optional[str] = None
    resolution_meters: Optional[float] = None
    tile_count: Optional[int] = None
    bounds_utm: Optional[Bounds] = Field(None, alias="boundsUTM")
    bounds_wgs84: Optional[Bounds] = Field(None, alias="boundsWGS84")


class QuantitativeStep(DomainModel):
    name: str
    status: str = Field(description="'completed' or 'failed'")
    duration_ms: float = 0.0
    details: list[str] = Field(default_factory=list)


class QuantitativeSnapshot(DomainModel):
    """Normalized result of one quantitative compute run."""
    analysis_id: str
    status: str = "completed"
    block_count: int = 0
    steps: list[QuantitativeStep] = Field(default_factory=list)
    summary: QuantitativeSummary = Field(default_factory=QuantitativeSummary)
    executive_summary: Optional[ExecutiveSummary] = None
    blocks: list[QuantitativeBlockMetric] = Field(default_factory=list)
    dem: Optional[DemDescriptor] = None
    source: Optional[dict[str, Any]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    executed_at: Optional[str] = None
    is_persisted: bool = False


class CanonicalMineBlockRow(DomainModel):
    """One reconciled mine block, ready for tabular display."""
    id: str
    label: str
    tile_id: str
    area_ha: float = 0.0
    confidence_pct: Optional[float] = None
    source: BlockSource
    is_merged: bool = False
    persistent_id: str
    block_index: Optional[float] = None
    centroid: Optional[Centroid] = None
    bounds: Optional[Bounds] = None
    rim_elevation_meters: Optional[float] = None
    max_depth_meters: Optional[float] = None
    mean_depth_meters: Optional[float] = None
    volume_cubic_meters: Optional[float] = None
    imagery: Optional[BlockImagery] = None


class HoverReadout(DomainModel):
    """Grid cell resolved from a plot interaction point."""
    row: Optional[int] = None
    column: Optional[int] = None
    x: Optional[float] = None
    y: Optional[float] = None
    elevation: Optional[float] = None
    depth: Optional[float] = None
    lon: Optional[float] = None
    lat: Optional[float] = None


class TileAreaMetrics(DomainModel):
    total_tile_area_m2: float = 0.0
    total_mining_area_m2: float = 0.0
    coverage_pct: Optional[float] = None


class ConfidenceMetrics(DomainModel):
    average_pct: Optional[float] = None
    max_pct: Optional[float] = None
    min_pct: Optional[float] = None
    sample_count: int = 0
    source: Optional[str] = Field(None, description="'blocks' (model probabilities) or 'summary'")


class BlockAnalytics(DomainModel):
    count: int = 0
    total_area_ha: float = 0.0
    average_block_area_ha: float = 0.0
    average_confidence: Optional[float] = None
    max_confidence: Optional[float] = None
    min_confidence: Optional[float] = None
    average_max_depth: Optional[float] = None
    average_mean_depth: Optional[float] = None
    total_volume_cubic_meters: Optional[float] = None


class OrchestratorState(str, Enum):
    NO_BASELINE = "no_baseline"
    NEEDS_COMPUTE = "needs_compute"
    COMPUTING = "computing"
    READY = "ready"
    ERROR = "error"


class PersistState(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


class AnalysisBaseline(DomainModel):
    """Detection result of an analysis plus any stored quantitative snapshot."""
    analysis_id: str
    results: Optional[dict[str, Any]] = None
    quantitative: Optional[dict[str, Any]] = Field(None, description="Stored quantitative snapshot payload")
    source: str = Field(description="Which fetch source supplied the baseline")


class OrchestratorView(DomainModel):
    """Point-in-time view of one analysis' quantitative state."""
    analysis_id: str
    state: OrchestratorState
    is_stale: bool = False
    persist_state: PersistState = PersistState.IDLE
    persist_error: Optional[str] = None
    error: Optional[str] = None
    baseline_source: Optional[str] = None
    snapshot: Optional[QuantitativeSnapshot] = None


class AnalysisOverview(DomainModel):
    """Everything the quantitative view of one analysis shows."""
    view: OrchestratorView
    rows: list[CanonicalMineBlockRow] = Field(default_factory=list)
    tile_area: TileAreaMetrics = Field(default_factory=TileAreaMetrics)
    confidence: ConfidenceMetrics = Field(default_factory=ConfidenceMetrics)
    analytics: BlockAnalytics = Field(default_factory=BlockAnalytics)
