"""
Application service: Orchestration layer for quantitative analysis sessions.
"""
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from mine_quant.config import settings
from mine_quant.domain.models import (
    AnalysisOverview,
    CanonicalMineBlockRow,
    HoverReadout,
    QuantitativeBlockMetric,
    QuantitativeSnapshot,
)
from mine_quant.infrastructure.external_api_client import get_api_client
from mine_quant.services.domain.block_reconciler import (
    BlockReconciler,
    build_metrics_index,
    lookup_metric,
)
from mine_quant.services.domain.quantitative_orchestrator import (
    BaselineNotLoadedError,
    QuantitativeOrchestrator,
)
from mine_quant.services.domain.results_metrics import (
    derive_block_analytics,
    derive_confidence_metrics,
    derive_tile_area_metrics,
)
from mine_quant.utils.geo_projection import infer_utm_crs
from mine_quant.utils.hover import describe_hover

logger = logging.getLogger(__name__)


class BlockNotFoundError(LookupError):
    """Raised when a block, or its visualization grid, does not exist."""


class SessionRegistry:
    """
    One QuantitativeOrchestrator per analysis id.

    Discarding or replacing a session tears its orchestrator down so that
    late compute results are dropped.
    """

    def __init__(self, factory: Callable[[str], QuantitativeOrchestrator]):
        self._factory = factory
        self._sessions: Dict[str, QuantitativeOrchestrator] = {}

    def get(self, analysis_id: str) -> Optional[QuantitativeOrchestrator]:
        return self._sessions.get(analysis_id)

    def get_or_create(self, analysis_id: str) -> QuantitativeOrchestrator:
        orchestrator = self._sessions.get(analysis_id)
        if orchestrator is None or orchestrator.closed:
            orchestrator = self._factory(analysis_id)
            self._sessions[analysis_id] = orchestrator
            logger.info(f"Opened quantitative session for {analysis_id}")
        return orchestrator

    def replace(self, analysis_id: str) -> QuantitativeOrchestrator:
        self.discard(analysis_id)
        return self.get_or_create(analysis_id)

    def discard(self, analysis_id: str) -> bool:
        orchestrator = self._sessions.pop(analysis_id, None)
        if orchestrator is None:
            return False
        orchestrator.teardown()
        return True

    def close_all(self) -> None:
        for analysis_id in list(self._sessions):
            self.discard(analysis_id)

    def __contains__(self, analysis_id: str) -> bool:
        return analysis_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


class QuantitativeService:
    """
    Application service for quantitative analysis operations.

    Coordinates sessions, block reconciliation and headline metrics.
    No business logic here, only coordination between the orchestrators and
    the domain services.
    """

    def __init__(self, registry: SessionRegistry, reconciler: BlockReconciler):
        """
        Initialize the service with dependencies.

        Args:
            registry: Session registry holding one orchestrator per analysis
            reconciler: Block reconciler for canonical rows
        """
        self.registry = registry
        self.reconciler = reconciler

    async def _session(self, analysis_id: str) -> QuantitativeOrchestrator:
        orchestrator = self.registry.get_or_create(analysis_id)
        await orchestrator.ensure_baseline()
        return orchestrator

    async def get_overview(self, analysis_id: str) -> AnalysisOverview:
        """
        Get the quantitative view for an analysis, loading its baseline on first access.

        Args:
            analysis_id: Analysis ID

        Returns:
            AnalysisOverview

        Raises:
            BaselineUnavailableError: If no baseline source answered
        """
        orchestrator = await self._session(analysis_id)
        return self.build_overview(orchestrator)

    async def recompute(self, analysis_id: str) -> Tuple[bool, AnalysisOverview]:
        """
        Manually recompute the quantitative analysis.

        Returns:
            (whether a compute was started, current overview)

        Raises:
            BaselineNotLoadedError: If the analysis baseline is not loaded
        """
        orchestrator = self.registry.get(analysis_id)
        if orchestrator is None or not orchestrator.has_results:
            raise BaselineNotLoadedError(
                "Baseline detections are not available yet. Load the analysis once detections finish."
            )
        started = orchestrator.request_recompute()
        return started, self.build_overview(orchestrator)

    async def get_rows(self, analysis_id: str) -> List[CanonicalMineBlockRow]:
        orchestrator = await self._session(analysis_id)
        return self._rows(orchestrator)

    async def hover(
        self,
        analysis_id: str,
        block_id: str,
        point: Optional[Mapping[str, Any]],
    ) -> HoverReadout:
        """
        Resolve a plot interaction point on a block's elevation grid.

        Args:
            analysis_id: Analysis ID
            block_id: Row id, persistent id, block id or label
            point: Interaction point payload

        Returns:
            HoverReadout

        Raises:
            BlockNotFoundError: If the block or its grid is missing
        """
        orchestrator = await self._session(analysis_id)
        snapshot = orchestrator.snapshot
        metric = self._find_metric(orchestrator, block_id)
        if metric is None:
            raise BlockNotFoundError(f"Block '{block_id}' not found in analysis {analysis_id}")
        grid = metric.grid
        if grid is None or not grid.has_data:
            raise BlockNotFoundError(f"Block '{block_id}' has no elevation grid")
        return describe_hover(grid, point, self._grid_crs(snapshot))

    async def discard(self, analysis_id: str) -> bool:
        return self.registry.discard(analysis_id)

    def build_overview(self, orchestrator: QuantitativeOrchestrator) -> AnalysisOverview:
        view = orchestrator.snapshot_view()
        results = orchestrator.baseline.results if orchestrator.baseline else None
        snapshot = view.snapshot
        rows = self._rows(orchestrator)
        return AnalysisOverview(
            view=view,
            rows=rows,
            tile_area=derive_tile_area_metrics(results, snapshot.summary if snapshot else None),
            confidence=derive_confidence_metrics(results),
            analytics=derive_block_analytics(rows, snapshot),
        )

    def _rows(self, orchestrator: QuantitativeOrchestrator) -> List[CanonicalMineBlockRow]:
        results = orchestrator.baseline.results if orchestrator.baseline else None
        metrics = orchestrator.snapshot.blocks if orchestrator.snapshot else []
        return self.reconciler.reconcile(results, metrics)

    def _find_metric(
        self,
        orchestrator: QuantitativeOrchestrator,
        block_id: str,
    ) -> Optional[QuantitativeBlockMetric]:
        snapshot = orchestrator.snapshot
        if snapshot is None:
            return None
        index = build_metrics_index(snapshot.blocks)
        metric = lookup_metric(index, [block_id])
        if metric is not None:
            return metric
        for row in self._rows(orchestrator):
            if block_id in (row.id, row.persistent_id):
                return lookup_metric(index, [row.persistent_id, row.label])
        return None

    @staticmethod
    def _grid_crs(snapshot: Optional[QuantitativeSnapshot]) -> Optional[str]:
        if snapshot is None or snapshot.dem is None:
            return None
        return snapshot.dem.crs or infer_utm_crs(snapshot.dem.bounds_wgs84)


def build_orchestrator(analysis_id: str) -> QuantitativeOrchestrator:
    """Orchestrator wired to the shared API client."""
    client = get_api_client()
    return QuantitativeOrchestrator(
        analysis_id=analysis_id,
        fetch_baseline=client.fetch_baseline,
        run_compute=client.run_quantitative,
        persist_snapshot=client.save_quantitative,
        auto_compute=settings.auto_compute_on_load,
        max_step_details=settings.max_step_details,
    )


# Singleton registry; sessions outlive individual requests
_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """
    Get or create the singleton session registry.

    Returns:
        SessionRegistry instance
    """
    global _registry
    if _registry is None:
        _registry = SessionRegistry(build_orchestrator)
    return _registry
