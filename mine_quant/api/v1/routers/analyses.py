"""
API router for quantitative analysis endpoints.
"""
import logging
from fastapi import APIRouter, HTTPException, Path
from typing import Annotated

from mine_quant.api.dependencies import QuantitativeServiceDep
from mine_quant.api.v1.models.responses import (
    BlocksResponse,
    HoverRequest,
    QuantitativeResponse,
    SessionClosedResponse,
)
from mine_quant.domain.models import HoverReadout
from mine_quant.infrastructure.external_api_client import BaselineUnavailableError
from mine_quant.services.application.quantitative_service import BlockNotFoundError
from mine_quant.services.domain.quantitative_orchestrator import (
    BaselineNotLoadedError,
    SessionClosedError,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/analyses",
    tags=["analyses"],
)

AnalysisId = Annotated[str, Path(description="Unique identifier for the analysis")]

COMMON_RESPONSES = {
    429: {"description": "Rate limit exceeded"},
    502: {"description": "No baseline source (compute, proxy, history) could be reached"},
}


def _baseline_unavailable(e: BaselineUnavailableError) -> HTTPException:
    return HTTPException(status_code=502, detail=e.message)


@router.get(
    "/{analysis_id}/quantitative",
    response_model=QuantitativeResponse,
    summary="Get quantitative analysis",
    description="""
    Return the volumetric (DEM) analysis of an analysis' mine blocks.

    On first access this endpoint:
    1. Loads the detection baseline (compute service, then history proxy, then stored record)
    2. Uses the stored quantitative snapshot when it is complete
    3. Otherwise starts a quantitative compute in the background

    Poll the endpoint to follow the state: `needs_compute`, `computing`,
    `ready` or `error`. A ready snapshot missing DEM or grid data is flagged
    `is_stale` and recomputed once automatically.
    """,
    responses=COMMON_RESPONSES,
)
async def get_quantitative(
    analysis_id: AnalysisId,
    service: QuantitativeServiceDep,
) -> QuantitativeResponse:
    """
    Get the quantitative analysis view.

    Args:
        analysis_id: Unique identifier for the analysis
        service: Quantitative service (injected dependency)

    Returns:
        QuantitativeResponse
    """
    try:
        overview = await service.get_overview(analysis_id)
    except BaselineUnavailableError as e:
        raise _baseline_unavailable(e)
    return QuantitativeResponse.from_overview(overview)


@router.post(
    "/{analysis_id}/quantitative/recompute",
    response_model=QuantitativeResponse,
    status_code=202,
    summary="Recompute quantitative analysis",
    responses={
        409: {"description": "Baseline detections are not loaded yet"},
        429: {"description": "Rate limit exceeded"},
    },
)
async def recompute_quantitative(
    analysis_id: AnalysisId,
    service: QuantitativeServiceDep,
) -> QuantitativeResponse:
    """Start a manual recompute; a no-op while a compute is already running."""
    try:
        started, overview = await service.recompute(analysis_id)
    except (BaselineNotLoadedError, SessionClosedError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return QuantitativeResponse.from_overview(overview, compute_started=started)


@router.get(
    "/{analysis_id}/blocks",
    response_model=BlocksResponse,
    summary="Get reconciled mine blocks",
    responses=COMMON_RESPONSES,
)
async def get_blocks(
    analysis_id: AnalysisId,
    service: QuantitativeServiceDep,
) -> BlocksResponse:
    """
    Get the canonical block table, merged and tile blocks with volumetric metrics.

    Args:
        analysis_id: Unique identifier for the analysis
        service: Quantitative service (injected dependency)

    Returns:
        BlocksResponse
    """
    try:
        rows = await service.get_rows(analysis_id)
    except BaselineUnavailableError as e:
        raise _baseline_unavailable(e)
    return BlocksResponse(analysis_id=analysis_id, block_count=len(rows), blocks=rows)


@router.post(
    "/{analysis_id}/blocks/{block_id}/hover",
    response_model=HoverReadout,
    summary="Resolve a hover point on a block's elevation grid",
    responses={
        **COMMON_RESPONSES,
        404: {"description": "Block not found or block has no elevation grid"},
    },
)
async def hover_block(
    analysis_id: AnalysisId,
    block_id: Annotated[str, Path(description="Row id, persistent id, block id or label")],
    hover: HoverRequest,
    service: QuantitativeServiceDep,
) -> HoverReadout:
    try:
        return await service.hover(analysis_id, block_id, hover.to_point())
    except BlockNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except BaselineUnavailableError as e:
        raise _baseline_unavailable(e)


@router.delete(
    "/{analysis_id}/quantitative",
    response_model=SessionClosedResponse,
    summary="Close the quantitative session",
)
async def close_session(
    analysis_id: AnalysisId,
    service: QuantitativeServiceDep,
) -> SessionClosedResponse:
    """Tear down the session; results of any in-flight compute are discarded."""
    closed = await service.discard(analysis_id)
    logger.info(f"Close session {analysis_id}: existed={closed}")
    return SessionClosedResponse(analysis_id=analysis_id, closed=closed)
