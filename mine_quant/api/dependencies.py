"""
Dependency injection for FastAPI.
"""
from typing import Annotated
from fastapi import Depends

from mine_quant.services.application.quantitative_service import (
    QuantitativeService,
    SessionRegistry,
    get_session_registry,
)
from mine_quant.services.domain.block_reconciler import BlockReconciler


def get_block_reconciler() -> BlockReconciler:
    """
    Dependency factory for BlockReconciler.

    Returns:
        BlockReconciler instance
    """
    return BlockReconciler()


def get_quantitative_service(
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
    reconciler: Annotated[BlockReconciler, Depends(get_block_reconciler)],
) -> QuantitativeService:
    """
    Dependency factory for QuantitativeService.

    Args:
        registry: Session registry (injected singleton)
        reconciler: Block reconciler (injected)

    Returns:
        QuantitativeService instance
    """
    return QuantitativeService(registry=registry, reconciler=reconciler)


# Type aliases for cleaner route signatures
QuantitativeServiceDep = Annotated[QuantitativeService, Depends(get_quantitative_service)]
