"""
Prover Refresh API Endpoints

Internal endpoints for operating the valid prover cache.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from prover_registry.api.records import resolve_collection
from prover_registry.core.exceptions import CacheReadError, RefreshError
from prover_registry.core.logging import get_logger
from prover_registry.schemas.provers import Namespace, RefreshResponse
from prover_registry.services.prover_service import (
    ProverService,
    get_prover_service,
    get_refresh_coordinator,
)
from prover_registry.services.refresh import RefreshCoordinator

logger = get_logger(__name__)

router = APIRouter()


@router.post("/provers/{collection}/refresh", response_model=RefreshResponse)
async def refresh_provers(
    namespace: Namespace = Depends(resolve_collection),
    coordinator: RefreshCoordinator = Depends(get_refresh_coordinator),
    service: ProverService = Depends(get_prover_service),
):
    """
    Force an immediate full refresh of a namespace.

    Re-probes every registered endpoint and returns the resulting snapshot
    size. A namespace without registered endpoints is left untouched.
    """
    logger.info("Forced refresh requested", namespace=namespace.value)

    try:
        await coordinator.refresh_now(namespace)
        snapshot = await service.cache.get_snapshot(namespace)
    except (RefreshError, CacheReadError) as e:
        logger.error("Forced refresh failed", namespace=namespace.value, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Refresh failed: {e}",
        )

    return RefreshResponse(
        namespace=namespace,
        count=len(snapshot.data) if snapshot else 0,
        timestamp=snapshot.timestamp if snapshot else None,
    )
