"""
Health Check Endpoints

Reports process liveness plus the state of the snapshot cache and the
endpoint database.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import select

from prover_registry import __version__
from prover_registry.core.config import settings
from prover_registry.core.logging import get_logger
from prover_registry.schemas.provers import Namespace
from prover_registry.services.prover_service import ProverService, get_prover_service

logger = get_logger(__name__)
router = APIRouter()


class HealthChecker:
    """Dependency health checks"""

    async def check_cache_health(self, service: ProverService) -> Dict[str, Any]:
        """Check Redis connectivity and per-namespace refresh state"""
        start_time = time.time()
        reachable = await service.cache.ping()
        return {
            "status": "healthy" if reachable else "unhealthy",
            "response_time_ms": round((time.time() - start_time) * 1000, 2),
            "stats": service.cache.get_stats(),
            "refreshing": {
                namespace.value: service.coordinator.is_refreshing(namespace)
                for namespace in Namespace
            },
        }

    async def check_database_health(self, service: ProverService) -> Dict[str, Any]:
        """Check that the endpoint database answers a trivial query"""
        start_time = time.time()
        try:
            async with service.coordinator.store.session_factory() as session:
                await session.execute(select(1))
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {"status": "unhealthy", "error": str(e)}

        return {
            "status": "healthy",
            "response_time_ms": round((time.time() - start_time) * 1000, 2),
        }


health_checker = HealthChecker()


@router.get("/health")
async def health_check(service: ProverService = Depends(get_prover_service)):
    """Health check endpoint"""
    cache = await health_checker.check_cache_health(service)
    database = await health_checker.check_database_health(service)
    healthy = cache["status"] == "healthy" and database["status"] == "healthy"

    return {
        "status": "healthy" if healthy else "degraded",
        "app": settings.APP_NAME,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cache": cache,
        "database": database,
    }
