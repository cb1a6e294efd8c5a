"""
API package
"""

from fastapi import APIRouter
from .provers import router as provers_router
from .records import router as records_router
from .internal import router as internal_router
from .health import router as health_router

# Create API router
api_router = APIRouter()

# Public valid prover lists (/validProvers, /validTestnetProvers)
api_router.include_router(provers_router, tags=["provers"])

# Endpoint registration records
api_router.include_router(records_router, prefix="/api", tags=["records"])

# Cache operations
api_router.include_router(internal_router, prefix="/api-internal/v1", tags=["internal"])

# Health check
api_router.include_router(health_router, tags=["health"])
