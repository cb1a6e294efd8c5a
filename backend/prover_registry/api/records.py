"""
Endpoint record API

Collection-style record endpoints for registering prover endpoints. Creation
runs the before-create hooks, so an endpoint that fails its status probe is
rejected with 400 and never stored.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from prover_registry.core.logging import get_logger
from prover_registry.schemas.provers import (
    EndpointCreateRequest,
    EndpointRecordResponse,
    Namespace,
)
from prover_registry.services.endpoint_store import EndpointStore
from prover_registry.services.prover_service import get_endpoint_store

logger = get_logger(__name__)

router = APIRouter()


def resolve_collection(collection: str) -> Namespace:
    """Map a collection name to its namespace, 404 for unknown collections"""
    try:
        return Namespace(collection)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown collection: {collection}",
        )


@router.post("/collections/{collection}/records", response_model=EndpointRecordResponse)
async def create_record(
    request: EndpointCreateRequest,
    namespace: Namespace = Depends(resolve_collection),
    store: EndpointStore = Depends(get_endpoint_store),
):
    """
    Register a prover endpoint.

    The endpoint is probed before the record is stored; unreachable endpoints
    and endpoints reporting no minimum fee are rejected.
    """
    record = await store.create_endpoint(namespace, request.url)
    return record.to_dict()


@router.get("/collections/{collection}/records", response_model=List[EndpointRecordResponse])
async def list_records(
    namespace: Namespace = Depends(resolve_collection),
    limit: int = Query(100, ge=1, le=1000),
    store: EndpointStore = Depends(get_endpoint_store),
):
    """List registered prover endpoints of a collection"""
    records = await store.list_endpoints(namespace, limit=limit)
    return [record.to_dict() for record in records]
