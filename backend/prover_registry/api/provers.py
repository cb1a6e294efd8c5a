"""
Valid prover endpoints

Public read endpoints. Both always answer 200; cache or probe failures
degrade to an empty list.
"""

from typing import List

from fastapi import APIRouter, Depends

from prover_registry.schemas.provers import Namespace, Prover
from prover_registry.services.prover_service import ProverService, get_prover_service

router = APIRouter()


@router.get("/validProvers", response_model=List[Prover])
async def valid_provers(service: ProverService = Depends(get_prover_service)):
    """Reachable mainnet provers and their minimum fee"""
    return await service.get_valid_provers(Namespace.MAINNET)


@router.get("/validTestnetProvers", response_model=List[Prover])
async def valid_testnet_provers(service: ProverService = Depends(get_prover_service)):
    """Reachable testnet provers and their minimum fee"""
    return await service.get_valid_provers(Namespace.TESTNET)
