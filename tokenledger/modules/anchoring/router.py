"""Blockchain anchoring API router."""

import uuid
from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.auth.dependencies import require_permission
from tokenledger.core.chain import ChainClient, get_chain_client
from tokenledger.core.database import get_db
from tokenledger.modules.anchoring.service import AnchorService
from tokenledger.schemas.auth import CurrentUser
from tokenledger.schemas.common import ApiResponse

router = APIRouter(prefix="/tokenization", tags=["blockchain"])


@router.post("/certificates/{certificate_id}/certify-blockchain", response_model=ApiResponse[dict])
async def certify_on_blockchain(
    certificate_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("anchor", "certificate")),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
):
    """Anchor the certificate fingerprint; failures surface as 502 and leave it unanchored."""
    result = await AnchorService(db, chain, current_user.tenant_id).anchor(certificate_id)
    data = asdict(result)
    data["certificate_id"] = str(result.certificate_id)
    message = "Certificate already anchored" if result.already_certified else "Certificate anchored"
    return ApiResponse(data=data, message=message)


@router.get("/certificates/{certificate_id}/verify-chain", response_model=ApiResponse[dict])
async def verify_on_chain(
    certificate_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "certificate")),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
):
    data = await AnchorService(db, chain, current_user.tenant_id).verify_on_chain(certificate_id)
    return ApiResponse(data=data)


@router.get("/blockchain/status", response_model=ApiResponse[dict])
async def blockchain_status(
    current_user: CurrentUser = Depends(require_permission("view", "blockchain")),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
):
    return ApiResponse(data=await AnchorService(db, chain, current_user.tenant_id).status())
