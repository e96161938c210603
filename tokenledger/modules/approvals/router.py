"""Dual-approval API router for manual mint, burn and transfer requests."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.auth.dependencies import get_actor, require_permission
from tokenledger.core.database import get_db
from tokenledger.models.enums import UserRole
from tokenledger.modules.approvals.schemas import (
    ApprovalAuditResponse,
    ApprovalRequestResponse,
    ApproveRequest,
    PendingApprovalsResponse,
    RejectRequest,
)
from tokenledger.modules.approvals.service import ApprovalService
from tokenledger.schemas.auth import Actor, CurrentUser
from tokenledger.schemas.common import ApiResponse

router = APIRouter(prefix="/approvals", tags=["approvals"])


def _svc(db: AsyncSession, current_user: CurrentUser) -> ApprovalService:
    # Platform admins sign off on requests from every tenant
    tenant_id = None if current_user.role == UserRole.PLATFORM_ADMIN else current_user.tenant_id
    return ApprovalService(db, tenant_id)


def _response(req) -> ApprovalRequestResponse:
    return ApprovalRequestResponse.model_validate(req)


@router.get("/pending", response_model=ApiResponse[PendingApprovalsResponse])
async def list_pending(
    limit: int = Query(100, ge=1, le=500),
    current_user: CurrentUser = Depends(require_permission("view", "approval")),
    db: AsyncSession = Depends(get_db),
):
    svc = _svc(db, current_user)
    items = await svc.list_pending(limit)
    return ApiResponse(
        data=PendingApprovalsResponse(
            items=[_response(r) for r in items], count=await svc.pending_count()
        )
    )


@router.get("/{request_id}", response_model=ApiResponse[ApprovalRequestResponse])
async def get_request(
    request_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "approval")),
    db: AsyncSession = Depends(get_db),
):
    return ApiResponse(data=_response(await _svc(db, current_user).get(request_id)))


@router.get("/{request_id}/history", response_model=ApiResponse[list[ApprovalAuditResponse]])
async def get_history(
    request_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "approval")),
    db: AsyncSession = Depends(get_db),
):
    rows = await _svc(db, current_user).history(request_id)
    return ApiResponse(data=[ApprovalAuditResponse.model_validate(r) for r in rows])


@router.post("/{request_id}/approve", response_model=ApiResponse[ApprovalRequestResponse])
async def approve(
    request_id: uuid.UUID,
    body: ApproveRequest | None = None,
    current_user: CurrentUser = Depends(require_permission("approve", "approval")),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Apply the next sign-off: tenant admin first, then platform admin."""
    req = await _svc(db, current_user).approve(request_id, actor, body.notes if body else None)
    await db.commit()
    return ApiResponse(data=_response(req), message=f"Request is now {req.status.value}")


@router.post("/{request_id}/reject", response_model=ApiResponse[ApprovalRequestResponse])
async def reject(
    request_id: uuid.UUID,
    body: RejectRequest,
    current_user: CurrentUser = Depends(require_permission("approve", "approval")),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    req = await _svc(db, current_user).reject(request_id, actor, body.reason)
    await db.commit()
    return ApiResponse(data=_response(req), message="Request rejected")


@router.post("/{request_id}/execute", response_model=ApiResponse[ApprovalRequestResponse])
async def execute(
    request_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("execute", "approval")),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    req = await _svc(db, current_user).execute(request_id, actor)
    await db.commit()
    return ApiResponse(data=_response(req), message="Operation executed")
