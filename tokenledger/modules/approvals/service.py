"""Dual-approval gate for manual mint, burn and transfer.

A request needs two sign-offs from two different people, neither of them the
requester: first a tenant admin, then a platform admin.  Only a fully
approved request can be executed, and execution runs the ledger operation in
the same transaction as the status change.  Every transition appends a row
to ``approval_audit_log``.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.auth.rbac import has_role_at_least
from tokenledger.core.concurrency import retry_on_conflict
from tokenledger.core.exceptions import (
    InvalidStateTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from tokenledger.models.approvals import ApprovalAuditLog, ApprovalRequest
from tokenledger.models.base import utcnow
from tokenledger.models.enums import (
    APPROVAL_TRANSITIONS,
    ApprovalOperation,
    ApprovalStatus,
    AssetStatus,
    HolderType,
    UserRole,
    ensure_transition,
)
from tokenledger.modules.ledger.service import HolderRef, LedgerService
from tokenledger.schemas.auth import Actor

logger = structlog.get_logger()

ENTITY_TYPE = "approval_request"
PENDING_STATUSES = (ApprovalStatus.REQUESTED, ApprovalStatus.TENANT_APPROVED)


def _uuid_or_none(value: Any, field: str) -> uuid.UUID | None:
    if value in (None, ""):
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be a UUID", {field: value}) from None


def normalize_parameters(operation: ApprovalOperation, parameters: dict[str, Any]) -> dict[str, Any]:
    """Validate operation parameters up front and return their stored JSON form."""
    amount = parameters.get("amount")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("amount must be a positive integer", {"amount": amount})

    normalized: dict[str, Any] = {"amount": amount, "reason": parameters.get("reason")}
    if operation == ApprovalOperation.MINT:
        return normalized

    from_type = HolderType(parameters.get("from_holder_type") or HolderType.PLATFORM)
    from_id = _uuid_or_none(parameters.get("from_holder_id"), "from_holder_id")
    if operation == ApprovalOperation.BURN and from_type == HolderType.CLIENT and from_id is None:
        from_id = _uuid_or_none(parameters.get("client_id"), "client_id")
    HolderRef(from_type, from_id)  # raises ValidationError on a malformed holder
    normalized["from_holder_type"] = from_type.value
    normalized["from_holder_id"] = str(from_id) if from_id else None

    if operation == ApprovalOperation.TRANSFER:
        client_id = _uuid_or_none(parameters.get("client_id"), "client_id")
        if client_id is None:
            raise ValidationError("A transfer requires client_id")
        if from_type == HolderType.CLIENT and from_id == client_id:
            raise ValidationError("Source and destination holders must differ")
        normalized["client_id"] = str(client_id)
    return normalized


class ApprovalService:
    """``tenant_id=None`` gives a platform admin cross-tenant access."""

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID | None) -> None:
        self.db = db
        self.tenant_id = tenant_id

    def _scoped(self, stmt):
        if self.tenant_id is not None:
            stmt = stmt.where(ApprovalRequest.tenant_id == self.tenant_id)
        return stmt

    async def get(self, request_id: uuid.UUID, *, lock: bool = False) -> ApprovalRequest:
        stmt = self._scoped(select(ApprovalRequest).where(ApprovalRequest.id == request_id))
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        req = await self.db.scalar(stmt)
        if req is None:
            raise NotFoundError("Approval request not found", {"approval_request_id": str(request_id)})
        return req

    def _audit(
        self,
        req: ApprovalRequest,
        action: str,
        previous: ApprovalStatus | None,
        actor: Actor,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.db.add(
            ApprovalAuditLog(
                id=uuid.uuid4(),
                tenant_id=req.tenant_id,
                entity_type=ENTITY_TYPE,
                entity_id=req.id,
                action=action,
                previous_status=previous.value if previous else None,
                new_status=req.status.value,
                actor_id=actor.user_id,
                reason=reason,
                ip_address=actor.ip_address,
                user_agent=(actor.user_agent or "")[:500] or None,
                details=details,
            )
        )

    async def _advance(
        self, request_id: uuid.UUID, target: ApprovalStatus
    ) -> tuple[ApprovalRequest, ApprovalStatus]:
        req = await self.get(request_id, lock=True)
        previous = req.status
        ensure_transition("ApprovalRequest", APPROVAL_TRANSITIONS, previous, target)
        return req, previous

    # ── Transitions ────────────────────────────────────────────────────────────

    async def request(
        self,
        operation: ApprovalOperation,
        asset_id: uuid.UUID,
        parameters: dict[str, Any],
        actor: Actor,
    ) -> ApprovalRequest:
        if self.tenant_id is None:
            raise ValidationError("Approval requests must be raised within a tenant")
        normalized = normalize_parameters(operation, parameters)
        asset = await LedgerService(self.db, self.tenant_id).get_asset(asset_id)
        if asset.status == AssetStatus.CLOSED:
            raise InvalidStateTransition(
                "TokenizedAsset",
                asset.status,
                operation.value,
                message=f"Tokenized asset {asset.token_symbol} is closed",
            )

        req = ApprovalRequest(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            tokenized_asset_id=asset_id,
            operation=operation,
            parameters=normalized,
            status=ApprovalStatus.REQUESTED,
            requested_by=actor.user_id,
        )
        self.db.add(req)
        self._audit(req, "requested", None, actor, reason=normalized.get("reason"), details=normalized)
        await self.db.flush()
        logger.info(
            "approval.requested",
            approval_request_id=str(req.id),
            operation=operation.value,
            amount=normalized["amount"],
        )
        return req

    async def approve_tenant(
        self, request_id: uuid.UUID, actor: Actor, notes: str | None = None
    ) -> ApprovalRequest:
        if not has_role_at_least(actor.role, UserRole.TENANT_ADMIN):
            raise PermissionDenied("Tenant approval requires a tenant admin")
        req, previous = await self._advance(request_id, ApprovalStatus.TENANT_APPROVED)
        if actor.user_id == req.requested_by:
            raise PermissionDenied("You cannot approve an operation you requested")

        req.status = ApprovalStatus.TENANT_APPROVED
        req.tenant_approved_by = actor.user_id
        req.tenant_approved_at = utcnow()
        self._audit(req, "tenant_approved", previous, actor, reason=notes)
        await self.db.flush()
        logger.info("approval.tenant_approved", approval_request_id=str(request_id))
        return req

    async def approve_platform(
        self, request_id: uuid.UUID, actor: Actor, notes: str | None = None
    ) -> ApprovalRequest:
        if actor.role != UserRole.PLATFORM_ADMIN:
            raise PermissionDenied("Platform approval requires a platform admin")
        req, previous = await self._advance(request_id, ApprovalStatus.FULLY_APPROVED)
        if actor.user_id in (req.requested_by, req.tenant_approved_by):
            raise PermissionDenied(
                "Platform approval must come from someone other than the requester and the tenant approver"
            )

        req.status = ApprovalStatus.FULLY_APPROVED
        req.platform_approved_by = actor.user_id
        req.platform_approved_at = utcnow()
        self._audit(req, "platform_approved", previous, actor, reason=notes)
        await self.db.flush()
        logger.info("approval.fully_approved", approval_request_id=str(request_id))
        return req

    async def approve(
        self, request_id: uuid.UUID, actor: Actor, notes: str | None = None
    ) -> ApprovalRequest:
        """Apply whichever sign-off the request is waiting for."""
        req = await self.get(request_id)
        if req.status == ApprovalStatus.TENANT_APPROVED:
            return await self.approve_platform(request_id, actor, notes)
        return await self.approve_tenant(request_id, actor, notes)

    async def reject(self, request_id: uuid.UUID, actor: Actor, reason: str) -> ApprovalRequest:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        if not has_role_at_least(actor.role, UserRole.TENANT_ADMIN):
            raise PermissionDenied("Rejecting requires a tenant admin")
        req, previous = await self._advance(request_id, ApprovalStatus.REJECTED)

        req.status = ApprovalStatus.REJECTED
        req.rejected_by = actor.user_id
        req.rejected_at = utcnow()
        req.rejection_reason = reason.strip()
        self._audit(req, "rejected", previous, actor, reason=req.rejection_reason)
        await self.db.flush()
        logger.info("approval.rejected", approval_request_id=str(request_id))
        return req

    @retry_on_conflict
    async def execute(self, request_id: uuid.UUID, actor: Actor) -> ApprovalRequest:
        """Run the approved ledger operation; the request and the ledger commit together."""
        if not has_role_at_least(actor.role, UserRole.TENANT_ADMIN):
            raise PermissionDenied("Executing requires a tenant admin")
        req, previous = await self._advance(request_id, ApprovalStatus.EXECUTED)

        params = req.parameters
        ledger = LedgerService(self.db, req.tenant_id)
        common = {"reference_id": req.id, "initiated_by": actor.user_id}
        if req.operation == ApprovalOperation.MINT:
            tx = await ledger.mint(req.tokenized_asset_id, params["amount"], params.get("reason"), **common)
        else:
            source = HolderRef(
                HolderType(params["from_holder_type"]),
                uuid.UUID(params["from_holder_id"]) if params.get("from_holder_id") else None,
            )
            if req.operation == ApprovalOperation.BURN:
                tx = await ledger.burn(
                    req.tokenized_asset_id, source, params["amount"], params.get("reason"), **common
                )
            else:
                tx = await ledger.transfer(
                    req.tokenized_asset_id,
                    source,
                    HolderRef.client(uuid.UUID(params["client_id"])),
                    params["amount"],
                    params.get("reason"),
                    **common,
                )

        req.status = ApprovalStatus.EXECUTED
        req.executed_by = actor.user_id
        req.executed_at = utcnow()
        req.executed_transaction_id = tx.id
        self._audit(req, "executed", previous, actor, details={"transaction_id": str(tx.id)})
        await self.db.flush()
        logger.info(
            "approval.executed",
            approval_request_id=str(request_id),
            operation=req.operation.value,
            transaction_id=str(tx.id),
        )
        return req

    # ── Reads ──────────────────────────────────────────────────────────────────

    async def list_pending(self, limit: int = 100) -> list[ApprovalRequest]:
        stmt = self._scoped(
            select(ApprovalRequest)
            .where(ApprovalRequest.status.in_(PENDING_STATUSES))
            .order_by(ApprovalRequest.created_at.asc())
            .limit(limit)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def pending_count(self) -> int:
        stmt = self._scoped(
            select(func.count(ApprovalRequest.id)).where(ApprovalRequest.status.in_(PENDING_STATUSES))
        )
        return int(await self.db.scalar(stmt) or 0)

    async def history(self, request_id: uuid.UUID) -> list[ApprovalAuditLog]:
        req = await self.get(request_id)
        stmt = (
            select(ApprovalAuditLog)
            .where(
                ApprovalAuditLog.entity_type == ENTITY_TYPE,
                ApprovalAuditLog.entity_id == req.id,
            )
            .order_by(ApprovalAuditLog.created_at.asc())
        )
        return list((await self.db.execute(stmt)).scalars().all())
