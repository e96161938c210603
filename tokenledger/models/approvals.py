"""Dual-approval requests for manual mint/burn/transfer, plus their audit trail."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tokenledger.models.base import BaseModel, JSONType, TimestampedModel
from tokenledger.models.enums import ApprovalOperation, ApprovalStatus


class ApprovalRequest(BaseModel):
    __tablename__ = "approval_requests"
    __table_args__ = (
        Index("ix_approval_requests_tenant_status", "tenant_id", "status"),
        Index("ix_approval_requests_asset", "tokenized_asset_id"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    tokenized_asset_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tokenized_assets.id", ondelete="CASCADE"),
        nullable=False,
    )
    operation: Mapped[ApprovalOperation] = mapped_column(nullable=False)
    # amount, reason, holder_type / holder_id / client_id depending on operation
    parameters: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[ApprovalStatus] = mapped_column(
        nullable=False, default=ApprovalStatus.REQUESTED
    )

    requested_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    tenant_approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    tenant_approved_at: Mapped[datetime | None] = mapped_column()
    platform_approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    platform_approved_at: Mapped[datetime | None] = mapped_column()
    rejected_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    rejected_at: Mapped[datetime | None] = mapped_column()
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    executed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    executed_at: Mapped[datetime | None] = mapped_column()
    executed_transaction_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)


class ApprovalAuditLog(TimestampedModel):
    """One row per approval transition. Never updated."""

    __tablename__ = "approval_audit_log"
    __table_args__ = (
        Index("ix_approval_audit_entity", "entity_type", "entity_id", "created_at"),
        Index("ix_approval_audit_tenant", "tenant_id", "created_at"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_status: Mapped[str | None] = mapped_column(String(30))
    new_status: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(String(500))
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
