"""Approval gate schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tokenledger.models.enums import ApprovalOperation, ApprovalStatus


class ApproveRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class ApprovalRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    tokenized_asset_id: uuid.UUID
    operation: ApprovalOperation
    parameters: dict[str, Any]
    status: ApprovalStatus
    requested_by: uuid.UUID
    tenant_approved_by: uuid.UUID | None
    tenant_approved_at: datetime | None
    platform_approved_by: uuid.UUID | None
    platform_approved_at: datetime | None
    rejected_by: uuid.UUID | None
    rejected_at: datetime | None
    rejection_reason: str | None
    executed_by: uuid.UUID | None
    executed_at: datetime | None
    executed_transaction_id: uuid.UUID | None
    created_at: datetime


class ApprovalAuditResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    action: str
    previous_status: str | None
    new_status: str
    actor_id: uuid.UUID
    reason: str | None
    ip_address: str | None
    user_agent: str | None
    details: dict[str, Any] | None
    created_at: datetime


class PendingApprovalsResponse(BaseModel):
    items: list[ApprovalRequestResponse]
    count: int
