"""Operation rate-limit log and per-tenant limit settings."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tokenledger.models.base import BaseModel, JSONType, TimestampedModel


class RateLimitRecord(TimestampedModel):
    """Marker for one completed rate-limited operation.

    Usage is the number of rows in the trailing window; rows past the
    retention window are swept.
    """

    __tablename__ = "operation_rate_limits"
    __table_args__ = (
        Index("ix_operation_rate_limits_window", "tenant_id", "user_id", "created_at"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONType)


class TenantSettings(BaseModel):
    __tablename__ = "tenant_settings"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    max_operations_per_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
