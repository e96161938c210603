"""Buy/sell order model."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tokenledger.models.base import BaseModel
from tokenledger.models.enums import OrderStatus, OrderType, PaymentMethod


class Order(BaseModel):
    __tablename__ = "token_orders"
    __table_args__ = (
        Index("ix_token_orders_tenant_status", "tenant_id", "status"),
        Index("ix_token_orders_client", "tenant_id", "client_id"),
        Index("ix_token_orders_asset", "tokenized_asset_id"),
        CheckConstraint("token_amount > 0", name="ck_token_orders_amount_positive"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    order_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    order_type: Mapped[OrderType] = mapped_column(nullable=False)
    tokenized_asset_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tokenized_assets.id", ondelete="RESTRICT"),
        nullable=False,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    token_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    # Frozen at creation; later price changes never touch an existing order
    price_per_token: Mapped[Decimal] = mapped_column(nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    fees: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    status: Mapped[OrderStatus] = mapped_column(nullable=False, default=OrderStatus.PENDING)

    # Buy side
    payment_method: Mapped[PaymentMethod | None] = mapped_column()
    payment_reference: Mapped[str | None] = mapped_column(String(255))

    # Sell side payout
    bank_name: Mapped[str | None] = mapped_column(String(255))
    bank_account_type: Mapped[str | None] = mapped_column(String(50))
    bank_account_number: Mapped[str | None] = mapped_column(String(100))
    bank_account_holder: Mapped[str | None] = mapped_column(String(255))

    notes: Mapped[str | None] = mapped_column(Text)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    # Set once on completion; the certificate also points back via order_id
    certificate_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    processed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    payment_confirmed_at: Mapped[datetime | None] = mapped_column()
    processing_started_at: Mapped[datetime | None] = mapped_column()
    completed_at: Mapped[datetime | None] = mapped_column()
    cancelled_at: Mapped[datetime | None] = mapped_column()
    refunded_at: Mapped[datetime | None] = mapped_column()

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order(number={self.order_number!r}, type={self.order_type.value}, status={self.status.value})>"
