"""Token ledger models: TokenizedAsset, TokenHolder, TokenTransaction."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from tokenledger.models.base import BaseModel, TimestampedModel
from tokenledger.models.enums import AssetStatus, HolderType, SourceType, TransactionType


class TokenizedAsset(BaseModel):
    """Fixed-supply fractionalisation of one asset, asset unit or trust.

    ``total_supply = circulating_supply + fideitec_balance + burned_supply``
    holds after every ledger mutation.
    """

    __tablename__ = "tokenized_assets"
    __table_args__ = (
        Index("ix_tokenized_assets_tenant_status", "tenant_id", "status"),
        Index("ix_tokenized_assets_source", "asset_type", "source_id"),
        CheckConstraint("total_supply >= 0", name="ck_tokenized_assets_total_supply"),
        CheckConstraint("circulating_supply >= 0", name="ck_tokenized_assets_circulating"),
        CheckConstraint("fideitec_balance >= 0", name="ck_tokenized_assets_platform_balance"),
        CheckConstraint("burned_supply >= 0", name="ck_tokenized_assets_burned"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    asset_type: Mapped[SourceType] = mapped_column(nullable=False)
    source_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    token_name: Mapped[str] = mapped_column(String(255), nullable=False)
    token_symbol: Mapped[str] = mapped_column(String(20), nullable=False)

    total_supply: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    circulating_supply: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    fideitec_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    burned_supply: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    token_price: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[AssetStatus] = mapped_column(nullable=False, default=AssetStatus.DRAFT)

    description: Mapped[str | None] = mapped_column(Text)
    activated_at: Mapped[datetime | None] = mapped_column()
    closed_at: Mapped[datetime | None] = mapped_column()
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def outstanding_supply(self) -> int:
        return self.circulating_supply + self.fideitec_balance

    def supply_balanced(self) -> bool:
        return self.total_supply == (
            self.circulating_supply + self.fideitec_balance + self.burned_supply
        )

    def __repr__(self) -> str:
        return (
            f"<TokenizedAsset(id={self.id}, symbol={self.token_symbol!r}, "
            f"status={self.status.value}, total={self.total_supply})>"
        )


class TokenHolder(BaseModel):
    """Balance of one tokenized asset held by the platform, a client or a supplier."""

    __tablename__ = "token_holders"
    __table_args__ = (
        UniqueConstraint(
            "tokenized_asset_id", "holder_type", "holder_id",
            name="uq_token_holders_asset_holder",
        ),
        CheckConstraint("balance >= 0", name="ck_token_holders_balance_non_negative"),
        Index("ix_token_holders_holder", "holder_type", "holder_id"),
        # NULLs are distinct in the constraint above; one platform row per asset
        Index(
            "uq_token_holders_platform",
            "tokenized_asset_id",
            unique=True,
            postgresql_where=text("holder_id IS NULL"),
            sqlite_where=text("holder_id IS NULL"),
        ),
    )

    tokenized_asset_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tokenized_assets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    holder_type: Mapped[HolderType] = mapped_column(nullable=False)
    # NULL for the platform holder
    holder_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}


class TokenTransaction(TimestampedModel):
    """Append-only ledger entry. Replaying these rows reproduces every balance."""

    __tablename__ = "token_transactions"
    __table_args__ = (
        Index("ix_token_transactions_asset_created", "tokenized_asset_id", "created_at"),
        Index("ix_token_transactions_reference", "reference_id"),
        CheckConstraint("amount > 0", name="ck_token_transactions_amount_positive"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    tokenized_asset_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tokenized_assets.id", ondelete="CASCADE"),
        nullable=False,
    )
    transaction_type: Mapped[TransactionType] = mapped_column(nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    from_holder_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("token_holders.id", ondelete="SET NULL")
    )
    to_holder_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("token_holders.id", ondelete="SET NULL")
    )
    reason: Mapped[str | None] = mapped_column(String(500))
    # order id or approval request id that produced this entry
    reference_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    initiated_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    tx_hash: Mapped[str | None] = mapped_column(String(66))
