"""Ownership certificate model."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tokenledger.models.base import BaseModel, utcnow
from tokenledger.models.enums import CertificateStatus, CertificateType


class Certificate(BaseModel):
    """Proof of token possession issued when an order completes.

    Number, amounts, values, beneficiary, verification code and content hash
    are written once. Only the blockchain fields (attached once), the two
    signatures over the content hash and the lifecycle status change afterwards.
    """

    __tablename__ = "token_certificates"
    __table_args__ = (
        Index("ix_token_certificates_tenant_status", "tenant_id", "status"),
        Index("ix_token_certificates_client_asset", "client_id", "tokenized_asset_id"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    tokenized_asset_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tokenized_assets.id", ondelete="RESTRICT"),
        nullable=False,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("token_orders.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("token_transactions.id", ondelete="SET NULL")
    )

    certificate_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    certificate_type: Mapped[CertificateType] = mapped_column(
        nullable=False, default=CertificateType.OWNERSHIP
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)

    beneficiary_name: Mapped[str | None] = mapped_column(String(255))
    beneficiary_document_type: Mapped[str | None] = mapped_column(String(50))
    beneficiary_document_number: Mapped[str | None] = mapped_column(String(100))
    endorser_name: Mapped[str] = mapped_column(String(255), nullable=False)

    token_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    token_value_at_issue: Mapped[Decimal] = mapped_column(nullable=False)
    total_value_at_issue: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    verification_code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    status: Mapped[CertificateStatus] = mapped_column(
        nullable=False, default=CertificateStatus.ACTIVE
    )
    superseded_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    revoked_reason: Mapped[str | None] = mapped_column(Text)
    revoked_at: Mapped[datetime | None] = mapped_column()
    revoked_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    is_blockchain_certified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    blockchain_tx_hash: Mapped[str | None] = mapped_column(String(66), index=True)
    blockchain_network: Mapped[str | None] = mapped_column(String(30))
    blockchain_explorer_url: Mapped[str | None] = mapped_column(String(255))
    blockchain_pending_tx_hash: Mapped[str | None] = mapped_column(String(66))
    blockchain_certified_at: Mapped[datetime | None] = mapped_column()

    # Dual signature over content_hash: tenant wallet + platform signer (EIP-191)
    tenant_signature: Mapped[str | None] = mapped_column(String(132))
    tenant_signature_address: Mapped[str | None] = mapped_column(String(42))
    tenant_signed_at: Mapped[datetime | None] = mapped_column()
    tenant_signed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    platform_signature: Mapped[str | None] = mapped_column(String(132))
    platform_signature_address: Mapped[str | None] = mapped_column(String(42))
    platform_signed_at: Mapped[datetime | None] = mapped_column()
    dual_signature_verified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
