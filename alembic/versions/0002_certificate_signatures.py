"""certificate dual signatures and pending anchor hash.

Revision ID: 0002_certificate_signatures
Revises: 0001_token_ledger
Create Date: 2026-10-17 00:00:00

Adds to token_certificates:
  - blockchain_pending_tx_hash      submitted but not yet confirmed anchor tx
  - tenant_signature[_address]      tenant wallet signature over content_hash
  - tenant_signed_at, tenant_signed_by
  - platform_signature[_address]    platform signer signature over content_hash
  - platform_signed_at
  - dual_signature_verified
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0002_certificate_signatures"
down_revision: str | None = "0001_token_ledger"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.add_column("token_certificates", sa.Column("blockchain_pending_tx_hash", sa.String(66)))
    op.add_column("token_certificates", sa.Column("tenant_signature", sa.String(132)))
    op.add_column("token_certificates", sa.Column("tenant_signature_address", sa.String(42)))
    op.add_column("token_certificates", sa.Column("tenant_signed_at", _TS))
    op.add_column(
        "token_certificates", sa.Column("tenant_signed_by", postgresql.UUID(as_uuid=True))
    )
    op.add_column("token_certificates", sa.Column("platform_signature", sa.String(132)))
    op.add_column("token_certificates", sa.Column("platform_signature_address", sa.String(42)))
    op.add_column("token_certificates", sa.Column("platform_signed_at", _TS))
    op.add_column(
        "token_certificates",
        sa.Column(
            "dual_signature_verified", sa.Boolean(), nullable=False, server_default="false"
        ),
    )


def downgrade() -> None:
    for column in (
        "dual_signature_verified",
        "platform_signed_at",
        "platform_signature_address",
        "platform_signature",
        "tenant_signed_by",
        "tenant_signed_at",
        "tenant_signature_address",
        "tenant_signature",
        "blockchain_pending_tx_hash",
    ):
        op.drop_column("token_certificates", column)
