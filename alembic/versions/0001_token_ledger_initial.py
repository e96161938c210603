"""Token ledger initial schema.

Revision ID: 0001_token_ledger
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001_token_ledger"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_UUID = postgresql.UUID(as_uuid=True)
_MONEY = sa.Numeric(19, 4)
_TS = sa.DateTime(timezone=True)

source_type = sa.Enum("ASSET", "ASSET_UNIT", "TRUST", name="sourcetype")
asset_status = sa.Enum("DRAFT", "ACTIVE", "PAUSED", "CLOSED", name="assetstatus")
holder_type = sa.Enum("PLATFORM", "CLIENT", "SUPPLIER", name="holdertype")
transaction_type = sa.Enum("MINT", "TRANSFER", "BURN", "RETURN", name="transactiontype")
order_type = sa.Enum("BUY", "SELL", name="ordertype")
order_status = sa.Enum(
    "PENDING",
    "PAYMENT_PENDING",
    "PAYMENT_RECEIVED",
    "PROCESSING",
    "COMPLETED",
    "CANCELLED",
    "REFUNDED",
    name="orderstatus",
)
payment_method = sa.Enum("BANK_TRANSFER", "CARD", "CASH", "CRYPTO", "OTHER", name="paymentmethod")
certificate_type = sa.Enum("OWNERSHIP", name="certificatetype")
certificate_status = sa.Enum("ACTIVE", "SUPERSEDED", "REVOKED", name="certificatestatus")
approval_operation = sa.Enum("MINT", "BURN", "TRANSFER", name="approvaloperation")
approval_status = sa.Enum(
    "REQUESTED", "TENANT_APPROVED", "FULLY_APPROVED", "REJECTED", "EXECUTED", name="approvalstatus"
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", _TS, nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", _TS, nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    op.create_table(
        "tokenized_assets",
        sa.Column("id", _UUID, nullable=False),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column("asset_type", source_type, nullable=False),
        sa.Column("source_id", _UUID, nullable=False),
        sa.Column("token_name", sa.String(255), nullable=False),
        sa.Column("token_symbol", sa.String(20), nullable=False),
        sa.Column("total_supply", sa.BigInteger(), nullable=False),
        sa.Column("circulating_supply", sa.BigInteger(), nullable=False),
        sa.Column("fideitec_balance", sa.BigInteger(), nullable=False),
        sa.Column("burned_supply", sa.BigInteger(), nullable=False),
        sa.Column("token_price", _MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", asset_status, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("activated_at", _TS, nullable=True),
        sa.Column("closed_at", _TS, nullable=True),
        sa.Column("created_by", _UUID, nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("total_supply >= 0", name="ck_tokenized_assets_total_supply"),
        sa.CheckConstraint("circulating_supply >= 0", name="ck_tokenized_assets_circulating"),
        sa.CheckConstraint("fideitec_balance >= 0", name="ck_tokenized_assets_platform_balance"),
        sa.CheckConstraint("burned_supply >= 0", name="ck_tokenized_assets_burned"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tokenized_assets_tenant_id", "tokenized_assets", ["tenant_id"])
    op.create_index("ix_tokenized_assets_tenant_status", "tokenized_assets", ["tenant_id", "status"])
    op.create_index("ix_tokenized_assets_source", "tokenized_assets", ["asset_type", "source_id"])

    op.create_table(
        "token_holders",
        sa.Column("id", _UUID, nullable=False),
        sa.Column("tokenized_asset_id", _UUID, nullable=False),
        sa.Column("holder_type", holder_type, nullable=False),
        sa.Column("holder_id", _UUID, nullable=True),
        sa.Column("balance", sa.BigInteger(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tokenized_asset_id"], ["tokenized_assets.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "tokenized_asset_id", "holder_type", "holder_id", name="uq_token_holders_asset_holder"
        ),
        sa.CheckConstraint("balance >= 0", name="ck_token_holders_balance_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_token_holders_tokenized_asset_id", "token_holders", ["tokenized_asset_id"])
    op.create_index("ix_token_holders_holder", "token_holders", ["holder_type", "holder_id"])
    # NULLs are distinct in the unique constraint; one platform row per asset
    op.create_index(
        "uq_token_holders_platform",
        "token_holders",
        ["tokenized_asset_id"],
        unique=True,
        postgresql_where=sa.text("holder_id IS NULL"),
    )

    op.create_table(
        "token_transactions",
        sa.Column("id", _UUID, nullable=False),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column("tokenized_asset_id", _UUID, nullable=False),
        sa.Column("transaction_type", transaction_type, nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("from_holder_id", _UUID, nullable=True),
        sa.Column("to_holder_id", _UUID, nullable=True),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("reference_id", _UUID, nullable=True),
        sa.Column("initiated_by", _UUID, nullable=True),
        sa.Column("tx_hash", sa.String(66), nullable=True),
        sa.Column("created_at", _TS, nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["tokenized_asset_id"], ["tokenized_assets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["from_holder_id"], ["token_holders.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["to_holder_id"], ["token_holders.id"], ondelete="SET NULL"),
        sa.CheckConstraint("amount > 0", name="ck_token_transactions_amount_positive"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_token_transactions_tenant_id", "token_transactions", ["tenant_id"])
    op.create_index(
        "ix_token_transactions_asset_created", "token_transactions", ["tokenized_asset_id", "created_at"]
    )
    op.create_index("ix_token_transactions_reference", "token_transactions", ["reference_id"])

    op.create_table(
        "token_orders",
        sa.Column("id", _UUID, nullable=False),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column("order_number", sa.String(40), nullable=False),
        sa.Column("order_type", order_type, nullable=False),
        sa.Column("tokenized_asset_id", _UUID, nullable=False),
        sa.Column("client_id", _UUID, nullable=False),
        sa.Column("token_amount", sa.Integer(), nullable=False),
        sa.Column("price_per_token", _MONEY, nullable=False),
        sa.Column("subtotal", _MONEY, nullable=False),
        sa.Column("fees", _MONEY, nullable=False),
        sa.Column("total_amount", _MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", order_status, nullable=False),
        sa.Column("payment_method", payment_method, nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("bank_name", sa.String(255), nullable=True),
        sa.Column("bank_account_type", sa.String(50), nullable=True),
        sa.Column("bank_account_number", sa.String(100), nullable=True),
        sa.Column("bank_account_holder", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("certificate_id", _UUID, nullable=True),
        sa.Column("transaction_id", _UUID, nullable=True),
        sa.Column("created_by", _UUID, nullable=True),
        sa.Column("processed_by", _UUID, nullable=True),
        sa.Column("payment_confirmed_at", _TS, nullable=True),
        sa.Column("processing_started_at", _TS, nullable=True),
        sa.Column("completed_at", _TS, nullable=True),
        sa.Column("cancelled_at", _TS, nullable=True),
        sa.Column("refunded_at", _TS, nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tokenized_asset_id"], ["tokenized_assets.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("order_number"),
        sa.CheckConstraint("token_amount > 0", name="ck_token_orders_amount_positive"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_token_orders_tenant_status", "token_orders", ["tenant_id", "status"])
    op.create_index("ix_token_orders_client", "token_orders", ["tenant_id", "client_id"])
    op.create_index("ix_token_orders_asset", "token_orders", ["tokenized_asset_id"])

    op.create_table(
        "token_certificates",
        sa.Column("id", _UUID, nullable=False),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column("tokenized_asset_id", _UUID, nullable=False),
        sa.Column("client_id", _UUID, nullable=False),
        sa.Column("order_id", _UUID, nullable=False),
        sa.Column("transaction_id", _UUID, nullable=True),
        sa.Column("certificate_number", sa.String(40), nullable=False),
        sa.Column("certificate_type", certificate_type, nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("beneficiary_name", sa.String(255), nullable=True),
        sa.Column("beneficiary_document_type", sa.String(50), nullable=True),
        sa.Column("beneficiary_document_number", sa.String(100), nullable=True),
        sa.Column("endorser_name", sa.String(255), nullable=False),
        sa.Column("token_amount", sa.BigInteger(), nullable=False),
        sa.Column("token_value_at_issue", _MONEY, nullable=False),
        sa.Column("total_value_at_issue", _MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("verification_code", sa.String(64), nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("issued_at", _TS, nullable=False),
        sa.Column("status", certificate_status, nullable=False),
        sa.Column("superseded_by", _UUID, nullable=True),
        sa.Column("revoked_reason", sa.Text(), nullable=True),
        sa.Column("revoked_at", _TS, nullable=True),
        sa.Column("revoked_by", _UUID, nullable=True),
        sa.Column("is_blockchain_certified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("blockchain_tx_hash", sa.String(66), nullable=True),
        sa.Column("blockchain_network", sa.String(30), nullable=True),
        sa.Column("blockchain_explorer_url", sa.String(255), nullable=True),
        sa.Column("blockchain_certified_at", _TS, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tokenized_asset_id"], ["tokenized_assets.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["order_id"], ["token_orders.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["transaction_id"], ["token_transactions.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("order_id"),
        sa.UniqueConstraint("certificate_number"),
        sa.UniqueConstraint("verification_code"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_token_certificates_tenant_status", "token_certificates", ["tenant_id", "status"])
    op.create_index(
        "ix_token_certificates_client_asset", "token_certificates", ["client_id", "tokenized_asset_id"]
    )
    op.create_index("ix_token_certificates_blockchain_tx_hash", "token_certificates", ["blockchain_tx_hash"])

    op.create_table(
        "approval_requests",
        sa.Column("id", _UUID, nullable=False),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column("tokenized_asset_id", _UUID, nullable=False),
        sa.Column("operation", approval_operation, nullable=False),
        sa.Column("parameters", postgresql.JSONB(), nullable=False),
        sa.Column("status", approval_status, nullable=False),
        sa.Column("requested_by", _UUID, nullable=False),
        sa.Column("tenant_approved_by", _UUID, nullable=True),
        sa.Column("tenant_approved_at", _TS, nullable=True),
        sa.Column("platform_approved_by", _UUID, nullable=True),
        sa.Column("platform_approved_at", _TS, nullable=True),
        sa.Column("rejected_by", _UUID, nullable=True),
        sa.Column("rejected_at", _TS, nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("executed_by", _UUID, nullable=True),
        sa.Column("executed_at", _TS, nullable=True),
        sa.Column("executed_transaction_id", _UUID, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tokenized_asset_id"], ["tokenized_assets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_approval_requests_tenant_status", "approval_requests", ["tenant_id", "status"])
    op.create_index("ix_approval_requests_asset", "approval_requests", ["tokenized_asset_id"])

    op.create_table(
        "approval_audit_log",
        sa.Column("id", _UUID, nullable=False),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", _UUID, nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("previous_status", sa.String(30), nullable=True),
        sa.Column("new_status", sa.String(30), nullable=False),
        sa.Column("actor_id", _UUID, nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", _TS, nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_approval_audit_entity", "approval_audit_log", ["entity_type", "entity_id", "created_at"]
    )
    op.create_index("ix_approval_audit_tenant", "approval_audit_log", ["tenant_id", "created_at"])

    op.create_table(
        "operation_rate_limits",
        sa.Column("id", _UUID, nullable=False),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column("user_id", _UUID, nullable=False),
        sa.Column("operation_type", sa.String(50), nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", _TS, nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_operation_rate_limits_window", "operation_rate_limits", ["tenant_id", "user_id", "created_at"]
    )

    op.create_table(
        "tenant_settings",
        sa.Column("id", _UUID, nullable=False),
        sa.Column("tenant_id", _UUID, nullable=False),
        sa.Column("max_operations_per_hour", sa.Integer(), nullable=False, server_default="3"),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id"),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("tenant_settings")
    op.drop_index("ix_operation_rate_limits_window", table_name="operation_rate_limits")
    op.drop_table("operation_rate_limits")
    op.drop_index("ix_approval_audit_tenant", table_name="approval_audit_log")
    op.drop_index("ix_approval_audit_entity", table_name="approval_audit_log")
    op.drop_table("approval_audit_log")
    op.drop_index("ix_approval_requests_asset", table_name="approval_requests")
    op.drop_index("ix_approval_requests_tenant_status", table_name="approval_requests")
    op.drop_table("approval_requests")
    op.drop_index("ix_token_certificates_blockchain_tx_hash", table_name="token_certificates")
    op.drop_index("ix_token_certificates_client_asset", table_name="token_certificates")
    op.drop_index("ix_token_certificates_tenant_status", table_name="token_certificates")
    op.drop_table("token_certificates")
    op.drop_index("ix_token_orders_asset", table_name="token_orders")
    op.drop_index("ix_token_orders_client", table_name="token_orders")
    op.drop_index("ix_token_orders_tenant_status", table_name="token_orders")
    op.drop_table("token_orders")
    op.drop_index("ix_token_transactions_reference", table_name="token_transactions")
    op.drop_index("ix_token_transactions_asset_created", table_name="token_transactions")
    op.drop_index("ix_token_transactions_tenant_id", table_name="token_transactions")
    op.drop_table("token_transactions")
    op.drop_index("uq_token_holders_platform", table_name="token_holders")
    op.drop_index("ix_token_holders_holder", table_name="token_holders")
    op.drop_index("ix_token_holders_tokenized_asset_id", table_name="token_holders")
    op.drop_table("token_holders")
    op.drop_index("ix_tokenized_assets_source", table_name="tokenized_assets")
    op.drop_index("ix_tokenized_assets_tenant_status", table_name="tokenized_assets")
    op.drop_index("ix_tokenized_assets_tenant_id", table_name="tokenized_assets")
    op.drop_table("tokenized_assets")

    bind = op.get_bind()
    for enum_type in (
        approval_status,
        approval_operation,
        certificate_status,
        certificate_type,
        payment_method,
        order_status,
        order_type,
        transaction_type,
        holder_type,
        asset_status,
        source_type,
    ):
        enum_type.drop(bind, checkfirst=True)
