"""Closed status sets and their transition tables."""

import enum


# ── Identity ─────────────────────────────────────────────────────────────────


class UserRole(str, enum.Enum):
    PLATFORM_ADMIN = "platform_admin"
    TENANT_ADMIN = "tenant_admin"
    OPERATOR = "operator"
    VIEWER = "viewer"


# ── Tokenized assets ─────────────────────────────────────────────────────────


class SourceType(str, enum.Enum):
    ASSET = "asset"
    ASSET_UNIT = "asset_unit"
    TRUST = "trust"


class AssetStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"


class HolderType(str, enum.Enum):
    PLATFORM = "platform"
    CLIENT = "client"
    SUPPLIER = "supplier"


class TransactionType(str, enum.Enum):
    MINT = "mint"
    TRANSFER = "transfer"
    BURN = "burn"
    RETURN = "return"


# ── Orders ───────────────────────────────────────────────────────────────────


class OrderType(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_RECEIVED = "payment_received"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    CASH = "cash"
    CRYPTO = "crypto"
    OTHER = "other"


# ── Certificates ─────────────────────────────────────────────────────────────


class CertificateStatus(str, enum.Enum):
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    REVOKED = "revoked"


class CertificateType(str, enum.Enum):
    OWNERSHIP = "ownership"


# ── Approvals ────────────────────────────────────────────────────────────────


class ApprovalOperation(str, enum.Enum):
    MINT = "mint"
    BURN = "burn"
    TRANSFER = "transfer"


class ApprovalStatus(str, enum.Enum):
    REQUESTED = "requested"
    TENANT_APPROVED = "tenant_approved"
    FULLY_APPROVED = "fully_approved"
    REJECTED = "rejected"
    EXECUTED = "executed"


# ── Transition tables ────────────────────────────────────────────────────────

ASSET_TRANSITIONS: dict[AssetStatus, frozenset[AssetStatus]] = {
    AssetStatus.DRAFT: frozenset({AssetStatus.ACTIVE}),
    AssetStatus.ACTIVE: frozenset({AssetStatus.PAUSED, AssetStatus.CLOSED}),
    AssetStatus.PAUSED: frozenset({AssetStatus.ACTIVE, AssetStatus.CLOSED}),
    AssetStatus.CLOSED: frozenset(),
}

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.PAYMENT_PENDING, OrderStatus.PAYMENT_RECEIVED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PAYMENT_PENDING: frozenset(
        {OrderStatus.PAYMENT_RECEIVED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PAYMENT_RECEIVED: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.COMPLETED, OrderStatus.REFUNDED}
    ),
    OrderStatus.PROCESSING: frozenset({OrderStatus.COMPLETED, OrderStatus.REFUNDED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.REQUESTED: frozenset(
        {ApprovalStatus.TENANT_APPROVED, ApprovalStatus.REJECTED}
    ),
    ApprovalStatus.TENANT_APPROVED: frozenset(
        {ApprovalStatus.FULLY_APPROVED, ApprovalStatus.REJECTED}
    ),
    ApprovalStatus.FULLY_APPROVED: frozenset({ApprovalStatus.EXECUTED}),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.EXECUTED: frozenset(),
}

CERTIFICATE_TRANSITIONS: dict[CertificateStatus, frozenset[CertificateStatus]] = {
    CertificateStatus.ACTIVE: frozenset(
        {CertificateStatus.SUPERSEDED, CertificateStatus.REVOKED}
    ),
    CertificateStatus.SUPERSEDED: frozenset(),
    CertificateStatus.REVOKED: frozenset(),
}


def can_transition(table: dict, current: enum.Enum, target: enum.Enum) -> bool:
    return target in table.get(current, frozenset())


def ensure_transition(entity: str, table: dict, current: enum.Enum, target: enum.Enum) -> None:
    """Raise InvalidStateTransition unless ``current -> target`` is in ``table``."""
    from tokenledger.core.exceptions import InvalidStateTransition

    if not can_transition(table, current, target):
        raise InvalidStateTransition(entity, current, target)
