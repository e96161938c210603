"""SQLAlchemy models package: import all models so Base.metadata is populated."""

from tokenledger.models.base import BaseModel, ModelMixin, TimestampedModel
from tokenledger.models.enums import (
    ApprovalOperation,
    ApprovalStatus,
    AssetStatus,
    CertificateStatus,
    CertificateType,
    HolderType,
    OrderStatus,
    OrderType,
    PaymentMethod,
    SourceType,
    TransactionType,
    UserRole,
)
from tokenledger.models.ledger import TokenHolder, TokenizedAsset, TokenTransaction
from tokenledger.models.orders import Order
from tokenledger.models.certificates import Certificate
from tokenledger.models.approvals import ApprovalAuditLog, ApprovalRequest
from tokenledger.models.rate_limits import RateLimitRecord, TenantSettings

__all__ = [
    "ApprovalAuditLog",
    "ApprovalOperation",
    "ApprovalRequest",
    "ApprovalStatus",
    "AssetStatus",
    "BaseModel",
    "Certificate",
    "CertificateStatus",
    "CertificateType",
    "HolderType",
    "ModelMixin",
    "Order",
    "OrderStatus",
    "OrderType",
    "PaymentMethod",
    "RateLimitRecord",
    "SourceType",
    "TenantSettings",
    "TimestampedModel",
    "TokenHolder",
    "TokenTransaction",
    "TokenizedAsset",
    "TransactionType",
    "UserRole",
]
