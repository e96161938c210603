"""Certificate schemas."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from tokenledger.models.enums import CertificateStatus, CertificateType


class BeneficiaryInfo(BaseModel):
    """Snapshot of the client identity printed on the certificate."""

    name: str | None = Field(default=None, max_length=255)
    document_type: str | None = Field(
        default=None, max_length=50, validation_alias=AliasChoices("document_type", "documentType")
    )
    document_number: str | None = Field(
        default=None, max_length=100, validation_alias=AliasChoices("document_number", "documentNumber")
    )


class RevokeCertificateRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class TenantSignatureRequest(BaseModel):
    """Signature produced by the tenant wallet over the certificate content hash."""

    signature: str = Field(min_length=130, max_length=132, pattern=r"^(0x)?[0-9a-fA-F]+$")
    address: str = Field(
        pattern=r"^0x[0-9a-fA-F]{40}$",
        validation_alias=AliasChoices("address", "signerAddress", "signer_address"),
    )


class CertificateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    tokenized_asset_id: uuid.UUID
    client_id: uuid.UUID
    order_id: uuid.UUID
    transaction_id: uuid.UUID | None
    certificate_number: str
    certificate_type: CertificateType
    title: str
    beneficiary_name: str | None
    beneficiary_document_type: str | None
    beneficiary_document_number: str | None
    endorser_name: str
    token_amount: int
    token_value_at_issue: Decimal
    total_value_at_issue: Decimal
    currency: str
    verification_code: str
    content_hash: str
    status: CertificateStatus
    superseded_by: uuid.UUID | None
    revoked_reason: str | None
    revoked_at: datetime | None
    is_blockchain_certified: bool
    blockchain_tx_hash: str | None
    blockchain_network: str | None
    blockchain_explorer_url: str | None
    blockchain_certified_at: datetime | None
    tenant_signature_address: str | None = None
    platform_signature_address: str | None = None
    dual_signature_verified: bool = False
    issued_at: datetime


class PublicCertificateView(BaseModel):
    """What an anonymous verifier may see. No internal ids beyond the number."""

    certificate_number: str
    title: str
    beneficiary_name: str | None
    token_amount: int
    token_value_at_issue: Decimal
    total_value_at_issue: Decimal
    currency: str
    token_name: str
    token_symbol: str
    issued_at: datetime
    status: CertificateStatus


class BlockchainInfo(BaseModel):
    certified: bool
    network: str | None = None
    tx_hash: str | None = None
    explorer_url: str | None = None
    certified_at: datetime | None = None


class SignatureReport(BaseModel):
    tenant_signed: bool
    tenant_valid: bool
    tenant_address: str | None = None
    tenant_signed_at: datetime | None = None
    platform_signed: bool
    platform_valid: bool
    platform_address: str | None = None
    platform_signed_at: datetime | None = None
    dual_signature_verified: bool


class VerificationResponse(BaseModel):
    valid: bool
    status: CertificateStatus
    hash_matches: bool
    certificate: PublicCertificateView
    blockchain: BlockchainInfo
    signatures: SignatureReport
