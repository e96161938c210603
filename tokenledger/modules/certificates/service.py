"""Ownership certificates: issue, render, verify, revoke, supersede, dual-sign.

A certificate is written once at order completion.  Its number, amounts,
values, beneficiary snapshot, verification code and content hash never
change afterwards; only the lifecycle status and the blockchain fields
(attached once by the anchoring service) do.
"""

from __future__ import annotations

import hashlib
import json
import secrets
import uuid
from datetime import timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.chain import ChainClient, ChainError, recover_signer, signature_matches
from tokenledger.core.config import settings
from tokenledger.core.exceptions import AnchorError, NotFoundError, ValidationError
from tokenledger.models.base import as_utc, utcnow
from tokenledger.models.certificates import Certificate
from tokenledger.models.enums import (
    CERTIFICATE_TRANSITIONS,
    CertificateStatus,
    CertificateType,
    ensure_transition,
)
from tokenledger.models.ledger import TokenizedAsset
from tokenledger.models.orders import Order
from tokenledger.modules.certificates.renderer import (
    ASSET_TYPE_LABELS,
    CertificateRenderer,
    HtmlCertificateRenderer,
)
from tokenledger.modules.certificates.schemas import BeneficiaryInfo

logger = structlog.get_logger()

_MONEY = Decimal("0.0001")


def _money(value: Decimal | int | str) -> str:
    return str(Decimal(value).quantize(_MONEY))


def certificate_content(cert: Certificate) -> dict[str, Any]:
    """The immutable fields covered by ``content_hash`` and the chain anchor."""
    return {
        "certificate_number": cert.certificate_number,
        "certificate_type": cert.certificate_type.value,
        "tenant_id": str(cert.tenant_id),
        "tokenized_asset_id": str(cert.tokenized_asset_id),
        "client_id": str(cert.client_id),
        "order_id": str(cert.order_id),
        "transaction_id": str(cert.transaction_id) if cert.transaction_id else None,
        "beneficiary_name": cert.beneficiary_name,
        "beneficiary_document_type": cert.beneficiary_document_type,
        "beneficiary_document_number": cert.beneficiary_document_number,
        "endorser_name": cert.endorser_name,
        "token_amount": int(cert.token_amount),
        "token_value_at_issue": _money(cert.token_value_at_issue),
        "total_value_at_issue": _money(cert.total_value_at_issue),
        "currency": cert.currency,
        "issued_at": as_utc(cert.issued_at).astimezone(timezone.utc).isoformat(),
    }


def certificate_fingerprint(cert: Certificate) -> str:
    """SHA-256 of the canonical JSON of the immutable fields."""
    canonical = json.dumps(certificate_content(cert), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def signature_report(cert: Certificate) -> dict[str, Any]:
    """Recover both signatures over ``content_hash`` and compare with the stored signers."""
    tenant_valid = signature_matches(
        cert.content_hash, cert.tenant_signature, cert.tenant_signature_address
    )
    platform_valid = signature_matches(
        cert.content_hash, cert.platform_signature, cert.platform_signature_address
    )
    return {
        "tenant_signed": cert.tenant_signature is not None,
        "tenant_valid": tenant_valid,
        "tenant_address": cert.tenant_signature_address,
        "tenant_signed_at": as_utc(cert.tenant_signed_at),
        "platform_signed": cert.platform_signature is not None,
        "platform_valid": platform_valid,
        "platform_address": cert.platform_signature_address,
        "platform_signed_at": as_utc(cert.platform_signed_at),
        "dual_signature_verified": tenant_valid and platform_valid,
    }


def _same_wallet(a: str | None, b: str | None) -> bool:
    return bool(a and b and a.lower() == b.lower())


async def sign_as_platform(cert: Certificate, chain: ChainClient) -> bool:
    """Attach the platform signature over the content hash; False if it was already there.

    Raises ``ChainError`` when no platform signer is configured.
    """
    if cert.platform_signature is not None:
        return False
    signed = await chain.sign_message(cert.content_hash)
    if _same_wallet(signed.address, cert.tenant_signature_address):
        raise ValidationError("Tenant and platform signatures must come from different wallets")
    cert.platform_signature = signed.signature
    cert.platform_signature_address = signed.address
    cert.platform_signed_at = utcnow()
    cert.dual_signature_verified = signature_report(cert)["dual_signature_verified"]
    logger.info(
        "certificate.platform_signed",
        certificate_id=str(cert.id),
        address=signed.address,
        dual=cert.dual_signature_verified,
    )
    return True


async def get_certificate_by_code(db: AsyncSession, verification_code: str) -> Certificate:
    cert = await db.scalar(
        select(Certificate).where(Certificate.verification_code == verification_code)
    )
    if cert is None:
        raise NotFoundError("Certificate not found")
    return cert


async def verify_certificate(db: AsyncSession, verification_code: str) -> dict[str, Any]:
    """
    Public verification by code; needs no tenant context.

    ``valid`` means the certificate exists, is active and its stored hash
    still matches its content.
    """
    cert = await get_certificate_by_code(db, verification_code)
    asset = await db.get(TokenizedAsset, cert.tokenized_asset_id)
    hash_matches = secrets.compare_digest(certificate_fingerprint(cert), cert.content_hash)
    if not hash_matches:
        logger.error(
            "certificate.hash_mismatch",
            certificate_id=str(cert.id),
            certificate_number=cert.certificate_number,
        )
    return {
        "valid": hash_matches and cert.status == CertificateStatus.ACTIVE,
        "status": cert.status,
        "hash_matches": hash_matches,
        "certificate": {
            "certificate_number": cert.certificate_number,
            "title": cert.title,
            "beneficiary_name": cert.beneficiary_name,
            "token_amount": cert.token_amount,
            "token_value_at_issue": cert.token_value_at_issue,
            "total_value_at_issue": cert.total_value_at_issue,
            "currency": cert.currency,
            "token_name": asset.token_name if asset else "",
            "token_symbol": asset.token_symbol if asset else "",
            "issued_at": as_utc(cert.issued_at),
            "status": cert.status,
        },
        "blockchain": {
            "certified": cert.is_blockchain_certified,
            "network": cert.blockchain_network,
            "tx_hash": cert.blockchain_tx_hash,
            "explorer_url": cert.blockchain_explorer_url,
            "certified_at": as_utc(cert.blockchain_certified_at),
        },
        "signatures": signature_report(cert),
    }


class CertificateService:
    def __init__(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        renderer: CertificateRenderer | None = None,
    ) -> None:
        self.db = db
        self.tenant_id = tenant_id
        self.renderer = renderer or HtmlCertificateRenderer()

    async def _next_number(self, year: int) -> str:
        prefix = f"CERT-{year}-"
        issued = await self.db.scalar(
            select(func.count(Certificate.id)).where(
                Certificate.tenant_id == self.tenant_id,
                Certificate.certificate_number.like(f"{prefix}%"),
            )
        )
        return f"{prefix}{(issued or 0) + 1:06d}-{secrets.token_hex(2).upper()}"

    async def issue(
        self,
        order: Order,
        asset: TokenizedAsset,
        transaction_id: uuid.UUID | None,
        beneficiary: BeneficiaryInfo | None = None,
        *,
        token_amount: int | None = None,
    ) -> Certificate:
        """
        Write the ownership certificate for a completed order.

        ``token_amount`` defaults to the order amount; a sell completion passes
        the client's remaining balance instead.  Values are frozen at the
        order's price, not the asset's current price.
        """
        amount = order.token_amount if token_amount is None else token_amount
        if amount <= 0:
            raise ValidationError("Certificate amount must be positive", {"token_amount": amount})

        beneficiary = beneficiary or BeneficiaryInfo()
        issued_at = utcnow()
        cert = Certificate(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            tokenized_asset_id=asset.id,
            client_id=order.client_id,
            order_id=order.id,
            transaction_id=transaction_id,
            certificate_number=await self._next_number(issued_at.year),
            certificate_type=CertificateType.OWNERSHIP,
            title=f"Ownership Certificate - {asset.token_name} ({asset.token_symbol})",
            beneficiary_name=beneficiary.name,
            beneficiary_document_type=beneficiary.document_type,
            beneficiary_document_number=beneficiary.document_number,
            endorser_name=settings.CERTIFICATE_ENDORSER_NAME,
            token_amount=amount,
            token_value_at_issue=Decimal(order.price_per_token),
            total_value_at_issue=Decimal(order.price_per_token) * amount,
            currency=order.currency,
            verification_code=secrets.token_hex(32),
            content_hash="",
            issued_at=issued_at,
            status=CertificateStatus.ACTIVE,
        )
        cert.content_hash = certificate_fingerprint(cert)
        self.db.add(cert)
        await self.db.flush()
        logger.info(
            "certificate.issued",
            certificate_id=str(cert.id),
            certificate_number=cert.certificate_number,
            order_id=str(order.id),
            token_amount=amount,
        )
        return cert

    async def get(self, certificate_id: uuid.UUID, *, lock: bool = False) -> Certificate:
        stmt = select(Certificate).where(
            Certificate.id == certificate_id,
            Certificate.tenant_id == self.tenant_id,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        cert = await self.db.scalar(stmt)
        if cert is None:
            raise NotFoundError("Certificate not found", {"certificate_id": str(certificate_id)})
        return cert

    async def list_certificates(
        self,
        status: CertificateStatus | None = None,
        client_id: uuid.UUID | None = None,
        tokenized_asset_id: uuid.UUID | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Certificate]:
        stmt = (
            select(Certificate)
            .where(Certificate.tenant_id == self.tenant_id)
            .order_by(Certificate.issued_at.desc())
            .offset(skip)
            .limit(limit)
        )
        if status is not None:
            stmt = stmt.where(Certificate.status == status)
        if client_id is not None:
            stmt = stmt.where(Certificate.client_id == client_id)
        if tokenized_asset_id is not None:
            stmt = stmt.where(Certificate.tokenized_asset_id == tokenized_asset_id)
        return list((await self.db.execute(stmt)).scalars().all())

    async def client_certificates(
        self, client_id: uuid.UUID, include_inactive: bool = False
    ) -> list[Certificate]:
        return await self.list_certificates(
            status=None if include_inactive else CertificateStatus.ACTIVE,
            client_id=client_id,
            limit=500,
        )

    async def revoke(
        self, certificate_id: uuid.UUID, reason: str, revoked_by: uuid.UUID
    ) -> Certificate:
        if not reason or not reason.strip():
            raise ValidationError("A revocation reason is required")
        cert = await self.get(certificate_id, lock=True)
        ensure_transition("Certificate", CERTIFICATE_TRANSITIONS, cert.status, CertificateStatus.REVOKED)
        cert.status = CertificateStatus.REVOKED
        cert.revoked_reason = reason.strip()
        cert.revoked_at = utcnow()
        cert.revoked_by = revoked_by
        await self.db.flush()
        logger.info(
            "certificate.revoked",
            certificate_id=str(certificate_id),
            revoked_by=str(revoked_by),
        )
        return cert

    async def attach_tenant_signature(
        self,
        certificate_id: uuid.UUID,
        signature: str,
        address: str,
        signed_by: uuid.UUID,
    ) -> Certificate:
        """Store the tenant wallet's signature once it recovers to ``address``.

        The tenant signs ``content_hash`` with its own wallet; no tenant key
        ever reaches this service.
        """
        cert = await self.get(certificate_id, lock=True)
        if cert.status != CertificateStatus.ACTIVE:
            raise ValidationError(
                f"Only active certificates can be signed (status is {cert.status.value})"
            )
        if cert.tenant_signature is not None:
            raise ValidationError("Certificate already carries a tenant signature")
        signer = recover_signer(cert.content_hash, signature)
        if signer is None or signer.lower() != address.lower():
            raise ValidationError(
                "Signature does not match the certificate hash and signer address",
                {"address": address, "recovered": signer},
            )
        if _same_wallet(signer, cert.platform_signature_address):
            raise ValidationError("Tenant and platform signatures must come from different wallets")

        cert.tenant_signature = signature
        cert.tenant_signature_address = signer
        cert.tenant_signed_at = utcnow()
        cert.tenant_signed_by = signed_by
        cert.dual_signature_verified = signature_report(cert)["dual_signature_verified"]
        await self.db.flush()
        logger.info(
            "certificate.tenant_signed",
            certificate_id=str(certificate_id),
            address=signer,
            dual=cert.dual_signature_verified,
        )
        return cert

    async def apply_platform_signature(
        self, certificate_id: uuid.UUID, chain: ChainClient
    ) -> Certificate:
        cert = await self.get(certificate_id, lock=True)
        if cert.status != CertificateStatus.ACTIVE:
            raise ValidationError(
                f"Only active certificates can be signed (status is {cert.status.value})"
            )
        try:
            await sign_as_platform(cert, chain)
        except ChainError as exc:
            raise AnchorError(str(exc), {"certificate_id": str(certificate_id)}) from exc
        await self.db.flush()
        return cert

    async def signatures(self, certificate_id: uuid.UUID) -> dict[str, Any]:
        return signature_report(await self.get(certificate_id))

    async def supersede_active(
        self,
        client_id: uuid.UUID,
        tokenized_asset_id: uuid.UUID,
        *,
        superseded_by: uuid.UUID | None = None,
        except_id: uuid.UUID | None = None,
    ) -> int:
        """Mark the client's active certificates for one asset as superseded."""
        stmt = (
            update(Certificate)
            .where(
                Certificate.tenant_id == self.tenant_id,
                Certificate.client_id == client_id,
                Certificate.tokenized_asset_id == tokenized_asset_id,
                Certificate.status == CertificateStatus.ACTIVE,
            )
            .values(
                status=CertificateStatus.SUPERSEDED,
                superseded_by=superseded_by,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session="fetch")
        )
        if except_id is not None:
            stmt = stmt.where(Certificate.id != except_id)
        result = await self.db.execute(stmt)
        count = result.rowcount or 0
        if count:
            logger.info(
                "certificate.superseded",
                client_id=str(client_id),
                tokenized_asset_id=str(tokenized_asset_id),
                count=count,
            )
        return count

    async def set_superseded_by(
        self, client_id: uuid.UUID, tokenized_asset_id: uuid.UUID, new_certificate_id: uuid.UUID
    ) -> None:
        """Point certificates superseded without a successor at the new one."""
        await self.db.execute(
            update(Certificate)
            .where(
                Certificate.tenant_id == self.tenant_id,
                Certificate.client_id == client_id,
                Certificate.tokenized_asset_id == tokenized_asset_id,
                Certificate.status == CertificateStatus.SUPERSEDED,
                Certificate.superseded_by.is_(None),
            )
            .values(superseded_by=new_certificate_id)
            .execution_options(synchronize_session="fetch")
        )

    def build_document(self, cert: Certificate, asset: TokenizedAsset) -> dict[str, Any]:
        blockchain = None
        if cert.is_blockchain_certified:
            blockchain = {
                "network": cert.blockchain_network,
                "tx_hash": cert.blockchain_tx_hash,
                "explorer_url": cert.blockchain_explorer_url,
            }
        return {
            "title": cert.title,
            "certificate_number": cert.certificate_number,
            "issued_on": as_utc(cert.issued_at).strftime("%Y-%m-%d"),
            "status": cert.status.value,
            "endorser_name": cert.endorser_name,
            "beneficiary": {
                "name": cert.beneficiary_name,
                "document_type": cert.beneficiary_document_type,
                "document_number": cert.beneficiary_document_number,
            },
            "asset": {
                "token_name": asset.token_name,
                "token_symbol": asset.token_symbol,
                "asset_type_label": ASSET_TYPE_LABELS.get(asset.asset_type.value, "Asset"),
            },
            "tokens": {
                "amount": cert.token_amount,
                "value_per_token": cert.token_value_at_issue,
                "total_value": cert.total_value_at_issue,
                "currency": cert.currency,
            },
            "verification_code": cert.verification_code,
            "content_hash": cert.content_hash,
            "blockchain": blockchain,
            "signatures": {
                "tenant_address": cert.tenant_signature_address,
                "platform_address": cert.platform_signature_address,
                "dual": cert.dual_signature_verified,
            },
        }

    async def render(self, certificate_id: uuid.UUID) -> tuple[bytes, str, str]:
        """Return (body, content_type, filename)."""
        cert = await self.get(certificate_id)
        asset = await self.db.get(TokenizedAsset, cert.tokenized_asset_id)
        body = self.renderer.render(self.build_document(cert, asset))
        filename = f"{cert.certificate_number}.{self.renderer.file_extension}"
        return body, self.renderer.content_type, filename
