"""Certificate API router, plus the unauthenticated public verification route."""

import uuid

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.auth.dependencies import require_permission
from tokenledger.core.chain import ChainClient, get_chain_client
from tokenledger.core.database import get_db
from tokenledger.models.enums import CertificateStatus
from tokenledger.modules.certificates.schemas import (
    CertificateResponse,
    RevokeCertificateRequest,
    SignatureReport,
    TenantSignatureRequest,
    VerificationResponse,
)
from tokenledger.modules.certificates.service import CertificateService, verify_certificate
from tokenledger.schemas.auth import CurrentUser
from tokenledger.schemas.common import ApiResponse

router = APIRouter(prefix="/tokenization", tags=["certificates"])
public_router = APIRouter(prefix="/verify", tags=["verification"])


def _svc(db: AsyncSession, current_user: CurrentUser) -> CertificateService:
    return CertificateService(db, current_user.tenant_id)


@router.get("/certificates", response_model=ApiResponse[list[CertificateResponse]])
async def list_certificates(
    cert_status: CertificateStatus | None = Query(None, alias="status"),
    client_id: uuid.UUID | None = Query(None, alias="clientId"),
    tokenized_asset_id: uuid.UUID | None = Query(None, alias="tokenizedAssetId"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: CurrentUser = Depends(require_permission("view", "certificate")),
    db: AsyncSession = Depends(get_db),
):
    certs = await _svc(db, current_user).list_certificates(
        status=cert_status,
        client_id=client_id,
        tokenized_asset_id=tokenized_asset_id,
        skip=skip,
        limit=limit,
    )
    return ApiResponse(data=[CertificateResponse.model_validate(c) for c in certs])


@router.get("/certificates/{certificate_id}", response_model=ApiResponse[CertificateResponse])
async def get_certificate(
    certificate_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "certificate")),
    db: AsyncSession = Depends(get_db),
):
    cert = await _svc(db, current_user).get(certificate_id)
    return ApiResponse(data=CertificateResponse.model_validate(cert))


@router.get("/certificates/{certificate_id}/render")
async def render_certificate(
    certificate_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "certificate")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    body, content_type, filename = await _svc(db, current_user).render(certificate_id)
    return Response(
        content=body,
        media_type=content_type,
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


@router.post(
    "/certificates/{certificate_id}/revoke", response_model=ApiResponse[CertificateResponse]
)
async def revoke_certificate(
    certificate_id: uuid.UUID,
    body: RevokeCertificateRequest,
    current_user: CurrentUser = Depends(require_permission("revoke", "certificate")),
    db: AsyncSession = Depends(get_db),
):
    cert = await _svc(db, current_user).revoke(certificate_id, body.reason, current_user.user_id)
    await db.commit()
    return ApiResponse(data=CertificateResponse.model_validate(cert), message="Certificate revoked")


@router.get(
    "/certificates/{certificate_id}/signatures", response_model=ApiResponse[SignatureReport]
)
async def certificate_signatures(
    certificate_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "certificate")),
    db: AsyncSession = Depends(get_db),
):
    report = await _svc(db, current_user).signatures(certificate_id)
    return ApiResponse(data=SignatureReport(**report))


@router.post(
    "/certificates/{certificate_id}/tenant-signature",
    response_model=ApiResponse[CertificateResponse],
)
async def sign_certificate_as_tenant(
    certificate_id: uuid.UUID,
    body: TenantSignatureRequest,
    current_user: CurrentUser = Depends(require_permission("sign", "certificate")),
    db: AsyncSession = Depends(get_db),
):
    """Attach a signature the tenant produced with its own wallet over ``content_hash``."""
    cert = await _svc(db, current_user).attach_tenant_signature(
        certificate_id, body.signature, body.address, current_user.user_id
    )
    await db.commit()
    return ApiResponse(
        data=CertificateResponse.model_validate(cert), message="Tenant signature recorded"
    )


@router.post(
    "/certificates/{certificate_id}/platform-signature",
    response_model=ApiResponse[CertificateResponse],
)
async def sign_certificate_as_platform(
    certificate_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("sign", "certificate")),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
):
    cert = await _svc(db, current_user).apply_platform_signature(certificate_id, chain)
    await db.commit()
    return ApiResponse(
        data=CertificateResponse.model_validate(cert), message="Platform signature recorded"
    )


@router.get(
    "/clients/{client_id}/certificates", response_model=ApiResponse[list[CertificateResponse]]
)
async def client_certificates(
    client_id: uuid.UUID,
    include_inactive: bool = Query(False, alias="includeInactive"),
    current_user: CurrentUser = Depends(require_permission("view", "certificate")),
    db: AsyncSession = Depends(get_db),
):
    certs = await _svc(db, current_user).client_certificates(client_id, include_inactive)
    return ApiResponse(data=[CertificateResponse.model_validate(c) for c in certs])


@public_router.get("/{verification_code}", response_model=ApiResponse[VerificationResponse])
async def verify(verification_code: str, db: AsyncSession = Depends(get_db)):
    """Anyone holding the code printed on a certificate can check it here."""
    result = await verify_certificate(db, verification_code)
    return ApiResponse(data=VerificationResponse(**result))
