"""Tokenization API router: tokenized assets, lifecycle, ledger operations, stats."""

import uuid

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.auth.dependencies import get_actor, require_permission
from tokenledger.core.database import get_db
from tokenledger.models.enums import ApprovalOperation, AssetStatus
from tokenledger.modules.approvals.schemas import ApprovalRequestResponse
from tokenledger.modules.approvals.service import ApprovalService
from tokenledger.modules.ledger.schemas import (
    AvailableTokensResponse,
    ClientHoldingResponse,
    LedgerOperationRequest,
    PriceUpdateRequest,
    SupplyAuditResponse,
    TokenHolderResponse,
    TokenizationStatsResponse,
    TokenizedAssetResponse,
    TokenizeRequest,
    TokenTransactionResponse,
)
from tokenledger.modules.ledger.service import LedgerService
from tokenledger.schemas.auth import Actor, CurrentUser
from tokenledger.schemas.common import ApiResponse
from tokenledger.services.rate_limiter import (
    enforce_operation_limit,
    rate_limiter,
    register_operation,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/tokenization", tags=["tokenization"])


def _svc(db: AsyncSession, current_user: CurrentUser) -> LedgerService:
    return LedgerService(db, current_user.tenant_id)


def _asset(asset) -> TokenizedAssetResponse:
    return TokenizedAssetResponse.model_validate(asset)


# ── Assets ──────────────────────────────────────────────────────────────────


@router.get("/assets", response_model=ApiResponse[list[TokenizedAssetResponse]])
async def list_assets(
    asset_status: AssetStatus | None = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: CurrentUser = Depends(require_permission("view", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    assets = await _svc(db, current_user).list_assets(asset_status, skip, limit)
    return ApiResponse(data=[_asset(a) for a in assets])


@router.post(
    "/assets",
    response_model=ApiResponse[TokenizedAssetResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(enforce_operation_limit("tokenize"))],
)
async def tokenize_asset(
    body: TokenizeRequest,
    current_user: CurrentUser = Depends(require_permission("create", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    """Tokenize an asset, asset unit or trust. The asset starts in draft."""
    asset = await _svc(db, current_user).tokenize(
        asset_type=body.asset_type,
        source_id=body.source_id,
        total_supply=body.total_supply,
        token_price=body.token_price,
        token_name=body.token_name,
        token_symbol=body.token_symbol,
        currency=body.currency,
        description=body.description,
        created_by=current_user.user_id,
    )
    await db.commit()
    response = ApiResponse(data=_asset(asset), message="Asset tokenized")
    await register_operation(
        db, current_user, "tokenize", {"tokenized_asset_id": str(asset.id), "total_supply": asset.total_supply}
    )
    return response


@router.get("/assets/{asset_id}", response_model=ApiResponse[TokenizedAssetResponse])
async def get_asset(
    asset_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    return ApiResponse(data=_asset(await _svc(db, current_user).get_asset(asset_id)))


@router.get("/assets/{asset_id}/holders", response_model=ApiResponse[list[TokenHolderResponse]])
async def list_holders(
    asset_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    holders = await _svc(db, current_user).list_holders(asset_id)
    return ApiResponse(data=[TokenHolderResponse.model_validate(h) for h in holders])


@router.get(
    "/assets/{asset_id}/transactions",
    response_model=ApiResponse[list[TokenTransactionResponse]],
)
async def list_transactions(
    asset_id: uuid.UUID,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: CurrentUser = Depends(require_permission("view", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    txs = await _svc(db, current_user).list_transactions(asset_id, skip, limit)
    return ApiResponse(data=[TokenTransactionResponse.model_validate(t) for t in txs])


@router.get("/assets/{asset_id}/supply-audit", response_model=ApiResponse[SupplyAuditResponse])
async def supply_audit(
    asset_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    """Check the supply equation and replay the transaction log against holder balances."""
    return ApiResponse(data=SupplyAuditResponse(**await _svc(db, current_user).verify_supply(asset_id)))


# ── Lifecycle ───────────────────────────────────────────────────────────────


async def _lifecycle(action: str, asset_id: uuid.UUID, current_user: CurrentUser, db: AsyncSession):
    svc = _svc(db, current_user)
    asset = await getattr(svc, action)(asset_id)
    await db.commit()
    return ApiResponse(data=_asset(asset), message=f"Asset {asset.status.value}")


@router.post("/assets/{asset_id}/activate", response_model=ApiResponse[TokenizedAssetResponse])
async def activate_asset(
    asset_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("edit", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    return await _lifecycle("activate", asset_id, current_user, db)


@router.post("/assets/{asset_id}/pause", response_model=ApiResponse[TokenizedAssetResponse])
async def pause_asset(
    asset_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("edit", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    return await _lifecycle("pause", asset_id, current_user, db)


@router.post("/assets/{asset_id}/resume", response_model=ApiResponse[TokenizedAssetResponse])
async def resume_asset(
    asset_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("edit", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    return await _lifecycle("resume", asset_id, current_user, db)


@router.post("/assets/{asset_id}/close", response_model=ApiResponse[TokenizedAssetResponse])
async def close_asset(
    asset_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("edit", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    return await _lifecycle("close", asset_id, current_user, db)


@router.patch("/assets/{asset_id}/price", response_model=ApiResponse[TokenizedAssetResponse])
async def update_price(
    asset_id: uuid.UUID,
    body: PriceUpdateRequest,
    current_user: CurrentUser = Depends(require_permission("edit", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    asset = await _svc(db, current_user).update_price(asset_id, body.token_price)
    await db.commit()
    return ApiResponse(data=_asset(asset), message="Price updated")


# ── Ledger operations (dual approval) ──────────────────────────────────────


async def _request_operation(
    operation: ApprovalOperation,
    asset_id: uuid.UUID,
    body: LedgerOperationRequest,
    current_user: CurrentUser,
    actor: Actor,
    db: AsyncSession,
):
    req = await ApprovalService(db, current_user.tenant_id).request(
        operation,
        asset_id,
        body.model_dump(mode="json"),
        actor,
    )
    await db.commit()
    response = ApiResponse(
        data=ApprovalRequestResponse.model_validate(req),
        message=f"{operation.value.capitalize()} request created and pending approval",
    )
    await register_operation(
        db,
        current_user,
        operation.value,
        {"tokenized_asset_id": str(asset_id), "approval_request_id": str(req.id), "amount": body.amount},
    )
    return response


@router.post(
    "/assets/{asset_id}/mint",
    response_model=ApiResponse[ApprovalRequestResponse],
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(enforce_operation_limit("mint"))],
)
async def request_mint(
    asset_id: uuid.UUID,
    body: LedgerOperationRequest,
    current_user: CurrentUser = Depends(require_permission("request", "ledger_operation")),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await _request_operation(ApprovalOperation.MINT, asset_id, body, current_user, actor, db)


@router.post(
    "/assets/{asset_id}/burn",
    response_model=ApiResponse[ApprovalRequestResponse],
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(enforce_operation_limit("burn"))],
)
async def request_burn(
    asset_id: uuid.UUID,
    body: LedgerOperationRequest,
    current_user: CurrentUser = Depends(require_permission("request", "ledger_operation")),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await _request_operation(ApprovalOperation.BURN, asset_id, body, current_user, actor, db)


@router.post(
    "/assets/{asset_id}/transfer",
    response_model=ApiResponse[ApprovalRequestResponse],
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(enforce_operation_limit("transfer"))],
)
async def request_transfer(
    asset_id: uuid.UUID,
    body: LedgerOperationRequest,
    current_user: CurrentUser = Depends(require_permission("request", "ledger_operation")),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await _request_operation(ApprovalOperation.TRANSFER, asset_id, body, current_user, actor, db)


# ── Listings & stats ────────────────────────────────────────────────────────


@router.get("/available-tokens", response_model=ApiResponse[list[AvailableTokensResponse]])
async def available_tokens(
    current_user: CurrentUser = Depends(require_permission("view", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    assets = await _svc(db, current_user).available_tokens()
    return ApiResponse(
        data=[
            AvailableTokensResponse(
                tokenized_asset_id=a.id,
                token_name=a.token_name,
                token_symbol=a.token_symbol,
                asset_type=a.asset_type,
                total_supply=a.total_supply,
                available=a.fideitec_balance,
                token_price=a.token_price,
                currency=a.currency,
            )
            for a in assets
        ]
    )


@router.get("/stats", response_model=ApiResponse[TokenizationStatsResponse])
async def tokenization_stats(
    current_user: CurrentUser = Depends(require_permission("view", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    return ApiResponse(data=TokenizationStatsResponse(**await _svc(db, current_user).stats()))


@router.get("/clients/{client_id}/tokens", response_model=ApiResponse[list[ClientHoldingResponse]])
async def client_tokens(
    client_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    holdings = await _svc(db, current_user).client_holdings(client_id)
    return ApiResponse(
        data=[
            ClientHoldingResponse(
                tokenized_asset_id=asset.id,
                token_name=asset.token_name,
                token_symbol=asset.token_symbol,
                balance=holder.balance,
                token_price=asset.token_price,
                current_value=asset.token_price * holder.balance,
                currency=asset.currency,
                asset_status=asset.status,
            )
            for holder, asset in holdings
        ]
    )


@router.get("/operation-limit", response_model=ApiResponse[dict])
async def operation_limit(
    current_user: CurrentUser = Depends(require_permission("view", "tokenized_asset")),
    db: AsyncSession = Depends(get_db),
):
    """How many rate-limited operations the caller has left in the current window."""
    stats = await rate_limiter.operation_stats(db, current_user.tenant_id, current_user.user_id)
    return ApiResponse(data=stats)
