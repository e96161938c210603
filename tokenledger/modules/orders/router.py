"""Order settlement API router: buy/sell orders, payment, completion, instant buy."""

import uuid

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.auth.dependencies import require_permission
from tokenledger.core.chain import ChainClient, get_chain_client
from tokenledger.core.config import settings
from tokenledger.core.database import get_db
from tokenledger.models.enums import OrderStatus, OrderType
from tokenledger.modules.anchoring.service import AnchorService
from tokenledger.modules.certificates.schemas import CertificateResponse
from tokenledger.modules.orders.schemas import (
    BuyOrderRequest,
    CompleteOrderRequest,
    ConfirmPaymentRequest,
    InstantBuyRequest,
    OrderListResponse,
    OrderResponse,
    OrderStatsResponse,
    ReasonRequest,
    SellOrderRequest,
)
from tokenledger.modules.orders.service import CompletionResult, OrderService, total_pages
from tokenledger.schemas.auth import CurrentUser
from tokenledger.schemas.common import ApiResponse
from tokenledger.services.rate_limiter import enforce_operation_limit, register_operation

logger = structlog.get_logger()

router = APIRouter(prefix="/tokenization", tags=["orders"])


def _svc(db: AsyncSession, current_user: CurrentUser) -> OrderService:
    return OrderService(db, current_user.tenant_id)


def _order(order) -> OrderResponse:
    return OrderResponse.model_validate(order)


def _completion_payload(result: CompletionResult) -> dict:
    return {
        "order": _order(result.order),
        "certificate": (
            CertificateResponse.model_validate(result.certificate) if result.certificate else None
        ),
        "transaction_id": result.transaction_id,
        "already_completed": result.already_completed,
    }


async def _anchor_after_commit(
    db: AsyncSession,
    chain: ChainClient,
    current_user: CurrentUser,
    certificate: CertificateResponse | None,
) -> dict | None:
    """Anchor once settlement is durable; failures become a warning.

    Works from the serialized certificate because a failed anchor rolls the
    session back and expires every loaded instance.
    """
    if certificate is None:
        return None
    if certificate.is_blockchain_certified:
        return {
            "certified": True,
            "already_certified": True,
            "tx_hash": certificate.blockchain_tx_hash,
            "explorer_url": certificate.blockchain_explorer_url,
            "network": certificate.blockchain_network,
        }
    if not chain.enabled:
        return None
    if not settings.ANCHOR_INLINE:
        try:
            from tokenledger.tasks.anchoring import anchor_certificate

            anchor_certificate.delay(str(certificate.id))
        except Exception:
            logger.warning("celery_dispatch_failed", certificate_id=str(certificate.id))
            return {
                "certified": False,
                "queued": False,
                "warning": "Blockchain certification will be retried",
            }
        return {"certified": False, "queued": True}
    anchor = AnchorService(db, chain, current_user.tenant_id)
    return await anchor.anchor_best_effort(certificate.id)


# ── Reads ───────────────────────────────────────────────────────────────────


@router.get("/orders", response_model=ApiResponse[OrderListResponse])
async def list_orders(
    order_status: OrderStatus | None = Query(None, alias="status"),
    order_type: OrderType | None = Query(None, alias="type"),
    client_id: uuid.UUID | None = Query(None, alias="clientId"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: CurrentUser = Depends(require_permission("view", "order")),
    db: AsyncSession = Depends(get_db),
):
    items, total = await _svc(db, current_user).list_orders(
        status=order_status,
        order_type=order_type,
        client_id=client_id,
        page=page,
        page_size=page_size,
    )
    return ApiResponse(
        data=OrderListResponse(
            items=[_order(o) for o in items],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages(total, page_size),
        )
    )


@router.get("/orders/stats", response_model=ApiResponse[OrderStatsResponse])
async def order_stats(
    current_user: CurrentUser = Depends(require_permission("view", "order")),
    db: AsyncSession = Depends(get_db),
):
    return ApiResponse(data=OrderStatsResponse(**await _svc(db, current_user).stats()))


@router.get("/orders/{order_id}", response_model=ApiResponse[OrderResponse])
async def get_order(
    order_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "order")),
    db: AsyncSession = Depends(get_db),
):
    return ApiResponse(data=_order(await _svc(db, current_user).get_order(order_id)))


@router.get("/clients/{client_id}/orders", response_model=ApiResponse[list[OrderResponse]])
async def client_orders(
    client_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "order")),
    db: AsyncSession = Depends(get_db),
):
    orders = await _svc(db, current_user).client_orders(client_id)
    return ApiResponse(data=[_order(o) for o in orders])


# ── Creation ────────────────────────────────────────────────────────────────


@router.post(
    "/orders/buy",
    response_model=ApiResponse[OrderResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(enforce_operation_limit("order_buy"))],
)
async def create_buy_order(
    body: BuyOrderRequest,
    current_user: CurrentUser = Depends(require_permission("create", "order")),
    db: AsyncSession = Depends(get_db),
):
    order = await _svc(db, current_user).create_buy(
        body.tokenized_asset_id,
        body.client_id,
        body.token_amount,
        body.payment_method,
        body.notes,
        created_by=current_user.user_id,
    )
    await db.commit()
    response = ApiResponse(data=_order(order), message=f"Buy order {order.order_number} created")
    await register_operation(
        db, current_user, "order_buy", {"order_id": str(order.id), "token_amount": order.token_amount}
    )
    return response


@router.post(
    "/orders/sell",
    response_model=ApiResponse[OrderResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(enforce_operation_limit("order_sell"))],
)
async def create_sell_order(
    body: SellOrderRequest,
    current_user: CurrentUser = Depends(require_permission("create", "order")),
    db: AsyncSession = Depends(get_db),
):
    order = await _svc(db, current_user).create_sell(
        body.tokenized_asset_id,
        body.client_id,
        body.token_amount,
        bank_name=body.bank_name,
        bank_account_type=body.bank_account_type,
        bank_account_number=body.bank_account_number,
        bank_account_holder=body.bank_account_holder,
        notes=body.notes,
        created_by=current_user.user_id,
    )
    await db.commit()
    response = ApiResponse(data=_order(order), message=f"Sell order {order.order_number} created")
    await register_operation(
        db, current_user, "order_sell", {"order_id": str(order.id), "token_amount": order.token_amount}
    )
    return response


# ── Transitions ─────────────────────────────────────────────────────────────


@router.post("/orders/{order_id}/request-payment", response_model=ApiResponse[OrderResponse])
async def request_payment(
    order_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("process", "order")),
    db: AsyncSession = Depends(get_db),
):
    order = await _svc(db, current_user).request_payment(order_id)
    await db.commit()
    return ApiResponse(data=_order(order), message="Payment requested")


@router.post("/orders/{order_id}/confirm-payment", response_model=ApiResponse[OrderResponse])
async def confirm_payment(
    order_id: uuid.UUID,
    body: ConfirmPaymentRequest,
    current_user: CurrentUser = Depends(require_permission("process", "order")),
    db: AsyncSession = Depends(get_db),
):
    order = await _svc(db, current_user).confirm_payment(
        order_id,
        body.payment_reference,
        body.payment_method,
        processed_by=current_user.user_id,
    )
    await db.commit()
    return ApiResponse(data=_order(order), message="Payment confirmed")


@router.post("/orders/{order_id}/process", response_model=ApiResponse[OrderResponse])
async def start_processing(
    order_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("process", "order")),
    db: AsyncSession = Depends(get_db),
):
    order = await _svc(db, current_user).start_processing(order_id, current_user.user_id)
    await db.commit()
    return ApiResponse(data=_order(order), message="Order processing")


@router.post("/orders/{order_id}/complete", response_model=ApiResponse[dict])
async def complete_order(
    order_id: uuid.UUID,
    body: CompleteOrderRequest | None = None,
    current_user: CurrentUser = Depends(require_permission("process", "order")),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
):
    """Settle a paid order. Repeating the call returns the original result."""
    result = await _svc(db, current_user).complete(
        order_id,
        processed_by=current_user.user_id,
        beneficiary=body.beneficiary if body else None,
    )
    await db.commit()
    data = _completion_payload(result)
    data["blockchain"] = await _anchor_after_commit(db, chain, current_user, data["certificate"])
    message = "Order already completed" if result.already_completed else "Order completed"
    return ApiResponse(data=data, message=message)


@router.post("/orders/{order_id}/cancel", response_model=ApiResponse[OrderResponse])
async def cancel_order(
    order_id: uuid.UUID,
    body: ReasonRequest | None = None,
    current_user: CurrentUser = Depends(require_permission("process", "order")),
    db: AsyncSession = Depends(get_db),
):
    order = await _svc(db, current_user).cancel(
        order_id, body.reason if body else None, current_user.user_id
    )
    await db.commit()
    return ApiResponse(data=_order(order), message="Order cancelled")


@router.post("/orders/{order_id}/refund", response_model=ApiResponse[OrderResponse])
async def refund_order(
    order_id: uuid.UUID,
    body: ReasonRequest | None = None,
    current_user: CurrentUser = Depends(require_permission("process", "order")),
    db: AsyncSession = Depends(get_db),
):
    order = await _svc(db, current_user).refund(
        order_id, body.reason if body else None, current_user.user_id
    )
    await db.commit()
    return ApiResponse(data=_order(order), message="Order refunded")


@router.post(
    "/instant-buy",
    response_model=ApiResponse[dict],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(enforce_operation_limit("instant_buy"))],
)
async def instant_buy(
    body: InstantBuyRequest,
    current_user: CurrentUser = Depends(require_permission("process", "order")),
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
):
    """Create, confirm and settle a buy order in one step (payment taken offline)."""
    result = await _svc(db, current_user).instant_buy(
        body.tokenized_asset_id,
        body.client_id,
        body.token_amount,
        payment_reference=body.payment_reference,
        payment_method=body.payment_method,
        beneficiary=body.beneficiary,
        created_by=current_user.user_id,
    )
    await db.commit()
    data = _completion_payload(result)
    await register_operation(
        db,
        current_user,
        "instant_buy",
        {"order_id": str(result.order.id), "token_amount": result.order.token_amount},
    )
    message = f"Order {data['order'].order_number} completed"
    data["blockchain"] = await _anchor_after_commit(db, chain, current_user, data["certificate"])
    return ApiResponse(data=data, message=message)
