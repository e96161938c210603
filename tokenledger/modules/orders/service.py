"""Order settlement engine: buy/sell state machine.

Completion is the only step with ledger effects: the token movement, the
certificate and the order's status change commit together or not at all.
The order row carries a version counter, so of two sessions completing the
same order only one can flush; the other is retried, re-reads the order as
completed and returns the idempotent result.
"""

from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass
from decimal import Decimal
from math import ceil

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.concurrency import retry_on_conflict
from tokenledger.core.exceptions import (
    InsufficientBalance,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from tokenledger.models.base import utcnow
from tokenledger.models.certificates import Certificate
from tokenledger.models.enums import (
    ORDER_TRANSITIONS,
    AssetStatus,
    OrderStatus,
    OrderType,
    PaymentMethod,
    TransactionType,
    ensure_transition,
)
from tokenledger.models.ledger import TokenizedAsset
from tokenledger.models.orders import Order
from tokenledger.modules.certificates.schemas import BeneficiaryInfo
from tokenledger.modules.certificates.service import CertificateService
from tokenledger.modules.ledger.service import HolderRef, LedgerService

logger = structlog.get_logger()

ZERO = Decimal("0")


@dataclass
class CompletionResult:
    order: Order
    certificate: Certificate | None
    transaction_id: uuid.UUID | None
    already_completed: bool = False


def generate_order_number(order_type: OrderType) -> str:
    return f"{order_type.value.upper()}-{utcnow():%Y%m%d}-{secrets.token_hex(3).upper()}"


class OrderService:
    def __init__(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        ledger: LedgerService | None = None,
        certificates: CertificateService | None = None,
    ) -> None:
        self.db = db
        self.tenant_id = tenant_id
        self.ledger = ledger or LedgerService(db, tenant_id)
        self.certificates = certificates or CertificateService(db, tenant_id)

    # ── Loading ────────────────────────────────────────────────────────────────

    async def get_order(self, order_id: uuid.UUID, *, lock: bool = False) -> Order:
        stmt = select(Order).where(Order.id == order_id, Order.tenant_id == self.tenant_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        order = await self.db.scalar(stmt)
        if order is None:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})
        return order

    async def _move(self, order_id: uuid.UUID, target: OrderStatus) -> Order:
        order = await self.get_order(order_id, lock=True)
        ensure_transition("Order", ORDER_TRANSITIONS, order.status, target)
        order.status = target
        return order

    # ── Creation ───────────────────────────────────────────────────────────────

    async def _open_asset(self, asset_id: uuid.UUID) -> TokenizedAsset:
        asset = await self.ledger.get_asset(asset_id)
        if asset.status != AssetStatus.ACTIVE:
            raise ValidationError(
                f"Tokenized asset is {asset.status.value}; orders require an active asset",
                {"tokenized_asset_id": str(asset_id), "status": asset.status.value},
            )
        return asset

    @staticmethod
    def _check_amount(token_amount: int) -> None:
        if isinstance(token_amount, bool) or not isinstance(token_amount, int) or token_amount <= 0:
            raise ValidationError("token_amount must be a positive integer")

    async def create_buy(
        self,
        asset_id: uuid.UUID,
        client_id: uuid.UUID,
        token_amount: int,
        payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
        notes: str | None = None,
        created_by: uuid.UUID | None = None,
    ) -> Order:
        """Open a buy order at the asset's current price. No tokens are reserved."""
        self._check_amount(token_amount)
        asset = await self._open_asset(asset_id)
        if asset.fideitec_balance < token_amount:
            raise InsufficientBalance(asset.fideitec_balance, token_amount)

        price = Decimal(asset.token_price)
        subtotal = price * token_amount
        fees = ZERO
        order = Order(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            order_number=generate_order_number(OrderType.BUY),
            order_type=OrderType.BUY,
            tokenized_asset_id=asset.id,
            client_id=client_id,
            token_amount=token_amount,
            price_per_token=price,
            subtotal=subtotal,
            fees=fees,
            total_amount=subtotal + fees,
            currency=asset.currency,
            status=OrderStatus.PENDING,
            payment_method=payment_method,
            notes=notes,
            created_by=created_by,
        )
        self.db.add(order)
        await self.db.flush()
        logger.info(
            "order.created",
            order_id=str(order.id),
            order_number=order.order_number,
            order_type="buy",
            token_amount=token_amount,
        )
        return order

    async def create_sell(
        self,
        asset_id: uuid.UUID,
        client_id: uuid.UUID,
        token_amount: int,
        *,
        bank_name: str | None = None,
        bank_account_type: str | None = None,
        bank_account_number: str | None = None,
        bank_account_holder: str | None = None,
        notes: str | None = None,
        created_by: uuid.UUID | None = None,
    ) -> Order:
        """Open a sell-back order. The holding is checked again at completion."""
        self._check_amount(token_amount)
        asset = await self._open_asset(asset_id)
        held = await self.ledger.get_holder_balance(asset.id, HolderRef.client(client_id))
        if held < token_amount:
            raise InsufficientBalance(held, token_amount)

        price = Decimal(asset.token_price)
        subtotal = price * token_amount
        fees = ZERO
        order = Order(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            order_number=generate_order_number(OrderType.SELL),
            order_type=OrderType.SELL,
            tokenized_asset_id=asset.id,
            client_id=client_id,
            token_amount=token_amount,
            price_per_token=price,
            subtotal=subtotal,
            fees=fees,
            total_amount=subtotal - fees,
            currency=asset.currency,
            status=OrderStatus.PENDING,
            bank_name=bank_name,
            bank_account_type=bank_account_type,
            bank_account_number=bank_account_number,
            bank_account_holder=bank_account_holder,
            notes=notes,
            created_by=created_by,
        )
        self.db.add(order)
        await self.db.flush()
        logger.info(
            "order.created",
            order_id=str(order.id),
            order_number=order.order_number,
            order_type="sell",
            token_amount=token_amount,
        )
        return order

    # ── Payment ────────────────────────────────────────────────────────────────

    async def request_payment(self, order_id: uuid.UUID) -> Order:
        order = await self._move(order_id, OrderStatus.PAYMENT_PENDING)
        await self.db.flush()
        logger.info("order.payment_requested", order_id=str(order_id))
        return order

    async def confirm_payment(
        self,
        order_id: uuid.UUID,
        payment_reference: str | None = None,
        payment_method: PaymentMethod | None = None,
        processed_by: uuid.UUID | None = None,
    ) -> Order:
        order = await self._move(order_id, OrderStatus.PAYMENT_RECEIVED)
        order.payment_reference = payment_reference
        if payment_method is not None:
            order.payment_method = payment_method
        order.payment_confirmed_at = utcnow()
        order.processed_by = processed_by
        await self.db.flush()
        logger.info("order.payment_confirmed", order_id=str(order_id), reference=payment_reference)
        return order

    async def start_processing(
        self, order_id: uuid.UUID, processed_by: uuid.UUID | None = None
    ) -> Order:
        order = await self._move(order_id, OrderStatus.PROCESSING)
        order.processing_started_at = utcnow()
        order.processed_by = processed_by or order.processed_by
        await self.db.flush()
        logger.info("order.processing", order_id=str(order_id))
        return order

    # ── Settlement ─────────────────────────────────────────────────────────────

    async def _completed_result(self, order: Order) -> CompletionResult:
        certificate = None
        if order.certificate_id is not None:
            certificate = await self.db.get(Certificate, order.certificate_id)
        return CompletionResult(
            order=order,
            certificate=certificate,
            transaction_id=order.transaction_id,
            already_completed=True,
        )

    @retry_on_conflict
    async def complete(
        self,
        order_id: uuid.UUID,
        processed_by: uuid.UUID | None = None,
        beneficiary: BeneficiaryInfo | None = None,
    ) -> CompletionResult:
        """
        Settle a paid order: move tokens, issue the certificate, mark completed.

        Completing an already completed order is a no-op that returns the
        stored certificate.
        """
        order = await self.get_order(order_id, lock=True)
        if order.status == OrderStatus.COMPLETED:
            logger.info("order.already_completed", order_id=str(order_id))
            return await self._completed_result(order)
        if order.status not in (OrderStatus.PAYMENT_RECEIVED, OrderStatus.PROCESSING):
            raise InvalidStateTransition(
                "Order",
                order.status,
                OrderStatus.COMPLETED,
                message=f"Order {order.order_number} cannot be completed from '{order.status.value}'; payment must be confirmed first",
            )

        asset = await self.ledger.get_asset(order.tokenized_asset_id, lock=True)
        client = HolderRef.client(order.client_id)
        reason = f"Order {order.order_number}"
        certificate: Certificate | None

        if order.order_type == OrderType.BUY:
            tx = await self.ledger.transfer(
                asset.id,
                HolderRef.platform(),
                client,
                order.token_amount,
                reason,
                transaction_type=TransactionType.TRANSFER,
                reference_id=order.id,
                initiated_by=processed_by,
            )
            certificate = await self.certificates.issue(order, asset, tx.id, beneficiary)
        else:
            tx = await self.ledger.transfer(
                asset.id,
                client,
                HolderRef.platform(),
                order.token_amount,
                reason,
                transaction_type=TransactionType.RETURN,
                reference_id=order.id,
                initiated_by=processed_by,
            )
            await self.certificates.supersede_active(order.client_id, asset.id)
            remaining = await self.ledger.get_holder_balance(asset.id, client)
            certificate = None
            if remaining > 0:
                certificate = await self.certificates.issue(
                    order, asset, tx.id, beneficiary, token_amount=remaining
                )
                await self.certificates.set_superseded_by(order.client_id, asset.id, certificate.id)

        order.status = OrderStatus.COMPLETED
        order.completed_at = utcnow()
        order.processed_by = processed_by or order.processed_by
        order.transaction_id = tx.id
        order.certificate_id = certificate.id if certificate else None
        await self.db.flush()
        logger.info(
            "order.completed",
            order_id=str(order_id),
            order_number=order.order_number,
            order_type=order.order_type.value,
            token_amount=order.token_amount,
            certificate_id=str(certificate.id) if certificate else None,
        )
        return CompletionResult(order=order, certificate=certificate, transaction_id=tx.id)

    async def cancel(
        self, order_id: uuid.UUID, reason: str | None = None, cancelled_by: uuid.UUID | None = None
    ) -> Order:
        order = await self.get_order(order_id, lock=True)
        if order.status not in (OrderStatus.PENDING, OrderStatus.PAYMENT_PENDING):
            raise InvalidStateTransition(
                "Order",
                order.status,
                OrderStatus.CANCELLED,
                message=f"Order {order.order_number} can only be cancelled before payment is confirmed",
            )
        order.status = OrderStatus.CANCELLED
        order.cancellation_reason = reason
        order.cancelled_at = utcnow()
        order.processed_by = cancelled_by or order.processed_by
        await self.db.flush()
        logger.info("order.cancelled", order_id=str(order_id), reason=reason)
        return order

    async def refund(
        self, order_id: uuid.UUID, reason: str | None = None, refunded_by: uuid.UUID | None = None
    ) -> Order:
        """Operator override for a paid order that will not settle. No ledger effect."""
        order = await self._move(order_id, OrderStatus.REFUNDED)
        order.cancellation_reason = reason
        order.refunded_at = utcnow()
        order.processed_by = refunded_by or order.processed_by
        await self.db.flush()
        logger.info("order.refunded", order_id=str(order_id), reason=reason)
        return order

    @retry_on_conflict
    async def instant_buy(
        self,
        asset_id: uuid.UUID,
        client_id: uuid.UUID,
        token_amount: int,
        payment_reference: str | None = None,
        payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
        beneficiary: BeneficiaryInfo | None = None,
        created_by: uuid.UUID | None = None,
    ) -> CompletionResult:
        """Create, confirm and complete a buy order in one transaction."""
        order = await self.create_buy(
            asset_id, client_id, token_amount, payment_method, created_by=created_by
        )
        await self.confirm_payment(
            order.id,
            payment_reference or f"INSTANT-{order.order_number}",
            processed_by=created_by,
        )
        return await self.complete(order.id, processed_by=created_by, beneficiary=beneficiary)

    # ── Reads ──────────────────────────────────────────────────────────────────

    async def list_orders(
        self,
        status: OrderStatus | None = None,
        order_type: OrderType | None = None,
        client_id: uuid.UUID | None = None,
        tokenized_asset_id: uuid.UUID | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Order], int]:
        filters = [Order.tenant_id == self.tenant_id]
        if status is not None:
            filters.append(Order.status == status)
        if order_type is not None:
            filters.append(Order.order_type == order_type)
        if client_id is not None:
            filters.append(Order.client_id == client_id)
        if tokenized_asset_id is not None:
            filters.append(Order.tokenized_asset_id == tokenized_asset_id)

        total = await self.db.scalar(select(func.count(Order.id)).where(*filters))
        stmt = (
            select(Order)
            .where(*filters)
            .order_by(Order.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        items = list((await self.db.execute(stmt)).scalars().all())
        return items, int(total or 0)

    async def client_orders(self, client_id: uuid.UUID) -> list[Order]:
        items, _ = await self.list_orders(client_id=client_id, page_size=500)
        return items

    async def stats(self) -> dict:
        completed = Order.status == OrderStatus.COMPLETED

        def _count(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        row = (
            await self.db.execute(
                select(
                    _count(Order.status == OrderStatus.PENDING),
                    _count(Order.status == OrderStatus.PAYMENT_RECEIVED),
                    _count(completed),
                    _count(completed & (Order.order_type == OrderType.BUY)),
                    _count(completed & (Order.order_type == OrderType.SELL)),
                ).where(Order.tenant_id == self.tenant_id)
            )
        ).one()
        volumes = (
            await self.db.execute(
                select(Order.order_type, Order.total_amount).where(
                    Order.tenant_id == self.tenant_id, completed
                )
            )
        ).all()
        buy_volume = sum((Decimal(t) for ot, t in volumes if ot == OrderType.BUY), ZERO)
        sell_volume = sum((Decimal(t) for ot, t in volumes if ot == OrderType.SELL), ZERO)
        return {
            "pending_orders": int(row[0]),
            "pending_processing": int(row[1]),
            "completed_orders": int(row[2]),
            "total_buys": int(row[3]),
            "total_sells": int(row[4]),
            "total_buy_volume": buy_volume,
            "total_sell_volume": sell_volume,
        }


def total_pages(total: int, page_size: int) -> int:
    return ceil(total / page_size) if page_size else 0
