"""Tests for the order settlement engine: buy/sell state machine and completion."""

import re
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from tests.conftest import (
    CLIENT_ID,
    OPERATOR_ID,
    OTHER_CLIENT_ID,
    TENANT_ID,
    paid_order,
    seed_asset,
)
from tokenledger.core.exceptions import InsufficientBalance, InvalidStateTransition, ValidationError
from tokenledger.models.certificates import Certificate
from tokenledger.models.enums import (
    CertificateStatus,
    OrderStatus,
    OrderType,
    PaymentMethod,
    TransactionType,
)
from tokenledger.models.ledger import TokenTransaction
from tokenledger.modules.certificates.schemas import BeneficiaryInfo
from tokenledger.modules.ledger.service import HolderRef, LedgerService
from tokenledger.modules.orders.service import OrderService, generate_order_number, total_pages

pytestmark = pytest.mark.anyio


def _orders(db) -> OrderService:
    return OrderService(db, TENANT_ID)


# ── Creation ────────────────────────────────────────────────────────────────


class TestCreateOrders:
    async def test_buy_freezes_price(self, db, asset):
        order = await _orders(db).create_buy(asset.id, CLIENT_ID, 10)

        assert order.status == OrderStatus.PENDING
        assert order.order_type == OrderType.BUY
        assert order.price_per_token == Decimal("100")
        assert order.subtotal == Decimal("1000")
        assert order.total_amount == Decimal("1000")
        assert order.currency == "USD"

    async def test_order_number_format(self):
        assert re.fullmatch(r"BUY-\d{8}-[0-9A-F]{6}", generate_order_number(OrderType.BUY))
        assert re.fullmatch(r"SELL-\d{8}-[0-9A-F]{6}", generate_order_number(OrderType.SELL))

    async def test_buy_does_not_reserve(self, db, asset):
        orders = _orders(db)
        await orders.create_buy(asset.id, CLIENT_ID, 600)
        await orders.create_buy(asset.id, OTHER_CLIENT_ID, 600)
        refreshed = await LedgerService(db, TENANT_ID).get_asset(asset.id)
        assert refreshed.fideitec_balance == 1000

    async def test_buy_more_than_available(self, db, asset):
        with pytest.raises(InsufficientBalance):
            await _orders(db).create_buy(asset.id, CLIENT_ID, 1001)

    async def test_buy_requires_active_asset(self, db):
        draft = await seed_asset(db, activate=False)
        with pytest.raises(ValidationError, match="active"):
            await _orders(db).create_buy(draft.id, CLIENT_ID, 1)

    async def test_no_new_orders_on_paused_asset(self, db, asset):
        await LedgerService(db, TENANT_ID).pause(asset.id)
        with pytest.raises(ValidationError):
            await _orders(db).create_buy(asset.id, CLIENT_ID, 1)

    @pytest.mark.parametrize("amount", [0, -1, True])
    async def test_amount_must_be_positive_int(self, db, asset, amount):
        with pytest.raises(ValidationError):
            await _orders(db).create_buy(asset.id, CLIENT_ID, amount)

    async def test_sell_requires_holding(self, db, asset):
        with pytest.raises(InsufficientBalance):
            await _orders(db).create_sell(asset.id, CLIENT_ID, 1)


# ── State machine ───────────────────────────────────────────────────────────


class TestPaymentFlow:
    async def test_request_then_confirm_then_process(self, db, asset):
        orders = _orders(db)
        order = await orders.create_buy(asset.id, CLIENT_ID, 5)
        assert (await orders.request_payment(order.id)).status == OrderStatus.PAYMENT_PENDING

        confirmed = await orders.confirm_payment(
            order.id, "WIRE-42", PaymentMethod.CARD, processed_by=OPERATOR_ID
        )
        assert confirmed.status == OrderStatus.PAYMENT_RECEIVED
        assert confirmed.payment_reference == "WIRE-42"
        assert confirmed.payment_method == PaymentMethod.CARD
        assert confirmed.payment_confirmed_at is not None

        processing = await orders.start_processing(order.id)
        assert processing.status == OrderStatus.PROCESSING
        assert processing.processed_by == OPERATOR_ID

    async def test_complete_requires_payment(self, db, asset):
        orders = _orders(db)
        order = await orders.create_buy(asset.id, CLIENT_ID, 5)
        with pytest.raises(InvalidStateTransition):
            await orders.complete(order.id)

    async def test_process_requires_payment(self, db, asset):
        orders = _orders(db)
        order = await orders.create_buy(asset.id, CLIENT_ID, 5)
        with pytest.raises(InvalidStateTransition):
            await orders.start_processing(order.id)

    async def test_cancel_before_payment(self, db, asset):
        orders = _orders(db)
        order = await orders.create_buy(asset.id, CLIENT_ID, 5)
        cancelled = await orders.cancel(order.id, "Client changed mind", OPERATOR_ID)
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.cancellation_reason == "Client changed mind"
        assert cancelled.cancelled_at is not None

    async def test_cannot_cancel_after_payment(self, db, asset):
        order = await paid_order(db, asset.id, CLIENT_ID, 5)
        with pytest.raises(InvalidStateTransition):
            await _orders(db).cancel(order.id, "too late")

    async def test_refund_paid_order(self, db, asset):
        order = await paid_order(db, asset.id, CLIENT_ID, 5)
        refunded = await _orders(db).refund(order.id, "Bank reversal", OPERATOR_ID)
        assert refunded.status == OrderStatus.REFUNDED
        assert refunded.refunded_at is not None
        refreshed = await LedgerService(db, TENANT_ID).get_asset(asset.id)
        assert refreshed.fideitec_balance == 1000

    async def test_cannot_refund_completed(self, db, asset):
        order = await paid_order(db, asset.id, CLIENT_ID, 5)
        orders = _orders(db)
        await orders.complete(order.id)
        with pytest.raises(InvalidStateTransition):
            await orders.refund(order.id, "no")

    async def test_cancelled_order_cannot_complete(self, db, asset):
        orders = _orders(db)
        order = await orders.create_buy(asset.id, CLIENT_ID, 5)
        await orders.cancel(order.id)
        with pytest.raises(InvalidStateTransition):
            await orders.complete(order.id)


# ── Completion ──────────────────────────────────────────────────────────────


class TestCompleteBuy:
    async def test_buy_settles_tokens_and_certificate(self, db, asset):
        order = await paid_order(db, asset.id, CLIENT_ID, 10)
        result = await _orders(db).complete(order.id, processed_by=OPERATOR_ID)
        await db.commit()

        ledger = LedgerService(db, TENANT_ID)
        refreshed = await ledger.get_asset(asset.id)
        assert refreshed.fideitec_balance == 990
        assert refreshed.circulating_supply == 10
        assert await ledger.get_holder_balance(asset.id, HolderRef.client(CLIENT_ID)) == 10

        assert result.already_completed is False
        assert result.order.status == OrderStatus.COMPLETED
        assert result.order.completed_at is not None
        assert result.order.transaction_id == result.transaction_id
        cert = result.certificate
        assert cert is not None
        assert cert.token_amount == 10
        assert cert.total_value_at_issue == Decimal("1000")
        assert cert.status == CertificateStatus.ACTIVE
        assert result.order.certificate_id == cert.id

        tx = await db.get(TokenTransaction, result.transaction_id)
        assert tx.transaction_type == TransactionType.TRANSFER
        assert tx.reference_id == order.id

    async def test_complete_is_idempotent(self, db, asset):
        order = await paid_order(db, asset.id, CLIENT_ID, 10)
        orders = _orders(db)
        first = await orders.complete(order.id)
        await db.commit()
        second = await orders.complete(order.id)

        assert second.already_completed is True
        assert second.certificate.id == first.certificate.id
        assert second.transaction_id == first.transaction_id
        refreshed = await LedgerService(db, TENANT_ID).get_asset(asset.id)
        assert refreshed.fideitec_balance == 990
        certs = await db.scalar(select(func.count(Certificate.id)))
        assert certs == 1

    async def test_complete_from_processing(self, db, asset):
        order = await paid_order(db, asset.id, CLIENT_ID, 3)
        orders = _orders(db)
        await orders.start_processing(order.id)
        result = await orders.complete(order.id)
        assert result.order.status == OrderStatus.COMPLETED

    async def test_completion_uses_frozen_price(self, db, asset):
        order = await paid_order(db, asset.id, CLIENT_ID, 10)
        await LedgerService(db, TENANT_ID).update_price(asset.id, Decimal("150"))
        await db.commit()

        result = await _orders(db).complete(order.id)
        assert result.certificate.token_value_at_issue == Decimal("100")
        assert result.certificate.total_value_at_issue == Decimal("1000")

    async def test_paid_order_completes_on_paused_asset(self, db, asset):
        order = await paid_order(db, asset.id, CLIENT_ID, 10)
        await LedgerService(db, TENANT_ID).pause(asset.id)
        await db.commit()

        result = await _orders(db).complete(order.id)
        assert result.order.status == OrderStatus.COMPLETED

    async def test_closed_asset_blocks_completion(self, db, asset):
        order = await paid_order(db, asset.id, CLIENT_ID, 10)
        await LedgerService(db, TENANT_ID).close(asset.id)
        await db.commit()

        with pytest.raises(InvalidStateTransition):
            await _orders(db).complete(order.id)

    async def test_oversold_completion_fails_cleanly(self, db, asset):
        first = await paid_order(db, asset.id, CLIENT_ID, 600)
        second = await paid_order(db, asset.id, OTHER_CLIENT_ID, 500)
        orders = _orders(db)
        second_id, asset_id = second.id, asset.id
        await orders.complete(first.id)
        await db.commit()

        with pytest.raises(InsufficientBalance):
            await orders.complete(second_id)
        await db.rollback()

        assert (await orders.get_order(second_id)).status == OrderStatus.PAYMENT_RECEIVED
        refreshed = await LedgerService(db, TENANT_ID).get_asset(asset_id)
        assert refreshed.fideitec_balance == 400

    async def test_beneficiary_snapshot(self, db, asset):
        order = await paid_order(db, asset.id, CLIENT_ID, 1)
        beneficiary = BeneficiaryInfo(name="Ana Perez", document_type="DNI", document_number="30111222")
        result = await _orders(db).complete(order.id, beneficiary=beneficiary)
        assert result.certificate.beneficiary_name == "Ana Perez"
        assert result.certificate.beneficiary_document_number == "30111222"


class TestCompleteSell:
    async def _holding(self, db, asset, amount):
        order = await paid_order(db, asset.id, CLIENT_ID, amount)
        result = await _orders(db).complete(order.id)
        await db.commit()
        return result.certificate

    async def test_partial_sell_reissues_remaining(self, db, asset):
        original = await self._holding(db, asset, 10)
        sell = await paid_order(db, asset.id, CLIENT_ID, 4, order_type=OrderType.SELL)

        result = await _orders(db).complete(sell.id)
        await db.commit()

        tx = await db.get(TokenTransaction, result.transaction_id)
        assert tx.transaction_type == TransactionType.RETURN
        assert result.certificate.token_amount == 6
        assert result.certificate.status == CertificateStatus.ACTIVE

        old = await db.get(Certificate, original.id)
        await db.refresh(old)
        assert old.status == CertificateStatus.SUPERSEDED
        assert old.superseded_by == result.certificate.id

        refreshed = await LedgerService(db, TENANT_ID).get_asset(asset.id)
        assert refreshed.fideitec_balance == 994
        assert refreshed.circulating_supply == 6

    async def test_full_sell_leaves_no_certificate(self, db, asset):
        original = await self._holding(db, asset, 10)
        sell = await paid_order(db, asset.id, CLIENT_ID, 10, order_type=OrderType.SELL)

        result = await _orders(db).complete(sell.id)
        await db.commit()

        assert result.certificate is None
        assert result.order.certificate_id is None
        old = await db.get(Certificate, original.id)
        await db.refresh(old)
        assert old.status == CertificateStatus.SUPERSEDED
        active = await db.scalar(
            select(func.count(Certificate.id)).where(Certificate.status == CertificateStatus.ACTIVE)
        )
        assert active == 0

    async def test_sell_price_is_current_price(self, db, asset):
        await self._holding(db, asset, 10)
        await LedgerService(db, TENANT_ID).update_price(asset.id, Decimal("80"))
        await db.commit()

        sell = await _orders(db).create_sell(asset.id, CLIENT_ID, 5, bank_name="Banco Uno")
        assert sell.price_per_token == Decimal("80")
        assert sell.total_amount == Decimal("400")
        assert sell.bank_name == "Banco Uno"


class TestInstantBuy:
    async def test_instant_buy_completes_in_one_step(self, db, asset):
        result = await _orders(db).instant_buy(asset.id, CLIENT_ID, 7, created_by=OPERATOR_ID)
        await db.commit()

        order = result.order
        assert order.status == OrderStatus.COMPLETED
        assert order.payment_reference == f"INSTANT-{order.order_number}"
        assert result.certificate.token_amount == 7
        refreshed = await LedgerService(db, TENANT_ID).get_asset(asset.id)
        assert refreshed.fideitec_balance == 993

    async def test_instant_buy_oversell_rolls_back(self, db, asset):
        with pytest.raises(InsufficientBalance):
            await _orders(db).instant_buy(asset.id, CLIENT_ID, 2000)
        await db.rollback()
        items, total = await _orders(db).list_orders()
        assert total == 0


# ── Reads ───────────────────────────────────────────────────────────────────


class TestOrderReads:
    async def test_list_filters_and_stats(self, db, asset):
        orders = _orders(db)
        completed = await paid_order(db, asset.id, CLIENT_ID, 10)
        await orders.complete(completed.id)
        await orders.create_buy(asset.id, OTHER_CLIENT_ID, 3)
        await db.commit()

        items, total = await orders.list_orders(client_id=CLIENT_ID)
        assert total == 1
        assert items[0].id == completed.id

        _, pending_total = await orders.list_orders(status=OrderStatus.PENDING)
        assert pending_total == 1

        stats = await orders.stats()
        assert stats["pending_orders"] == 1
        assert stats["completed_orders"] == 1
        assert stats["total_buys"] == 1
        assert stats["total_sells"] == 0
        assert stats["total_buy_volume"] == Decimal("1000")

    def test_total_pages(self):
        assert total_pages(0, 20) == 0
        assert total_pages(41, 20) == 3
