"""Order settlement schemas."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from tokenledger.models.enums import OrderStatus, OrderType, PaymentMethod
from tokenledger.modules.certificates.schemas import BeneficiaryInfo


def _alias(snake: str, camel: str) -> AliasChoices:
    return AliasChoices(snake, camel)


class BuyOrderRequest(BaseModel):
    tokenized_asset_id: uuid.UUID = Field(validation_alias=_alias("tokenized_asset_id", "tokenizedAssetId"))
    client_id: uuid.UUID = Field(validation_alias=_alias("client_id", "clientId"))
    token_amount: int = Field(gt=0, validation_alias=_alias("token_amount", "tokenAmount"))
    payment_method: PaymentMethod = Field(
        default=PaymentMethod.BANK_TRANSFER, validation_alias=_alias("payment_method", "paymentMethod")
    )
    notes: str | None = Field(default=None, max_length=2000)


class SellOrderRequest(BaseModel):
    tokenized_asset_id: uuid.UUID = Field(validation_alias=_alias("tokenized_asset_id", "tokenizedAssetId"))
    client_id: uuid.UUID = Field(validation_alias=_alias("client_id", "clientId"))
    token_amount: int = Field(gt=0, validation_alias=_alias("token_amount", "tokenAmount"))
    bank_name: str | None = Field(default=None, max_length=255, validation_alias=_alias("bank_name", "bankName"))
    bank_account_type: str | None = Field(
        default=None, max_length=50, validation_alias=_alias("bank_account_type", "bankAccountType")
    )
    bank_account_number: str | None = Field(
        default=None, max_length=100, validation_alias=_alias("bank_account_number", "bankAccountNumber")
    )
    bank_account_holder: str | None = Field(
        default=None, max_length=255, validation_alias=_alias("bank_account_holder", "bankAccountHolder")
    )
    notes: str | None = Field(default=None, max_length=2000)


class ConfirmPaymentRequest(BaseModel):
    payment_reference: str | None = Field(
        default=None, max_length=255, validation_alias=_alias("payment_reference", "paymentReference")
    )
    payment_method: PaymentMethod | None = Field(
        default=None, validation_alias=_alias("payment_method", "paymentMethod")
    )


class CompleteOrderRequest(BaseModel):
    beneficiary: BeneficiaryInfo | None = None


class ReasonRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class InstantBuyRequest(BuyOrderRequest):
    payment_reference: str | None = Field(
        default=None, max_length=255, validation_alias=_alias("payment_reference", "paymentReference")
    )
    beneficiary: BeneficiaryInfo | None = None


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    order_number: str
    order_type: OrderType
    tokenized_asset_id: uuid.UUID
    client_id: uuid.UUID
    token_amount: int
    price_per_token: Decimal
    subtotal: Decimal
    fees: Decimal
    total_amount: Decimal
    currency: str
    status: OrderStatus
    payment_method: PaymentMethod | None
    payment_reference: str | None
    bank_name: str | None
    bank_account_type: str | None
    bank_account_holder: str | None
    notes: str | None
    cancellation_reason: str | None
    certificate_id: uuid.UUID | None
    transaction_id: uuid.UUID | None
    created_by: uuid.UUID | None
    processed_by: uuid.UUID | None
    payment_confirmed_at: datetime | None
    processing_started_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    refunded_at: datetime | None
    created_at: datetime


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class OrderStatsResponse(BaseModel):
    pending_orders: int
    pending_processing: int
    completed_orders: int
    total_buys: int
    total_sells: int
    total_buy_volume: Decimal
    total_sell_volume: Decimal
