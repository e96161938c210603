"""Tokenized asset ledger schemas."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from tokenledger.models.enums import AssetStatus, HolderType, SourceType, TransactionType


class TokenizeRequest(BaseModel):
    asset_type: SourceType = Field(validation_alias=AliasChoices("asset_type", "assetType"))
    asset_id: uuid.UUID | None = Field(default=None, validation_alias=AliasChoices("asset_id", "assetId"))
    asset_unit_id: uuid.UUID | None = Field(
        default=None, validation_alias=AliasChoices("asset_unit_id", "assetUnitId")
    )
    trust_id: uuid.UUID | None = Field(default=None, validation_alias=AliasChoices("trust_id", "trustId"))
    total_supply: int = Field(ge=1, validation_alias=AliasChoices("total_supply", "totalSupply"))
    token_price: Decimal = Field(gt=0, validation_alias=AliasChoices("token_price", "tokenPrice"))
    token_name: str = Field(min_length=1, max_length=255, validation_alias=AliasChoices("token_name", "tokenName"))
    token_symbol: str = Field(
        min_length=1, max_length=20, validation_alias=AliasChoices("token_symbol", "tokenSymbol")
    )
    currency: str = Field(default="USD", min_length=3, max_length=3)
    description: str | None = None

    @field_validator("token_symbol")
    @classmethod
    def _upper_symbol(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def source_id(self) -> uuid.UUID | None:
        return {
            SourceType.ASSET: self.asset_id,
            SourceType.ASSET_UNIT: self.asset_unit_id,
            SourceType.TRUST: self.trust_id,
        }[self.asset_type]


class PriceUpdateRequest(BaseModel):
    token_price: Decimal = Field(gt=0, validation_alias=AliasChoices("token_price", "tokenPrice"))


class LedgerOperationRequest(BaseModel):
    """Body for manual mint/burn/transfer; becomes an approval request."""

    amount: int = Field(gt=0)
    reason: str | None = Field(default=None, max_length=500)
    client_id: uuid.UUID | None = Field(default=None, validation_alias=AliasChoices("client_id", "clientId"))
    # burn/transfer source; defaults to the platform holder
    from_holder_type: HolderType = Field(
        default=HolderType.PLATFORM, validation_alias=AliasChoices("from_holder_type", "fromHolderType")
    )
    from_holder_id: uuid.UUID | None = Field(
        default=None, validation_alias=AliasChoices("from_holder_id", "fromHolderId")
    )


class TokenizedAssetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    asset_type: SourceType
    source_id: uuid.UUID
    token_name: str
    token_symbol: str
    total_supply: int
    circulating_supply: int
    fideitec_balance: int
    burned_supply: int
    outstanding_supply: int
    token_price: Decimal
    currency: str
    status: AssetStatus
    description: str | None = None
    activated_at: datetime | None = None
    closed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class TokenHolderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tokenized_asset_id: uuid.UUID
    holder_type: HolderType
    holder_id: uuid.UUID | None
    balance: int


class TokenTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tokenized_asset_id: uuid.UUID
    transaction_type: TransactionType
    amount: int
    from_holder_id: uuid.UUID | None
    to_holder_id: uuid.UUID | None
    reason: str | None
    reference_id: uuid.UUID | None
    initiated_by: uuid.UUID | None
    tx_hash: str | None
    created_at: datetime


class ClientHoldingResponse(BaseModel):
    tokenized_asset_id: uuid.UUID
    token_name: str
    token_symbol: str
    balance: int
    token_price: Decimal
    current_value: Decimal
    currency: str
    asset_status: AssetStatus


class AvailableTokensResponse(BaseModel):
    tokenized_asset_id: uuid.UUID
    token_name: str
    token_symbol: str
    asset_type: SourceType
    total_supply: int
    available: int
    token_price: Decimal
    currency: str


class TokenizationStatsResponse(BaseModel):
    total_assets: int
    by_status: dict[str, int]
    total_tokens_issued: int
    tokens_in_circulation: int
    tokens_available: int
    tokens_burned: int
    total_value: Decimal


class SupplyAuditResponse(BaseModel):
    tokenized_asset_id: uuid.UUID
    balanced: bool
    replay_matches: bool
    total_supply: int
    circulating_supply: int
    fideitec_balance: int
    burned_supply: int
    replayed_balances: dict[str, int]
