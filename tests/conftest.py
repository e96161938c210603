"""Shared test fixtures for the token ledger test suite."""

import asyncio
import os
import secrets
import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal
from typing import Any

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from web3 import Web3

import tokenledger.models  # noqa: F401
from tokenledger.auth.dependencies import get_current_user
from tokenledger.core.chain import (
    ChainClient,
    ChainError,
    ChainReceipt,
    ChainReverted,
    SignedMessage,
    get_chain_client,
)
from tokenledger.core.database import Base, get_db
from tokenledger.main import app
from tokenledger.models.enums import OrderType, SourceType, UserRole
from tokenledger.models.ledger import TokenizedAsset
from tokenledger.models.orders import Order
from tokenledger.modules.ledger.service import LedgerService
from tokenledger.modules.orders.service import OrderService
from tokenledger.schemas.auth import Actor, CurrentUser

# ── Sample identities ─────────────────────────────────────────────────────

TENANT_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
OTHER_TENANT_ID = uuid.UUID("00000000-0000-0000-0000-000000000009")

VIEWER_ID = uuid.UUID("00000000-0000-0000-0000-000000000010")
OPERATOR_ID = uuid.UUID("00000000-0000-0000-0000-000000000011")
TENANT_ADMIN_ID = uuid.UUID("00000000-0000-0000-0000-000000000012")
SECOND_TENANT_ADMIN_ID = uuid.UUID("00000000-0000-0000-0000-000000000013")
PLATFORM_ADMIN_ID = uuid.UUID("00000000-0000-0000-0000-000000000014")

CLIENT_ID = uuid.UUID("00000000-0000-0000-0000-0000000000c1")
OTHER_CLIENT_ID = uuid.UUID("00000000-0000-0000-0000-0000000000c2")


def make_user(
    role: UserRole, user_id: uuid.UUID | None = None, tenant_id: uuid.UUID = TENANT_ID
) -> CurrentUser:
    return CurrentUser(
        user_id=user_id or uuid.uuid4(),
        tenant_id=tenant_id,
        role=role,
        email=f"{role.value}@example.com",
    )


def make_actor(role: UserRole, user_id: uuid.UUID) -> Actor:
    return Actor(user_id=user_id, role=role, ip_address="127.0.0.1", user_agent="pytest")


VIEWER = make_user(UserRole.VIEWER, VIEWER_ID)
OPERATOR = make_user(UserRole.OPERATOR, OPERATOR_ID)
TENANT_ADMIN = make_user(UserRole.TENANT_ADMIN, TENANT_ADMIN_ID)
PLATFORM_ADMIN = make_user(UserRole.PLATFORM_ADMIN, PLATFORM_ADMIN_ID)


# ── Chain stand-in ────────────────────────────────────────────────────────


PLATFORM_KEY = "0x" + "11" * 32
TENANT_KEY = "0x" + "22" * 32


class FakeChainClient(ChainClient):
    """In-memory chain: remembers every submitted payload by tx hash.

    Messages are signed with a fixed real key so recovery runs for real.
    """

    def __init__(
        self,
        network: str = "polygon-amoy",
        *,
        enabled: bool = True,
        fail: bool = False,
        delay: float = 0.0,
        confirm_fail: bool = False,
        revert: bool = False,
    ) -> None:
        self.network = network
        self.enabled = enabled
        self.fail = fail
        self.delay = delay
        self.confirm_fail = confirm_fail
        self.revert = revert
        self.submitted: dict[str, dict[str, Any]] = {}
        self.confirmed: list[str] = []
        self._account = Account.from_key(PLATFORM_KEY)

    @property
    def address(self) -> str | None:
        return self._account.address if self.enabled else None

    async def submit(self, payload: dict[str, Any]) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ChainError("RPC endpoint unreachable")
        tx_hash = "0x" + secrets.token_hex(32)
        self.submitted[tx_hash] = payload
        return tx_hash

    async def confirm(self, tx_hash: str) -> ChainReceipt:
        if self.confirm_fail:
            raise ChainError("Receipt not available")
        if self.revert:
            raise ChainReverted(f"Anchor transaction {tx_hash} reverted")
        self.confirmed.append(tx_hash)
        return ChainReceipt(tx_hash=tx_hash, block_number=len(self.submitted), success=True)

    async def balance(self) -> Decimal:
        return Decimal("1.5")

    async def decode(self, tx_hash: str) -> dict[str, Any]:
        try:
            return self.submitted[tx_hash]
        except KeyError:
            raise ChainError(f"Transaction {tx_hash} not found") from None

    async def sign_message(self, message: str) -> SignedMessage:
        if not self.enabled:
            raise ChainError("Platform signer is not configured")
        signed = self._account.sign_message(encode_defunct(text=message))
        return SignedMessage(signature=Web3.to_hex(signed.signature), address=self._account.address)


def tenant_sign(message: str, key: str = TENANT_KEY) -> tuple[str, str]:
    """Sign like a tenant wallet would; returns (signature, address)."""
    account = Account.from_key(key)
    signed = account.sign_message(encode_defunct(text=message))
    return Web3.to_hex(signed.signature), account.address


# ── Database ──────────────────────────────────────────────────────────────


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """A fresh schema per test; file-backed SQLite unless TEST_DATABASE_URL is set."""
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
    options: dict[str, Any] = {"poolclass": NullPool}
    if url.startswith("sqlite"):
        options["connect_args"] = {"timeout": 30}
    test_engine = create_async_engine(url, **options)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield test_engine
    finally:
        if not url.startswith("sqlite"):
            async with test_engine.begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)
        await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def chain() -> FakeChainClient:
    return FakeChainClient()


# ── HTTP client ───────────────────────────────────────────────────────────


class Identity:
    """Mutable caller identity so one test can act as several users."""

    def __init__(self, user: CurrentUser) -> None:
        self.user = user

    def use(self, user: CurrentUser) -> None:
        self.user = user


@pytest.fixture
def identity() -> Identity:
    return Identity(TENANT_ADMIN)


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    chain: FakeChainClient,
    identity: Identity,
) -> AsyncGenerator[AsyncClient]:
    async def _db() -> AsyncGenerator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_current_user] = lambda: identity.user
    app.dependency_overrides[get_chain_client] = lambda: chain
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


# ── Sample data ───────────────────────────────────────────────────────────


async def seed_asset(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID = TENANT_ID,
    total_supply: int = 1000,
    token_price: str = "100",
    symbol: str = "TKA",
    activate: bool = True,
) -> TokenizedAsset:
    ledger = LedgerService(db, tenant_id)
    asset = await ledger.tokenize(
        asset_type=SourceType.ASSET,
        source_id=uuid.uuid4(),
        total_supply=total_supply,
        token_price=Decimal(token_price),
        token_name=f"Token {symbol}",
        token_symbol=symbol,
        created_by=TENANT_ADMIN_ID,
    )
    if activate:
        asset = await ledger.activate(asset.id)
    await db.commit()
    return asset


async def paid_order(
    db: AsyncSession,
    asset_id: uuid.UUID,
    client_id: uuid.UUID,
    token_amount: int,
    *,
    order_type: OrderType = OrderType.BUY,
    tenant_id: uuid.UUID = TENANT_ID,
) -> Order:
    """An order with confirmed payment, ready to complete."""
    orders = OrderService(db, tenant_id)
    if order_type == OrderType.BUY:
        order = await orders.create_buy(asset_id, client_id, token_amount)
    else:
        order = await orders.create_sell(asset_id, client_id, token_amount)
    order = await orders.confirm_payment(order.id, "WIRE-0001", processed_by=OPERATOR_ID)
    await db.commit()
    return order


@pytest.fixture
async def asset(db: AsyncSession) -> TokenizedAsset:
    """Active asset: 1000 tokens at 100.00 USD, all held by the platform."""
    return await seed_asset(db)
