"""Token ledger: supply accounting and atomic mint/transfer/burn.

Every mutation runs in the caller's transaction.  Asset and holder rows are
read ``FOR UPDATE`` (a no-op on SQLite) and both carry a version counter, so
two writers racing on the same balance cannot both commit from a stale read;
see ``tokenledger.core.concurrency``.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.concurrency import retry_on_conflict
from tokenledger.core.exceptions import (
    InsufficientBalance,
    InvalidStateTransition,
    LedgerInvariantError,
    NotFoundError,
    ValidationError,
)
from tokenledger.models.base import utcnow
from tokenledger.models.enums import (
    ASSET_TRANSITIONS,
    AssetStatus,
    HolderType,
    SourceType,
    TransactionType,
    ensure_transition,
)
from tokenledger.models.ledger import TokenHolder, TokenizedAsset, TokenTransaction

logger = structlog.get_logger()


@dataclass(frozen=True)
class HolderRef:
    holder_type: HolderType
    holder_id: uuid.UUID | None = None

    @classmethod
    def platform(cls) -> "HolderRef":
        return cls(HolderType.PLATFORM, None)

    @classmethod
    def client(cls, client_id: uuid.UUID) -> "HolderRef":
        return cls(HolderType.CLIENT, client_id)

    @property
    def is_platform(self) -> bool:
        return self.holder_type == HolderType.PLATFORM

    def __post_init__(self) -> None:
        if self.is_platform and self.holder_id is not None:
            raise ValidationError("The platform holder has no holder_id")
        if not self.is_platform and self.holder_id is None:
            raise ValidationError(f"holder_id is required for {self.holder_type.value} holders")


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("amount must be a positive integer", {"amount": amount})


class LedgerService:
    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID) -> None:
        self.db = db
        self.tenant_id = tenant_id

    # ── Loading ────────────────────────────────────────────────────────────────

    async def get_asset(self, asset_id: uuid.UUID, *, lock: bool = False) -> TokenizedAsset:
        stmt = select(TokenizedAsset).where(
            TokenizedAsset.id == asset_id,
            TokenizedAsset.tenant_id == self.tenant_id,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        asset = (await self.db.execute(stmt)).scalar_one_or_none()
        if asset is None:
            raise NotFoundError("Tokenized asset not found", {"tokenized_asset_id": str(asset_id)})
        return asset

    async def _find_holder(
        self, asset_id: uuid.UUID, ref: HolderRef, *, lock: bool = True
    ) -> TokenHolder | None:
        stmt = select(TokenHolder).where(
            TokenHolder.tokenized_asset_id == asset_id,
            TokenHolder.holder_type == ref.holder_type,
        )
        if ref.holder_id is None:
            stmt = stmt.where(TokenHolder.holder_id.is_(None))
        else:
            stmt = stmt.where(TokenHolder.holder_id == ref.holder_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _credit_target(self, asset_id: uuid.UUID, ref: HolderRef) -> TokenHolder:
        """Load the destination holder, creating it on first credit."""
        holder = await self._find_holder(asset_id, ref)
        if holder is None:
            holder = TokenHolder(
                id=uuid.uuid4(),
                tokenized_asset_id=asset_id,
                holder_type=ref.holder_type,
                holder_id=ref.holder_id,
                balance=0,
            )
            self.db.add(holder)
        return holder

    async def get_holder_balance(self, asset_id: uuid.UUID, ref: HolderRef) -> int:
        holder = await self._find_holder(asset_id, ref, lock=False)
        return holder.balance if holder else 0

    # ── Guards ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _ensure_mutable(asset: TokenizedAsset, operation: str) -> None:
        if asset.status == AssetStatus.CLOSED:
            raise InvalidStateTransition(
                "TokenizedAsset",
                asset.status,
                operation,
                message=f"Tokenized asset {asset.token_symbol} is closed; {operation} is not allowed",
            )

    @staticmethod
    def _assert_invariant(asset: TokenizedAsset, platform: TokenHolder | None = None) -> None:
        balances = (
            asset.total_supply,
            asset.circulating_supply,
            asset.fideitec_balance,
            asset.burned_supply,
        )
        if min(balances) < 0 or not asset.supply_balanced():
            raise LedgerInvariantError(
                "Supply invariant violated",
                {
                    "tokenized_asset_id": str(asset.id),
                    "total_supply": asset.total_supply,
                    "circulating_supply": asset.circulating_supply,
                    "fideitec_balance": asset.fideitec_balance,
                    "burned_supply": asset.burned_supply,
                },
            )
        if platform is not None and platform.balance != asset.fideitec_balance:
            raise LedgerInvariantError(
                "Platform holder balance diverged from fideitec_balance",
                {"holder_balance": platform.balance, "fideitec_balance": asset.fideitec_balance},
            )

    def _record(
        self,
        asset: TokenizedAsset,
        transaction_type: TransactionType,
        amount: int,
        *,
        from_holder: TokenHolder | None = None,
        to_holder: TokenHolder | None = None,
        reason: str | None = None,
        reference_id: uuid.UUID | None = None,
        initiated_by: uuid.UUID | None = None,
    ) -> TokenTransaction:
        tx = TokenTransaction(
            id=uuid.uuid4(),
            tenant_id=asset.tenant_id,
            tokenized_asset_id=asset.id,
            transaction_type=transaction_type,
            amount=amount,
            from_holder_id=from_holder.id if from_holder else None,
            to_holder_id=to_holder.id if to_holder else None,
            reason=reason,
            reference_id=reference_id,
            initiated_by=initiated_by,
        )
        self.db.add(tx)
        return tx

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def tokenize(
        self,
        *,
        asset_type: SourceType,
        source_id: uuid.UUID,
        total_supply: int,
        token_price: Decimal,
        token_name: str,
        token_symbol: str,
        currency: str = "USD",
        description: str | None = None,
        created_by: uuid.UUID | None = None,
    ) -> TokenizedAsset:
        """Create a draft tokenized asset with the whole supply held by the platform."""
        _require_positive(total_supply)
        if token_price is None or Decimal(token_price) <= 0:
            raise ValidationError("token_price must be greater than 0")
        if source_id is None:
            raise ValidationError(f"A source id is required for asset_type '{asset_type.value}'")

        existing = await self.db.execute(
            select(TokenizedAsset.id).where(
                TokenizedAsset.tenant_id == self.tenant_id,
                TokenizedAsset.asset_type == asset_type,
                TokenizedAsset.source_id == source_id,
                TokenizedAsset.status != AssetStatus.CLOSED,
            )
        )
        if existing.first() is not None:
            raise ValidationError(
                "This source is already tokenized",
                {"asset_type": asset_type.value, "source_id": str(source_id)},
            )

        asset = TokenizedAsset(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            asset_type=asset_type,
            source_id=source_id,
            token_name=token_name,
            token_symbol=token_symbol,
            total_supply=total_supply,
            circulating_supply=0,
            fideitec_balance=total_supply,
            burned_supply=0,
            token_price=Decimal(token_price),
            currency=currency.upper(),
            status=AssetStatus.DRAFT,
            description=description,
            created_by=created_by,
        )
        platform = TokenHolder(
            id=uuid.uuid4(),
            tokenized_asset_id=asset.id,
            holder_type=HolderType.PLATFORM,
            holder_id=None,
            balance=total_supply,
        )
        self.db.add_all([asset, platform])
        self._record(
            asset,
            TransactionType.MINT,
            total_supply,
            to_holder=platform,
            reason="Initial supply",
            initiated_by=created_by,
        )
        self._assert_invariant(asset, platform)
        await self.db.flush()
        logger.info(
            "ledger.tokenized",
            tokenized_asset_id=str(asset.id),
            symbol=token_symbol,
            total_supply=total_supply,
        )
        return asset

    async def _transition(
        self, asset_id: uuid.UUID, target: AssetStatus
    ) -> TokenizedAsset:
        asset = await self.get_asset(asset_id, lock=True)
        ensure_transition("TokenizedAsset", ASSET_TRANSITIONS, asset.status, target)
        previous = asset.status
        asset.status = target
        if target == AssetStatus.ACTIVE and asset.activated_at is None:
            asset.activated_at = utcnow()
        elif target == AssetStatus.CLOSED:
            asset.closed_at = utcnow()
        await self.db.flush()
        logger.info(
            "ledger.asset_status_changed",
            tokenized_asset_id=str(asset_id),
            from_status=previous.value,
            to_status=target.value,
        )
        return asset

    async def activate(self, asset_id: uuid.UUID) -> TokenizedAsset:
        """draft -> active. Activation is irreversible and enables sales."""
        asset = await self.get_asset(asset_id, lock=True)
        if asset.status != AssetStatus.DRAFT:
            raise InvalidStateTransition("TokenizedAsset", asset.status, AssetStatus.ACTIVE)
        return await self._transition(asset_id, AssetStatus.ACTIVE)

    async def pause(self, asset_id: uuid.UUID) -> TokenizedAsset:
        return await self._transition(asset_id, AssetStatus.PAUSED)

    async def resume(self, asset_id: uuid.UUID) -> TokenizedAsset:
        asset = await self.get_asset(asset_id, lock=True)
        if asset.status != AssetStatus.PAUSED:
            raise InvalidStateTransition("TokenizedAsset", asset.status, AssetStatus.ACTIVE)
        return await self._transition(asset_id, AssetStatus.ACTIVE)

    async def close(self, asset_id: uuid.UUID) -> TokenizedAsset:
        return await self._transition(asset_id, AssetStatus.CLOSED)

    async def update_price(self, asset_id: uuid.UUID, token_price: Decimal) -> TokenizedAsset:
        """Reprice future orders. Issued certificates and open orders keep their frozen values."""
        if token_price is None or Decimal(token_price) <= 0:
            raise ValidationError("token_price must be greater than 0")
        asset = await self.get_asset(asset_id, lock=True)
        self._ensure_mutable(asset, "price update")
        previous = asset.token_price
        asset.token_price = Decimal(token_price)
        await self.db.flush()
        logger.info(
            "ledger.price_updated",
            tokenized_asset_id=str(asset_id),
            previous=str(previous),
            current=str(asset.token_price),
        )
        return asset

    # ── Mutations ──────────────────────────────────────────────────────────────

    @retry_on_conflict
    async def mint(
        self,
        asset_id: uuid.UUID,
        amount: int,
        reason: str | None = None,
        *,
        reference_id: uuid.UUID | None = None,
        initiated_by: uuid.UUID | None = None,
    ) -> TokenTransaction:
        """Create ``amount`` new tokens held by the platform."""
        _require_positive(amount)
        asset = await self.get_asset(asset_id, lock=True)
        self._ensure_mutable(asset, "mint")
        platform = await self._credit_target(asset_id, HolderRef.platform())

        asset.total_supply += amount
        asset.fideitec_balance += amount
        platform.balance += amount
        tx = self._record(
            asset,
            TransactionType.MINT,
            amount,
            to_holder=platform,
            reason=reason,
            reference_id=reference_id,
            initiated_by=initiated_by,
        )
        self._assert_invariant(asset, platform)
        await self.db.flush()
        logger.info("ledger.minted", tokenized_asset_id=str(asset_id), amount=amount)
        return tx

    @retry_on_conflict
    async def transfer(
        self,
        asset_id: uuid.UUID,
        from_holder: HolderRef,
        to_holder: HolderRef,
        amount: int,
        reason: str | None = None,
        *,
        transaction_type: TransactionType = TransactionType.TRANSFER,
        reference_id: uuid.UUID | None = None,
        initiated_by: uuid.UUID | None = None,
    ) -> TokenTransaction:
        """Move ``amount`` tokens between two holders of the same asset."""
        _require_positive(amount)
        if from_holder == to_holder:
            raise ValidationError("Source and destination holders must differ")
        if transaction_type not in (TransactionType.TRANSFER, TransactionType.RETURN):
            raise ValidationError(f"transfer cannot record a '{transaction_type.value}' entry")

        asset = await self.get_asset(asset_id, lock=True)
        self._ensure_mutable(asset, "transfer")

        source = await self._find_holder(asset_id, from_holder)
        available = source.balance if source else 0
        if source is None or available < amount:
            raise InsufficientBalance(available, amount)
        target = await self._credit_target(asset_id, to_holder)

        source.balance -= amount
        target.balance += amount
        if from_holder.is_platform:
            asset.fideitec_balance -= amount
            asset.circulating_supply += amount
        elif to_holder.is_platform:
            asset.fideitec_balance += amount
            asset.circulating_supply -= amount

        tx = self._record(
            asset,
            transaction_type,
            amount,
            from_holder=source,
            to_holder=target,
            reason=reason,
            reference_id=reference_id,
            initiated_by=initiated_by,
        )
        platform = source if from_holder.is_platform else target if to_holder.is_platform else None
        self._assert_invariant(asset, platform)
        await self.db.flush()
        logger.info(
            "ledger.transferred",
            tokenized_asset_id=str(asset_id),
            amount=amount,
            from_type=from_holder.holder_type.value,
            to_type=to_holder.holder_type.value,
            transaction_type=transaction_type.value,
        )
        return tx

    @retry_on_conflict
    async def burn(
        self,
        asset_id: uuid.UUID,
        holder: HolderRef,
        amount: int,
        reason: str | None = None,
        *,
        reference_id: uuid.UUID | None = None,
        initiated_by: uuid.UUID | None = None,
    ) -> TokenTransaction:
        """Irreversibly destroy ``amount`` tokens from ``holder``."""
        _require_positive(amount)
        asset = await self.get_asset(asset_id, lock=True)
        self._ensure_mutable(asset, "burn")

        source = await self._find_holder(asset_id, holder)
        available = source.balance if source else 0
        if source is None or available < amount:
            raise InsufficientBalance(available, amount)

        source.balance -= amount
        asset.burned_supply += amount
        if holder.is_platform:
            asset.fideitec_balance -= amount
        else:
            asset.circulating_supply -= amount

        tx = self._record(
            asset,
            TransactionType.BURN,
            amount,
            from_holder=source,
            reason=reason,
            reference_id=reference_id,
            initiated_by=initiated_by,
        )
        self._assert_invariant(asset, source if holder.is_platform else None)
        await self.db.flush()
        logger.info("ledger.burned", tokenized_asset_id=str(asset_id), amount=amount)
        return tx

    # ── Reads ──────────────────────────────────────────────────────────────────

    async def list_assets(
        self,
        status: AssetStatus | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[TokenizedAsset]:
        stmt = (
            select(TokenizedAsset)
            .where(TokenizedAsset.tenant_id == self.tenant_id)
            .order_by(TokenizedAsset.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        if status is not None:
            stmt = stmt.where(TokenizedAsset.status == status)
        return list((await self.db.execute(stmt)).scalars().all())

    async def list_holders(self, asset_id: uuid.UUID) -> list[TokenHolder]:
        await self.get_asset(asset_id)
        stmt = (
            select(TokenHolder)
            .where(TokenHolder.tokenized_asset_id == asset_id, TokenHolder.balance > 0)
            .order_by(TokenHolder.balance.desc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def list_transactions(
        self, asset_id: uuid.UUID, skip: int = 0, limit: int = 100
    ) -> list[TokenTransaction]:
        await self.get_asset(asset_id)
        stmt = (
            select(TokenTransaction)
            .where(TokenTransaction.tokenized_asset_id == asset_id)
            .order_by(TokenTransaction.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def client_holdings(self, client_id: uuid.UUID) -> list[tuple[TokenHolder, TokenizedAsset]]:
        stmt = (
            select(TokenHolder, TokenizedAsset)
            .join(TokenizedAsset, TokenizedAsset.id == TokenHolder.tokenized_asset_id)
            .where(
                TokenizedAsset.tenant_id == self.tenant_id,
                TokenHolder.holder_type == HolderType.CLIENT,
                TokenHolder.holder_id == client_id,
                TokenHolder.balance > 0,
            )
            .order_by(TokenizedAsset.token_name)
        )
        return [(row[0], row[1]) for row in (await self.db.execute(stmt)).all()]

    async def available_tokens(self) -> list[TokenizedAsset]:
        """Active assets with unsold platform supply."""
        stmt = (
            select(TokenizedAsset)
            .where(
                TokenizedAsset.tenant_id == self.tenant_id,
                TokenizedAsset.status == AssetStatus.ACTIVE,
                TokenizedAsset.fideitec_balance > 0,
            )
            .order_by(TokenizedAsset.token_name)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def stats(self) -> dict:
        totals = (
            await self.db.execute(
                select(
                    func.count(TokenizedAsset.id),
                    func.coalesce(func.sum(TokenizedAsset.total_supply), 0),
                    func.coalesce(func.sum(TokenizedAsset.circulating_supply), 0),
                    func.coalesce(func.sum(TokenizedAsset.fideitec_balance), 0),
                    func.coalesce(func.sum(TokenizedAsset.burned_supply), 0),
                ).where(TokenizedAsset.tenant_id == self.tenant_id)
            )
        ).one()
        by_status_rows = (
            await self.db.execute(
                select(TokenizedAsset.status, func.count(TokenizedAsset.id))
                .where(TokenizedAsset.tenant_id == self.tenant_id)
                .group_by(TokenizedAsset.status)
            )
        ).all()
        # Value outstanding supply in Python to keep Decimal precision on SQLite
        priced = (
            await self.db.execute(
                select(
                    TokenizedAsset.circulating_supply,
                    TokenizedAsset.fideitec_balance,
                    TokenizedAsset.token_price,
                ).where(TokenizedAsset.tenant_id == self.tenant_id)
            )
        ).all()
        total_value = sum(
            (Decimal(circ + fid) * Decimal(price) for circ, fid, price in priced),
            Decimal("0"),
        )
        return {
            "total_assets": int(totals[0]),
            "by_status": {status.value: int(count) for status, count in by_status_rows},
            "total_tokens_issued": int(totals[1]),
            "tokens_in_circulation": int(totals[2]),
            "tokens_available": int(totals[3]),
            "tokens_burned": int(totals[4]),
            "total_value": total_value,
        }

    # ── Audit ──────────────────────────────────────────────────────────────────

    async def replay_balances(self, asset_id: uuid.UUID) -> dict[uuid.UUID, int]:
        """Rebuild every holder balance from the append-only transaction log."""
        rows = (
            await self.db.execute(
                select(TokenTransaction)
                .where(TokenTransaction.tokenized_asset_id == asset_id)
                .order_by(TokenTransaction.created_at.asc())
            )
        ).scalars().all()
        balances: dict[uuid.UUID, int] = defaultdict(int)
        for tx in rows:
            if tx.from_holder_id is not None:
                balances[tx.from_holder_id] -= tx.amount
            if tx.to_holder_id is not None:
                balances[tx.to_holder_id] += tx.amount
        return dict(balances)

    async def verify_supply(self, asset_id: uuid.UUID) -> dict:
        asset = await self.get_asset(asset_id)
        holders = (
            await self.db.execute(
                select(TokenHolder).where(TokenHolder.tokenized_asset_id == asset_id)
            )
        ).scalars().all()
        replayed = await self.replay_balances(asset_id)
        replay_matches = all(replayed.get(h.id, 0) == h.balance for h in holders) and all(
            balance >= 0 for balance in replayed.values()
        )
        platform_total = sum(h.balance for h in holders if h.holder_type == HolderType.PLATFORM)
        others_total = sum(h.balance for h in holders if h.holder_type != HolderType.PLATFORM)
        balanced = (
            asset.supply_balanced()
            and platform_total == asset.fideitec_balance
            and others_total == asset.circulating_supply
        )
        return {
            "tokenized_asset_id": asset.id,
            "balanced": balanced,
            "replay_matches": replay_matches,
            "total_supply": asset.total_supply,
            "circulating_supply": asset.circulating_supply,
            "fideitec_balance": asset.fideitec_balance,
            "burned_supply": asset.burned_supply,
            "replayed_balances": {str(k): v for k, v in replayed.items()},
        }
