"""Per-tenant, per-user sliding-window limiter for wallet-affecting operations.

Every completed rate-limited operation (tokenize, order creation, instant buy,
mint/burn/transfer requests) appends a row to ``operation_rate_limits``.
Admission counts the caller's rows in the trailing window across all
operation types and compares them with the tenant's
``max_operations_per_hour``.

Check and register are separate steps: the check runs as a route dependency
before the operation, the register runs after the operation has committed.
Two concurrent requests can therefore both be admitted at ``max - 1``.

Usage in a router:

    @router.post("/orders/buy")
    async def create_buy(
        body: BuyOrderRequest,
        current_user: CurrentUser = Depends(require_permission("create", "order")),
        db: AsyncSession = Depends(get_db),
        _: Admission = Depends(enforce_operation_limit("order_buy")),
    ):
        ...
        await db.commit()
        await register_operation(db, current_user, "order_buy", {...})
"""

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from fastapi import Depends, HTTPException, status
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.auth.dependencies import get_current_user
from tokenledger.core.config import settings
from tokenledger.core.database import get_db
from tokenledger.models.base import as_utc, utcnow
from tokenledger.models.rate_limits import RateLimitRecord, TenantSettings
from tokenledger.schemas.auth import CurrentUser

logger = structlog.get_logger()

RATE_LIMITED_OPERATIONS = frozenset(
    {"tokenize", "order_buy", "order_sell", "instant_buy", "mint", "burn", "transfer"}
)


@dataclass(frozen=True)
class Admission:
    admitted: bool
    operations_used: int
    max_operations: int
    remaining: int
    reset_in_minutes: int | None
    window_hours: int = 1

    def to_detail(self) -> dict[str, Any]:
        return {
            "operationsUsed": self.operations_used,
            "maxOperations": self.max_operations,
            "windowHours": self.window_hours,
            "resetIn": self.reset_in_minutes,
        }


class OperationRateLimiter:
    def __init__(
        self,
        window: timedelta = timedelta(hours=settings.RATE_LIMIT_WINDOW_HOURS),
        retention: timedelta = timedelta(hours=settings.RATE_LIMIT_RETENTION_HOURS),
        default_max: int = settings.RATE_LIMIT_DEFAULT_MAX_OPERATIONS,
    ) -> None:
        self.window = window
        self.retention = retention
        self.default_max = default_max

    @property
    def window_hours(self) -> int:
        return max(1, int(self.window.total_seconds() // 3600))

    async def max_operations(self, db: AsyncSession, tenant_id: uuid.UUID) -> int:
        configured = await db.scalar(
            select(TenantSettings.max_operations_per_hour).where(
                TenantSettings.tenant_id == tenant_id
            )
        )
        return configured if configured is not None else self.default_max

    async def _window_usage(
        self, db: AsyncSession, tenant_id: uuid.UUID, user_id: uuid.UUID, now: datetime
    ) -> tuple[int, datetime | None]:
        row = (
            await db.execute(
                select(func.count(RateLimitRecord.id), func.min(RateLimitRecord.created_at)).where(
                    RateLimitRecord.tenant_id == tenant_id,
                    RateLimitRecord.user_id == user_id,
                    RateLimitRecord.created_at > now - self.window,
                )
            )
        ).one()
        return int(row[0]), as_utc(row[1])

    async def check_and_admit(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        operation_type: str,
        now: datetime | None = None,
    ) -> Admission:
        """Count the caller's operations in the trailing window; never writes."""
        now = now or utcnow()
        limit = await self.max_operations(db, tenant_id)
        used, oldest = await self._window_usage(db, tenant_id, user_id, now)

        if used < limit:
            return Admission(
                admitted=True,
                operations_used=used,
                max_operations=limit,
                remaining=limit - used,
                reset_in_minutes=None,
                window_hours=self.window_hours,
            )

        reset_in = 1
        if oldest is not None:
            seconds = (oldest + self.window - now).total_seconds()
            reset_in = max(1, math.ceil(seconds / 60))
        logger.warning(
            "rate_limit.exceeded",
            tenant_id=str(tenant_id),
            user_id=str(user_id),
            operation_type=operation_type,
            used=used,
            limit=limit,
        )
        return Admission(
            admitted=False,
            operations_used=used,
            max_operations=limit,
            remaining=0,
            reset_in_minutes=reset_in,
            window_hours=self.window_hours,
        )

    async def register(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        operation_type: str,
        details: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> RateLimitRecord:
        """Append one usage record and drop the tenant's expired ones."""
        now = now or utcnow()
        record = RateLimitRecord(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            user_id=user_id,
            operation_type=operation_type,
            details=details,
            created_at=now,
        )
        db.add(record)
        await db.execute(
            delete(RateLimitRecord).where(
                RateLimitRecord.tenant_id == tenant_id,
                RateLimitRecord.created_at < now - self.retention,
            )
        )
        await db.flush()
        return record

    async def sweep(self, db: AsyncSession, now: datetime | None = None) -> int:
        now = now or utcnow()
        result = await db.execute(
            delete(RateLimitRecord).where(RateLimitRecord.created_at < now - self.retention)
        )
        return result.rowcount or 0

    async def operation_stats(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        now = now or utcnow()
        limit = await self.max_operations(db, tenant_id)
        used, _ = await self._window_usage(db, tenant_id, user_id, now)
        by_type_rows = (
            await db.execute(
                select(RateLimitRecord.operation_type, func.count(RateLimitRecord.id))
                .where(
                    RateLimitRecord.tenant_id == tenant_id,
                    RateLimitRecord.user_id == user_id,
                    RateLimitRecord.created_at > now - self.window,
                )
                .group_by(RateLimitRecord.operation_type)
            )
        ).all()
        return {
            "operations_used": used,
            "max_operations": limit,
            "remaining": max(0, limit - used),
            "window_hours": self.window_hours,
            "by_operation": {op: int(count) for op, count in by_type_rows},
        }


rate_limiter = OperationRateLimiter()


def _limit_exceeded(admission: Admission) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "error": "RATE_LIMIT_EXCEEDED",
            "message": (
                f"Operation limit reached: {admission.max_operations} operations per "
                f"{admission.window_hours} hour(s). Try again in {admission.reset_in_minutes} minute(s)."
            ),
            "detail": admission.to_detail(),
        },
    )


def enforce_operation_limit(operation_type: str):
    """Dependency factory: raise 429 once the caller's window is full.

    Fails open on database errors so a broken limiter never blocks settlement.
    """

    async def _enforce(
        current_user: CurrentUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> Admission | None:
        if not settings.RATE_LIMIT_ENABLED:
            return None
        try:
            admission = await rate_limiter.check_and_admit(
                db, current_user.tenant_id, current_user.user_id, operation_type
            )
            if not admission.admitted:
                raise _limit_exceeded(admission)
            return admission
        except HTTPException:
            raise
        except Exception as exc:  # noqa: BLE001
            # The failed statement aborts the transaction on PostgreSQL
            await db.rollback()
            logger.warning(
                "rate_limit.check_failed", operation_type=operation_type, error=str(exc)
            )
            # Fail open
            return None

    return _enforce


async def register_operation(
    db: AsyncSession,
    current_user: CurrentUser,
    operation_type: str,
    details: dict[str, Any] | None = None,
) -> None:
    """Record a completed operation and commit. Errors are logged, never raised."""
    if not settings.RATE_LIMIT_ENABLED:
        return
    try:
        await rate_limiter.register(
            db, current_user.tenant_id, current_user.user_id, operation_type, details
        )
        await db.commit()
    except Exception as exc:  # noqa: BLE001
        await db.rollback()
        logger.warning(
            "rate_limit.register_failed", operation_type=operation_type, error=str(exc)
        )
