"""Tests for the per-user operation limiter."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from tests.conftest import OTHER_TENANT_ID, TENANT_ID
from tokenledger.models.base import utcnow
from tokenledger.models.rate_limits import RateLimitRecord, TenantSettings
from tokenledger.services.rate_limiter import OperationRateLimiter

pytestmark = pytest.mark.anyio

USER = uuid.UUID("00000000-0000-0000-0000-0000000000aa")


@pytest.fixture
def limiter() -> OperationRateLimiter:
    return OperationRateLimiter(
        window=timedelta(hours=1), retention=timedelta(hours=2), default_max=3
    )


async def _fill(db, limiter, count, start, step=timedelta(minutes=1), user=USER):
    for i in range(count):
        await limiter.register(db, TENANT_ID, user, "order_buy", now=start + step * i)
    await db.commit()


class TestAdmission:
    async def test_admits_until_limit(self, db, limiter):
        now = utcnow()
        await _fill(db, limiter, 2, now - timedelta(minutes=10))

        admission = await limiter.check_and_admit(db, TENANT_ID, USER, "order_buy", now=now)
        assert admission.admitted is True
        assert admission.operations_used == 2
        assert admission.remaining == 1

    async def test_rejects_at_limit_with_reset(self, db, limiter):
        now = utcnow()
        # Oldest record 50 minutes ago: the window frees up in 10 minutes
        await _fill(db, limiter, 3, now - timedelta(minutes=50))

        admission = await limiter.check_and_admit(db, TENANT_ID, USER, "order_buy", now=now)
        assert admission.admitted is False
        assert admission.operations_used == 3
        assert admission.max_operations == 3
        assert admission.reset_in_minutes == 10
        assert admission.to_detail() == {
            "operationsUsed": 3,
            "maxOperations": 3,
            "windowHours": 1,
            "resetIn": 10,
        }

    async def test_records_outside_window_ignored(self, db, limiter):
        now = utcnow()
        await _fill(db, limiter, 3, now - timedelta(minutes=90))

        admission = await limiter.check_and_admit(db, TENANT_ID, USER, "order_buy", now=now)
        assert admission.admitted is True
        assert admission.operations_used == 0

    async def test_window_boundary(self, db, limiter):
        start = utcnow() - timedelta(hours=1)
        await _fill(db, limiter, 3, start)

        # The oldest record sits exactly one window back and no longer counts
        admission = await limiter.check_and_admit(db, TENANT_ID, USER, "x", now=start + timedelta(hours=1))
        assert admission.admitted is True
        assert admission.operations_used == 2

    async def test_check_never_writes(self, db, limiter):
        for _ in range(5):
            await limiter.check_and_admit(db, TENANT_ID, USER, "order_buy")
        assert await db.scalar(select(func.count(RateLimitRecord.id))) == 0

    async def test_users_counted_separately(self, db, limiter):
        now = utcnow()
        await _fill(db, limiter, 3, now - timedelta(minutes=5))

        admission = await limiter.check_and_admit(db, TENANT_ID, uuid.uuid4(), "order_buy", now=now)
        assert admission.admitted is True

    async def test_tenant_override(self, db, limiter):
        db.add(TenantSettings(id=uuid.uuid4(), tenant_id=TENANT_ID, max_operations_per_hour=5))
        await db.commit()
        now = utcnow()
        await _fill(db, limiter, 4, now - timedelta(minutes=5))

        admission = await limiter.check_and_admit(db, TENANT_ID, USER, "order_buy", now=now)
        assert admission.admitted is True
        assert admission.max_operations == 5
        assert await limiter.max_operations(db, OTHER_TENANT_ID) == 3


class TestRetention:
    async def test_register_drops_expired_rows(self, db, limiter):
        now = utcnow()
        await _fill(db, limiter, 2, now - timedelta(hours=3))
        await limiter.register(db, TENANT_ID, USER, "order_sell", now=now)
        await db.commit()

        assert await db.scalar(select(func.count(RateLimitRecord.id))) == 1

    async def test_sweep(self, db, limiter):
        now = utcnow()
        await _fill(db, limiter, 1, now - timedelta(minutes=1), user=uuid.uuid4())
        await _fill(db, limiter, 2, now - timedelta(hours=3))

        removed = await limiter.sweep(db, now=now)
        await db.commit()
        assert removed == 2
        assert await db.scalar(select(func.count(RateLimitRecord.id))) == 1


class TestStats:
    async def test_operation_stats(self, db, limiter):
        now = utcnow()
        await limiter.register(db, TENANT_ID, USER, "order_buy", now=now - timedelta(minutes=3))
        await limiter.register(db, TENANT_ID, USER, "mint", now=now - timedelta(minutes=2))
        await db.commit()

        stats = await limiter.operation_stats(db, TENANT_ID, USER, now=now)
        assert stats["operations_used"] == 2
        assert stats["remaining"] == 1
        assert stats["by_operation"] == {"order_buy": 1, "mint": 1}
