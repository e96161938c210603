"""Housekeeping Celery tasks."""

from __future__ import annotations

import asyncio

import structlog
from celery import shared_task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tokenledger.core.celery_db import task_session_factory
from tokenledger.services.rate_limiter import rate_limiter

logger = structlog.get_logger()


async def sweep_records(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as db:
        deleted = await rate_limiter.sweep(db)
        await db.commit()
    return deleted


@shared_task(name="tasks.sweep_rate_limit_records")
def sweep_rate_limit_records() -> dict:
    """Delete operation records older than the retention period, for every tenant."""

    async def _run() -> int:
        async with task_session_factory() as factory:
            return await sweep_records(factory)

    deleted = asyncio.run(_run())
    logger.info("rate_limit.sweep_complete", deleted=deleted)
    return {"deleted": deleted}
