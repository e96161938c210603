"""Database sessions for Celery tasks.

Each task body runs under its own ``asyncio.run`` loop, and asyncpg
connections cannot cross event loops, so tasks get a throwaway engine with
no pool instead of the API's shared one.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from tokenledger.core.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def task_session_factory(
    url: str | None = None,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Yield a session factory bound to a per-task engine; disposes it afterwards.

    Usage::

        async with task_session_factory() as factory:
            async with factory() as db:
                ...
    """
    engine = create_async_engine(url or settings.DATABASE_URL, poolclass=NullPool)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()
