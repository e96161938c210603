"""Blockchain anchoring Celery tasks.

``anchor_certificate`` retries chain failures with exponential backoff;
``retry_unanchored_certificates`` runs every 30 minutes and re-enqueues
active certificates that settlement could not anchor inline.
"""

from __future__ import annotations

import asyncio
import uuid

import structlog
from celery import shared_task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tokenledger.core.chain import ChainClient, get_chain_client
from tokenledger.core.celery_db import task_session_factory
from tokenledger.core.config import settings
from tokenledger.core.exceptions import AnchorError
from tokenledger.modules.anchoring.service import AnchorService

logger = structlog.get_logger()

UNANCHORED_BATCH_SIZE = 50


async def anchor_one(
    session_factory: async_sessionmaker[AsyncSession],
    chain: ChainClient,
    certificate_id: uuid.UUID,
) -> dict:
    async with session_factory() as db:
        result = await AnchorService(db, chain).anchor(certificate_id)
    return {
        "certificate_id": str(result.certificate_id),
        "tx_hash": result.tx_hash,
        "already_certified": result.already_certified,
    }


async def find_unanchored(
    session_factory: async_sessionmaker[AsyncSession],
    chain: ChainClient,
    limit: int = UNANCHORED_BATCH_SIZE,
) -> list[uuid.UUID]:
    async with session_factory() as db:
        return await AnchorService(db, chain).unanchored(limit)


@shared_task(
    name="tasks.anchor_certificate",
    bind=True,
    max_retries=settings.ANCHOR_MAX_RETRIES,
    default_retry_delay=60,
)
def anchor_certificate(self, certificate_id: str) -> dict:
    """Anchor one certificate; chain errors are retried, domain errors are not."""
    chain = get_chain_client()
    if not chain.enabled:
        logger.info("anchor.task_skipped", certificate_id=certificate_id, reason="disabled")
        return {"certificate_id": certificate_id, "skipped": True}

    async def _run() -> dict:
        async with task_session_factory() as factory:
            return await anchor_one(factory, chain, uuid.UUID(certificate_id))

    try:
        result = asyncio.run(_run())
    except AnchorError as exc:
        countdown = 60 * (2 ** self.request.retries)
        logger.warning(
            "anchor.task_retry",
            certificate_id=certificate_id,
            attempt=self.request.retries + 1,
            countdown=countdown,
            error=exc.message,
        )
        raise self.retry(exc=exc, countdown=countdown)
    logger.info("anchor.task_complete", **result)
    return result


@shared_task(name="tasks.retry_unanchored_certificates")
def retry_unanchored_certificates() -> dict:
    """Enqueue an anchor task for every active certificate still without a tx hash."""
    chain = get_chain_client()
    if not chain.enabled:
        return {"enqueued": 0, "skipped": True}

    async def _run() -> list[uuid.UUID]:
        async with task_session_factory() as factory:
            return await find_unanchored(factory, chain)

    ids = asyncio.run(_run())
    for certificate_id in ids:
        anchor_certificate.delay(str(certificate_id))
    logger.info("anchor.retry_sweep", enqueued=len(ids))
    return {"enqueued": len(ids)}
