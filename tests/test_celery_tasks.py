"""Tests for Celery task infrastructure: queues, routing, beat schedule and task bodies."""

from datetime import timedelta

import pytest

from tests.conftest import CLIENT_ID, TENANT_ID, FakeChainClient, paid_order
from tokenledger.core.exceptions import AnchorError
from tokenledger.models.base import utcnow
from tokenledger.modules.certificates.service import CertificateService
from tokenledger.modules.orders.service import OrderService
from tokenledger.services.rate_limiter import rate_limiter
from tokenledger.tasks.anchoring import anchor_one, find_unanchored
from tokenledger.tasks.maintenance import sweep_records


# ── Queue topology ──────────────────────────────────────────────────────────


def test_queue_topology_defined() -> None:
    from tokenledger.core.celery_config import CELERY_QUEUES

    assert {q.name for q in CELERY_QUEUES} == {"default", "blockchain", "maintenance"}


def test_anchor_tasks_routed_to_blockchain_queue() -> None:
    from tokenledger.core.celery_config import CELERY_TASK_ROUTES

    assert CELERY_TASK_ROUTES["tasks.anchor_certificate"]["queue"] == "blockchain"
    assert CELERY_TASK_ROUTES["tasks.retry_unanchored_certificates"]["queue"] == "blockchain"
    assert CELERY_TASK_ROUTES["tasks.sweep_rate_limit_records"]["queue"] == "maintenance"


def test_task_annotations_have_timeouts() -> None:
    from tokenledger.core.celery_config import CELERY_TASK_ANNOTATIONS

    for task, annotations in CELERY_TASK_ANNOTATIONS.items():
        assert "time_limit" in annotations, f"Task {task} missing time_limit"
        assert annotations["soft_time_limit"] < annotations["time_limit"]


def test_beat_schedule_targets_registered_tasks() -> None:
    from tokenledger.worker import celery_app

    scheduled = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
    assert scheduled == {"tasks.retry_unanchored_certificates", "tasks.sweep_rate_limit_records"}

    celery_app.loader.import_default_modules()
    for name in scheduled | {"tasks.anchor_certificate"}:
        assert name in celery_app.tasks, f"{name} not registered"


def test_session_factory_is_async_context_manager() -> None:
    from tokenledger.core.celery_db import task_session_factory

    assert hasattr(task_session_factory(), "__aenter__")


# ── Task bodies ─────────────────────────────────────────────────────────────


async def _certificate(db, asset):
    order = await paid_order(db, asset.id, CLIENT_ID, 10)
    result = await OrderService(db, TENANT_ID).complete(order.id)
    await db.commit()
    return result.certificate


@pytest.mark.anyio
async def test_anchor_one(db, session_factory, asset, chain):
    cert = await _certificate(db, asset)

    result = await anchor_one(session_factory, chain, cert.id)
    assert result["certificate_id"] == str(cert.id)
    assert result["already_certified"] is False

    again = await anchor_one(session_factory, chain, cert.id)
    assert again["tx_hash"] == result["tx_hash"]
    assert again["already_certified"] is True

    async with session_factory() as fresh:
        stored = await CertificateService(fresh, TENANT_ID).get(cert.id)
        assert stored.blockchain_tx_hash == result["tx_hash"]


@pytest.mark.anyio
async def test_anchor_one_failure_raises_for_retry(db, session_factory, asset):
    cert = await _certificate(db, asset)
    with pytest.raises(AnchorError):
        await anchor_one(session_factory, FakeChainClient(fail=True), cert.id)


@pytest.mark.anyio
async def test_find_unanchored(db, session_factory, asset, chain):
    cert = await _certificate(db, asset)
    assert await find_unanchored(session_factory, chain) == [cert.id]
    await anchor_one(session_factory, chain, cert.id)
    assert await find_unanchored(session_factory, chain) == []


@pytest.mark.anyio
async def test_sweep_records(db, session_factory):
    old = utcnow() - timedelta(hours=5)
    await rate_limiter.register(db, TENANT_ID, CLIENT_ID, "order_buy", now=old)
    await db.commit()

    assert await sweep_records(session_factory) == 1
    assert await sweep_records(session_factory) == 0
