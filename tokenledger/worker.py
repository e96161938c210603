"""
Celery worker for the token ledger.

Start worker:    celery -A tokenledger.worker worker --loglevel=info
Start beat:      celery -A tokenledger.worker beat --loglevel=info
Start both:      celery -A tokenledger.worker worker --beat --loglevel=info
"""
from celery import Celery
from celery.schedules import crontab

from tokenledger.core.celery_config import (
    CELERY_QUEUES,
    CELERY_TASK_ANNOTATIONS,
    CELERY_TASK_ROUTES,
)
from tokenledger.core.config import settings
from tokenledger.core.sentry import init_sentry

import tokenledger.models  # noqa: F401  (register all models for the task sessions)

celery_app = Celery(
    "tokenledger_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.REDIS_URL,
    include=[
        "tokenledger.tasks.anchoring",
        "tokenledger.tasks.maintenance",
    ],
)

init_sentry(settings.SENTRY_DSN, settings.SENTRY_ENVIRONMENT, settings.APP_VERSION, worker=True)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24h
    task_queues=CELERY_QUEUES,
    task_default_queue="default",
    task_routes=CELERY_TASK_ROUTES,
    task_annotations=CELERY_TASK_ANNOTATIONS,
)

celery_app.conf.beat_schedule = {
    # ── Blockchain anchoring retry ────────────────────────────────────────────
    "retry-unanchored-certificates": {
        "task": "tasks.retry_unanchored_certificates",
        "schedule": crontab(minute="*/30"),  # every 30 minutes
    },
    # ── Operation limiter retention ───────────────────────────────────────────
    "sweep-rate-limit-records": {
        "task": "tasks.sweep_rate_limit_records",
        "schedule": crontab(minute=5),  # hourly
    },
}
