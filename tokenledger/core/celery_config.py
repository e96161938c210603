"""Celery queue topology: exchanges, queues, task routing, and per-task limits."""

from kombu import Exchange, Queue  # type: ignore[import-untyped]

# ── Exchanges ─────────────────────────────────────────────────────────────────

default_exchange = Exchange("default", type="direct")

# ── Queues ────────────────────────────────────────────────────────────────────

CELERY_QUEUES = (
    Queue("default", default_exchange, routing_key="default"),
    # Anchoring waits on chain receipts; isolated so it never delays housekeeping
    Queue("blockchain", default_exchange, routing_key="blockchain"),
    Queue("maintenance", default_exchange, routing_key="maintenance"),
)

# ── Task routing ──────────────────────────────────────────────────────────────

CELERY_TASK_ROUTES: dict[str, dict] = {
    "tasks.anchor_certificate":             {"queue": "blockchain"},
    "tasks.retry_unanchored_certificates":  {"queue": "blockchain"},
    "tasks.sweep_rate_limit_records":       {"queue": "maintenance"},
}

# ── Per-task rate limits and time limits ──────────────────────────────────────

CELERY_TASK_ANNOTATIONS: dict[str, dict] = {
    "tasks.anchor_certificate": {
        "rate_limit": "30/m",
        "time_limit": 180,
        "soft_time_limit": 150,
    },
    "tasks.retry_unanchored_certificates": {
        "time_limit": 120,
        "soft_time_limit": 100,
    },
    "tasks.sweep_rate_limit_records": {
        "time_limit": 300,
        "soft_time_limit": 270,
    },
}
