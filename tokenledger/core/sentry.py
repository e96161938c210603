"""Sentry initialisation shared by the API process and the Celery worker."""

import structlog
import sentry_sdk
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = structlog.get_logger()

_SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key"}
_SENSITIVE_KEYS = {"verification_code", "bank_account_number", "private_key"}


def _scrub_sensitive_data(event: dict, hint: dict) -> dict:
    """Remove auth headers and certificate/bank secrets before sending to Sentry."""
    request = event.get("request", {})
    headers = request.get("headers", {})
    for header in list(headers):
        if header.lower() in _SENSITIVE_HEADERS:
            headers[header] = "[REDACTED]"
    data = request.get("data")
    if isinstance(data, dict):
        for key in list(data):
            if key in _SENSITIVE_KEYS:
                data[key] = "[REDACTED]"
    return event


def init_sentry(
    dsn: str | None,
    environment: str = "development",
    release: str | None = None,
    worker: bool = False,
) -> None:
    """Initialise Sentry. No-op when dsn is None or empty."""
    if not dsn:
        logger.warning("sentry_disabled", reason="SENTRY_DSN not set")
        return

    is_prod = environment == "production"
    integrations = [SqlalchemyIntegration(), CeleryIntegration(monitor_beat_tasks=True)]
    if not worker:
        integrations.append(FastApiIntegration(transaction_style="endpoint"))

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release,
        traces_sample_rate=0.1 if is_prod else 1.0,
        integrations=integrations,
        send_default_pii=False,
        before_send=_scrub_sensitive_data,
    )
    logger.info("sentry_initialized", environment=environment, worker=worker)
