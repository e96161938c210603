from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from tokenledger.core.config import settings
from tokenledger.core.errors import (
    global_exception_handler,
    http_exception_handler,
    ledger_exception_handler,
)
from tokenledger.core.exceptions import LedgerError
from tokenledger.middleware.security import (
    RequestBodySizeLimitMiddleware,
    SecurityHeadersMiddleware,
)
from tokenledger.middleware.tenant import TenantMiddleware

import tokenledger.models  # noqa: F401  (register all models at startup)

from tokenledger.auth.router import router as auth_router
from tokenledger.modules.anchoring.router import router as anchoring_router
from tokenledger.modules.approvals.router import router as approvals_router
from tokenledger.modules.certificates.router import public_router as verify_router
from tokenledger.modules.certificates.router import router as certificates_router
from tokenledger.modules.ledger.router import router as ledger_router
from tokenledger.modules.orders.router import router as orders_router
from tokenledger.core.chain import get_chain_client
from tokenledger.core.sentry import init_sentry

# ── Sentry: must be initialised BEFORE FastAPI app is created ────────────────
init_sentry(settings.SENTRY_DSN, settings.SENTRY_ENVIRONMENT, settings.APP_VERSION)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    chain = get_chain_client()
    logger.info(
        "Starting token ledger API",
        env=settings.APP_ENV,
        blockchain_enabled=chain.enabled,
        network=chain.network,
    )
    yield
    logger.info("Shutting down token ledger API")


_is_prod = settings.APP_ENV == "production"

app = FastAPI(
    title="Token Ledger API",
    description="Tokenized asset ledger, order settlement and ownership certificates.",
    version="0.1.0",
    docs_url=None if _is_prod else "/docs",
    redoc_url=None if _is_prod else "/redoc",
    openapi_url=None if _is_prod else "/openapi.json",
    lifespan=lifespan,
)

app.add_exception_handler(LedgerError, ledger_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, global_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
)
app.add_middleware(TenantMiddleware)
# Security middleware (added last = outermost = first to see requests, last to touch responses)
app.add_middleware(
    RequestBodySizeLimitMiddleware,  # type: ignore[arg-type]
    max_bytes=settings.MAX_REQUEST_BODY_BYTES,
)
app.add_middleware(
    SecurityHeadersMiddleware,  # type: ignore[arg-type]
    is_production=_is_prod,
)


# ── X-API-Version response header ────────────────────────────────────────────


@app.middleware("http")
async def add_version_header(request: Request, call_next) -> Response:
    response = await call_next(request)
    response.headers["X-API-Version"] = "v1"
    return response


# ── Health check (root-level, not under /v1) ─────────────────────────────────


@app.get("/health")
async def health_check() -> dict:
    """Deep health check: pings the database and Redis (the Celery broker)."""
    checks: dict[str, dict] = {}

    try:
        from sqlalchemy import text
        from tokenledger.core.database import async_session_factory
        async with async_session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy"}
    except Exception as exc:
        checks["database"] = {"status": "unhealthy", "error": str(exc)}

    try:
        from redis.asyncio import from_url as redis_from_url
        r = redis_from_url(settings.REDIS_URL, socket_connect_timeout=2)
        await r.ping()
        await r.aclose()
        checks["redis"] = {"status": "healthy"}
    except Exception as exc:
        checks["redis"] = {"status": "unhealthy", "error": str(exc)}

    chain = get_chain_client()
    checks["blockchain"] = {
        "status": "healthy" if chain.enabled else "disabled",
        "network": chain.network,
    }

    overall = (
        "healthy"
        if all(c["status"] in ("healthy", "disabled") for c in checks.values())
        else "degraded"
    )
    return {"status": overall, "service": "tokenledger-api", "checks": checks}


# ── /v1 versioned router ──────────────────────────────────────────────────────

api_v1 = APIRouter(prefix="/v1")

api_v1.include_router(auth_router)
api_v1.include_router(ledger_router)
api_v1.include_router(orders_router)
api_v1.include_router(certificates_router)
api_v1.include_router(anchoring_router)
api_v1.include_router(approvals_router)
api_v1.include_router(verify_router)

app.include_router(api_v1)
