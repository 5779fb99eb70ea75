"""
FastAPI application entrypoint.

Lifespan:
  • On startup: verify DB connectivity, wire the gate (key store,
    verifier, rate limiter, usage accountant) onto app.state and start
    the rate-limiter sweep.
  • On shutdown: stop the sweep, dispose the engine cleanly.

Routers:
  • /v1/chat — metered completion endpoint (RequestGate)
  • /keys — API key lifecycle
  • /analytics — usage statistics
  • /billing — tier, limits and monthly usage
  • /admin — system-wide stats and the audit log (admin role)
  • /health — shallow liveness probe
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lynxa.auth.errors import StorageUnavailable
from lynxa.auth.verifier import KeyVerifier
from lynxa.core.config import settings
from lynxa.core.database import async_session_factory, check_connection, engine
from lynxa.routers.admin import router as admin_router
from lynxa.routers.analytics import router as analytics_router
from lynxa.routers.billing import router as billing_router
from lynxa.routers.chat import router as chat_router
from lynxa.routers.keys import router as keys_router
from lynxa.services.gate import RequestGate, epoch_ms
from lynxa.services.rate_limiter import InMemoryRateLimitStore, sweep_periodically
from lynxa.services.usage import UsageAccountant
from lynxa.stores.keys import SqlKeyStore
from lynxa.stores.usage import SqlUsageStore

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def build_gate(key_store: SqlKeyStore, usage_store: SqlUsageStore) -> RequestGate:
    """Assemble the request gate from its stores."""
    return RequestGate(
        verifier=KeyVerifier(key_store),
        limiter=InMemoryRateLimitStore(),
        accountant=UsageAccountant(usage_store),
        clock=epoch_ms,
    )


# ── Lifespan ────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""

    # Startup — verify DB is reachable
    try:
        await check_connection(engine)
        logger.info("Database connection verified ✓")
    except Exception:
        logger.warning(
            "Could not reach the database on startup. "
            "The app will start, but authenticated requests will answer 503 "
            "until the DB is available."
        )

    # Startup — wire collaborators
    key_store = SqlKeyStore(async_session_factory)
    app.state.key_store = key_store
    app.state.gate = build_gate(key_store, SqlUsageStore(async_session_factory))

    sweeper = asyncio.create_task(
        sweep_periodically(
            app.state.gate.limiter,
            settings.RATE_LIMIT_SWEEP_INTERVAL_S,
            epoch_ms,
        ),
    )

    yield  # ← application runs here

    # Shutdown — stop the sweep, clean up connection pool
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper

    await engine.dispose()
    logger.info("Database engine disposed ✓")


# ── App ─────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    description=(
        "API key authentication, rate limiting and usage accounting "
        "for the Lynxa AI API."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGIN.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(
    request: Request, exc: StorageUnavailable,
) -> JSONResponse:
    logger.error("Storage unavailable on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable."},
    )


# Mount routers
app.include_router(chat_router, prefix="/v1")
app.include_router(keys_router, prefix="/keys")
app.include_router(analytics_router, prefix="/analytics")
app.include_router(billing_router, prefix="/billing")
app.include_router(admin_router, prefix="/admin")


# ── Health check ────────────────────────────────────────────
@app.get(
    "/health",
    tags=["System"],
    summary="Liveness probe",
)
async def health_check() -> dict[str, str]:
    """Shallow health check — confirms the process is alive."""
    return {"status": "healthy"}
