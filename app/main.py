"""
FastAPI application entry point.

Configures middleware, lifespan events, and mounts all routers.
Run locally: uvicorn app.main:app --reload
Production:  a single worker process; phase tasks and WebSocket subscribers
             live in this process's event loop.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from asgi_correlation_id import CorrelationIdMiddleware
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.agents.generation import GenerationClient
from app.agents.runner import BatchRunner
from app.api.v1.errors import register_exception_handlers
from app.api.v1.routes import approvals, batches, health, ws
from app.core.config import get_settings
from app.core.logging import get_logger, setup_logging
from app.core.security import limiter
from app.models.database import async_session, engine, init_models
from app.services.notifications import NotificationHub
from app.services.storage import BatchStore

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown events."""
    setup_logging()
    logger.info(
        "app_starting",
        environment=settings.app_env,
        database=settings.database_url[:30] + "...",
    )

    await init_models()

    hub = NotificationHub(
        heartbeat_interval=settings.ws_heartbeat_interval,
        max_missed_heartbeats=settings.ws_max_missed_heartbeats,
        send_timeout=settings.ws_send_timeout,
    )
    hub.start()
    app.state.hub = hub
    app.state.runner = BatchRunner(
        store=BatchStore(async_session),
        hub=hub,
        client=GenerationClient.from_settings(settings),
        settings=settings,
    )

    yield

    logger.info("app_shutting_down")
    await app.state.runner.aclose()
    await hub.stop()
    await engine.dispose()


app = FastAPI(
    title="Batch Article Generator",
    description="Two-phase bulk article generation with human title approval and live progress",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.app_env != "production" else None,
    redoc_url="/redoc" if settings.app_env != "production" else None,
)

# ── Middleware ──────────────────────────────────────────────
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Rate limiting ──────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── Engine errors → HTTP ───────────────────────────────────
register_exception_handlers(app)

# ── Routes ─────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(batches.router, prefix="/api/v1")
app.include_router(approvals.router, prefix="/api/v1")
app.include_router(ws.router)


@app.get("/")
async def root():
    return {
        "service": "Batch Article Generator",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/healthz/",
        "updates": "/ws/batch-updates",
    }
