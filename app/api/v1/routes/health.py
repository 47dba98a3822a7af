"""Health check endpoint — used by the platform healthcheck and monitoring."""

from __future__ import annotations

from fastapi import APIRouter

from app.core.config import get_settings
from app.models.database import ping_database
from app.schemas.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/healthz/", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    settings = get_settings()
    database_ok = await ping_database()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        environment=settings.app_env,
        database="connected" if database_ok else "unreachable",
    )
