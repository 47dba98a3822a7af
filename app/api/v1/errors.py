"""
Map engine errors onto HTTP responses.

Only request-path errors reach these handlers; failures inside a running
phase are reported through the batch status instead.
"""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.core.errors import (
    BatchNotFoundError,
    BatchValidationError,
    PersistenceError,
    StateError,
)
from app.core.logging import get_logger

logger = get_logger(__name__)


async def _validation_error(request: Request, exc: BatchValidationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"error": str(exc)})


async def _not_found(request: Request, exc: BatchNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": str(exc)})


async def _state_error(request: Request, exc: StateError) -> JSONResponse:
    logger.info("request_rejected", path=request.url.path, reason=str(exc))
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"error": str(exc)})


async def _persistence_error(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("store_unavailable", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": "Record store unavailable"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BatchValidationError, _validation_error)
    app.add_exception_handler(BatchNotFoundError, _not_found)
    app.add_exception_handler(StateError, _state_error)
    app.add_exception_handler(PersistenceError, _persistence_error)
