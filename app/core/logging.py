"""
Structured logging for the batch engine via structlog.

Development renders coloured console lines; production renders JSON lines.
Two kinds of context ride along on every event:
  - ``request_id`` from the CorrelationIdMiddleware, for request-path events
  - ``batch_id`` / ``phase`` bound by the runner around each phase task,
    so provider retries and store writes deep in a pipeline stay attributable
"""

from __future__ import annotations

import logging
import sys

import structlog
from asgi_correlation_id import correlation_id

from app.core.config import Settings, get_settings

# Chatty at INFO: SQL echo, provider HTTP traffic, per-frame websocket logs.
_NOISY_LOGGERS = (
    "aiosqlite",
    "sqlalchemy.engine",
    "httpx",
    "httpcore",
    "google_genai",
    "langchain_google_genai",
    "websockets",
    "uvicorn.access",
)


def _add_request_id(_, __, event_dict: dict) -> dict:
    request_id = correlation_id.get()
    if request_id is not None:
        event_dict.setdefault("request_id", request_id)
    return event_dict


def setup_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]

    renderer: structlog.types.Processor
    if settings.app_env == "production":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Foreign (stdlib) records from uvicorn and friends get the same rendering.
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level.upper())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_batch_context(batch_id: int, phase: str):
    """Bind batch_id/phase onto every event logged inside the ``with`` block."""
    return structlog.contextvars.bound_contextvars(batch_id=batch_id, phase=phase)
