"""
Batch submission and status endpoints.

POST /api/v1/batch                 — submit a batch (title phase starts in background)
GET  /api/v1/batch/queue           — batches still waiting for titles
GET  /api/v1/batch/{id}            — poll one batch
GET  /api/v1/batch/{id}/articles   — every article row of a batch
GET  /api/v1/batch/{id}/download   — zip of the successfully generated articles
"""

from fastapi import APIRouter, Request, Response

from app.api.v1.deps import AuthenticatedUser, Runner
from app.core.config import get_settings
from app.core.errors import BatchNotFoundError
from app.core.logging import get_logger
from app.core.security import limiter
from app.schemas.schemas import ArticleResponse, BatchCreateRequest, BatchResponse
from app.services.archive import build_article_archive

router = APIRouter(prefix="/batch", tags=["batches"])
logger = get_logger(__name__)


def _submit_limit() -> str:
    return get_settings().batch_submit_rate_limit


@router.post("", response_model=BatchResponse)
@limiter.limit(_submit_limit)
async def create_batch(
    request: Request,
    body: BatchCreateRequest,
    runner: Runner,
    _api_key: AuthenticatedUser,
) -> BatchResponse:
    """Create a batch. Returns immediately; follow progress over the WebSocket channel."""
    batch = await runner.create_batch(body.topics, body.keywords, body.count)
    return BatchResponse.model_validate(batch)


@router.get("/queue", response_model=list[BatchResponse])
async def get_queue(runner: Runner, _api_key: AuthenticatedUser) -> list[BatchResponse]:
    batches = await runner.store.list_queued_batches()
    return [BatchResponse.model_validate(b) for b in batches]


@router.get("/{batch_id}", response_model=BatchResponse)
async def get_batch(batch_id: int, runner: Runner, _api_key: AuthenticatedUser) -> BatchResponse:
    batch = await runner.store.get_batch(batch_id)
    if batch is None:
        raise BatchNotFoundError(f"Batch {batch_id} not found")
    return BatchResponse.model_validate(batch)


@router.get("/{batch_id}/articles", response_model=list[ArticleResponse])
async def get_articles(
    batch_id: int, runner: Runner, _api_key: AuthenticatedUser
) -> list[ArticleResponse]:
    articles = await runner.store.list_articles_by_batch(batch_id)
    return [ArticleResponse.model_validate(a) for a in articles]


@router.get("/{batch_id}/download")
async def download_articles(batch_id: int, runner: Runner, _api_key: AuthenticatedUser) -> Response:
    articles = await runner.store.list_articles_by_batch(batch_id)
    payload = build_article_archive(articles)
    logger.info("articles_downloaded", batch_id=batch_id, articles=len(articles), bytes=len(payload))
    return Response(
        content=payload,
        media_type="application/zip",
        headers={"Content-Disposition": f"attachment; filename=articles-{batch_id}.zip"},
    )
