"""
Human-in-the-loop approval endpoint.

POST /api/v1/batch/{batch_id}/approve — accept the generated titles and
start article generation. Only valid while the batch is titles_ready.
"""

from __future__ import annotations

from fastapi import APIRouter

from app.api.v1.deps import AuthenticatedUser, Runner
from app.core.logging import get_logger
from app.schemas.schemas import ApprovalResponse

router = APIRouter(prefix="/batch", tags=["approvals"])
logger = get_logger(__name__)


@router.post("/{batch_id}/approve", response_model=ApprovalResponse)
async def approve_titles(
    batch_id: int,
    runner: Runner,
    _api_key: AuthenticatedUser,
) -> ApprovalResponse:
    """
    Approve the titles of a batch awaiting review.

    Rejected with 409 when the batch is in any other state or has no titles;
    the batch is left untouched in that case.
    """
    batch = await runner.approve(batch_id)
    logger.info("approval_processed", batch_id=batch_id, titles=len(batch.generated_titles))
    return ApprovalResponse(batch_id=batch_id)
