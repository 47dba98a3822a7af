"""
Value types passed between the generation client, the pipelines and the runner.

Design principle: the batch row in the store is the single source of truth;
these are transient results that never outlive one phase.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict

from app.models.models import BatchStatus


class GeneratedArticle(TypedDict):
    title: str
    content: str  # HTML body: <h2>, <h3>, <p>, <ul>/<ol>


@dataclass
class ArticleBatchResult:
    total: int
    success_count: int = 0
    failure_count: int = 0

    @property
    def processed(self) -> int:
        return self.success_count + self.failure_count

    @property
    def final_status(self) -> BatchStatus:
        if self.failure_count == 0:
            return BatchStatus.COMPLETED
        if self.failure_count == self.total:
            return BatchStatus.FAILED
        return BatchStatus.COMPLETED_WITH_ERRORS
