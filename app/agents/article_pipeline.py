"""
Article phase: one generation call per approved title.

Titles are processed in fixed-size windows. Requests inside a window run
concurrently; windows run strictly in order with a jittered pause between
them. Every attempt leaves an Article row behind, failed ones included, so
the article count of a finished batch always equals its title count.

A run of consecutive failures trips the circuit breaker and aborts the
phase: at that point the provider is broken, not the titles.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable

from app.agents.generation import GenerationClient
from app.agents.state import ArticleBatchResult
from app.core.errors import FailureStreakError
from app.core.logging import get_logger
from app.models.models import ArticleStatus
from app.services.storage import BatchStore

logger = get_logger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]


class ArticleBatchPipeline:
    def __init__(
        self,
        client: GenerationClient,
        store: BatchStore,
        window_size: int = 50,
        failure_threshold: int = 3,
        window_delay: float = 5.0,
        window_jitter: float = 2.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._store = store
        self.window_size = window_size
        self.failure_threshold = failure_threshold
        self.window_delay = window_delay
        self.window_jitter = window_jitter
        self._sleep = sleep

    async def run(
        self,
        batch_id: int,
        topics: str,
        keywords: str,
        titles: list[str],
        on_progress: ProgressCallback,
    ) -> ArticleBatchResult:
        total = len(titles)
        result = ArticleBatchResult(total=total)
        consecutive_failures = 0

        async def generate_one(title: str, index: int) -> None:
            nonlocal consecutive_failures
            try:
                article = await self._client.request_article(
                    topics, keywords, title, index=index, total=total
                )
            except Exception as e:
                result.failure_count += 1
                consecutive_failures += 1
                logger.error(
                    "article_generation_failed",
                    index=index + 1,
                    total=total,
                    title=title,
                    error=str(e),
                )
                await self._store.create_article(
                    batch_id=batch_id,
                    title=title,
                    content=f"Failed to generate article: {e}",
                    topics=topics,
                    keywords=keywords,
                    status=ArticleStatus.FAILED,
                )
                return

            await self._store.create_article(
                batch_id=batch_id,
                title=article["title"],
                content=article["content"],
                topics=topics,
                keywords=keywords,
                status=ArticleStatus.COMPLETED,
            )
            result.success_count += 1
            consecutive_failures = 0

        for window_start in range(0, total, self.window_size):
            window = titles[window_start : window_start + self.window_size]
            logger.info(
                "article_window_started",
                start=window_start + 1,
                end=window_start + len(window),
                total=total,
            )

            outcomes = await asyncio.gather(
                *(generate_one(title, window_start + i) for i, title in enumerate(window)),
                return_exceptions=True,
            )
            # Only store failures escape generate_one; they end the phase.
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome

            processed = window_start + len(window)
            await on_progress(round(processed / total * 100))

            if consecutive_failures >= self.failure_threshold:
                logger.error(
                    "article_circuit_breaker_tripped",
                    consecutive_failures=consecutive_failures,
                    processed=processed,
                    total=total,
                )
                raise FailureStreakError(consecutive_failures)

            if processed < total:
                await self._sleep(self.window_delay + random.uniform(0, self.window_jitter))

        logger.info(
            "article_batch_finished",
            succeeded=result.success_count,
            failed=result.failure_count,
            status=result.final_status.value,
        )
        return result
