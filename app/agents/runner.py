"""
Batch runner: the lifecycle engine that ties store, pipelines and hub together.

Flow:
  create_batch → PENDING_TITLES → [title phase task] → TITLES_READY
  approve      → PROCESSING     → [article phase task] → COMPLETED |
                                   COMPLETED_WITH_ERRORS | FAILED

Phases run as fire-and-forget asyncio tasks; the request that starts one
returns right away. Anything a phase raises is caught at the task boundary,
logged, and turned into a FAILED transition. Every mutation is published.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from app.agents.article_pipeline import ArticleBatchPipeline
from app.agents.generation import GenerationClient
from app.agents.title_pipeline import ChunkedTitlePipeline
from app.core.config import Settings
from app.core.errors import (
    BatchEngineError,
    BatchNotFoundError,
    BatchValidationError,
    StateError,
)
from app.core.logging import bind_batch_context, get_logger
from app.models.models import BatchRequest, BatchStatus
from app.services.notifications import NotificationHub
from app.services.storage import BatchStore

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class BatchRunner:
    def __init__(
        self,
        store: BatchStore,
        hub: NotificationHub,
        client: GenerationClient,
        settings: Settings,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store
        self.hub = hub
        self.settings = settings
        self.title_pipeline = ChunkedTitlePipeline(client, chunk_size=settings.title_chunk_size)
        self.article_pipeline = ArticleBatchPipeline(
            client,
            store,
            window_size=settings.article_window_size,
            failure_threshold=settings.failure_streak_threshold,
            window_delay=settings.window_delay,
            window_jitter=settings.window_jitter,
            sleep=sleep,
        )
        self._tasks: set[asyncio.Task] = set()

    # ── Request-path actions ────────────────────────────────
    async def create_batch(self, topics: str, keywords: str, count: int) -> BatchRequest:
        """Store a new batch and start its title phase. Returns immediately."""
        topics, keywords = topics.strip(), keywords.strip()
        if not topics or not keywords:
            raise BatchValidationError("Topics and keywords are required")
        if not 1 <= count <= self.settings.max_titles_per_batch:
            raise BatchValidationError(
                f"Count must be between 1 and {self.settings.max_titles_per_batch}"
            )

        batch = await self.store.create_batch(topics, keywords, count)
        logger.info(
            "batch_created",
            batch_id=batch.id,
            count=count,
            queue_position=batch.queue_position,
        )
        await self.hub.publish(batch)
        self._spawn(batch.id, "titles", self._run_title_phase)
        return batch

    async def approve(self, batch_id: int) -> BatchRequest:
        """Accept the generated titles and start the article phase."""
        batch = await self.store.get_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Batch {batch_id} not found")
        if batch.status != BatchStatus.TITLES_READY:
            raise StateError("Batch is not ready for title approval")
        if not batch.generated_titles:
            raise StateError("No titles available")

        # The article phase starts from 0 in the same write that opens it.
        batch = await self.store.set_status(batch_id, BatchStatus.PROCESSING, progress=0)
        logger.info("batch_approved", batch_id=batch_id, titles=len(batch.generated_titles))
        await self.hub.publish(batch)
        self._spawn(batch_id, "articles", self._run_article_phase)
        return batch

    # ── Task management ─────────────────────────────────────
    def _spawn(
        self,
        batch_id: int,
        phase: str,
        body: Callable[[int], Awaitable[None]],
    ) -> asyncio.Task:
        task = asyncio.create_task(
            self._guarded(batch_id, phase, body), name=f"batch-{batch_id}-{phase}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guarded(
        self,
        batch_id: int,
        phase: str,
        body: Callable[[int], Awaitable[None]],
    ) -> None:
        with bind_batch_context(batch_id, phase):
            logger.info("batch_phase_started")
            try:
                await body(batch_id)
            except Exception as e:
                logger.error("batch_phase_failed", error=str(e), error_type=type(e).__name__)
                await self._mark_failed(batch_id)
            else:
                logger.info("batch_phase_finished")

    async def _mark_failed(self, batch_id: int) -> None:
        """Best effort: the store may be the reason the phase failed."""
        try:
            batch = await self.store.set_status(batch_id, BatchStatus.FAILED)
            await self.hub.publish(batch)
        except BatchEngineError as e:
            logger.error("batch_mark_failed_error", error=str(e))

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every phase task started so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel running phases on shutdown; batches keep their last recorded status."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            logger.warning("batch_phases_cancelled", count=len(self._tasks))
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Phases ──────────────────────────────────────────────
    async def _set_progress(self, batch_id: int, percent: int) -> None:
        batch = await self.store.set_progress(batch_id, percent)
        await self.hub.publish(batch)

    async def _run_title_phase(self, batch_id: int) -> None:
        batch = await self.store.get_batch(batch_id)
        if batch is None:
            raise StateError(f"Batch {batch_id} disappeared before title generation")

        await self._set_progress(batch_id, 0)

        async def on_progress(percent: int) -> None:
            await self._set_progress(batch_id, percent)

        titles = await self.title_pipeline.run(batch.topics, batch.keywords, batch.count, on_progress)

        await self.store.set_titles(batch_id, titles)
        batch = await self.store.set_status(batch_id, BatchStatus.TITLES_READY)
        await self.hub.publish(batch)
        logger.info("titles_ready", requested=batch.count, generated=len(titles))

    async def _run_article_phase(self, batch_id: int) -> None:
        batch = await self.store.get_batch(batch_id)
        if batch is None:
            raise StateError(f"Batch {batch_id} disappeared before article generation")

        async def on_progress(percent: int) -> None:
            await self._set_progress(batch_id, percent)

        result = await self.article_pipeline.run(
            batch_id,
            batch.topics,
            batch.keywords,
            list(batch.generated_titles),
            on_progress,
        )

        batch = await self.store.set_status(batch_id, result.final_status)
        await self.hub.publish(batch)
        logger.info(
            "batch_finished",
            status=result.final_status.value,
            succeeded=result.success_count,
            failed=result.failure_count,
        )
