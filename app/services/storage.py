"""
Record store for batches and articles.

Every call opens its own short-lived AsyncSession, so concurrent article
writes inside one window never share a session. SQLAlchemy failures surface
as PersistenceError; illegal status changes surface as StateError.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import PersistenceError, StateError
from app.core.logging import get_logger
from app.models.models import Article, ArticleStatus, BatchRequest, BatchStatus

logger = get_logger(__name__)


class BatchStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("store_operation_failed", operation=operation, error=str(e))
                raise PersistenceError(f"{operation} failed: {e}") from e

    # ── Batches ─────────────────────────────────────────────
    async def create_batch(self, topics: str, keywords: str, count: int) -> BatchRequest:
        async with self._session("create_batch") as session:
            last_position = await session.scalar(select(func.max(BatchRequest.queue_position)))
            batch = BatchRequest(
                topics=topics,
                keywords=keywords,
                count=count,
                status=BatchStatus.PENDING_TITLES,
                progress=0,
                generated_titles=[],
                queue_position=(last_position or 0) + 1,
            )
            session.add(batch)
            await session.flush()
        return batch

    async def get_batch(self, batch_id: int) -> BatchRequest | None:
        async with self._session("get_batch") as session:
            return await session.get(BatchRequest, batch_id)

    async def _require(self, session: AsyncSession, batch_id: int) -> BatchRequest:
        batch = await session.get(BatchRequest, batch_id)
        if batch is None:
            raise PersistenceError(f"Batch {batch_id} does not exist")
        return batch

    async def set_progress(self, batch_id: int, percent: int) -> BatchRequest:
        percent = max(0, min(100, int(percent)))
        async with self._session("set_progress") as session:
            batch = await self._require(session, batch_id)
            batch.progress = percent
        return batch

    async def set_titles(self, batch_id: int, titles: list[str]) -> BatchRequest:
        async with self._session("set_titles") as session:
            batch = await self._require(session, batch_id)
            batch.generated_titles = list(titles)
        return batch

    async def set_status(
        self, batch_id: int, status: BatchStatus, progress: int | None = None
    ) -> BatchRequest:
        """
        Move a batch to ``status`` if the transition table allows it.

        ``progress``, when given, is written by the same UPDATE so subscribers
        never see the new status paired with the previous phase's progress.

        The UPDATE is conditioned on the status that was read, so two callers
        racing for the same transition cannot both succeed.
        """
        async with self._session("set_status") as session:
            batch = await self._require(session, batch_id)
            current = batch.status
            if not current.can_transition_to(status):
                raise StateError(
                    f"Batch {batch_id} cannot move from {current.value} to {status.value}"
                )
            values: dict = {"status": status}
            if progress is not None:
                values["progress"] = max(0, min(100, int(progress)))
            result = await session.execute(
                update(BatchRequest)
                .where(BatchRequest.id == batch_id, BatchRequest.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StateError(f"Batch {batch_id} changed status concurrently")
            await session.refresh(batch)

        logger.info(
            "batch_status_changed",
            batch_id=batch_id,
            from_status=current.value,
            to_status=status.value,
        )
        return batch

    async def list_queued_batches(self) -> list[BatchRequest]:
        async with self._session("list_queued_batches") as session:
            result = await session.scalars(
                select(BatchRequest)
                .where(BatchRequest.status == BatchStatus.PENDING_TITLES)
                .order_by(BatchRequest.queue_position.asc())
            )
            return list(result)

    # ── Articles ────────────────────────────────────────────
    async def create_article(
        self,
        batch_id: int,
        title: str,
        content: str,
        topics: str,
        keywords: str,
        status: ArticleStatus,
    ) -> Article:
        async with self._session("create_article") as session:
            article = Article(
                batch_id=batch_id,
                title=title,
                content=content,
                topics=topics,
                keywords=keywords,
                status=status,
            )
            session.add(article)
            await session.flush()
        return article

    async def list_articles_by_batch(self, batch_id: int) -> list[Article]:
        async with self._session("list_articles_by_batch") as session:
            result = await session.scalars(
                select(Article).where(Article.batch_id == batch_id).order_by(Article.id.asc())
            )
            return list(result)
