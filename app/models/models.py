"""
SQLAlchemy 2.0 ORM models.

Two entities: BatchRequest (the unit of external identity, mutated by one
phase at a time) and Article (append-only child, immutable once written).
Uses mapped_column (SQLAlchemy 2.0 style) for type safety.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


# ── Enums ───────────────────────────────────────────────────
class BatchStatus(str, enum.Enum):
    PENDING_TITLES = "pending_titles"
    TITLES_READY = "titles_ready"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    def can_transition_to(self, target: BatchStatus) -> bool:
        return target in BATCH_TRANSITIONS[self]


_TERMINAL = frozenset(
    {BatchStatus.COMPLETED, BatchStatus.COMPLETED_WITH_ERRORS, BatchStatus.FAILED}
)

# Each phase hands off to the next; FAILED is reachable from either running phase.
BATCH_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PENDING_TITLES: frozenset({BatchStatus.TITLES_READY, BatchStatus.FAILED}),
    BatchStatus.TITLES_READY: frozenset({BatchStatus.PROCESSING}),
    BatchStatus.PROCESSING: frozenset(
        {BatchStatus.COMPLETED, BatchStatus.COMPLETED_WITH_ERRORS, BatchStatus.FAILED}
    ),
    BatchStatus.COMPLETED: frozenset(),
    BatchStatus.COMPLETED_WITH_ERRORS: frozenset(),
    BatchStatus.FAILED: frozenset(),
}


class ArticleStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"


# ── Models ──────────────────────────────────────────────────
class BatchRequest(Base):
    __tablename__ = "batch_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    topics: Mapped[str] = mapped_column(Text)
    keywords: Mapped[str] = mapped_column(Text)
    count: Mapped[int] = mapped_column(Integer)
    status: Mapped[BatchStatus] = mapped_column(
        Enum(BatchStatus), default=BatchStatus.PENDING_TITLES, index=True
    )
    progress: Mapped[int] = mapped_column(Integer, default=0)
    generated_titles: Mapped[list[str]] = mapped_column(JSON, default=list)
    queue_position: Mapped[int] = mapped_column(Integer)  # informational, not a lock
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

    articles: Mapped[list[Article]] = relationship(back_populates="batch")


class Article(Base):
    __tablename__ = "articles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("batch_requests.id"), index=True)
    title: Mapped[str] = mapped_column(Text)
    content: Mapped[str] = mapped_column(Text)  # generated HTML or failure message
    topics: Mapped[str] = mapped_column(Text)
    keywords: Mapped[str] = mapped_column(Text)
    status: Mapped[ArticleStatus] = mapped_column(Enum(ArticleStatus))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

    batch: Mapped[BatchRequest] = relationship(back_populates="articles")
