"""
Pydantic v2 schemas for API request/response validation, the subscriber
channel protocol, and the provider payloads.

Outgoing JSON uses camelCase keys (``queuePosition``, ``generatedTitles``)
so REST bodies and channel snapshots share one shape.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from app.models.models import ArticleStatus, BatchStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ── Batch submission ────────────────────────────────────────
class BatchCreateRequest(CamelModel):
    topics: str = Field(min_length=1, max_length=2000)
    keywords: str = Field(min_length=1, max_length=2000)
    count: int = Field(ge=1, le=2500)


class BatchResponse(CamelModel):
    id: int
    topics: str
    keywords: str
    count: int
    status: BatchStatus
    progress: int
    generated_titles: list[str] = Field(default_factory=list)
    queue_position: int
    created_at: datetime


class ApprovalResponse(CamelModel):
    message: str = "Article generation started"
    batch_id: int


class ArticleResponse(CamelModel):
    id: int
    batch_id: int
    title: str
    content: str
    topics: str
    keywords: str
    status: ArticleStatus
    created_at: datetime


# ── Subscriber channel: server → client ─────────────────────
class BatchSnapshot(CamelModel):
    """Reduced batch view pushed to subscribers on every mutation."""

    id: int
    status: BatchStatus
    progress: int
    queue_position: int
    # Only sent while titles await approval; large batches would bloat every update.
    generated_titles: list[str] | None = None

    @classmethod
    def from_batch(cls, batch) -> BatchSnapshot:
        return cls(
            id=batch.id,
            status=batch.status,
            progress=batch.progress,
            queue_position=batch.queue_position,
            generated_titles=(
                list(batch.generated_titles or [])
                if batch.status == BatchStatus.TITLES_READY
                else None
            ),
        )


class BatchUpdateMessage(CamelModel):
    type: Literal["BATCH_UPDATE"] = "BATCH_UPDATE"
    data: BatchSnapshot

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PongMessage(CamelModel):
    type: Literal["PONG"] = "PONG"


# ── Subscriber channel: client → server ─────────────────────
class SubscribeBatchMessage(CamelModel):
    type: Literal["SUBSCRIBE_BATCH"]
    batch_id: int


class PingMessage(CamelModel):
    type: Literal["PING"]


ClientMessage = Annotated[SubscribeBatchMessage | PingMessage, Field(discriminator="type")]
client_message_adapter: TypeAdapter[SubscribeBatchMessage | PingMessage] = TypeAdapter(ClientMessage)


# ── Provider payloads ───────────────────────────────────────
class TitlesPayload(BaseModel):
    titles: list[str]


class ArticlePayload(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)


# ── Health check ────────────────────────────────────────────
class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str = "0.1.0"
    environment: str
    database: str = "connected"
