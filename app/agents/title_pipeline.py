"""
Title phase: split the requested count into chunks and fill them one by one.

Chunks run sequentially so only one title request is ever in flight per
batch. Progress is reported after every accepted title; persisting it and
notifying subscribers is the caller's job.
"""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable

from app.agents.generation import GenerationClient
from app.core.logging import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]


def chunk_sizes(count: int, chunk_size: int) -> list[int]:
    """[50, 50, ..., remainder]: every chunk holds at most ``chunk_size`` titles."""
    if count <= chunk_size:
        return [count]
    total_chunks = math.ceil(count / chunk_size)
    return [min(chunk_size, count - i * chunk_size) for i in range(total_chunks)]


def title_progress(chunk_index: int, titles_in_chunk: int, chunk_size: int, count: int) -> int:
    """Percent of the whole request covered once ``titles_in_chunk`` of this chunk are in."""
    done = chunk_index * chunk_size + titles_in_chunk
    return max(0, min(100, round(done / count * 100)))


class ChunkedTitlePipeline:
    def __init__(self, client: GenerationClient, chunk_size: int = 50) -> None:
        self._client = client
        self.chunk_size = chunk_size

    async def run(
        self,
        topics: str,
        keywords: str,
        count: int,
        on_progress: ProgressCallback,
    ) -> list[str]:
        sizes = chunk_sizes(count, self.chunk_size)
        total_chunks = len(sizes)
        titles: list[str] = []
        last_reported = 0

        logger.info("title_generation_started", count=count, chunks=total_chunks)

        for chunk_index, size in enumerate(sizes):

            async def on_title(in_chunk: int, _chunk_index: int = chunk_index) -> None:
                nonlocal last_reported
                progress = title_progress(_chunk_index, in_chunk, self.chunk_size, count)
                # Never report a lower value than before within the phase.
                if progress > last_reported:
                    last_reported = progress
                    await on_progress(progress)

            logger.info(
                "title_chunk_started",
                chunk=chunk_index + 1,
                total_chunks=total_chunks,
                size=size,
            )
            chunk_titles = await self._client.request_titles(
                topics,
                keywords,
                size,
                on_title=on_title,
                chunk_label=f"This is chunk {chunk_index + 1} of {total_chunks}.",
            )
            titles.extend(chunk_titles)

        logger.info("title_generation_finished", requested=count, received=len(titles))
        return titles
