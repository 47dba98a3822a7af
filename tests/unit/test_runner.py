"""End-to-end tests for the batch lifecycle: submit, titles, approve, articles."""

from __future__ import annotations

import pytest

from app.agents.runner import BatchRunner
from app.core.errors import BatchNotFoundError, BatchValidationError, StateError
from app.models.models import ArticleStatus, BatchStatus
from app.services.notifications import NotificationHub
from tests.fakes import RecordingChannel, RecordingSleep, article_json, fake_llm, titles_json


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub()


@pytest.fixture
def make_runner(store, hub, make_client, test_settings):
    def _make(title_llm=None, article_llm=None, max_attempts: int = 3) -> BatchRunner:
        client = make_client(
            title_llm=title_llm, article_llm=article_llm, max_attempts=max_attempts, base_delay=0
        )
        return BatchRunner(store, hub, client, test_settings, sleep=RecordingSleep())

    return _make


async def _watch(hub: NotificationHub, batch_id: int) -> RecordingChannel:
    channel = RecordingChannel()
    subscriber = await hub.register(channel)
    await hub.subscribe(subscriber, batch_id)
    return channel


class TestSubmission:
    @pytest.mark.asyncio
    async def test_create_returns_pending_batch_immediately(self, make_runner):
        runner = make_runner()
        batch = await runner.create_batch("AI", "ml", 3)

        assert batch.status == BatchStatus.PENDING_TITLES
        assert batch.progress == 0
        assert runner.active_tasks == 1
        await runner.drain()

    @pytest.mark.asyncio
    async def test_queue_position_follows_previous_batches(self, make_runner):
        runner = make_runner()
        first = await runner.create_batch("AI", "ml", 3)
        second = await runner.create_batch("AI", "ml", 3)
        await runner.drain()

        assert second.queue_position == first.queue_position + 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("topics", "keywords", "count"),
        [("", "ml", 3), ("AI", "   ", 3), ("AI", "ml", 0), ("AI", "ml", 2501)],
    )
    async def test_invalid_request_creates_nothing(self, make_runner, store, topics, keywords, count):
        runner = make_runner()

        with pytest.raises(BatchValidationError):
            await runner.create_batch(topics, keywords, count)

        assert await store.list_queued_batches() == []
        assert runner.active_tasks == 0


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_small_batch_happy_path(self, make_runner, store, hub):
        runner = make_runner(
            title_llm=fake_llm(titles_json(["Alpha", "Beta", "Gamma"])),
            article_llm=fake_llm(article_json("Written", "<h2>Part</h2><p>Text</p>")),
        )
        channel = await _watch(hub, 1)

        batch = await runner.create_batch("AI", "ml", 3)
        assert batch.id == 1
        await runner.drain()

        batch = await store.get_batch(batch.id)
        assert batch.status == BatchStatus.TITLES_READY
        assert batch.generated_titles == ["Alpha", "Beta", "Gamma"]
        assert batch.progress == 100

        title_updates = [m["data"] for m in channel.sent]
        progress = [d["progress"] for d in title_updates if d["status"] == "pending_titles"]
        assert progress == sorted(progress)
        assert title_updates[-1]["generatedTitles"] == ["Alpha", "Beta", "Gamma"]

        await runner.approve(batch.id)
        await runner.drain()

        batch = await store.get_batch(batch.id)
        assert batch.status == BatchStatus.COMPLETED
        assert batch.progress == 100
        articles = await store.list_articles_by_batch(batch.id)
        assert len(articles) == 3
        assert all(a.status == ArticleStatus.COMPLETED for a in articles)

        final = channel.sent[-1]["data"]
        assert final["status"] == "completed"
        assert "generatedTitles" not in final

    @pytest.mark.asyncio
    async def test_broken_article_provider_fails_batch(self, make_runner, store):
        runner = make_runner(
            title_llm=fake_llm(titles_json(["One", "Two", "Three"])),
            article_llm=fake_llm("this is not json"),
            max_attempts=2,
        )
        batch = await runner.create_batch("AI", "ml", 3)
        await runner.drain()
        await runner.approve(batch.id)
        await runner.drain()

        batch = await store.get_batch(batch.id)
        assert batch.status == BatchStatus.FAILED
        articles = await store.list_articles_by_batch(batch.id)
        assert len(articles) == 3
        assert all(a.status == ArticleStatus.FAILED for a in articles)
        assert all(a.content.startswith("Failed to generate article:") for a in articles)

    @pytest.mark.asyncio
    async def test_title_provider_failure_marks_batch_failed(self, make_runner, store, hub):
        runner = make_runner(title_llm=fake_llm("garbage"), max_attempts=2)
        channel = await _watch(hub, 1)

        batch = await runner.create_batch("AI", "ml", 3)
        await runner.drain()

        batch = await store.get_batch(batch.id)
        assert batch.status == BatchStatus.FAILED
        assert batch.generated_titles == []
        assert channel.sent[-1]["data"]["status"] == "failed"


class TestApproval:
    @pytest.mark.asyncio
    async def test_processing_progress_starts_at_zero(self, make_runner, hub):
        runner = make_runner()
        channel = await _watch(hub, 1)

        batch = await runner.create_batch("AI", "ml", 3)
        await runner.drain()
        await runner.approve(batch.id)
        await runner.drain()

        progress = [
            m["data"]["progress"] for m in channel.sent if m["data"]["status"] == "processing"
        ]
        assert progress[0] == 0
        assert progress == sorted(progress)
        assert progress[-1] == 100

    @pytest.mark.asyncio
    async def test_unknown_batch(self, make_runner):
        with pytest.raises(BatchNotFoundError):
            await make_runner().approve(42)

    @pytest.mark.asyncio
    async def test_pending_batch_is_rejected_unchanged(self, make_runner, store):
        batch = await store.create_batch("AI", "ml", 3)
        runner = make_runner()

        with pytest.raises(StateError, match="not ready"):
            await runner.approve(batch.id)

        assert (await store.get_batch(batch.id)).status == BatchStatus.PENDING_TITLES
        assert runner.active_tasks == 0

    @pytest.mark.asyncio
    async def test_ready_batch_without_titles_is_rejected(self, make_runner, store):
        batch = await store.create_batch("AI", "ml", 3)
        await store.set_status(batch.id, BatchStatus.TITLES_READY)

        with pytest.raises(StateError, match="No titles"):
            await make_runner().approve(batch.id)

        assert (await store.get_batch(batch.id)).status == BatchStatus.TITLES_READY

    @pytest.mark.asyncio
    async def test_second_approval_is_rejected(self, make_runner, store):
        runner = make_runner()
        batch = await runner.create_batch("AI", "ml", 3)
        await runner.drain()

        await runner.approve(batch.id)
        with pytest.raises(StateError):
            await runner.approve(batch.id)
        await runner.drain()


class TestShutdown:
    @pytest.mark.asyncio
    async def test_aclose_cancels_running_phases(self, make_runner):
        runner = make_runner()
        await runner.create_batch("AI", "ml", 3)

        await runner.aclose()
        assert runner.active_tasks == 0
