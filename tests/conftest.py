"""
Shared pytest fixtures for unit and integration tests.

Uses FakeListChatModel for deterministic LLM mocking, so no API keys are needed.
Environment overrides are applied before any app module is imported so the
cached Settings see a throwaway SQLite database and zero delays.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

_TEST_DB_DIR = tempfile.mkdtemp(prefix="batch-articles-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{Path(_TEST_DB_DIR) / 'app.db'}")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")
os.environ.setdefault("BATCH_SUBMIT_RATE_LIMIT", "1000/minute")
os.environ.setdefault("GENERATION_BASE_DELAY", "0")
os.environ.setdefault("WINDOW_DELAY", "0")
os.environ.setdefault("WINDOW_JITTER", "0")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from app.agents.generation import GenerationClient, GenerationPolicy  # noqa: E402
from app.core.config import Settings  # noqa: E402
from app.models.database import init_models  # noqa: E402
from app.models.models import BatchRequest, BatchStatus  # noqa: E402
from app.services.storage import BatchStore  # noqa: E402
from tests.fakes import RecordingSleep, article_json, fake_llm, titles_json  # noqa: E402


# ── Fixtures ────────────────────────────────────────────────
@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        generation_max_attempts=3,
        generation_base_delay=0,
        window_delay=0,
        window_jitter=0,
    )


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_client(test_settings, recording_sleep):
    """Build a GenerationClient around fake models with a recorded, non-blocking sleep."""

    def _make(title_llm=None, article_llm=None, max_attempts: int = 3, base_delay: float = 2.0):
        policy = GenerationPolicy(max_attempts=max_attempts, base_delay=base_delay)
        return GenerationClient(
            title_llm=title_llm or fake_llm(titles_json(["A", "B", "C"])),
            article_llm=article_llm or fake_llm(article_json("Generated")),
            policy=policy,
            settings=test_settings,
            sleep=recording_sleep,
        )

    return _make


@pytest_asyncio.fixture
async def store(tmp_path):
    """A BatchStore on a fresh file-backed SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await init_models(engine)
    yield BatchStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
    await engine.dispose()


@pytest.fixture
def make_batch():
    """Transient BatchRequest rows for snapshot tests (never persisted)."""

    def _make(batch_id: int = 1, status: BatchStatus = BatchStatus.PENDING_TITLES, **overrides):
        fields = {
            "id": batch_id,
            "topics": "AI",
            "keywords": "ml",
            "count": 3,
            "status": status,
            "progress": 0,
            "generated_titles": [],
            "queue_position": 1,
        }
        fields.update(overrides)
        return BatchRequest(**fields)

    return _make
