"""
Centralised configuration via Pydantic Settings.

Reads from .env in dev and from environment variables in production.
Pipeline policy values (chunk sizes, retry budget, delays) live here so they
can be tuned per deployment without touching the engine.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Application ─────────────────────────────────────────
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ── Database ────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./dev.db"

    @field_validator("database_url", mode="before")
    @classmethod
    def assemble_db_url(cls, v: str) -> str:
        """Hosting providers inject postgres:// but SQLAlchemy needs postgresql+asyncpg://."""
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://"):
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.database_url

    # ── LLM: Gemini ────────────────────────────────────────
    google_api_key: str = ""

    # Model routing
    model_titles: str = "gemini-2.5-flash"
    model_articles: str = "gemini-2.5-flash"
    title_temperature: float = 0.7
    article_temperature: float = 0.9
    article_max_tokens: int = 4096

    # ── Security ────────────────────────────────────────────
    api_key: str = "change-me"
    batch_submit_rate_limit: str = "20/minute"

    # ── Title phase ─────────────────────────────────────────
    title_chunk_size: int = Field(default=50, ge=1)
    max_titles_per_batch: int = Field(default=2500, ge=1)

    # ── Provider retry policy ───────────────────────────────
    generation_max_attempts: int = Field(default=10, ge=1)
    generation_base_delay: float = Field(default=2.0, ge=0, description="Seconds")
    rate_limit_delay_multiplier: float = Field(
        default=5.0, ge=0, description="Rate-limited retries wait base_delay * this"
    )
    retry_backoff_factor: float = Field(default=2.0, ge=1)

    # ── Article phase ───────────────────────────────────────
    article_window_size: int = Field(default=50, ge=1)
    failure_streak_threshold: int = Field(
        default=3, ge=1, description="Consecutive article failures that abort a batch"
    )
    window_delay: float = Field(default=5.0, ge=0, description="Seconds between windows")
    window_jitter: float = Field(default=2.0, ge=0, description="Max random extra seconds")

    # ── Subscriber channel ──────────────────────────────────
    ws_heartbeat_interval: float = Field(default=30.0, gt=0)
    ws_max_missed_heartbeats: int = Field(
        default=2, ge=1, description="Silent heartbeat intervals before a connection is closed"
    )
    ws_send_timeout: float = Field(default=5.0, gt=0, description="Seconds per subscriber send")


@lru_cache
def get_settings() -> Settings:
    return Settings()
