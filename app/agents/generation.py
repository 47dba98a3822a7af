"""
Generation client — the only code that talks to the text-generation provider.

Two model routes, same as elsewhere in the service:
  - titles:   Flash at 0.7 temperature, short JSON answers
  - articles: Flash at 0.9 temperature, long HTML bodies wrapped in JSON

Every call goes through a tenacity retry loop. Generic failures back off
exponentially from the base delay; a rate-limit signal waits a flat
multiple of it instead. Malformed JSON is retried like any transient error
because generation output is non-deterministic.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import ValidationError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from app.agents.state import GeneratedArticle
from app.core.config import Settings, get_settings
from app.core.errors import (
    IncompleteTitlesError,
    MalformedResponseError,
    PersistenceError,
    ProviderError,
    StateError,
)
from app.core.logging import get_logger
from app.schemas.schemas import ArticlePayload, TitlesPayload

logger = get_logger(__name__)

TitleCallback = Callable[[int], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]

TITLES_SYSTEM_PROMPT = """You generate article titles from a set of topics and keywords.
Titles must be unique, specific and engaging. Work keywords in where they read naturally.
Respond ONLY with a JSON object of the form {"titles": ["Title 1", "Title 2", ...]}.
No markdown fences, no commentary."""

ARTICLE_SYSTEM_PROMPT = """You are a professional content writer who always answers with valid JSON.

Respond with a JSON object structured exactly as:
{"title": "<the provided title>", "content": "<full article body as HTML>"}
Escape every special character so the JSON parses.

Write a detailed article of 1200-1300 words on the given title:
- <h2> for main sections
- <h3> for subsections
- wrap every paragraph in <p>
- <ul> or <ol> for lists
Cover the topics and keywords naturally, with concrete examples and a professional tone."""

_RATE_LIMIT_MARKERS = ("429", "resource_exhausted", "resource exhausted", "rate limit", "quota")


def is_rate_limited(exc: BaseException | None) -> bool:
    """True when the provider signalled throttling rather than a generic failure."""
    if exc is None:
        return False
    for attr in ("status_code", "code", "status"):
        if getattr(exc, attr, None) == 429:
            return True
    response = getattr(exc, "response", None)
    if getattr(response, "status_code", None) == 429:
        return True
    message = f"{type(exc).__name__} {exc}".lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def _strip_fences(raw_text: str) -> str:
    raw_text = raw_text.strip()
    raw_text = re.sub(r"^```(?:json)?\s*", "", raw_text)
    return re.sub(r"\s*```$", "", raw_text).strip()


def _message_text(content) -> str:
    """Chat models may return a plain string or a list of content parts."""
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


@dataclass(frozen=True)
class GenerationPolicy:
    max_attempts: int = 10
    base_delay: float = 2.0
    rate_limit_multiplier: float = 5.0
    backoff_factor: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> GenerationPolicy:
        return cls(
            max_attempts=settings.generation_max_attempts,
            base_delay=settings.generation_base_delay,
            rate_limit_multiplier=settings.rate_limit_delay_multiplier,
            backoff_factor=settings.retry_backoff_factor,
        )

    def delay_for(self, attempt_number: int, exc: BaseException | None) -> float:
        if isinstance(exc, IncompleteTitlesError):
            return 0.0
        if is_rate_limited(exc):
            return self.base_delay * self.rate_limit_multiplier
        return self.base_delay * self.backoff_factor ** (attempt_number - 1)


def _is_retryable(exc: BaseException) -> bool:
    # Callback failures (store writes, state guards) belong to the caller.
    return not isinstance(exc, (PersistenceError, StateError))


class GenerationClient:
    def __init__(
        self,
        title_llm: BaseChatModel | None = None,
        article_llm: BaseChatModel | None = None,
        policy: GenerationPolicy | None = None,
        settings: Settings | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._title_llm = title_llm
        self._article_llm = article_llm
        self.policy = policy or GenerationPolicy.from_settings(self._settings)
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> GenerationClient:
        return cls(settings=settings)

    # ── Lazily built models (service boots without a provider key) ──
    @property
    def title_llm(self) -> BaseChatModel:
        if self._title_llm is None:
            from langchain_google_genai import ChatGoogleGenerativeAI

            self._title_llm = ChatGoogleGenerativeAI(
                model=self._settings.model_titles,
                temperature=self._settings.title_temperature,
                google_api_key=self._settings.google_api_key,
            )
        return self._title_llm

    @property
    def article_llm(self) -> BaseChatModel:
        if self._article_llm is None:
            from langchain_google_genai import ChatGoogleGenerativeAI

            self._article_llm = ChatGoogleGenerativeAI(
                model=self._settings.model_articles,
                temperature=self._settings.article_temperature,
                max_output_tokens=self._settings.article_max_tokens,
                google_api_key=self._settings.google_api_key,
            )
        return self._article_llm

    # ── Retry plumbing ──────────────────────────────────────
    def _wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        return self.policy.delay_for(retry_state.attempt_number, exc)

    def _log_retry(self, operation: str) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "generation_attempt_failed",
                operation=operation,
                attempt=retry_state.attempt_number,
                max_attempts=self.policy.max_attempts,
                rate_limited=is_rate_limited(exc),
                next_delay=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(exc),
            )

        return before_sleep

    def _retrying(self, operation: str) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._log_retry(operation),
            sleep=self._sleep,
            reraise=True,
        )

    # ── Titles ──────────────────────────────────────────────
    async def _titles_once(
        self,
        llm: BaseChatModel,
        topics: str,
        keywords: str,
        remaining: int,
        chunk_label: str,
    ) -> list[str]:
        messages = [
            SystemMessage(content=TITLES_SYSTEM_PROMPT),
            HumanMessage(
                content=(
                    f"Generate {remaining} unique, engaging article titles about: {topics}.\n"
                    f"Include these keywords where natural: {keywords}.\n"
                    f"{chunk_label}"
                )
            ),
        ]
        response = await llm.ainvoke(messages)
        raw_text = _strip_fences(_message_text(response.content))
        if not raw_text:
            raise MalformedResponseError("Provider returned empty content")
        try:
            payload = TitlesPayload.model_validate_json(raw_text)
        except ValidationError as e:
            raise MalformedResponseError(f"Failed to parse titles payload: {e}") from e
        return [t.strip() for t in payload.titles if t and t.strip()]

    async def request_titles(
        self,
        topics: str,
        keywords: str,
        desired_count: int,
        on_title: TitleCallback | None = None,
        chunk_label: str = "",
    ) -> list[str]:
        """
        Ask the provider for ``desired_count`` titles.

        Each attempt only asks for what is still missing. ``on_title`` is awaited
        with the running total after every accepted title. If the retry budget
        runs out after some titles were collected, the partial list is returned.
        """
        llm = self.title_llm
        titles: list[str] = []

        try:
            async for attempt in self._retrying("request_titles"):
                with attempt:
                    remaining = desired_count - len(titles)
                    received = await self._titles_once(llm, topics, keywords, remaining, chunk_label)
                    for title in received[:remaining]:
                        titles.append(title)
                        if on_title is not None:
                            await on_title(len(titles))
                    if len(titles) < desired_count:
                        raise IncompleteTitlesError(len(received), desired_count - len(titles))
        except (PersistenceError, StateError):
            raise
        except Exception as e:
            if titles:
                logger.warning(
                    "titles_partial_result",
                    requested=desired_count,
                    received=len(titles),
                    error=str(e),
                )
                return titles
            raise ProviderError(
                f"Failed to generate titles after {self.policy.max_attempts} attempts: {e}",
                last_error=e,
            ) from e

        logger.info("titles_generated", count=len(titles))
        return titles

    # ── Articles ────────────────────────────────────────────
    async def _article_once(
        self,
        llm: BaseChatModel,
        topics: str,
        keywords: str,
        title: str,
        position: str,
    ) -> GeneratedArticle:
        messages = [
            SystemMessage(content=ARTICLE_SYSTEM_PROMPT),
            HumanMessage(
                content=(
                    f"{position}Title: {title}\nTopics: {topics}\nKeywords: {keywords}\n\n"
                    "Make sure the article matches the title and follows the structure above."
                )
            ),
        ]
        response = await llm.ainvoke(messages)
        raw_text = _strip_fences(_message_text(response.content))
        if not raw_text:
            raise MalformedResponseError("Provider returned empty content")
        try:
            payload = ArticlePayload.model_validate_json(raw_text)
        except ValidationError as e:
            raise MalformedResponseError(f"Failed to parse article payload: {e}") from e
        return GeneratedArticle(title=payload.title, content=payload.content)

    async def request_article(
        self,
        topics: str,
        keywords: str,
        title: str,
        index: int | None = None,
        total: int | None = None,
    ) -> GeneratedArticle:
        llm = self.article_llm
        position = f"Generate article #{index + 1} of {total}.\n" if index is not None and total else ""

        try:
            async for attempt in self._retrying("request_article"):
                with attempt:
                    article = await self._article_once(llm, topics, keywords, title, position)
        except Exception as e:
            raise ProviderError(
                f"Failed to generate article after {self.policy.max_attempts} attempts: {e}",
                last_error=e,
            ) from e

        logger.info("article_generated", title=article["title"], chars=len(article["content"]))
        return article
