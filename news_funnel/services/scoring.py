"""
Scoring service access: Gemini via LangChain, plus the 429 backoff controller.

Tiered model routing:
  - title tier:    one call per batch of headlines (cheap pre-rank)
  - analysis tier: one call per group of ~20 articles (relevance, categories, bullets)

Each tier owns a RateLimiter and a BackoffController. Library retries are
disabled on the chat model so retry policy lives in exactly one place.
"""

from __future__ import annotations

import asyncio
import random
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from langchain_core.messages import HumanMessage

from news_funnel.core.errors import QuotaExceededError, RetriesExhaustedError, ScoringError
from news_funnel.core.logging import get_logger
from news_funnel.services.rate_limiter import RateLimiter

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from news_funnel.core.config import Settings

logger = get_logger(__name__)

MAX_JITTER_SECONDS = 0.3

_QUOTA_MARKERS = re.compile(r"RESOURCE_EXHAUSTED|\b429\b|Too Many Requests", re.IGNORECASE)
_RETRY_DELAY_JSON = re.compile(r"""retryDelay['"]?\s*[:=]\s*['"]?(\d+(?:\.\d+)?)s""")
_RETRY_DELAY_PROTO = re.compile(r"retry_delay\s*\{\s*seconds:\s*(\d+)")
_RETRY_DELAY_VALUE = re.compile(r"(\d+(?:\.\d+)?)s")


class Scorer(Protocol):
    async def generate(self, prompt: str) -> str: ...


# ═══════════════════════════════════════════════════════════════
# Quota detection
# ═══════════════════════════════════════════════════════════════
def _exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def is_quota_error(exc: BaseException) -> bool:
    for err in _exception_chain(exc):
        for attr in ("code", "status_code", "status"):
            if getattr(err, attr, None) == 429:
                return True
        if _QUOTA_MARKERS.search(str(err)):
            return True
    return False


def _retry_delay_from_details(details: Any) -> float | None:
    """Read RetryInfo.retryDelay out of a Google error payload."""
    if isinstance(details, dict):
        inner = details.get("error", details)
        details = inner.get("details") if isinstance(inner, dict) else None
    if not isinstance(details, list):
        return None
    for detail in details:
        if not isinstance(detail, dict) or "RetryInfo" not in str(detail.get("@type", "")):
            continue
        match = _RETRY_DELAY_VALUE.search(str(detail.get("retryDelay", "")))
        if match:
            return float(match.group(1))
    return None


def parse_retry_delay(exc: BaseException) -> float | None:
    """Server-advertised retry delay in seconds, if the error carries one."""
    for err in _exception_chain(exc):
        delay = _retry_delay_from_details(getattr(err, "details", None))
        if delay is None:
            delay = _retry_delay_from_details(getattr(err, "response_json", None))
        if delay is not None:
            return delay
        text = str(err)
        for pattern in (_RETRY_DELAY_JSON, _RETRY_DELAY_PROTO):
            match = pattern.search(text)
            if match:
                return float(match.group(1))
    return None


# ═══════════════════════════════════════════════════════════════
# Gemini scorer
# ═══════════════════════════════════════════════════════════════
def build_chat_model(model: str, settings: Settings) -> BaseChatModel:
    from langchain_google_genai import ChatGoogleGenerativeAI

    return ChatGoogleGenerativeAI(
        model=model,
        temperature=0,
        google_api_key=settings.google_api_key,
        max_retries=1,  # no library-level retry; BackoffController owns it
    )


def _response_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts)
    return ""


class GeminiScorer:
    """Single-prompt text generation; converts library errors to scoring errors."""

    def __init__(self, llm: BaseChatModel, tier: str) -> None:
        self._llm = llm
        self.tier = tier

    async def generate(self, prompt: str) -> str:
        try:
            response = await self._llm.ainvoke([HumanMessage(content=prompt)])
        except Exception as e:
            if is_quota_error(e):
                raise QuotaExceededError(str(e), retry_delay=parse_retry_delay(e)) from e
            raise ScoringError(f"{self.tier} scoring call failed: {e}") from e
        return _response_text(response.content).strip()


# ═══════════════════════════════════════════════════════════════
# Retry / backoff
# ═══════════════════════════════════════════════════════════════
class BackoffController:
    """
    Bounded retry on quota rejection.

    On 429: lower the tier's capacity, wait the server delay (or 2**attempt s)
    plus up to 300ms jitter, re-acquire a limiter slot and try again.
    Any other ScoringError propagates immediately.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        *,
        max_retries: int = 4,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self.limiter = limiter
        self.max_retries = max_retries
        self.retries = 0
        self._sleep = sleep
        self._jitter = jitter

    def backoff_seconds(self, attempt: int, retry_delay: float | None) -> float:
        base = retry_delay if retry_delay is not None else float(2**attempt)
        return base + self._jitter() * MAX_JITTER_SECONDS

    async def call(self, fn: Callable[[str], Awaitable[str]], prompt: str) -> str:
        await self.limiter.acquire()
        attempt = 0
        while True:
            try:
                return await fn(prompt)
            except QuotaExceededError as e:
                self.limiter.on_throttled()
                if attempt >= self.max_retries:
                    logger.error(
                        "scoring_retries_exhausted",
                        tier=self.limiter.label,
                        attempts=attempt + 1,
                    )
                    raise RetriesExhaustedError(
                        f"{self.limiter.label}: quota rejection after {attempt} retries"
                    ) from e
                wait = self.backoff_seconds(attempt, e.retry_delay)
                attempt += 1
                self.retries += 1
                logger.warning(
                    "scoring_quota_retry",
                    tier=self.limiter.label,
                    attempt=attempt,
                    wait_ms=int(wait * 1000),
                    capacity=self.limiter.current_capacity,
                )
                await self._sleep(wait)
                await self.limiter.acquire()


@dataclass
class ScoringTier:
    """A scorer bound to its own limiter and backoff controller."""

    name: str
    scorer: Scorer
    limiter: RateLimiter
    controller: BackoffController

    @classmethod
    def create(
        cls,
        name: str,
        scorer: Scorer,
        *,
        max_rpm: int,
        adaptive: bool = True,
        max_retries: int = 4,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] | None = None,
    ) -> ScoringTier:
        limiter_kwargs: dict[str, Any] = {"adaptive": adaptive, "sleep": sleep}
        if clock is not None:
            limiter_kwargs["clock"] = clock
        limiter = RateLimiter(max_rpm, name, **limiter_kwargs)
        controller = BackoffController(limiter, max_retries=max_retries, sleep=sleep)
        return cls(name=name, scorer=scorer, limiter=limiter, controller=controller)

    async def complete(self, prompt: str) -> str:
        return await self.controller.call(self.scorer.generate, prompt)
