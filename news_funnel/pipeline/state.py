"""
Pipeline data model and LangGraph state.

Design principle: normalise raw feed items once at ingestion (Candidate.from_feed_item),
so every downstream node sees a single shape. Analysis output from the model is
coerced defensively; a failed analysis is an explicit marker, never a crash.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Any, Literal, TypedDict

from pydantic import BaseModel, Field

from news_funnel.core.logging import get_logger

logger = get_logger(__name__)

# Closed vocabulary the analysis prompt asks the model to draw from
CATEGORIES: tuple[str, ...] = (
    "Macroeconomics & Policy",
    "Market Analysis & Sentiment",
    "Geopolitics & Regulation",
    "Corporate Earnings & Guidance",
    "Mergers & Acquisitions (M&A)",
    "Technology Sector",
    "Energy & Commodities",
    "Healthcare & Pharma",
    "Consumer & Retail",
    "Digital Assets & Crypto",
)
_CATEGORY_SET = frozenset(CATEGORIES)

MAX_SUMMARY_POINTS = 5

RunMode = Literal["manual", "cron"]


def _first_present(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            logger.warning("candidate_date_unparseable", value=str(value)[:64])
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _coerce_tickers(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items: list[Any] = value.split(",")
    elif isinstance(value, list | tuple):
        items = list(value)
    else:
        items = [value]

    tickers: list[str] = []
    for item in items:
        if isinstance(item, dict):
            item = item.get("symbol") or item.get("ticker")
        if item is None:
            continue
        symbol = str(item).strip()
        if symbol and symbol not in tickers:
            tickers.append(symbol)
    return tickers


# ── Candidate ───────────────────────────────────────────────
class Candidate(BaseModel):
    """A raw feed item before any scoring."""

    title: str = ""
    content: str = ""
    published_at: datetime | None = None
    link: str | None = None
    tickers: list[str] = Field(default_factory=list)

    @classmethod
    def from_feed_item(cls, raw: dict[str, Any]) -> Candidate:
        """Adapter from the upstream feed's loose shape to a Candidate."""
        title = _first_present(raw, "title", "headline")
        content = _first_present(raw, "content", "summary", "description")
        link = _first_present(raw, "link", "url")
        return cls(
            title=str(title).strip() if title is not None else "",
            content=str(content) if content is not None else "",
            published_at=parse_timestamp(_first_present(raw, "date", "published_at", "time")),
            link=str(link).strip() if link is not None else None,
            tickers=_coerce_tickers(_first_present(raw, "symbols", "tickers")),
        )


class TitleScore(BaseModel):
    candidate_index: int
    score: int = Field(ge=0, le=100)


# ── Analysis ────────────────────────────────────────────────
class AnalysisResult(BaseModel):
    relevance_score: int = 0
    categories: list[str] = Field(default_factory=list)
    summary_points: list[str] = Field(default_factory=list)
    analysis_failed: bool = False

    @classmethod
    def failed(cls) -> AnalysisResult:
        return cls(analysis_failed=True)

    @classmethod
    def from_model(cls, raw: Any) -> AnalysisResult:
        """Coerce one per-article object from the model into range and vocabulary."""
        if not isinstance(raw, dict):
            return cls.failed()

        try:
            score = int(float(raw.get("relevance_score", 0)))
        except (TypeError, ValueError, OverflowError):
            score = 0

        categories: list[str] = []
        raw_categories = raw.get("categories")
        if isinstance(raw_categories, list):
            for cat in raw_categories:
                if isinstance(cat, str) and cat.strip() in _CATEGORY_SET:
                    if cat.strip() not in categories:
                        categories.append(cat.strip())

        points: list[str] = []
        raw_points = raw.get("summary_points")
        if isinstance(raw_points, list):
            points = [p.strip() for p in raw_points if isinstance(p, str) and p.strip()]

        return cls(
            relevance_score=max(0, min(100, score)),
            categories=categories,
            summary_points=points[:MAX_SUMMARY_POINTS],
        )


class RankedArticle(BaseModel):
    candidate: Candidate
    analysis: AnalysisResult

    @property
    def title(self) -> str:
        return self.candidate.title

    @property
    def relevance_score(self) -> int:
        return self.analysis.relevance_score


# ── Run statistics ──────────────────────────────────────────
class ZeroReason(str, enum.Enum):
    MISSING_ENV = "missing_env"
    NO_ARTICLES_RETURNED = "no_articles_returned"
    ANALYSIS_FAILED_ALL = "analysis_failed_all"
    ALL_INSERTS_FAILED = "all_inserts_failed"
    ALL_DUPLICATES = "all_duplicates"
    UNKNOWN = "unknown"


class StageError(BaseModel):
    stage: str  # "config" | "fetch" | "insert" | "pipeline"
    message: str
    link: str | None = None


class PipelineStats(BaseModel):
    run_id: str
    mode: RunMode
    date_from: str
    date_to: str
    candidate_limit: int = 0
    result_limit: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    fetched_total: int = 0
    fetch_batches: int = 0
    analyzed: int = 0
    kept_ranked: int = 0
    final_after_dedupe: int = 0
    inserted: int = 0
    conflicts: int = 0
    insert_errors: int = 0
    scoring_retries: int = 0
    errors: list[StageError] = Field(default_factory=list)

    zero_reason: ZeroReason | None = None
    error: str | None = None
    duration_ms: int = 0


class PhaseEvent(BaseModel):
    elapsed_ms: int
    message: str


# ── LangGraph state ─────────────────────────────────────────
class PipelineState(TypedDict, total=False):
    """State flowing between graph nodes. Counters live on PipelineStats."""

    run_id: str
    mode: RunMode
    date_from: str
    date_to: str

    candidates: list[Candidate]
    selected: list[Candidate]
    analyzed: list[RankedArticle]
    ranked: list[RankedArticle]
    final: list[RankedArticle]

    current_step: str
