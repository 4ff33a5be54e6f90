"""
Persistence writer — insert surviving articles, skipping links already stored.

No update-on-conflict: a stored link is counted as a conflict and left alone.
Articles without a link are always inserted. Store errors are recorded per
article and the loop keeps going.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError

from news_funnel.core.logging import get_logger
from news_funnel.models.store import ArticleInsert, ArticleStore
from news_funnel.pipeline.state import PipelineStats, RankedArticle, StageError

logger = get_logger(__name__)


def build_summary(points: list[str]) -> str | None:
    """Markdown bullet list, one '- ' line per summary point."""
    if not points:
        return None
    return "\n".join(f"- {p}" for p in points)


def build_insert_payload(article: RankedArticle, now: datetime | None = None) -> ArticleInsert:
    candidate = article.candidate
    analysis = article.analysis
    return ArticleInsert(
        title=candidate.title,
        summary=build_summary(analysis.summary_points),
        link=candidate.link or None,
        article_date=candidate.published_at,
        # tickers only; relevance/categories have their own columns
        symbols={"tickers": list(candidate.tickers)} if candidate.tickers else None,
        summarized_at=now or datetime.now(UTC),
        relevance=analysis.relevance_score,
        categories=list(analysis.categories) or None,
    )


class ArticleWriter:
    def __init__(self, store: ArticleStore) -> None:
        self.store = store

    async def persist(
        self,
        articles: list[RankedArticle],
        stats: PipelineStats,
        phase: Callable[[str], None] | None = None,
    ) -> None:
        for article in articles:
            if not article.title:
                continue
            payload = build_insert_payload(article)
            try:
                if payload.link and await self.store.link_exists(payload.link):
                    stats.conflicts += 1
                    if phase:
                        phase(f"UPSERT skip duplicate link={payload.link}")
                    continue
                await self.store.insert(payload)
            except SQLAlchemyError as e:
                stats.insert_errors += 1
                stats.errors.append(StageError(stage="insert", message=str(e), link=payload.link))
                logger.error("article_insert_failed", link=payload.link, error=str(e))
                continue

            stats.inserted += 1
            if phase and stats.inserted % 10 == 0:
                phase(f"UPSERT progress inserted={stats.inserted} conflicts={stats.conflicts}")
