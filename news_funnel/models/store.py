"""
Article store — the operations the funnel and maintenance jobs need from persistence.

link_exists / insert back the writer; decay_relevance backs the weekly
maintenance job.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from news_funnel.core.logging import get_logger
from news_funnel.models.models import ArticleModel

logger = get_logger(__name__)


class ArticleInsert(BaseModel):
    """Insert payload. model_dump(mode="json") gives ISO timestamps."""

    title: str | None = None
    summary: str | None = None
    link: str | None = None
    article_date: datetime | None = None
    symbols: dict[str, list[str]] | None = None
    summarized_at: datetime
    relevance: int | None = None
    categories: list[str] | None = None


class ArticleStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def link_exists(self, link: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ArticleModel.id).where(ArticleModel.link == link).limit(1)
            )
            return result.first() is not None

    async def insert(self, payload: ArticleInsert) -> int:
        async with self._session_factory() as session:
            row = ArticleModel(**payload.model_dump())
            session.add(row)
            await session.commit()
            return row.id

    async def count(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(ArticleModel))
            return result.scalar_one()

    async def decay_relevance(self, step: int = 1, floor: int = 10) -> tuple[int, int]:
        """
        Age every scored article by `step`; delete those that would drop below `floor`.

        Returns (updated, deleted).
        """
        async with self._session_factory() as session:
            scored = ArticleModel.relevance > 0
            deleted = await session.execute(
                delete(ArticleModel)
                .where(scored, ArticleModel.relevance - step < floor)
                .execution_options(synchronize_session=False)
            )
            updated = await session.execute(
                update(ArticleModel)
                .where(scored)
                .values(relevance=ArticleModel.relevance - step)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        logger.info(
            "relevance_decayed",
            step=step,
            floor=floor,
            updated=updated.rowcount,
            deleted=deleted.rowcount,
        )
        return updated.rowcount, deleted.rowcount
