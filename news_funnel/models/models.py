"""
SQLAlchemy 2.0 ORM models.

One table: articles. Ticker symbols live in their own JSON column, kept apart
from the analysis metadata (relevance, categories).
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ArticleModel(Base):
    __tablename__ = "articles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    # No unique constraint: the writer checks for an existing link before inserting
    link: Mapped[str | None] = mapped_column(String(2000), nullable=True, index=True)
    article_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    symbols: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # {"tickers": [...]}
    summarized_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    relevance: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    categories: Mapped[list | None] = mapped_column(JSON, nullable=True)
