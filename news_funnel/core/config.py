"""
Centralised configuration via Pydantic Settings.

Reads from .env in dev and from the process environment in production.
Every tunable of the funnel (page sizes, keep ratio, RPM caps, limits) lives here.
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
        extra="ignore",  # ignore platform-injected vars we don't need
    )

    # ── Application ─────────────────────────────────────────
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    log_json: bool = False

    # ── Database ────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./dev.db"

    @field_validator("database_url", mode="before")
    @classmethod
    def assemble_db_url(cls, v: str) -> str:
        """Hosted Postgres hands out postgres:// but SQLAlchemy needs postgresql+asyncpg://."""
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://"):
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.database_url

    # ── Upstream news feed ──────────────────────────────────
    news_api_url: str = ""
    news_api_key: str = ""
    news_api_page_param: str = "page"
    news_api_limit_param: str = "limit"
    news_api_page_size: int = Field(default=200, ge=1)
    news_api_timeout: float = 30.0

    # ── LLM: Gemini ────────────────────────────────────────
    google_api_key: str = ""

    # Model routing: cheap title pass and grouped deep analysis
    model_title: str = "gemini-2.5-pro"
    model_analyzer: str = "gemini-2.5-pro"

    # ── Quota guardrails ────────────────────────────────────
    gemini_title_max_rpm: int = Field(default=14, ge=1)
    gemini_analysis_max_rpm: int = Field(default=14, ge=1)
    gemini_adaptive_limit: bool = True
    max_retries_429: int = Field(default=4, ge=0)

    # ── Funnel tunables ─────────────────────────────────────
    title_rank_batch_size: int = Field(default=300, ge=1)
    title_rank_keep_ratio: float = 0.04
    analysis_window_size: int = Field(default=100, ge=1)
    analysis_group_size: int = Field(default=20, ge=1)
    analysis_concurrency: int = Field(default=3, ge=1)
    dedupe_jaccard_threshold: float = 0.7

    @field_validator("title_rank_keep_ratio", mode="after")
    @classmethod
    def clamp_keep_ratio(cls, v: float) -> float:
        return max(0.01, min(1.0, v))

    # ── Run limits ──────────────────────────────────────────
    candidate_fetch_limit_manual: int = Field(default=50, ge=1)
    candidate_fetch_limit_cron: int = Field(default=3000, ge=1)
    top_article_limit_manual: int = Field(default=75, ge=1)
    top_article_limit_cron: int = Field(default=75, ge=1)

    # ── Maintenance jobs ────────────────────────────────────
    relevance_decay_step: int = Field(default=1, ge=1)
    relevance_floor: int = 10
    scrape_timezone: str = "America/Los_Angeles"


@lru_cache
def get_settings() -> Settings:
    return Settings()
