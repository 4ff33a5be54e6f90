"""
Shared pytest fixtures for unit tests.

Async code is driven with asyncio.run() inside plain test functions; fakes live
in tests/helpers/fakes.py.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from news_funnel.core.config import Settings
from news_funnel.services.feed_client import FeedClient
from tests.helpers.fakes import feed_transport


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        news_api_url="https://feed.test/v1/news",
        news_api_key="test-key",
        news_api_page_size=50,
        title_rank_keep_ratio=0.5,
        gemini_title_max_rpm=100,
        gemini_analysis_max_rpm=100,
    )


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'articles.db'}"


@pytest.fixture
def feed_factory(settings: Settings) -> Callable[..., FeedClient]:
    def _make(pages: list[Any], seen: list[httpx.Request] | None = None) -> FeedClient:
        return FeedClient.from_settings(settings, transport=feed_transport(pages, seen))

    return _make
