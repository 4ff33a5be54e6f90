"""
Upstream news feed client (paginated GET via httpx).

The feed answers either with a bare JSON array or with {"data": [...]}.
Page and page-size parameter names are configurable because providers differ.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from news_funnel.core.errors import FeedError
from news_funnel.core.logging import get_logger

if TYPE_CHECKING:
    from news_funnel.core.config import Settings

logger = get_logger(__name__)


class FeedClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        page_param: str = "page",
        limit_param: str = "limit",
        page_size: int = 200,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.page_param = page_param
        self.limit_param = limit_param
        self.page_size = max(1, page_size)
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> FeedClient:
        return cls(
            settings.news_api_url,
            settings.news_api_key,
            page_param=settings.news_api_page_param,
            limit_param=settings.news_api_limit_param,
            page_size=settings.news_api_page_size,
            timeout=settings.news_api_timeout,
            transport=transport,
        )

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def fetch_page(
        self,
        http: httpx.AsyncClient,
        *,
        date_from: str,
        date_to: str,
        page: int,
        size: int,
    ) -> list[Any]:
        params: dict[str, str] = {
            "api_token": self.api_key,
            "from": date_from,
            "to": date_to,
            self.limit_param: str(size),
        }
        if self.page_param:
            params[self.page_param] = str(page)

        try:
            resp = await http.get(self.base_url, params=params)
            resp.raise_for_status()
            raw = resp.json()
        except httpx.HTTPStatusError as e:
            raise FeedError(f"feed page {page} returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise FeedError(f"feed page {page} request failed: {e}") from e
        except ValueError as e:
            raise FeedError(f"feed page {page} returned invalid JSON") from e

        if isinstance(raw, list):
            return raw
        if isinstance(raw, dict) and isinstance(raw.get("data"), list):
            return raw["data"]
        logger.warning("feed_page_unrecognised_shape", page=page, type=type(raw).__name__)
        return []
