"""
Candidate fetcher — paginate the upstream feed until the target count is hit.

Stops on: target reached, an empty page, or a short page (end of feed).
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass

from news_funnel.core.logging import get_logger
from news_funnel.pipeline.state import Candidate
from news_funnel.services.feed_client import FeedClient

logger = get_logger(__name__)


@dataclass
class FetchResult:
    candidates: list[Candidate]
    pages: int


async def fetch_candidates(
    feed: FeedClient,
    date_from: str,
    date_to: str,
    target: int,
    phase: Callable[[str], None] | None = None,
) -> FetchResult:
    """Accumulate up to `target` candidates. FeedError propagates to the caller."""
    collected: list[Candidate] = []
    page = 1
    pages = 0

    async with feed.http_client() as http:
        while len(collected) < target:
            request_size = min(feed.page_size, target - len(collected))
            if phase:
                phase(f"FETCH page={page} size={request_size} collected={len(collected)}/{target}")

            batch = await feed.fetch_page(
                http, date_from=date_from, date_to=date_to, page=page, size=request_size
            )
            pages += 1
            if not batch:
                if phase:
                    phase(f"FETCH page={page} returned 0 results; stopping pagination")
                break

            skipped = 0
            for item in batch:
                if isinstance(item, dict):
                    collected.append(Candidate.from_feed_item(item))
                else:
                    skipped += 1
            if skipped:
                logger.warning("feed_items_skipped", page=page, skipped=skipped)

            if len(batch) < request_size:
                if phase:
                    phase(f"FETCH page={page} returned {len(batch)} < {request_size}; end of feed")
                break
            page += 1

    return FetchResult(candidates=collected[:target], pages=pages)


def shuffle_candidates(
    candidates: list[Candidate], rng: random.Random | None = None
) -> list[Candidate]:
    """Shuffle to avoid feed-order bias in the ranking stages."""
    if len(candidates) <= 1:
        return list(candidates)
    shuffled = list(candidates)
    (rng or random).shuffle(shuffled)
    return shuffled
