"""
Weekly relevance decay cron entry point.

Scheduled weekly (e.g. 0 0 * * 0 in America/Los_Angeles). Every scored article
loses RELEVANCE_DECAY_STEP points; anything that would fall below
RELEVANCE_FLOOR is deleted, so stale stories age out of the feed.
"""

from __future__ import annotations

import asyncio
import sys

from sqlalchemy.exc import SQLAlchemyError

from news_funnel.core.config import get_settings
from news_funnel.core.logging import get_logger, setup_logging

setup_logging()
logger = get_logger("decay_cron")
settings = get_settings()


async def main() -> int:
    from news_funnel.models.database import create_engine, create_session_factory
    from news_funnel.models.store import ArticleStore

    logger.info(
        "decay_cron_triggered",
        step=settings.relevance_decay_step,
        floor=settings.relevance_floor,
    )
    engine = create_engine(settings)
    try:
        store = ArticleStore(create_session_factory(engine))
        updated, deleted = await store.decay_relevance(
            step=settings.relevance_decay_step, floor=settings.relevance_floor
        )
        logger.info("decay_cron_completed", updated=updated, deleted=deleted)
        return 0

    except SQLAlchemyError as e:
        logger.error("decay_cron_failed", error=str(e))
        return 1
    finally:
        await engine.dispose()


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
