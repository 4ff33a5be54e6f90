"""
Daily scrape cron entry point.

Scheduled once a day (e.g. 1 12 * * * in America/Los_Angeles). Scrapes the previous
full calendar day in SCRAPE_TIMEZONE with cron-mode settings (global title ranking,
cron candidate/result limits).

IMPORTANT: This script must exit cleanly after completion.
Open DB connections will prevent the scheduler from marking the job as finished.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from news_funnel.core.config import get_settings
from news_funnel.core.errors import PipelineRunError
from news_funnel.core.logging import get_logger, setup_logging

setup_logging()
logger = get_logger("cron")
settings = get_settings()


def previous_day(tz_name: str, now: datetime | None = None) -> date:
    """Yesterday's date as seen from `tz_name`."""
    local_now = (now or datetime.now(ZoneInfo("UTC"))).astimezone(ZoneInfo(tz_name))
    return local_now.date() - timedelta(days=1)


async def main() -> int:
    """Run the pipeline for yesterday and wait for completion."""
    from news_funnel.models.database import create_engine, create_session_factory, init_models
    from news_funnel.models.store import ArticleStore
    from news_funnel.pipeline.graph import NewsPipeline

    day = previous_day(settings.scrape_timezone)
    logger.info("cron_triggered", day=day.isoformat(), timezone=settings.scrape_timezone)

    engine = create_engine(settings)
    try:
        await init_models(engine)
        pipeline = NewsPipeline(settings, store=ArticleStore(create_session_factory(engine)))
        stats = await pipeline.run(day, day, mode="cron")
        logger.info("cron_completed", **stats.model_dump(mode="json", exclude={"errors"}))
        return 0

    except PipelineRunError as e:
        logger.error(
            "cron_failed",
            error=str(e),
            fetched=e.stats.fetched_total,
            inserted=e.stats.inserted,
        )
        return 1
    finally:
        await engine.dispose()


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
