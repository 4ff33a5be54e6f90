"""
Ranking and near-duplicate suppression.

Dedup runs AFTER ranking, so within any cluster of near-identical headlines
the highest-relevance member is the one that survives.
"""

from __future__ import annotations

import re

from news_funnel.core.logging import get_logger
from news_funnel.pipeline.state import RankedArticle

logger = get_logger(__name__)

DEFAULT_JACCARD_THRESHOLD = 0.7

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def tokenize_title(title: str) -> set[str]:
    """Lowercase alphanumeric word set."""
    if not title:
        return set()
    return set(_NON_ALNUM.sub(" ", title.lower()).split())


def jaccard_similarity(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    inter = len(a & b)
    return inter / (len(a) + len(b) - inter)


def rank_articles(articles: list[RankedArticle]) -> list[RankedArticle]:
    """Successful analyses only, relevance descending; ties keep input order."""
    ok = [a for a in articles if not a.analysis.analysis_failed]
    return sorted(ok, key=lambda a: a.relevance_score, reverse=True)


def deduplicate(
    ranked: list[RankedArticle], threshold: float = DEFAULT_JACCARD_THRESHOLD
) -> list[RankedArticle]:
    """Single pass: drop any title too similar to an already accepted one."""
    accepted_tokens: list[set[str]] = []
    final: list[RankedArticle] = []

    for article in ranked:
        tokens = tokenize_title(article.title)
        duplicate_of = None
        for prev in accepted_tokens:
            sim = jaccard_similarity(tokens, prev)
            if sim >= threshold:
                duplicate_of = sim
                break
        if duplicate_of is not None:
            logger.debug("near_duplicate_skipped", jaccard=round(duplicate_of, 3), title=article.title)
            continue
        accepted_tokens.append(tokens)
        final.append(article)

    return final
