"""
Title pre-ranking — cheap first pass so deep analysis only runs on likely winners.

Two selection modes:
  - global (cron / bulk): score every batch, merge, keep top ceil(ratio * N) overall
  - per-batch (manual):   keep top ceil(ratio * batch) inside each batch, union them

A batch whose scoring call fails contributes nothing; no exception escapes.
"""

from __future__ import annotations

import math
from collections.abc import Callable

from news_funnel.core.errors import ScoringError
from news_funnel.core.logging import get_logger
from news_funnel.pipeline.prompts import build_title_rank_prompt
from news_funnel.pipeline.state import Candidate, TitleScore
from news_funnel.services.json_extract import Malformed, extract_json
from news_funnel.services.scoring import ScoringTier

logger = get_logger(__name__)


def keep_count(keep_ratio: float, total: int) -> int:
    """ceil(ratio * total), at least 1 for a non-empty input."""
    if total <= 0:
        return 0
    # round() first so float noise (0.04 * 25 = 1.0000000000000002) doesn't bump ceil
    return max(1, math.ceil(round(keep_ratio * total, 9)))


def chunk(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def _as_id(value: object) -> int | None:
    # bool is an int subclass and 1.9 would truncate to 1; both name no candidate
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value)
    return None


def parse_title_scores(raw_text: str, valid_ids: set[int]) -> list[TitleScore]:
    result = extract_json(raw_text, "array")
    if isinstance(result, Malformed):
        logger.warning("title_scores_malformed", reason=result.reason)
        return []
    if not isinstance(result.value, list):
        return []

    scores: list[TitleScore] = []
    seen: set[int] = set()
    for entry in result.value:
        if not isinstance(entry, dict):
            continue
        try:
            score = int(float(entry.get("score", 0)))
        except (TypeError, ValueError, OverflowError):
            continue
        idx = _as_id(entry.get("id"))
        if idx is None or idx not in valid_ids or idx in seen:
            continue
        seen.add(idx)
        scores.append(TitleScore(candidate_index=idx, score=max(0, min(100, score))))
    return scores


def _top(scores: list[TitleScore], count: int) -> list[TitleScore]:
    # sorted() is stable: equal scores keep the order the model returned them in
    return sorted(scores, key=lambda s: s.score, reverse=True)[:count]


class TitlePreRanker:
    def __init__(self, tier: ScoringTier, *, batch_size: int = 300, keep_ratio: float = 0.04) -> None:
        self.tier = tier
        self.batch_size = max(1, batch_size)
        self.keep_ratio = keep_ratio

    async def score_batch(self, items: list[tuple[int, str]]) -> list[TitleScore]:
        """One scoring call for a batch; empty on any scoring failure."""
        try:
            raw_text = await self.tier.complete(build_title_rank_prompt(items))
        except ScoringError as e:
            logger.error("title_batch_failed", size=len(items), error=str(e))
            return []
        scores = parse_title_scores(raw_text, {idx for idx, _ in items})
        logger.info("title_batch_scored", size=len(items), scored=len(scores))
        return scores

    async def select(
        self,
        candidates: list[Candidate],
        *,
        global_mode: bool,
        phase: Callable[[str], None] | None = None,
    ) -> list[int]:
        """Indexes (into `candidates`) that survive pre-ranking."""
        items = [(i, c.title) for i, c in enumerate(candidates) if c.title]
        if not items:
            return []

        batches = chunk(items, self.batch_size)
        use_global = global_mode or len(items) <= self.batch_size
        if phase:
            phase(
                f"TITLE-RANK start total={len(items)} batch={self.batch_size} "
                f"keep_ratio={self.keep_ratio} global={use_global}"
            )

        if use_global:
            merged: list[TitleScore] = []
            for batch in batches:
                merged.extend(await self.score_batch(batch))
            chosen = _top(merged, keep_count(self.keep_ratio, len(items)))
            selected = [s.candidate_index for s in chosen]
            if phase:
                phase(f"TITLE-RANK complete(global) selected_total={len(selected)} of {len(items)}")
            return selected

        selected_set: dict[int, None] = {}
        for n, batch in enumerate(batches, start=1):
            scores = await self.score_batch(batch)
            chosen = _top(scores, keep_count(self.keep_ratio, len(batch)))
            for s in chosen:
                selected_set[s.candidate_index] = None
            if phase:
                phase(
                    f"TITLE-RANK batch {n}/{len(batches)} scored={len(scores)} "
                    f"keep={len(chosen)}/{len(batch)}"
                )
        selected = list(selected_set)
        if phase:
            phase(f"TITLE-RANK complete(per-batch) total={len(selected)} of {len(items)}")
        return selected
