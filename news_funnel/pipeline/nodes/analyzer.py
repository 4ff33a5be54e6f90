"""
Deep analysis — grouped Gemini calls for relevance, categories and summary bullets.

Survivors are split into windows (~100), each window into groups (~20). A bounded
pool of workers pulls groups off a shared queue; every call goes through the
analysis tier's limiter and backoff controller. Results are matched back to
candidates positionally, and written into per-group slots so the output order
is the input order regardless of which worker finishes first.

Failure isolation is per group: a failed or unparseable call marks every item
in that group as failed and the rest of the window carries on.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field

from news_funnel.core.errors import ScoringError
from news_funnel.core.logging import get_logger
from news_funnel.pipeline.nodes.title_rank import chunk
from news_funnel.pipeline.prompts import build_group_analysis_prompt
from news_funnel.pipeline.state import AnalysisResult, Candidate, RankedArticle
from news_funnel.services.json_extract import Malformed, extract_json
from news_funnel.services.scoring import ScoringTier

logger = get_logger(__name__)


@dataclass
class GroupAnalysis:
    results: list[AnalysisResult]
    combined_points: list[str] = field(default_factory=list)


def parse_group_analysis(raw_text: str, expected: int) -> GroupAnalysis:
    """Positional per-item results; missing or malformed entries become failures."""
    parsed = extract_json(raw_text, "object")
    if isinstance(parsed, Malformed) or not isinstance(parsed.value, dict):
        reason = parsed.reason if isinstance(parsed, Malformed) else "not_an_object"
        logger.warning("group_analysis_malformed", reason=reason, expected=expected)
        return GroupAnalysis(results=[AnalysisResult.failed() for _ in range(expected)])

    articles = parsed.value.get("articles")
    if not isinstance(articles, list):
        articles = []
    results = [
        AnalysisResult.from_model(articles[m]) if m < len(articles) else AnalysisResult.failed()
        for m in range(expected)
    ]

    combined = parsed.value.get("combined")
    points: list[str] = []
    if isinstance(combined, dict) and isinstance(combined.get("summary_points"), list):
        points = [p for p in combined["summary_points"] if isinstance(p, str)]
    return GroupAnalysis(results=results, combined_points=points)


class DeepAnalyzer:
    def __init__(
        self,
        tier: ScoringTier,
        *,
        window_size: int = 100,
        group_size: int = 20,
        concurrency: int = 3,
    ) -> None:
        self.tier = tier
        self.window_size = max(1, window_size)
        self.group_size = max(1, group_size)
        self.concurrency = max(1, concurrency)

    async def analyze_group(self, group: list[Candidate]) -> list[AnalysisResult]:
        items = [(i, c.title, c.content) for i, c in enumerate(group)]
        try:
            raw_text = await self.tier.complete(build_group_analysis_prompt(items))
        except ScoringError as e:
            logger.error("group_analysis_failed", size=len(group), error=str(e))
            return [AnalysisResult.failed() for _ in group]

        analysis = parse_group_analysis(raw_text, len(group))
        logger.info(
            "group_analyzed",
            size=len(group),
            ok=sum(1 for r in analysis.results if not r.analysis_failed),
            combined_points=len(analysis.combined_points),
        )
        return analysis.results

    async def _analyze_window(self, window: list[Candidate]) -> list[RankedArticle]:
        groups = chunk(window, self.group_size)
        slots: list[list[AnalysisResult] | None] = [None] * len(groups)
        queue: asyncio.Queue[int] = asyncio.Queue()
        for g in range(len(groups)):
            queue.put_nowait(g)

        async def worker() -> None:
            while True:
                try:
                    g = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                slots[g] = await self.analyze_group(groups[g])

        workers = min(self.concurrency, len(groups))
        await asyncio.gather(*(worker() for _ in range(workers)))

        out: list[RankedArticle] = []
        for group, results in zip(groups, slots, strict=True):
            for candidate, result in zip(group, results or [], strict=True):
                out.append(RankedArticle(candidate=candidate, analysis=result))
        return out

    async def analyze(
        self,
        candidates: list[Candidate],
        phase: Callable[[str], None] | None = None,
    ) -> list[RankedArticle]:
        """Analyse every candidate; output preserves input order."""
        windows = chunk(candidates, self.window_size)
        results: list[RankedArticle] = []
        for w, window in enumerate(windows, start=1):
            if phase:
                groups = -(-len(window) // self.group_size)
                phase(
                    f"ANALYSIS window {w}/{len(windows)} groups={groups} "
                    f"concurrency={self.concurrency}"
                )
            results.extend(await self._analyze_window(window))
        return results
