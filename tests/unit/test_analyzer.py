"""Unit tests for grouped deep analysis."""

from __future__ import annotations

import asyncio
import json

from news_funnel.pipeline.nodes.analyzer import DeepAnalyzer, parse_group_analysis
from news_funnel.pipeline.state import Candidate
from news_funnel.services.scoring import ScoringTier
from tests.helpers.fakes import RecordingSleep, ScriptedScorer, analysis_items


class SlowScorer(ScriptedScorer):
    """Later groups answer sooner; tracks how many calls are in flight at once."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, prompt: str) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            first = analysis_items(prompt)[0]["title"]
            await asyncio.sleep(0.02 if first.endswith(("0", "1")) else 0.001)
            return await super().generate(prompt)
        finally:
            self.in_flight -= 1


def _analyzer(scorer: ScriptedScorer, **kwargs) -> DeepAnalyzer:
    tier = ScoringTier.create("analysis", scorer, max_rpm=100, sleep=RecordingSleep())
    return DeepAnalyzer(tier, **kwargs)


def _candidates(n: int) -> list[Candidate]:
    return [Candidate(title=f"Story {i}", content=f"Body {i}") for i in range(n)]


def _scores(n: int) -> dict[str, dict]:
    return {
        f"Story {i}": {
            "relevance_score": 10 + i,
            "categories": ["Technology Sector"],
            "summary_points": [f"**What happened:** item {i}"],
        }
        for i in range(n)
    }


class TestParseGroupAnalysis:
    def test_positional_with_missing_tail(self):
        raw = json.dumps(
            {
                "articles": [{"idx": 0, "relevance_score": 70}],
                "combined": {"summary_points": ["**Theme:** rates", 3]},
            }
        )

        parsed = parse_group_analysis(raw, expected=3)

        assert [r.analysis_failed for r in parsed.results] == [False, True, True]
        assert parsed.results[0].relevance_score == 70
        assert parsed.combined_points == ["**Theme:** rates"]

    def test_malformed_marks_all_failed(self):
        parsed = parse_group_analysis("The model refused.", expected=2)
        assert [r.analysis_failed for r in parsed.results] == [True, True]

    def test_bracketed_preamble(self):
        raw = 'Output for {n} items below\n{"articles": [{"idx": 0, "relevance_score": 61}]}'

        parsed = parse_group_analysis(raw, expected=1)

        assert not parsed.results[0].analysis_failed
        assert parsed.results[0].relevance_score == 61

    def test_articles_not_a_list(self):
        parsed = parse_group_analysis('{"articles": "nope"}', expected=1)
        assert parsed.results[0].analysis_failed


class TestDeepAnalyzer:
    def test_output_preserves_input_order(self):
        scorer = SlowScorer(analyses=_scores(7))
        analyzer = _analyzer(scorer, window_size=100, group_size=2, concurrency=3)

        out = asyncio.run(analyzer.analyze(_candidates(7)))

        assert [a.title for a in out] == [f"Story {i}" for i in range(7)]
        assert [a.relevance_score for a in out] == [10 + i for i in range(7)]
        assert len(scorer.prompts) == 4

    def test_concurrency_is_bounded(self):
        scorer = SlowScorer(analyses=_scores(12))
        analyzer = _analyzer(scorer, window_size=100, group_size=2, concurrency=3)

        asyncio.run(analyzer.analyze(_candidates(12)))

        assert len(scorer.prompts) == 6
        assert 1 < scorer.max_in_flight <= 3

    def test_windows_run_sequentially(self):
        scorer = SlowScorer(analyses=_scores(10))
        analyzer = _analyzer(scorer, window_size=4, group_size=2, concurrency=3)
        phases: list[str] = []

        out = asyncio.run(analyzer.analyze(_candidates(10), phase=phases.append))

        assert len(out) == 10
        assert [p.split()[1] for p in phases] == ["window", "window", "window"]
        assert phases[0].startswith("ANALYSIS window 1/3 groups=2")
        assert scorer.max_in_flight <= 2

    def test_failed_group_is_isolated(self):
        scorer = ScriptedScorer(analyses=_scores(6), fail_when=lambda p: "Story 2" in p)
        analyzer = _analyzer(scorer, group_size=2, concurrency=2)

        out = asyncio.run(analyzer.analyze(_candidates(6)))

        assert [a.analysis.analysis_failed for a in out] == [False, False, True, True, False, False]

    def test_unparseable_response_fails_group(self):
        scorer = ScriptedScorer(raw_response="Sorry, I can't do that.")
        analyzer = _analyzer(scorer, group_size=20)

        out = asyncio.run(analyzer.analyze(_candidates(3)))

        assert all(a.analysis.analysis_failed for a in out)

    def test_prompt_carries_group_items(self):
        scorer = ScriptedScorer(analyses=_scores(3))
        analyzer = _analyzer(scorer, group_size=20)

        asyncio.run(analyzer.analyze(_candidates(3)))

        items = analysis_items(scorer.prompts[0])
        assert [it["idx"] for it in items] == [0, 1, 2]
        assert items[1] == {"idx": 1, "title": "Story 1", "content": "Body 1"}

    def test_empty_input(self):
        scorer = ScriptedScorer()
        assert asyncio.run(_analyzer(scorer).analyze([])) == []
        assert scorer.prompts == []
