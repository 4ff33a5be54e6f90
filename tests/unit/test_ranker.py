"""Unit tests for ranking and near-duplicate suppression."""

from __future__ import annotations

from itertools import combinations

from news_funnel.pipeline.nodes.ranker import (
    deduplicate,
    jaccard_similarity,
    rank_articles,
    tokenize_title,
)
from news_funnel.pipeline.state import AnalysisResult, Candidate, RankedArticle


def _article(title: str, score: int, failed: bool = False) -> RankedArticle:
    analysis = AnalysisResult.failed() if failed else AnalysisResult(relevance_score=score)
    return RankedArticle(candidate=Candidate(title=title), analysis=analysis)


class TestTokenize:
    def test_lowercases_and_strips_punctuation(self):
        assert tokenize_title("Fed's Cuts: RATES, again!") == {"fed", "s", "cuts", "rates", "again"}

    def test_empty(self):
        assert tokenize_title("") == set()
        assert tokenize_title("!!!") == set()


class TestJaccard:
    def test_values(self):
        a = tokenize_title("Fed cuts rates")
        b = tokenize_title("Fed cuts interest rates")
        assert jaccard_similarity(a, b) == 0.75
        assert jaccard_similarity(a, a) == 1.0
        assert jaccard_similarity(a, {"bakery"}) == 0.0

    def test_empty_sets_never_match(self):
        assert jaccard_similarity(set(), set()) == 0.0
        assert jaccard_similarity(set(), {"x"}) == 0.0


class TestRankArticles:
    def test_descending_and_stable(self):
        articles = [_article("a", 50), _article("b", 90), _article("c", 50), _article("d", 70)]

        ranked = rank_articles(articles)

        assert [a.title for a in ranked] == ["b", "d", "a", "c"]

    def test_failed_analyses_are_dropped(self):
        articles = [_article("a", 0, failed=True), _article("b", 0), _article("c", 40)]
        assert [a.title for a in rank_articles(articles)] == ["c", "b"]


class TestDeduplicate:
    def test_keeps_highest_ranked_of_a_cluster(self):
        ranked = rank_articles(
            [
                _article("Fed cuts interest rates", 84),
                _article("Fed cuts rates", 88),
                _article("Local bakery opens", 40),
            ]
        )

        final = deduplicate(ranked)

        assert [a.title for a in final] == ["Fed cuts rates", "Local bakery opens"]

    def test_below_threshold_both_kept(self):
        # 2 shared of 4 distinct tokens = 0.5
        ranked = [_article("Apple earnings beat", 80), _article("Apple earnings miss", 70)]
        assert len(deduplicate(ranked)) == 2
        assert len(deduplicate(ranked, threshold=0.5)) == 1

    def test_result_is_pairwise_distinct(self):
        titles = [
            "Oil prices jump on supply cut",
            "Oil prices jump on supply cuts",
            "Oil prices jump after supply cut",
            "Tesla deliveries fall short",
            "Tesla deliveries fall short of estimates",
            "Bitcoin rallies past record",
        ]
        ranked = [_article(t, 100 - i) for i, t in enumerate(titles)]

        final = deduplicate(ranked)

        for x, y in combinations(final, 2):
            assert jaccard_similarity(tokenize_title(x.title), tokenize_title(y.title)) < 0.7

    def test_idempotent(self):
        ranked = [_article(t, 90 - i) for i, t in enumerate(["A b c", "a B c", "x y z"])]
        once = deduplicate(ranked)
        assert deduplicate(once) == once

    def test_untitled_articles_are_kept(self):
        ranked = [_article("", 90), _article("", 80)]
        assert len(deduplicate(ranked)) == 2
