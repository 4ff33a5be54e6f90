"""Unit tests for the pipeline data model: feed adapter and analysis coercion."""

from __future__ import annotations

from datetime import UTC, datetime

from news_funnel.pipeline.state import (
    CATEGORIES,
    AnalysisResult,
    Candidate,
    PipelineStats,
    ZeroReason,
    parse_timestamp,
)


class TestCandidateAdapter:
    def test_primary_fields(self):
        c = Candidate.from_feed_item(
            {
                "title": "  Fed cuts rates  ",
                "content": "The Fed cut rates by 25bp.",
                "date": "2026-10-18T14:00:00Z",
                "link": "https://news.test/fed",
                "symbols": ["SPY", "TLT", "SPY"],
            }
        )
        assert c.title == "Fed cuts rates"
        assert c.content == "The Fed cut rates by 25bp."
        assert c.published_at == datetime(2026, 10, 18, 14, 0, tzinfo=UTC)
        assert c.link == "https://news.test/fed"
        assert c.tickers == ["SPY", "TLT"]

    def test_aliases(self):
        c = Candidate.from_feed_item(
            {
                "headline": "Oil jumps",
                "summary": "Brent up 4%.",
                "url": "https://news.test/oil",
                "published_at": "2026-10-18T09:30:00+02:00",
                "tickers": "XOM, CVX",
            }
        )
        assert c.title == "Oil jumps"
        assert c.content == "Brent up 4%."
        assert c.link == "https://news.test/oil"
        assert c.published_at == datetime(2026, 10, 18, 7, 30, tzinfo=UTC)
        assert c.tickers == ["XOM", "CVX"]

    def test_missing_fields(self):
        c = Candidate.from_feed_item({})
        assert c.title == ""
        assert c.content == ""
        assert c.link is None
        assert c.published_at is None
        assert c.tickers == []

    def test_ticker_objects(self):
        c = Candidate.from_feed_item({"title": "t", "symbols": [{"symbol": "AAPL"}, {"x": 1}]})
        assert c.tickers == ["AAPL"]


class TestParseTimestamp:
    def test_naive_is_utc(self):
        assert parse_timestamp("2026-10-18T12:00:00") == datetime(2026, 10, 18, 12, tzinfo=UTC)

    def test_unparseable(self):
        assert parse_timestamp("yesterday-ish") is None


class TestAnalysisResult:
    def test_clamps_and_filters(self):
        r = AnalysisResult.from_model(
            {
                "relevance_score": 140,
                "categories": ["Technology Sector", "Sports", "Technology Sector"],
                "summary_points": ["a", "", "b", "c", "d", "e", "f", 7],
            }
        )
        assert r.relevance_score == 100
        assert r.categories == ["Technology Sector"]
        assert r.summary_points == ["a", "b", "c", "d", "e"]
        assert not r.analysis_failed

    def test_numeric_strings(self):
        assert AnalysisResult.from_model({"relevance_score": "87.6"}).relevance_score == 87
        assert AnalysisResult.from_model({"relevance_score": -5}).relevance_score == 0

    def test_garbage_score_is_zero(self):
        assert AnalysisResult.from_model({"relevance_score": "high"}).relevance_score == 0
        assert AnalysisResult.from_model({"relevance_score": None}).relevance_score == 0

    def test_non_object_is_failed(self):
        assert AnalysisResult.from_model("not an object").analysis_failed
        assert AnalysisResult.failed().analysis_failed

    def test_vocabulary(self):
        assert len(CATEGORIES) == 10
        assert "Digital Assets & Crypto" in CATEGORIES


class TestPipelineStats:
    def test_defaults(self):
        stats = PipelineStats(run_id="r", mode="manual", date_from="2026-10-18", date_to="2026-10-18")
        assert stats.fetched_total == 0
        assert stats.zero_reason is None
        assert stats.errors == []

    def test_zero_reason_serialises_as_string(self):
        stats = PipelineStats(
            run_id="r",
            mode="cron",
            date_from="d",
            date_to="d",
            zero_reason=ZeroReason.ALL_DUPLICATES,
        )
        assert stats.model_dump(mode="json")["zero_reason"] == "all_duplicates"
