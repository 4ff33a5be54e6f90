"""
Pipeline orchestrator — one entry point, NewsPipeline.run().

Flow (LangGraph StateGraph, compiled per run):
  START → fetch → prerank → analyze → rank → dedupe → persist → END
          fetch / analyze short-circuit to END when the run halts with a zero_reason.

Scoring tiers (limiter + backoff per tier) are built once and reused across runs;
the limiter restore timer runs only while a run is in flight.
"""

from __future__ import annotations

import asyncio
import contextlib
import random
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Literal

from langgraph.graph import END, START, StateGraph

from news_funnel.core.config import Settings, get_settings
from news_funnel.core.errors import PipelineRunError
from news_funnel.core.logging import get_logger, run_context
from news_funnel.models.store import ArticleStore
from news_funnel.pipeline.nodes.analyzer import DeepAnalyzer
from news_funnel.pipeline.nodes.fetcher import fetch_candidates, shuffle_candidates
from news_funnel.pipeline.nodes.ranker import deduplicate, rank_articles
from news_funnel.pipeline.nodes.title_rank import TitlePreRanker
from news_funnel.pipeline.nodes.writer import ArticleWriter
from news_funnel.pipeline.state import (
    PhaseEvent,
    PipelineState,
    PipelineStats,
    RunMode,
    StageError,
    ZeroReason,
)
from news_funnel.services.feed_client import FeedClient
from news_funnel.services.rate_limiter import run_restore_loop
from news_funnel.services.scoring import GeminiScorer, Scorer, ScoringTier, build_chat_model

logger = get_logger(__name__)

MAX_RESULT_LIMIT = 500
HALTED = "halted"


class PhaseReporter:
    """Timestamped phase-progress events: logged, and forwarded to an optional listener."""

    def __init__(self, listener: Callable[[PhaseEvent], None] | None = None) -> None:
        self._listener = listener
        self._t0 = time.perf_counter()

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._t0) * 1000)

    def __call__(self, message: str) -> None:
        event = PhaseEvent(elapsed_ms=self.elapsed_ms, message=message)
        logger.info("pipeline_phase", elapsed_ms=event.elapsed_ms, phase=message)
        if self._listener:
            self._listener(event)


class PipelineNodes:
    """Graph node callables for one run; counters go straight onto `stats`."""

    def __init__(
        self,
        *,
        stats: PipelineStats,
        phase: PhaseReporter,
        feed: FeedClient,
        title_ranker: TitlePreRanker,
        analyzer: DeepAnalyzer,
        writer: ArticleWriter,
        dedupe_threshold: float,
        rng: random.Random | None = None,
    ) -> None:
        self.stats = stats
        self.phase = phase
        self.feed = feed
        self.title_ranker = title_ranker
        self.analyzer = analyzer
        self.writer = writer
        self.dedupe_threshold = dedupe_threshold
        self.rng = rng
        self.stage = "init"

    async def fetch(self, state: PipelineState) -> dict:
        self.stage = "fetch"
        self.phase("FETCH start")
        result = await fetch_candidates(
            self.feed,
            state["date_from"],
            state["date_to"],
            self.stats.candidate_limit,
            phase=self.phase,
        )
        self.stats.fetch_batches = result.pages
        self.phase(f"FETCH done batches={result.pages}")

        if not result.candidates:
            self.phase("NO ARTICLES - EXIT")
            self.stats.zero_reason = ZeroReason.NO_ARTICLES_RETURNED
            return {"candidates": [], "current_step": HALTED}

        candidates = shuffle_candidates(result.candidates, self.rng)
        self.stats.fetched_total = len(candidates)
        self.phase(f"ARTICLES fetched_total={len(candidates)}")
        return {"candidates": candidates, "current_step": "fetched"}

    async def prerank(self, state: PipelineState) -> dict:
        self.stage = "prerank"
        candidates = state.get("candidates", [])
        selected_idx = await self.title_ranker.select(
            candidates, global_mode=state["mode"] == "cron", phase=self.phase
        )
        if not selected_idx:
            # Degrade to the unfiltered set rather than an empty run
            self.phase("TITLE-RANK produced no selection; proceeding with all articles")
            return {"selected": list(candidates), "current_step": "preranked"}

        keep = set(selected_idx)
        selected = [c for i, c in enumerate(candidates) if i in keep]
        self.phase(f"ARTICLES preselected_by_title before={len(candidates)} after={len(selected)}")
        return {"selected": selected, "current_step": "preranked"}

    async def analyze(self, state: PipelineState) -> dict:
        self.stage = "analyze"
        self.phase(f"ANALYSIS start mode={state['mode']}")
        analyzed = await self.analyzer.analyze(state.get("selected", []), phase=self.phase)
        ok = sum(1 for a in analyzed if not a.analysis.analysis_failed)
        self.stats.analyzed = ok
        self.phase(f"ANALYSIS complete analyzed={ok} enriched_total={len(analyzed)}")

        if not ok:
            logger.warning("analysis_failed_all", total=len(analyzed))
            self.stats.zero_reason = ZeroReason.ANALYSIS_FAILED_ALL
            return {"analyzed": analyzed, "current_step": HALTED}
        return {"analyzed": analyzed, "current_step": "analyzed"}

    async def rank(self, state: PipelineState) -> dict:
        self.stage = "rank"
        ranked = rank_articles(state.get("analyzed", []))
        self.stats.kept_ranked = len(ranked)
        self.phase(f"RANK complete kept={len(ranked)}")
        return {"ranked": ranked, "current_step": "ranked"}

    async def dedupe(self, state: PipelineState) -> dict:
        self.stage = "dedupe"
        ranked = state.get("ranked", [])
        unique = deduplicate(ranked, self.dedupe_threshold)
        final = unique[: self.stats.result_limit]
        self.stats.final_after_dedupe = len(final)
        self.phase(
            f"DEDUPE complete final={len(final)} removed={len(ranked) - len(unique)} "
            f"limit={self.stats.result_limit}"
        )
        return {"final": final, "current_step": "deduplicated"}

    async def persist(self, state: PipelineState) -> dict:
        self.stage = "persist"
        self.phase("UPSERT start")
        await self.writer.persist(state.get("final", []), self.stats, phase=self.phase)
        self.phase(f"UPSERT complete inserted={self.stats.inserted} conflicts={self.stats.conflicts}")

        if not self.stats.inserted and self.stats.zero_reason is None:
            if self.stats.insert_errors:
                self.stats.zero_reason = ZeroReason.ALL_INSERTS_FAILED
            elif self.stats.conflicts:
                self.stats.zero_reason = ZeroReason.ALL_DUPLICATES
            else:
                self.stats.zero_reason = ZeroReason.UNKNOWN
        return {"current_step": "persisted"}


def _continue_or_halt(state: PipelineState) -> Literal["continue", "halt"]:
    return "halt" if state.get("current_step") == HALTED else "continue"


def build_graph(nodes: PipelineNodes):
    """Construct and compile the funnel graph around one run's nodes."""
    workflow = StateGraph(PipelineState)

    workflow.add_node("fetch", nodes.fetch)
    workflow.add_node("prerank", nodes.prerank)
    workflow.add_node("analyze", nodes.analyze)
    workflow.add_node("rank", nodes.rank)
    workflow.add_node("dedupe", nodes.dedupe)
    workflow.add_node("persist", nodes.persist)

    workflow.add_edge(START, "fetch")
    workflow.add_conditional_edges(
        "fetch", _continue_or_halt, {"continue": "prerank", "halt": END}
    )
    workflow.add_edge("prerank", "analyze")
    workflow.add_conditional_edges(
        "analyze", _continue_or_halt, {"continue": "rank", "halt": END}
    )
    workflow.add_edge("rank", "dedupe")
    workflow.add_edge("dedupe", "persist")
    workflow.add_edge("persist", END)

    return workflow.compile()


def _as_date_str(value: date | str) -> str:
    return value.isoformat() if isinstance(value, date) else str(value)


class NewsPipeline:
    """Fetch → pre-rank → deep-analyse → rank/dedupe → persist, under a quota budget."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: ArticleStore,
        feed_client: FeedClient | None = None,
        title_scorer: Scorer | None = None,
        analysis_scorer: Scorer | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
        restore_interval: float = 60.0,
        restore_sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.feed = feed_client or FeedClient.from_settings(self.settings)
        self._title_scorer = title_scorer
        self._analysis_scorer = analysis_scorer
        self._rng = rng
        self._sleep = sleep or asyncio.sleep
        self._clock = clock
        self._restore_interval = restore_interval
        self._restore_sleep = restore_sleep or asyncio.sleep
        self._tiers: tuple[ScoringTier, ScoringTier] | None = None

    # ── configuration ───────────────────────────────────────
    def missing_config(self) -> list[str]:
        missing = []
        if not self.feed.base_url:
            missing.append("NEWS_API_URL")
        if not self.feed.api_key:
            missing.append("NEWS_API_KEY")
        needs_gemini = self._title_scorer is None or self._analysis_scorer is None
        if needs_gemini and not self.settings.google_api_key:
            missing.append("GOOGLE_API_KEY")
        return missing

    @property
    def tiers(self) -> tuple[ScoringTier, ScoringTier]:
        """(title, analysis) tiers, created on first use and kept for the process lifetime."""
        if self._tiers is None:
            s = self.settings
            title_scorer = self._title_scorer or GeminiScorer(
                build_chat_model(s.model_title, s), tier="title"
            )
            analysis_scorer = self._analysis_scorer or GeminiScorer(
                build_chat_model(s.model_analyzer, s), tier="analysis"
            )
            common = {
                "adaptive": s.gemini_adaptive_limit,
                "max_retries": s.max_retries_429,
                "sleep": self._sleep,
                "clock": self._clock,
            }
            self._tiers = (
                ScoringTier.create("title", title_scorer, max_rpm=s.gemini_title_max_rpm, **common),
                ScoringTier.create(
                    "analysis", analysis_scorer, max_rpm=s.gemini_analysis_max_rpm, **common
                ),
            )
        return self._tiers

    def _resolve_limits(
        self,
        mode: RunMode,
        candidate_limit: int | None,
        result_limit: int | None,
        concurrency: int | None,
    ) -> tuple[int, int, int]:
        s = self.settings
        if not (isinstance(candidate_limit, int) and candidate_limit > 0):
            candidate_limit = (
                s.candidate_fetch_limit_cron if mode == "cron" else s.candidate_fetch_limit_manual
            )
        if not (isinstance(result_limit, int) and 0 < result_limit <= MAX_RESULT_LIMIT):
            result_limit = s.top_article_limit_cron if mode == "cron" else s.top_article_limit_manual
        if not (isinstance(concurrency, int) and concurrency > 0):
            concurrency = s.analysis_concurrency
        return candidate_limit, result_limit, concurrency

    # ── entry point ─────────────────────────────────────────
    async def run(
        self,
        date_from: date | str,
        date_to: date | str,
        *,
        mode: RunMode = "manual",
        candidate_limit: int | None = None,
        result_limit: int | None = None,
        concurrency: int | None = None,
        on_phase: Callable[[PhaseEvent], None] | None = None,
    ) -> PipelineStats:
        """
        Run the funnel once for [date_from, date_to].

        Returns stats for completed and zero-result runs alike; raises
        PipelineRunError (carrying partial stats) only on unexpected failure.
        """
        mode = "cron" if mode == "cron" else "manual"
        run_id = str(uuid.uuid4())
        with run_context(run_id=run_id, mode=mode):
            return await self._run(
                run_id,
                mode,
                date_from,
                date_to,
                candidate_limit=candidate_limit,
                result_limit=result_limit,
                concurrency=concurrency,
                on_phase=on_phase,
            )

    async def _run(
        self,
        run_id: str,
        mode: RunMode,
        date_from: date | str,
        date_to: date | str,
        *,
        candidate_limit: int | None,
        result_limit: int | None,
        concurrency: int | None,
        on_phase: Callable[[PhaseEvent], None] | None,
    ) -> PipelineStats:
        candidate_limit, result_limit, concurrency = self._resolve_limits(
            mode, candidate_limit, result_limit, concurrency
        )
        stats = PipelineStats(
            run_id=run_id,
            mode=mode,
            date_from=_as_date_str(date_from),
            date_to=_as_date_str(date_to),
            candidate_limit=candidate_limit,
            result_limit=result_limit,
        )
        phase = PhaseReporter(on_phase)
        phase(
            f"INIT mode={mode} range={stats.date_from}->{stats.date_to} "
            f"candidate_limit={candidate_limit} result_limit={result_limit} "
            f"concurrency={concurrency}"
        )

        missing = self.missing_config()
        if missing:
            stats.zero_reason = ZeroReason.MISSING_ENV
            stats.errors.append(
                StageError(stage="config", message=f"Missing {', '.join(missing)}")
            )
            phase("CONFIG missing required env vars")
            stats.duration_ms = phase.elapsed_ms
            return stats

        title_tier, analysis_tier = self.tiers
        retries_before = title_tier.controller.retries + analysis_tier.controller.retries
        nodes = PipelineNodes(
            stats=stats,
            phase=phase,
            feed=self.feed,
            title_ranker=TitlePreRanker(
                title_tier,
                batch_size=self.settings.title_rank_batch_size,
                keep_ratio=self.settings.title_rank_keep_ratio,
            ),
            analyzer=DeepAnalyzer(
                analysis_tier,
                window_size=self.settings.analysis_window_size,
                group_size=self.settings.analysis_group_size,
                concurrency=concurrency,
            ),
            writer=ArticleWriter(self.store),
            dedupe_threshold=self.settings.dedupe_jaccard_threshold,
            rng=self._rng,
        )

        limiters = [title_tier.limiter, analysis_tier.limiter]
        for limiter in limiters:
            limiter.restore_tick()
        restorer = asyncio.create_task(
            run_restore_loop(limiters, self._restore_interval, sleep=self._restore_sleep)
        )

        initial_state: PipelineState = {
            "run_id": run_id,
            "mode": mode,
            "date_from": stats.date_from,
            "date_to": stats.date_to,
            "current_step": "starting",
        }
        try:
            await build_graph(nodes).ainvoke(initial_state)
        except Exception as e:
            stats.error = str(e) or type(e).__name__
            stats.errors.append(StageError(stage=nodes.stage, message=stats.error))
            phase(f"ABORT due to error stage={nodes.stage}")
            logger.error("pipeline_failed", stage=nodes.stage, error=stats.error)
            raise PipelineRunError(stats.error, stats) from e
        finally:
            restorer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await restorer
            stats.scoring_retries = (
                title_tier.controller.retries + analysis_tier.controller.retries - retries_before
            )
            stats.duration_ms = phase.elapsed_ms

        phase("DONE")
        logger.info(
            "pipeline_completed",
            inserted=stats.inserted,
            conflicts=stats.conflicts,
            zero_reason=stats.zero_reason.value if stats.zero_reason else None,
        )
        return stats
