"""Domain-specific error types shared across the funnel."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from news_funnel.pipeline.state import PipelineStats


class ScoringError(Exception):
    """A scoring call failed for a reason other than quota rejection."""


class QuotaExceededError(ScoringError):
    """The scoring service rejected the call for quota (HTTP 429).

    Attributes:
        retry_delay: Server-advertised wait in seconds, when present.
    """

    def __init__(self, message: str, retry_delay: float | None = None) -> None:
        super().__init__(message)
        self.retry_delay = retry_delay


class RetriesExhaustedError(ScoringError):
    """Quota rejections outlasted the retry budget."""


class FeedError(Exception):
    """Upstream news feed returned an error or could not be reached."""


class PipelineRunError(Exception):
    """Unexpected failure during a run; carries the stats gathered so far."""

    def __init__(self, message: str, stats: PipelineStats) -> None:
        super().__init__(message)
        self.stats = stats
