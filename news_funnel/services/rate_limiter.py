"""
Per-tier sliding-window rate limiter with adaptive capacity.

Each scoring tier (title, analysis) has its own quota, so each gets its own
limiter. A quota rejection lowers capacity by 20%; a restore tick brings it
back to base once the tier has been quiet for five minutes.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from collections.abc import Awaitable, Callable

from news_funnel.core.logging import get_logger

logger = get_logger(__name__)

WINDOW_SECONDS = 60.0
QUIET_PERIOD_SECONDS = 5 * 60.0
THROTTLE_FACTOR = 0.8
# Small margin so the oldest call has definitely left the window on recheck
_WAKE_MARGIN_SECONDS = 0.025


class RateLimiter:
    """Sliding 60s window limiter. acquire() only ever delays, never rejects."""

    def __init__(
        self,
        base_capacity: int,
        label: str,
        *,
        adaptive: bool = True,
        window: float = WINDOW_SECONDS,
        quiet_period: float = QUIET_PERIOD_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.label = label
        self.base_capacity = max(1, int(base_capacity))
        self.current_capacity = self.base_capacity
        self.adaptive = adaptive
        self.window = window
        self.quiet_period = quiet_period
        self.last_throttle_at: float | None = None
        self._timestamps: deque[float] = deque()
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

    @property
    def call_timestamps(self) -> list[float]:
        return list(self._timestamps)

    def _evict(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()

    async def acquire(self) -> None:
        """Wait until a slot is free in the current window, then take it."""
        while True:
            async with self._lock:
                now = self._clock()
                self._evict(now)
                if len(self._timestamps) < self.current_capacity:
                    self._timestamps.append(now)
                    return
                wait = self.window - (now - self._timestamps[0]) + _WAKE_MARGIN_SECONDS

            logger.debug(
                "rate_limiter_waiting",
                tier=self.label,
                wait_s=round(wait, 3),
                capacity=self.current_capacity,
            )
            await self._sleep(wait)

    def on_throttled(self) -> None:
        self.last_throttle_at = self._clock()
        if not self.adaptive:
            return
        lowered = max(1, math.floor(self.current_capacity * THROTTLE_FACTOR))
        if lowered < self.current_capacity:
            self.current_capacity = lowered
            logger.warning(
                "rate_limiter_throttled",
                tier=self.label,
                capacity=self.current_capacity,
                base=self.base_capacity,
            )

    def restore_tick(self) -> bool:
        """Restore base capacity after a quiet period. Returns True when restored."""
        if not self.adaptive or self.current_capacity >= self.base_capacity:
            return False
        if self.last_throttle_at is not None:
            if self._clock() - self.last_throttle_at < self.quiet_period:
                return False
        self.current_capacity = self.base_capacity
        logger.info("rate_limiter_restored", tier=self.label, capacity=self.base_capacity)
        return True


async def run_restore_loop(
    limiters: list[RateLimiter],
    interval: float = 60.0,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Tick every limiter's restore check until cancelled."""
    while True:
        await sleep(interval)
        for limiter in limiters:
            limiter.restore_tick()
