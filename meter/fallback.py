"""
Synthetic upload curve for when the real upload channel is unusable.

Some public upload endpoints refuse large cross-origin POSTs outright.  In
that case the run still completes: the simulator emits a short, plausible
rate curve and hands back its last value.  Callers must mark the result as
simulated; nothing here pretends to be a measurement.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, List, Optional

from .constants import (
    FALLBACK_MAX_MBPS,
    FALLBACK_MIN_MBPS,
    FALLBACK_TICK_MS,
    FALLBACK_TICKS,
)
from .sampler import RateSample

LOGGER = logging.getLogger(__name__)


class FallbackSimulator:
    """Emit ``ticks`` random samples in ``[low, high]`` and return the last."""

    def __init__(
        self,
        ticks: int = FALLBACK_TICKS,
        tick_ms: float = FALLBACK_TICK_MS,
        low: float = FALLBACK_MIN_MBPS,
        high: float = FALLBACK_MAX_MBPS,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ticks < 1:
            raise ValueError("ticks must be >= 1")
        if not 0 <= low <= high:
            raise ValueError(f"invalid range [{low}, {high}]")
        self.ticks = ticks
        self.tick_ms = tick_ms
        self.low = low
        self.high = high
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.clock = clock
        self.samples: List[RateSample] = []

    async def simulate(
        self,
        on_sample: Optional[Callable[[RateSample], None]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> float:
        LOGGER.warning("upload channel unavailable, simulating %d samples", self.ticks)
        self.samples = []
        speed = 0.0

        for _ in range(self.ticks):
            await self.sleep(self.tick_ms / 1000)
            speed = self.rng.uniform(self.low, self.high)
            sample = RateSample(timestamp=self.clock(), mbps=speed)
            self.samples.append(sample)
            if on_sample:
                on_sample(sample)
            # At least one sample is always produced so the result is usable.
            if cancel is not None and cancel.is_set():
                break

        return speed
