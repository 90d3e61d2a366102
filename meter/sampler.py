"""
Instantaneous throughput sampling.

The sampler reads ``(bytes, elapsed_seconds)`` from a source on a fixed
tick and converts it into megabits per second.  The conversion is the
cumulative rate since phase start, so a non-decreasing byte counter can
never produce a negative sample.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .constants import SAMPLE_INTERVAL_MS

LOGGER = logging.getLogger(__name__)

RateSource = Callable[[], Tuple[int, float]]


@dataclass(frozen=True)
class RateSample:
    """One live rate reading."""

    timestamp: float
    mbps: float

    def to_dict(self) -> dict:
        return {"timestamp": round(self.timestamp, 3), "mbps": round(self.mbps, 2)}


def compute_mbps(n_bytes: float, elapsed_s: float) -> float:
    """``(bytes * 8) / (elapsed * 1e6)``, or 0.0 when that is undefined."""
    if elapsed_s <= 0 or n_bytes <= 0:
        return 0.0
    mbps = (n_bytes * 8) / (elapsed_s * 1_000_000)
    if not math.isfinite(mbps):
        return 0.0
    return mbps


class RateSampler:
    """
    Periodic rate emitter.

    ``start()`` launches the tick loop as a task; ``stop()`` ends it and
    returns every sample taken.  The engine stops the sampler only once all
    workers have joined, so no tick races the final total.
    """

    def __init__(
        self,
        source: RateSource,
        on_sample: Optional[Callable[[RateSample], None]] = None,
        tick_ms: float = SAMPLE_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.on_sample = on_sample
        self.tick_ms = tick_ms
        self.clock = clock
        self.samples: List[RateSample] = []
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    # -- Lifecycle ------------------------------------------------------------

    def start(self, cancel: Optional[asyncio.Event] = None) -> asyncio.Task:
        if self._task is not None:
            raise RuntimeError("sampler already started")
        self._stop.clear()
        self._task = asyncio.create_task(self.run(cancel))
        return self._task

    async def stop(self) -> List[RateSample]:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
        return self.samples

    # -- Loop -----------------------------------------------------------------

    async def run(self, cancel: Optional[asyncio.Event] = None) -> List[RateSample]:
        interval = self.tick_ms / 1000

        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

            if cancel is not None and cancel.is_set():
                break

            self.tick()

        return self.samples

    def tick(self) -> RateSample:
        """Take one reading and emit it."""
        n_bytes, elapsed = self.source()
        sample = RateSample(timestamp=self.clock(), mbps=compute_mbps(n_bytes, elapsed))
        self.samples.append(sample)

        if self.on_sample:
            try:
                self.on_sample(sample)
            except Exception:  # noqa: BLE001 -- observer bugs must not stop sampling
                LOGGER.exception("rate sample callback failed")

        return sample
