"""
Parallel-stream throughput engine, used for both download and upload.

``parallelism`` workers repeat transfer units against one deadline while a
sampler converts the shared byte counter into a live rate.  Once every
worker has joined the sampler is stopped and the phase result is computed
from *total* bytes over *total* elapsed time, never from the samples.

If the upload channel rejects the very first sends, the real measurement
is abandoned and :class:`~meter.fallback.FallbackSimulator` produces the
result instead, tagged ``Provenance.SIMULATED``.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

import aiohttp

from .constants import (
    COMMON_HEADERS,
    CONNECT_TIMEOUT,
    DEFAULT_CONNECTIONS,
    DEFAULT_DURATION_MS,
    SAMPLE_INTERVAL_MS,
    SOCK_READ_TIMEOUT,
    UPLOAD_PAYLOAD_SIZE,
)
from .counter import Deadline, TransferCounter
from .errors import ChannelUnavailableError
from .fallback import FallbackSimulator
from .sampler import RateSample, RateSampler, compute_mbps
from .transfer import DownloadUnit, TransferUnit, TransferWorker, UploadUnit, WorkerStats

LOGGER = logging.getLogger(__name__)


class Direction(str, Enum):
    DOWNLOAD = "download"
    UPLOAD = "upload"


class Provenance(str, Enum):
    """Where a phase result came from."""

    MEASURED = "measured"
    SIMULATED = "simulated"


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class ThroughputResult:
    """Download or upload phase result."""

    direction: Direction = Direction.DOWNLOAD
    mbps: float = 0.0
    bytes_total: int = 0
    elapsed_s: float = 0.0
    samples: List[RateSample] = field(default_factory=list)
    workers: List[WorkerStats] = field(default_factory=list)
    provenance: Provenance = Provenance.MEASURED
    fallback_reason: Optional[str] = None

    @property
    def simulated(self) -> bool:
        return self.provenance is Provenance.SIMULATED

    def calculate(self) -> None:
        """Derive the rate from total bytes and total elapsed time."""
        self.mbps = compute_mbps(self.bytes_total, self.elapsed_s)

    def to_dict(self) -> dict:
        return {
            "direction": self.direction.value,
            "speed_mbps": round(self.mbps, 2),
            "bytes_total": self.bytes_total,
            "duration_ms": round(self.elapsed_s * 1000, 2),
            "provenance": self.provenance.value,
            "fallback_reason": self.fallback_reason,
            "workers": [w.to_dict() for w in self.workers],
            "samples": [round(s.mbps, 2) for s in self.samples],
        }


UnitFactory = Callable[[Direction, int], TransferUnit]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ThroughputEngine:
    """
    Run one throughput phase.

    ``unit_factory`` replaces the HTTP units (one call per worker); when it
    is given no HTTP session is opened.
    """

    def __init__(
        self,
        tick_ms: float = SAMPLE_INTERVAL_MS,
        simulator: Optional[FallbackSimulator] = None,
        unit_factory: Optional[UnitFactory] = None,
        reject_retries: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.tick_ms = tick_ms
        self.simulator = simulator or FallbackSimulator()
        self.unit_factory = unit_factory
        self.reject_retries = reject_retries
        self.clock = clock

    async def measure(
        self,
        direction: Direction,
        target: str = "",
        duration_ms: float = DEFAULT_DURATION_MS,
        parallelism: int = DEFAULT_CONNECTIONS,
        on_sample: Optional[Callable[[RateSample], None]] = None,
        payload_bytes: int = UPLOAD_PAYLOAD_SIZE,
        cancel: Optional[asyncio.Event] = None,
    ) -> ThroughputResult:
        direction = Direction(direction)
        if parallelism < 1:
            raise ValueError(f"parallelism must be >= 1, got {parallelism}")

        LOGGER.info(
            "%s: %d streams for %.0f ms against %s",
            direction.value, parallelism, duration_ms, target or "<custom units>",
        )

        if self.unit_factory is not None:
            factory = self.unit_factory
            return await self._run(direction, duration_ms, parallelism, on_sample, cancel,
                                   lambda i: factory(direction, i))

        async with self._open_session(direction, parallelism, duration_ms) as session:
            if direction is Direction.DOWNLOAD:
                def make_unit(_: int) -> TransferUnit:
                    return DownloadUnit(session, target)
            else:
                payload = os.urandom(payload_bytes)

                def make_unit(_: int) -> TransferUnit:
                    return UploadUnit(session, target, payload)

            return await self._run(direction, duration_ms, parallelism, on_sample, cancel,
                                   make_unit)

    # -- Internals ----------------------------------------------------------

    @staticmethod
    def _open_session(
        direction: Direction,
        parallelism: int,
        duration_ms: float,
    ) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(
            limit=parallelism,
            limit_per_host=parallelism,
            force_close=False,
        )
        if direction is Direction.DOWNLOAD:
            timeout = aiohttp.ClientTimeout(
                total=None, connect=CONNECT_TIMEOUT, sock_read=SOCK_READ_TIMEOUT
            )
            headers = {**COMMON_HEADERS, "Accept-Encoding": "identity"}
        else:
            # One send may not outlive the upload window.
            timeout = aiohttp.ClientTimeout(total=duration_ms / 1000, connect=CONNECT_TIMEOUT)
            headers = COMMON_HEADERS
        return aiohttp.ClientSession(headers=headers, connector=connector, timeout=timeout)

    async def _run(
        self,
        direction: Direction,
        duration_ms: float,
        parallelism: int,
        on_sample: Optional[Callable[[RateSample], None]],
        cancel: Optional[asyncio.Event],
        make_unit: Callable[[int], TransferUnit],
    ) -> ThroughputResult:
        counter = TransferCounter()
        start = self.clock()
        deadline = Deadline(at=start + duration_ms / 1000, clock=self.clock)

        sampler = RateSampler(
            source=lambda: (counter.total, self.clock() - start),
            on_sample=on_sample,
            tick_ms=self.tick_ms,
            clock=self.clock,
        )
        workers = [
            TransferWorker(i, make_unit(i), counter, deadline, cancel, self.reject_retries)
            for i in range(parallelism)
        ]

        sampler.start(cancel)
        try:
            await _join([asyncio.create_task(w.run()) for w in workers])
        except ChannelUnavailableError as exc:
            await sampler.stop()
            if direction is not Direction.UPLOAD:
                raise
            return await self.fallback(exc, on_sample, cancel, workers)
        finally:
            await sampler.stop()

        result = ThroughputResult(
            direction=direction,
            bytes_total=counter.total,
            elapsed_s=self.clock() - start,
            samples=list(sampler.samples),
            workers=[w.stats for w in workers],
        )
        result.calculate()

        LOGGER.info(
            "%s: %.2f Mbps (%d bytes in %.3f s, %d units)",
            direction.value, result.mbps, result.bytes_total, result.elapsed_s, counter.units,
        )
        return result

    async def fallback(
        self,
        reason: BaseException,
        on_sample: Optional[Callable[[RateSample], None]] = None,
        cancel: Optional[asyncio.Event] = None,
        workers: Sequence[TransferWorker] = (),
    ) -> ThroughputResult:
        """Replace an unusable upload phase with a simulated one."""
        LOGGER.warning("upload channel unusable (%s); result will be simulated", reason)
        speed = await self.simulator.simulate(on_sample=on_sample, cancel=cancel)
        return ThroughputResult(
            direction=Direction.UPLOAD,
            mbps=speed,
            samples=list(self.simulator.samples),
            workers=[w.stats for w in workers],
            provenance=Provenance.SIMULATED,
            fallback_reason=str(reason),
        )


async def _join(tasks: List[asyncio.Task]) -> None:
    """Wait for every task; on the first failure cancel the rest and re-raise."""
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    errors = [t.exception() for t in done if not t.cancelled() and t.exception() is not None]
    if errors:
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        raise errors[0]
