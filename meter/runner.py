"""
Run orchestration: Latency, then Download, then Upload.

Phases are strictly sequential and never re-entered.  The observer sees
every phase change and every live rate sample; the caller gets a
:class:`RunResult` or an exception.  Upload problems never fail a run --
they resolve through the fallback simulator and are flagged as simulated.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from .config import SpeedTestConfig
from .engine import Direction, ThroughputEngine, ThroughputResult
from .errors import InvalidPhaseTransition, MeasurementError, SpeedTestError, TestCancelledError
from .latency import LatencyProbe, LatencyResult
from .sampler import RateSample

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class MeasurementPhase(str, Enum):
    IDLE = "idle"
    LATENCY = "latency"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    COMPLETE = "complete"
    FAILED = "failed"


_SEQUENCE = [
    MeasurementPhase.IDLE,
    MeasurementPhase.LATENCY,
    MeasurementPhase.DOWNLOAD,
    MeasurementPhase.UPLOAD,
    MeasurementPhase.COMPLETE,
]


class RunObserver:
    """Receives run events.  Override what you need; the rest are no-ops."""

    def on_phase(self, phase: MeasurementPhase) -> None:
        pass

    def on_sample(self, phase: MeasurementPhase, sample: RateSample) -> None:
        pass

    def on_result(self, result: RunResult) -> None:
        pass

    def on_error(self, error: BaseException) -> None:
        pass


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunResult:
    """The three scalars of a finished run, plus how they were obtained."""

    ping_ms: float
    download_mbps: float
    upload_mbps: float
    success: bool = True
    ping_has_data: bool = True
    upload_simulated: bool = False
    latency: Optional[LatencyResult] = None
    download: Optional[ThroughputResult] = None
    upload: Optional[ThroughputResult] = None

    def to_dict(self) -> dict:
        result: dict = {
            "success": self.success,
            "ping_ms": round(self.ping_ms, 3),
            "ping_has_data": self.ping_has_data,
            "download_mbps": round(self.download_mbps, 2),
            "upload_mbps": round(self.upload_mbps, 2),
            "upload_simulated": self.upload_simulated,
        }
        if self.latency:
            result["latency"] = self.latency.to_dict()
        if self.download:
            result["download"] = self.download.to_dict()
        if self.upload:
            result["upload"] = self.upload.to_dict()
        return result


# ---------------------------------------------------------------------------
# Per-run state
# ---------------------------------------------------------------------------

@dataclass
class RunContext:
    """Mutable state of one run; lives exactly as long as the run."""

    config: SpeedTestConfig
    observer: RunObserver
    cancel: Optional[asyncio.Event] = None
    phase: MeasurementPhase = MeasurementPhase.IDLE
    latency: Optional[LatencyResult] = None
    download: Optional[ThroughputResult] = None
    upload: Optional[ThroughputResult] = None
    error: Optional[BaseException] = None

    def enter(self, phase: MeasurementPhase) -> None:
        if self.phase in (MeasurementPhase.COMPLETE, MeasurementPhase.FAILED):
            raise InvalidPhaseTransition(f"run already finished ({self.phase.value})")
        if phase is not MeasurementPhase.FAILED:
            expected = _SEQUENCE[_SEQUENCE.index(self.phase) + 1]
            if phase is not expected:
                raise InvalidPhaseTransition(
                    f"cannot go from {self.phase.value} to {phase.value}"
                )
        LOGGER.info("phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase
        self.observer.on_phase(phase)

    def fail(self, error: BaseException) -> None:
        self.error = error
        if self.phase is not MeasurementPhase.FAILED:
            self.enter(MeasurementPhase.FAILED)
        self.observer.on_error(error)

    def emit(self, sample: RateSample) -> None:
        self.observer.on_sample(self.phase, sample)

    def check_cancel(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise TestCancelledError(f"cancelled during {self.phase.value}")

    def result(self) -> RunResult:
        if self.latency is None or self.download is None or self.upload is None:
            raise RuntimeError("run has not completed every phase")
        return RunResult(
            ping_ms=self.latency.latency_ms,
            download_mbps=self.download.mbps,
            upload_mbps=self.upload.mbps,
            ping_has_data=self.latency.has_data,
            upload_simulated=self.upload.simulated,
            latency=self.latency,
            download=self.download,
            upload=self.upload,
        )


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class SpeedTestRunner:
    """Drive one full measurement run."""

    def __init__(
        self,
        config: Optional[SpeedTestConfig] = None,
        observer: Optional[RunObserver] = None,
        probe: Optional[LatencyProbe] = None,
        engine: Optional[ThroughputEngine] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or SpeedTestConfig()
        self.observer = observer or RunObserver()
        self.probe = probe
        self.engine = engine
        self.sleep = sleep

    async def run(self, cancel: Optional[asyncio.Event] = None) -> RunResult:
        ctx = RunContext(config=self.config, observer=self.observer, cancel=cancel)

        try:
            config = self.config.validate()
            probe = self.probe or LatencyProbe(
                sample_count=config.ping_sample_count,
                interval_ms=config.ping_interval_ms,
            )
            engine = self.engine or ThroughputEngine(
                tick_ms=config.sample_interval_ms,
                reject_retries=config.upload_reject_retries,
            )
            after_latency, after_download, after_reset = config.settle_ms

            ctx.check_cancel()
            ctx.latency = await self._phase(
                ctx, MeasurementPhase.LATENCY,
                lambda: probe.measure(config.ping_target, cancel=cancel),
            )
            await self._settle(after_latency)

            ctx.check_cancel()
            ctx.download = await self._phase(
                ctx, MeasurementPhase.DOWNLOAD,
                lambda: engine.measure(
                    Direction.DOWNLOAD,
                    config.download_target,
                    duration_ms=config.download_duration_ms,
                    parallelism=config.download_parallelism,
                    on_sample=ctx.emit,
                    cancel=cancel,
                ),
            )
            await self._settle(after_download)

            # Gauge reset between phases; not part of any result.
            ctx.emit(RateSample(timestamp=time.monotonic(), mbps=0.0))
            await self._settle(after_reset)

            ctx.check_cancel()
            ctx.enter(MeasurementPhase.UPLOAD)
            ctx.upload = await self._measure_upload(ctx, engine)

            ctx.check_cancel()
            ctx.enter(MeasurementPhase.COMPLETE)

        except asyncio.CancelledError:
            ctx.fail(TestCancelledError(f"cancelled during {ctx.phase.value}"))
            raise
        except SpeedTestError as exc:
            ctx.fail(exc)
            raise
        except Exception as exc:
            error = MeasurementError(ctx.phase.value, repr(exc))
            ctx.fail(error)
            raise error from exc

        result = ctx.result()
        LOGGER.info(
            "run complete: ping %.1f ms, down %.2f Mbps, up %.2f Mbps%s",
            result.ping_ms, result.download_mbps, result.upload_mbps,
            " (simulated)" if result.upload_simulated else "",
        )
        self.observer.on_result(result)
        return result

    # -- Internals ----------------------------------------------------------

    @staticmethod
    async def _phase(
        ctx: RunContext,
        phase: MeasurementPhase,
        work: Callable[[], Awaitable[T]],
    ) -> T:
        ctx.enter(phase)
        try:
            return await work()
        except SpeedTestError:
            raise
        except Exception as exc:
            raise MeasurementError(phase.value, repr(exc)) from exc

    async def _measure_upload(self, ctx: RunContext, engine: ThroughputEngine) -> ThroughputResult:
        config = ctx.config
        try:
            return await engine.measure(
                Direction.UPLOAD,
                config.upload_target,
                duration_ms=config.upload_duration_cap_ms,
                parallelism=config.upload_parallelism,
                on_sample=ctx.emit,
                payload_bytes=config.upload_payload_bytes,
                cancel=ctx.cancel,
            )
        except TestCancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 -- upload always resolves via the simulator
            return await engine.fallback(exc, on_sample=ctx.emit, cancel=ctx.cancel)

    async def _settle(self, pause_ms: float) -> None:
        if pause_ms > 0:
            await self.sleep(pause_ms / 1000)


async def run_speed_test(
    config: Optional[SpeedTestConfig] = None,
    observer: Optional[RunObserver] = None,
    cancel: Optional[asyncio.Event] = None,
) -> RunResult:
    """Measure latency, download and upload against the configured endpoints."""
    return await SpeedTestRunner(config, observer).run(cancel)
