"""Link quality measurement core -- latency, download and upload throughput."""

from .config import SpeedTestConfig, load_config
from .counter import Deadline, TransferCounter
from .engine import Direction, Provenance, ThroughputEngine, ThroughputResult
from .errors import (
    ChannelUnavailableError,
    ConfigError,
    InvalidPhaseTransition,
    MeasurementError,
    SpeedTestError,
    TestCancelledError,
)
from .fallback import FallbackSimulator
from .latency import LatencyProbe, LatencyResult, measure_latency
from .runner import (
    MeasurementPhase,
    RunContext,
    RunObserver,
    RunResult,
    SpeedTestRunner,
    run_speed_test,
)
from .sampler import RateSample, RateSampler, compute_mbps
from .stats import LatencyStats, format_latency, format_speed
from .transfer import DownloadUnit, TransferWorker, UploadUnit, WorkerStats

__all__ = [
    "ChannelUnavailableError",
    "ConfigError",
    "Deadline",
    "Direction",
    "DownloadUnit",
    "FallbackSimulator",
    "InvalidPhaseTransition",
    "LatencyProbe",
    "LatencyResult",
    "LatencyStats",
    "MeasurementError",
    "MeasurementPhase",
    "Provenance",
    "RateSample",
    "RateSampler",
    "RunContext",
    "RunObserver",
    "RunResult",
    "SpeedTestConfig",
    "SpeedTestError",
    "SpeedTestRunner",
    "TestCancelledError",
    "ThroughputEngine",
    "ThroughputResult",
    "TransferCounter",
    "TransferWorker",
    "UploadUnit",
    "WorkerStats",
    "compute_mbps",
    "format_latency",
    "format_speed",
    "load_config",
    "measure_latency",
    "run_speed_test",
]
