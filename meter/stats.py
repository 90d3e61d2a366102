"""
Measurement statistics and formatting.

Pure functions and lightweight dataclasses -- no I/O, no side effects.
"""
from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from typing import List


@dataclass
class LatencyStats:
    """Summary of the round-trip samples that survived a latency phase."""

    samples: List[float] = field(default_factory=list)
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    iqm: float = 0.0
    jitter: float = 0.0
    count: int = 0

    def calculate(self) -> None:
        if not self.samples:
            return
        self.count = len(self.samples)
        self.min = min(self.samples)
        self.max = max(self.samples)
        self.mean = statistics.mean(self.samples)
        self.median = statistics.median(self.samples)
        self.iqm = calculate_iqm(self.samples)
        self.jitter = calculate_jitter(self.samples)

    def to_dict(self) -> dict:
        return {
            "samples": [round(s, 3) for s in self.samples],
            "min": round(self.min, 3),
            "max": round(self.max, 3),
            "mean": round(self.mean, 3),
            "median": round(self.median, 3),
            "iqm": round(self.iqm, 3),
            "jitter": round(self.jitter, 3),
            "count": self.count,
        }


def calculate_jitter(samples: List[float]) -> float:
    """Mean absolute difference between consecutive samples."""
    if len(samples) < 2:
        return 0.0
    diffs = [abs(samples[i] - samples[i - 1]) for i in range(1, len(samples))]
    return statistics.mean(diffs)


def calculate_iqm(samples: List[float]) -> float:
    """Interquartile mean -- mean of values between Q1 and Q3."""
    if not samples:
        return 0.0
    if len(samples) < 4:
        return statistics.mean(samples)

    ordered = sorted(samples)
    n = len(ordered)
    middle = ordered[n // 4 : (3 * n) // 4]
    return statistics.mean(middle) if middle else statistics.mean(samples)


def packet_loss(attempts: int, received: int) -> float:
    """Percentage of attempts that produced no sample."""
    if attempts <= 0:
        return 0.0
    return (attempts - received) / attempts * 100


def format_speed(speed_mbps: float) -> str:
    """Human-readable speed string."""
    if speed_mbps >= 1000:
        return f"{speed_mbps / 1000:.2f} Gbps"
    return f"{speed_mbps:.2f} Mbps"


def format_latency(latency_ms: float) -> str:
    """Human-readable latency string."""
    if latency_ms >= 1000:
        return f"{latency_ms / 1000:.2f} s"
    return f"{latency_ms:.1f} ms"
