"""
Shared byte accounting for one throughput phase.

``TransferCounter`` is written by every worker and read by the rate
sampler, so each mutation happens under a lock.  ``Deadline`` is computed
once at phase start and consulted by workers between transfer units.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Tuple


class TransferCounter:
    """Monotonic, lock-protected accumulator of transferred bytes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._units = 0

    def add(self, n_bytes: int) -> int:
        """Add *n_bytes* and return the new total."""
        if n_bytes < 0:
            raise ValueError(f"byte delta must be >= 0, got {n_bytes}")
        with self._lock:
            self._total += n_bytes
            return self._total

    def complete_unit(self) -> int:
        """Record one finished transfer unit.  Returns the unit count."""
        with self._lock:
            self._units += 1
            return self._units

    def reset(self) -> None:
        with self._lock:
            self._total = 0
            self._units = 0

    @property
    def total(self) -> int:
        with self._lock:
            return self._total

    @property
    def units(self) -> int:
        with self._lock:
            return self._units

    def snapshot(self) -> Tuple[int, int]:
        """Return ``(total_bytes, completed_units)`` read atomically."""
        with self._lock:
            return self._total, self._units


@dataclass(frozen=True)
class Deadline:
    """An absolute instant on a monotonic clock."""

    at: float
    clock: Callable[[], float] = time.monotonic

    @classmethod
    def after(cls, duration_ms: float, clock: Callable[[], float] = time.monotonic) -> Deadline:
        return cls(at=clock() + duration_ms / 1000, clock=clock)

    def expired(self) -> bool:
        return self.clock() >= self.at

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self.at - self.clock())
