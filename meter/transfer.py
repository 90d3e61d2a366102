"""
Transfer units and the worker loop that repeats them.

A *transfer unit* is one complete fetch-and-discard (download) or one
fixed payload send (upload).  Units report byte deltas as they go; the
worker forwards every delta to the shared :class:`TransferCounter`.
"""
from __future__ import annotations

import asyncio
import logging
import os
import secrets
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

import aiohttp

from .constants import CACHE_BUSTER_PARAM, CHUNK_SIZE, UPLOAD_PAYLOAD_SIZE
from .counter import Deadline, TransferCounter
from .errors import ChannelUnavailableError
from .sampler import compute_mbps

LOGGER = logging.getLogger(__name__)

ByteReporter = Callable[[int], None]
TransferUnit = Callable[[ByteReporter], Awaitable[None]]

_TRANSIENT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


def cache_buster() -> Dict[str, str]:
    """Query parameters that make every request URL unique."""
    return {CACHE_BUSTER_PARAM: secrets.token_hex(8)}


# ---------------------------------------------------------------------------
# Per-worker statistics
# ---------------------------------------------------------------------------

@dataclass
class WorkerStats:
    """What one worker moved before it stopped."""

    id: int = 0
    units: int = 0
    bytes_transferred: int = 0
    duration_ms: float = 0.0
    speed_mbps: float = 0.0
    error: Optional[str] = None

    def calculate(self) -> None:
        self.speed_mbps = compute_mbps(self.bytes_transferred, self.duration_ms / 1000)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "units": self.units,
            "bytes": self.bytes_transferred,
            "duration_ms": round(self.duration_ms, 2),
            "speed_mbps": round(self.speed_mbps, 2),
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------

class DownloadUnit:
    """GET one resource body and throw it away."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self.session = session
        self.url = url
        self.chunk_size = chunk_size

    async def __call__(self, report: ByteReporter) -> None:
        async with self.session.get(self.url, params=cache_buster()) as resp:
            resp.raise_for_status()
            async for chunk in resp.content.iter_chunked(self.chunk_size):
                report(len(chunk))


class UploadUnit:
    """
    POST one fixed payload.

    The body is streamed from an async generator so every chunk handed to
    the transport becomes a progress report.  A rejected request (error
    status or broken connection) is raised as ``ChannelUnavailableError``;
    timeouts propagate unchanged.
    """

    HEADERS = {"Content-Type": "application/octet-stream"}

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        payload: bytes,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        if not payload:
            raise ValueError("upload payload must not be empty")
        self.session = session
        self.url = url
        self.payload = payload
        self.chunk_size = chunk_size

    @classmethod
    def random(
        cls,
        session: aiohttp.ClientSession,
        url: str,
        size: int = UPLOAD_PAYLOAD_SIZE,
    ) -> UploadUnit:
        return cls(session, url, os.urandom(size))

    async def _stream(self, report: ByteReporter) -> AsyncIterator[bytes]:
        view = memoryview(self.payload)
        for pos in range(0, len(view), self.chunk_size):
            chunk = bytes(view[pos : pos + self.chunk_size])
            report(len(chunk))
            yield chunk

    async def __call__(self, report: ByteReporter) -> None:
        try:
            async with self.session.post(
                self.url,
                data=self._stream(report),
                headers=self.HEADERS,
            ) as resp:
                if resp.status >= 400:
                    raise ChannelUnavailableError(
                        "upload rejected", url=self.url, status=resp.status
                    )
                await resp.read()
        except asyncio.TimeoutError:
            raise
        except aiohttp.ClientError as exc:
            raise ChannelUnavailableError(
                f"upload channel error: {exc!r}", url=self.url
            ) from exc


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------

class TransferWorker:
    """
    Repeat one transfer unit until the deadline, a cancel, or an error.

    The deadline and cancel signal are checked before each unit; a unit
    already in flight is allowed to finish or fail.
    """

    def __init__(
        self,
        worker_id: int,
        unit: TransferUnit,
        counter: TransferCounter,
        deadline: Deadline,
        cancel: Optional[asyncio.Event] = None,
        reject_retries: int = 0,
    ) -> None:
        self.worker_id = worker_id
        self.unit = unit
        self.counter = counter
        self.deadline = deadline
        self.cancel = cancel
        self.reject_retries = reject_retries
        self.stats = WorkerStats(id=worker_id)

    def _should_stop(self) -> bool:
        if self.cancel is not None and self.cancel.is_set():
            return True
        return self.deadline.expired()

    def _report(self, n_bytes: int) -> None:
        self.stats.bytes_transferred += n_bytes
        self.counter.add(n_bytes)

    async def run(self) -> WorkerStats:
        clock = self.deadline.clock
        t0 = clock()
        retries_left = self.reject_retries

        try:
            while not self._should_stop():
                try:
                    await self.unit(self._report)
                except ChannelUnavailableError as exc:
                    self.stats.error = str(exc)
                    if retries_left > 0:
                        retries_left -= 1
                        LOGGER.debug("worker %d: rejected, retrying: %s", self.worker_id, exc)
                        continue
                    if self.counter.units == 0:
                        raise
                    LOGGER.debug("worker %d: channel rejected, stopping: %s", self.worker_id, exc)
                    break
                except _TRANSIENT_ERRORS as exc:
                    self.stats.error = str(exc) or type(exc).__name__
                    LOGGER.debug("worker %d: stopping after error: %r", self.worker_id, exc)
                    break

                self.stats.units += 1
                self.counter.complete_unit()
        finally:
            self.stats.duration_ms = (clock() - t0) * 1000
            self.stats.calculate()

        return self.stats
