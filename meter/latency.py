"""
Round-trip latency measurement.

Two transports are supported, chosen by the target's URL scheme:

``http`` / ``https``
    One ``HEAD`` request per sample, each with a unique cache-defeating
    query parameter.  A sample is the time from dispatch until response
    headers arrive.

``ws`` / ``wss``
    One WebSocket connection per phase.  After the server greeting::

        1. Receive  HELLO {version}
        2. Receive  YOURIP {ip}
        3. Receive  CAPABILITIES ...

    each sample is one ``PING {timestamp_ms}`` / ``PONG ...`` exchange.

Samples are taken serially with a fixed pause after each one.  Failed
samples are dropped, never retried, and the result is the arithmetic mean
of the survivors.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urlsplit

import aiohttp
import websockets
import websockets.exceptions

from .constants import (
    COMMON_HEADERS,
    DEFAULT_PING_COUNT,
    DEFAULT_PING_INTERVAL_MS,
    PING_TIMEOUT,
    WS_CONNECT_TIMEOUT,
    WS_HANDSHAKE_TIMEOUT,
    WS_MSG_TIMEOUT,
)
from .errors import ChannelUnavailableError
from .stats import LatencyStats, packet_loss
from .transfer import cache_buster

LOGGER = logging.getLogger(__name__)

_PROBE_ERRORS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
    websockets.exceptions.WebSocketException,
    ChannelUnavailableError,
)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class LatencyResult:
    """Outcome of one latency phase."""

    target: str = ""
    samples: List[float] = field(default_factory=list)
    attempts: int = 0
    latency_ms: float = 0.0
    packet_loss: float = 0.0
    stats: LatencyStats = field(default_factory=LatencyStats)
    error: Optional[str] = None

    @property
    def has_data(self) -> bool:
        """False when every sample failed and ``latency_ms`` is a placeholder."""
        return bool(self.samples)

    def calculate(self) -> None:
        self.latency_ms = sum(self.samples) / len(self.samples) if self.samples else 0.0
        self.packet_loss = packet_loss(self.attempts, len(self.samples))
        self.stats = LatencyStats(samples=list(self.samples))
        self.stats.calculate()

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "latency_ms": round(self.latency_ms, 3),
            "has_data": self.has_data,
            "attempts": self.attempts,
            "packet_loss": round(self.packet_loss, 1),
            "stats": self.stats.to_dict(),
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------

class HttpHeadTransport:
    """Header-only HTTP round-trips over one shared session."""

    def __init__(
        self,
        url: str,
        timeout: float = PING_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session
        self._owned: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> HttpHeadTransport:
        if self._session is None:
            self._owned = aiohttp.ClientSession(
                headers=COMMON_HEADERS,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._session = self._owned
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._owned is not None:
            await self._owned.close()
            self._owned = None
            self._session = None

    async def round_trip(self) -> None:
        if self._session is None:
            raise RuntimeError("transport used outside 'async with'")
        # Any response counts: the headers arriving is the round trip.
        async with self._session.head(self.url, params=cache_buster()) as resp:
            LOGGER.debug("HEAD %s -> %s", self.url, resp.status)


class WebSocketTransport:
    """PING/PONG round-trips over a single WebSocket connection."""

    def __init__(self, url: str, timeout: float = PING_TIMEOUT) -> None:
        self.url = url
        self.timeout = timeout
        self.server_version = ""
        self.external_ip = ""
        self._ws = None

    async def __aenter__(self) -> WebSocketTransport:
        self._ws = await websockets.connect(
            self.url,
            additional_headers=COMMON_HEADERS,
            ping_interval=None,
            close_timeout=2,
            open_timeout=WS_CONNECT_TIMEOUT,
        )
        await self._read_greeting()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def _read_greeting(self) -> None:
        """Consume HELLO / YOURIP / CAPABILITIES messages."""
        start = time.perf_counter()
        received = 0

        while time.perf_counter() - start < WS_HANDSHAKE_TIMEOUT:
            try:
                msg = await asyncio.wait_for(self._ws.recv(), timeout=WS_MSG_TIMEOUT)
            except asyncio.TimeoutError:
                break

            if msg.startswith("HELLO"):
                parts = msg.split()
                if len(parts) >= 2:
                    self.server_version = parts[1]
            elif msg.startswith("YOURIP"):
                parts = msg.split()
                if len(parts) >= 2:
                    self.external_ip = parts[1].strip()

            received += 1
            if received >= 3:
                break

    async def round_trip(self) -> None:
        if self._ws is None:
            raise RuntimeError("transport used outside 'async with'")
        await self._ws.send(f"PING {int(time.time() * 1000)}")
        msg = await asyncio.wait_for(self._ws.recv(), timeout=self.timeout)
        if not msg.startswith("PONG"):
            raise ChannelUnavailableError(f"unexpected reply {msg[:50]!r}", url=self.url)


def transport_for(target: str, timeout: float = PING_TIMEOUT):
    """Pick a transport from the URL scheme of *target*."""
    scheme = urlsplit(target).scheme.lower()
    if scheme in ("ws", "wss"):
        return WebSocketTransport(target, timeout=timeout)
    if scheme in ("http", "https"):
        return HttpHeadTransport(target, timeout=timeout)
    raise ValueError(f"unsupported latency target scheme: {scheme!r}")


# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------

class LatencyProbe:
    """Serial round-trip sampler."""

    def __init__(
        self,
        sample_count: int = DEFAULT_PING_COUNT,
        interval_ms: float = DEFAULT_PING_INTERVAL_MS,
        timeout: float = PING_TIMEOUT,
        transport_factory: Optional[Callable] = None,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.sample_count = sample_count
        self.interval_ms = interval_ms
        self.timeout = timeout
        self.transport_factory = transport_factory or transport_for
        self.clock = clock
        self.sleep = sleep

    async def measure(
        self,
        target: str,
        cancel: Optional[asyncio.Event] = None,
    ) -> LatencyResult:
        result = LatencyResult(target=target)
        transport = self.transport_factory(target, self.timeout)

        try:
            async with transport:
                for _ in range(self.sample_count):
                    if cancel is not None and cancel.is_set():
                        break
                    await self._sample(transport, result)
                    await self.sleep(self.interval_ms / 1000)
        except _PROBE_ERRORS as exc:
            LOGGER.debug("latency transport to %s unavailable: %s", target, exc)
            result.error = str(exc) or type(exc).__name__
            # Samples that never got a transport still count as lost, each
            # with its trailing pause.
            while result.attempts < self.sample_count:
                if cancel is not None and cancel.is_set():
                    break
                result.attempts += 1
                await self.sleep(self.interval_ms / 1000)

        result.calculate()
        if result.has_data:
            LOGGER.info(
                "latency %.1f ms over %d/%d samples",
                result.latency_ms, len(result.samples), result.attempts,
            )
        else:
            LOGGER.info("latency: no data from %s", target)
        return result

    async def _sample(self, transport, result: LatencyResult) -> None:  # noqa: ANN001
        result.attempts += 1
        start = self.clock()
        try:
            await asyncio.wait_for(transport.round_trip(), timeout=self.timeout)
        except _PROBE_ERRORS as exc:
            LOGGER.debug("dropped latency sample %d: %r", result.attempts, exc)
            return
        result.samples.append((self.clock() - start) * 1000)


async def measure_latency(
    target: str,
    sample_count: int = DEFAULT_PING_COUNT,
    inter_sample_delay_ms: float = DEFAULT_PING_INTERVAL_MS,
) -> float:
    """Mean round-trip time to *target* in ms, or 0.0 when no sample succeeded."""
    probe = LatencyProbe(sample_count=sample_count, interval_ms=inter_sample_delay_ms)
    result = await probe.measure(target)
    return result.latency_ms
