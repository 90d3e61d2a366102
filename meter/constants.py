"""
Shared constants used across all meter modules.

Centralises magic numbers, default headers, and tunables so they live in
exactly one place.
"""

# ---------------------------------------------------------------------------
# HTTP headers
# ---------------------------------------------------------------------------

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
)

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-store",
}

# ---------------------------------------------------------------------------
# Default endpoints
# ---------------------------------------------------------------------------

DEFAULT_DOWNLOAD_TARGET = "https://placehold.co/5000x5000/000000/FFFFFF.png?text=DATA"
DEFAULT_PING_TARGET = DEFAULT_DOWNLOAD_TARGET
DEFAULT_UPLOAD_TARGET = "https://httpbin.org/post"

CACHE_BUSTER_PARAM = "r"

# ---------------------------------------------------------------------------
# Latency
# ---------------------------------------------------------------------------

DEFAULT_PING_COUNT = 5
MIN_PING_COUNT = 1
MAX_PING_COUNT = 100

DEFAULT_PING_INTERVAL_MS = 100
MAX_PING_INTERVAL_MS = 10_000

PING_TIMEOUT = 5.0               # seconds per round-trip
WS_CONNECT_TIMEOUT = 5.0
WS_HANDSHAKE_TIMEOUT = 2.0
WS_MSG_TIMEOUT = 0.5

# ---------------------------------------------------------------------------
# Throughput
# ---------------------------------------------------------------------------

MIN_CONNECTIONS = 1
MAX_CONNECTIONS = 32
DEFAULT_CONNECTIONS = 4

DEFAULT_DURATION_MS = 4000
MIN_DURATION_MS = 100
MAX_DURATION_MS = 300_000

SAMPLE_INTERVAL_MS = 100         # rate sampler tick
MIN_SAMPLE_INTERVAL_MS = 10

CHUNK_SIZE = 256 * 1024          # 256 KB read / write granularity
UPLOAD_PAYLOAD_SIZE = 2 * 1024 * 1024
MIN_PAYLOAD_SIZE = 1024
MAX_PAYLOAD_SIZE = 256 * 1024 * 1024

CONNECT_TIMEOUT = 5.0
SOCK_READ_TIMEOUT = 5.0

# ---------------------------------------------------------------------------
# Fallback simulation
# ---------------------------------------------------------------------------

FALLBACK_TICKS = 20
FALLBACK_TICK_MS = 100
FALLBACK_MIN_MBPS = 15.0
FALLBACK_MAX_MBPS = 35.0

# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

# Pauses after latency, after download, and after the gauge reset.
DEFAULT_SETTLE_MS = (500, 800, 500)

GAUGE_MAX_MBPS = 100.0           # visual cap of the live gauge
