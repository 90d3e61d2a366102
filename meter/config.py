"""
Run configuration.

``SpeedTestConfig`` holds every option one run understands.  Values can be
overridden from an optional JSON file::

    {
        "ping_sample_count": 5,
        "ping_target": "https://example.net/probe",
        "download_target": "https://example.net/blob",
        "download_duration_ms": 4000,
        "download_parallelism": 4,
        "upload_target": "https://example.net/sink",
        "upload_payload_bytes": 2097152,
        "upload_duration_cap_ms": 4000
    }

camelCase spellings (``pingSampleCount`` ...) are accepted as aliases.
The file is only read; a run never writes configuration back.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

from .constants import (
    DEFAULT_CONNECTIONS,
    DEFAULT_DOWNLOAD_TARGET,
    DEFAULT_DURATION_MS,
    DEFAULT_PING_COUNT,
    DEFAULT_PING_INTERVAL_MS,
    DEFAULT_PING_TARGET,
    DEFAULT_SETTLE_MS,
    DEFAULT_UPLOAD_TARGET,
    MAX_CONNECTIONS,
    MAX_DURATION_MS,
    MAX_PAYLOAD_SIZE,
    MAX_PING_COUNT,
    MAX_PING_INTERVAL_MS,
    MIN_CONNECTIONS,
    MIN_DURATION_MS,
    MIN_PAYLOAD_SIZE,
    MIN_PING_COUNT,
    MIN_SAMPLE_INTERVAL_MS,
    SAMPLE_INTERVAL_MS,
    UPLOAD_PAYLOAD_SIZE,
)
from .errors import ConfigError

LOGGER = logging.getLogger(__name__)

_HTTP_SCHEMES = ("http", "https")
_PING_SCHEMES = ("http", "https", "ws", "wss")


@dataclass(frozen=True)
class SpeedTestConfig:
    """Options for one :func:`~meter.runner.run_speed_test` call."""

    ping_sample_count: int = DEFAULT_PING_COUNT
    ping_target: str = DEFAULT_PING_TARGET
    ping_interval_ms: float = DEFAULT_PING_INTERVAL_MS
    download_target: str = DEFAULT_DOWNLOAD_TARGET
    download_duration_ms: float = DEFAULT_DURATION_MS
    download_parallelism: int = DEFAULT_CONNECTIONS
    upload_target: str = DEFAULT_UPLOAD_TARGET
    upload_payload_bytes: int = UPLOAD_PAYLOAD_SIZE
    upload_duration_cap_ms: float = DEFAULT_DURATION_MS
    upload_parallelism: int = DEFAULT_CONNECTIONS
    upload_reject_retries: int = 0
    sample_interval_ms: float = SAMPLE_INTERVAL_MS
    settle_ms: Tuple[float, float, float] = field(default=DEFAULT_SETTLE_MS)

    # -- Constructors -------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SpeedTestConfig:
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = _snake_case(key)
            if name not in known:
                LOGGER.warning("ignoring unknown config key %r", key)
                continue
            if name == "settle_ms":
                value = tuple(value)
            values[name] = value
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> SpeedTestConfig:
        """Copy with every non-``None`` override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["settle_ms"] = list(self.settle_ms)
        return data

    # -- Validation ---------------------------------------------------------

    def validate(self) -> SpeedTestConfig:
        """Raise ``ConfigError`` if any option is out of range or of the wrong type."""
        _check_int("ping_sample_count", self.ping_sample_count, MIN_PING_COUNT, MAX_PING_COUNT)
        _check_range("ping_interval_ms", self.ping_interval_ms, 0, MAX_PING_INTERVAL_MS)
        _check_range("download_duration_ms", self.download_duration_ms, MIN_DURATION_MS, MAX_DURATION_MS)
        _check_range("upload_duration_cap_ms", self.upload_duration_cap_ms, MIN_DURATION_MS, MAX_DURATION_MS)
        _check_int("download_parallelism", self.download_parallelism, MIN_CONNECTIONS, MAX_CONNECTIONS)
        _check_int("upload_parallelism", self.upload_parallelism, MIN_CONNECTIONS, MAX_CONNECTIONS)
        _check_int("upload_payload_bytes", self.upload_payload_bytes, MIN_PAYLOAD_SIZE, MAX_PAYLOAD_SIZE)
        _check_int("upload_reject_retries", self.upload_reject_retries, 0, 10)
        _check_range("sample_interval_ms", self.sample_interval_ms, MIN_SAMPLE_INTERVAL_MS, MAX_DURATION_MS)

        settle = self.settle_ms
        if (
            not isinstance(settle, (tuple, list))
            or len(settle) != 3
            or not all(_is_number(p) and p >= 0 for p in settle)
        ):
            raise ConfigError(f"settle_ms must be three non-negative pauses, got {settle!r}")

        _check_url("ping_target", self.ping_target, _PING_SCHEMES)
        _check_url("download_target", self.download_target, _HTTP_SCHEMES)
        _check_url("upload_target", self.upload_target, _HTTP_SCHEMES)
        return self


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_range(name: str, value: Any, low: float, high: float) -> None:
    if not _is_number(value):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if not low <= value <= high:
        raise ConfigError(f"{name} must be between {low} and {high}, got {value}")


def _check_int(name: str, value: Any, low: int, high: int) -> None:
    # Counts and sizes feed range() / os.urandom(); floats are not accepted.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    _check_range(name, value, low, high)


def _check_url(name: str, value: Any, schemes: Tuple[str, ...]) -> None:
    if not isinstance(value, str):
        raise ConfigError(f"{name} must be a URL string, got {value!r}")
    parts = urlsplit(value)
    if parts.scheme.lower() not in schemes or not parts.netloc:
        raise ConfigError(f"{name} must be a {'/'.join(schemes)} URL, got {value!r}")


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> SpeedTestConfig:
    """Defaults, overridden by the JSON object at *path* when given."""
    if not path:
        return SpeedTestConfig()

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except (json.JSONDecodeError, IOError) as exc:
        LOGGER.warning("could not read config %s (%s); using defaults", path, exc)
        return SpeedTestConfig()

    if not isinstance(user, dict):
        LOGGER.warning("config %s is not a JSON object; using defaults", path)
        return SpeedTestConfig()

    try:
        return SpeedTestConfig.from_dict(user)
    except TypeError as exc:
        raise ConfigError(f"invalid config {path}: {exc}") from exc
