"""Exception taxonomy for the measurement core."""
from __future__ import annotations

from typing import Optional


class SpeedTestError(Exception):
    """Base class for every error raised by :mod:`meter`."""


class ConfigError(SpeedTestError, ValueError):
    """Raised when a :class:`~meter.config.SpeedTestConfig` is invalid."""


class ChannelUnavailableError(SpeedTestError):
    """
    The transfer channel categorically rejected a request.

    Attributes:
        url (str | None): Request URL.
        status (int | None): HTTP status, when the rejection was an HTTP error.
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        self.url = url
        self.status = status

        status_str = f", status={status}" if status is not None else ""
        url_str = f", url={url}" if url else ""
        super().__init__(f"{message}{status_str}{url_str}")


class MeasurementError(SpeedTestError):
    """A phase failed in a way the run cannot recover from."""

    def __init__(self, phase: str, message: str) -> None:
        self.phase = phase
        super().__init__(f"{phase} phase failed: {message}")


class TestCancelledError(SpeedTestError):
    """The run was stopped by an external cancel signal."""

    __test__ = False  # keep pytest from collecting this as a test class


class InvalidPhaseTransition(SpeedTestError):
    """A run tried to move backwards or re-enter a phase."""
