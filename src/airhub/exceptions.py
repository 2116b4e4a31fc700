"""Custom exception hierarchy for airhub."""

from __future__ import annotations


class AirHubError(Exception):
    """Base exception for all airhub errors."""


class AirHubConfigError(AirHubError):
    """Invalid or missing configuration."""


class AirHubTransportError(AirHubError):
    """HTTP-level failure (network, non-2xx, timeout, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class AirHubStorageError(AirHubError):
    """Durable storage read/write failure.

    The session cache catches this internally; it never reaches subscribers.
    """

    def __init__(self, message: str, *, key: str = "") -> None:
        self.key = key
        super().__init__(message)


class AirHubNormalizationError(AirHubError):
    """A single raw record could not be turned into a station reading.

    Raised per record inside the normalizer and counted there; a batch is
    never aborted because of it.
    """
