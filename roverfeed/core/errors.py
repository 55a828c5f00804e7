"""Roverfeed exception hierarchy.

Each subsystem raises its own error type so callers can decide what is a
window-level failure, a record-level skip, or a request-level rejection.
"""

from __future__ import annotations


class RoverfeedError(Exception):
    """Base exception for all roverfeed failures."""


class FetchError(RoverfeedError):
    """Raised when an upstream fetch could not produce a batch."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class TransientFetchError(FetchError):
    """Timeout, transport failure, 5xx, 408 or 429. Safe to retry."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        super().__init__(message, url)
        self.status_code = status_code


class UpstreamStatusError(FetchError):
    """Non-retryable HTTP status from upstream."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        super().__init__(message, url)
        self.status_code = status_code


class UpstreamNotFound(UpstreamStatusError):
    """Upstream answered 404."""


class CircuitOpenError(FetchError):
    """Raised without a network call while the circuit is open."""

    def __init__(self, name: str, retry_at: float):
        super().__init__(f"Circuit '{name}' is open; failing fast")
        self.name = name
        self.retry_at = retry_at


class ExtractionError(RoverfeedError):
    """Raised for a single malformed upstream item."""


class UnknownSourceError(RoverfeedError):
    """Raised when a source id has no registered upstream definition."""


class RunInProgressError(RoverfeedError):
    """Raised when another incremental run already holds the source cursor."""
