"""Custom exceptions used by generation backends."""

from __future__ import annotations


class BackendError(RuntimeError):
    """Base error raised for remote call failures.

    Generic failures are retryable at the caller's discretion.
    """

    retryable: bool = True

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class BackendConfigError(BackendError):
    """Raised when configuration is missing or invalid."""

    retryable = False


class RateLimitedError(BackendError):
    """The remote service throttled the call; the same step may be retried."""

    retryable = True


class QuotaExhaustedError(BackendError):
    """Credits or quota are used up; retrying will not help."""

    retryable = False


class BackendResponseError(BackendError):
    """Raised when a backend returns an unusable response."""

    retryable = False
