"""
Error taxonomy for the fetch / cache / aggregate pipeline.

Retryability lives on the exception so the retry policy in the upstream
client can classify failures without string matching.
"""
from typing import Optional


class JobFeedError(Exception):
    """Base class for all pipeline errors."""

    retryable: bool = False


# ===== UPSTREAM =====

class UpstreamClientError(JobFeedError):
    """Any failure talking to the upstream catalog API."""


class NetworkError(UpstreamClientError):
    """Connection-level failure (DNS, refused, reset)."""

    retryable = True


class UpstreamTimeoutError(NetworkError):
    """The request did not complete within the per-call timeout."""


class UpstreamError(UpstreamClientError):
    """
    The upstream answered with an error, either as an HTTP status or as an
    error envelope ``{"code": ..., "message": ...}``.

    Only server errors (5xx) and rate limiting (429) are worth retrying.
    """

    def __init__(self, code: int, message: str = ""):
        self.code = code
        self.message = message
        super().__init__(f"Upstream error ({code}): {message}" if message else f"Upstream error ({code})")

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.code >= 500 or self.code == 429


class ValidationError(UpstreamClientError):
    """The response body matched neither the success nor the error envelope."""


class RetryExhaustedError(UpstreamClientError):
    """A retryable failure persisted through every allowed attempt."""

    def __init__(self, last_error: BaseException, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"API request failed after {attempts} attempts: {last_error}")


# ===== CACHE =====

class CacheUnavailable(JobFeedError):
    """The cache store could not serve a request. Never escapes CacheManager."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


# ===== AGGREGATION =====

class AggregationError(JobFeedError):
    """The listings step failed, so there is nothing to enrich."""


def is_retryable(error: BaseException) -> bool:
    """True for timeouts, network errors, 5xx and 429."""
    return isinstance(error, JobFeedError) and bool(error.retryable)
