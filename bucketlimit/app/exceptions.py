"""Custom exceptions for the token bucket limiter."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from bucketlimit.app.services.token_bucket.models import LimitDecision


class BucketLimitError(Exception):
    """Base class for all limiter exceptions."""

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class ConfigError(BucketLimitError):
    """Raised when a rate limit policy is structurally invalid.

    Never retried. Surfaced to the caller immediately so a misconfigured
    identifier is noticed instead of being silently unlimited.
    """

    def __init__(self, message: str, identifier: str | None = None):
        self.identifier = identifier
        if identifier is not None:
            message = f"{message} (identifier={identifier!r})"
        super().__init__(message)


class StoreError(BucketLimitError):
    """Base class for failures reported by a bucket store."""


class TransientStoreError(StoreError):
    """Timeouts, connection loss or throttling. Retried with backoff."""


class PermanentStoreError(StoreError):
    """Malformed items, access denied, script errors. Never retried."""


class LimiterUnavailable(BucketLimitError):
    """Terminal failure of a ``limit()`` call.

    Carries the fallback decision selected by the ``on_exhaustion`` policy so
    callers can act on ``exc.decision`` without branching on error vs decision.

    Attributes:
        decision: The realized fail-open or fail-closed decision
        reason: ``"exhausted"`` or ``"permanent_store_error"``
        attempts: Number of attempts made before giving up
        last_error: The last store error seen, if any
    """

    def __init__(
        self,
        decision: "LimitDecision",
        reason: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
    ):
        self.decision = decision
        self.reason = reason
        self.attempts = attempts
        self.last_error = last_error
        message = f"Rate limiter unavailable after {attempts} attempt(s): {reason}"
        if last_error is not None:
            message += f" ({type(last_error).__name__}: {last_error})"
        super().__init__(message)
