"""Backoff policy for the limiter's commit loop.

The engine retries on write contention and transient store failures with
jittered exponential backoff between attempts.
"""

import random
from dataclasses import dataclass, field
from typing import Callable, Tuple, Type

from bucketlimit.app.exceptions import ConfigError, TransientStoreError


@dataclass
class BackoffPolicy:
    """Configuration for retry behavior with jittered exponential backoff.

    Attributes:
        max_attempts: Total attempts per ``limit()`` call, first one included (default: 3)
        backoff_base: Delay ceiling before the second attempt in seconds (default: 0.05)
        backoff_cap: Maximum delay between attempts in seconds (default: 1.0)
        exponential_base: Base for exponential calculation (default: 2.0)
        retryable_exceptions: Store errors that trigger another attempt
        rng: Source of jitter in ``[0, 1)``

    Example:
        >>> policy = BackoffPolicy(backoff_base=0.1, backoff_cap=1.0)
        >>> policy.max_delay(attempt=2)  # Returns 0.4
    """

    max_attempts: int = 3
    backoff_base: float = 0.05
    backoff_cap: float = 1.0
    exponential_base: float = 2.0
    retryable_exceptions: Tuple[Type[Exception], ...] = (TransientStoreError,)
    rng: Callable[[], float] = field(default=random.random, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if self.backoff_base < 0 or self.backoff_cap < 0:
            raise ConfigError("backoff_base and backoff_cap must not be negative")

    def max_delay(self, attempt: int) -> float:
        """Upper bound of the delay after a given attempt (0-indexed).

        delay ceiling = min(backoff_base * (exponential_base ^ attempt), backoff_cap)
        """
        delay = self.backoff_base * (self.exponential_base**attempt)
        return min(delay, self.backoff_cap)

    def calculate_delay(self, attempt: int) -> float:
        """Full-jitter delay: uniform in ``[0, max_delay(attempt)]``."""
        return self.max_delay(attempt) * self.rng()

    def is_retryable(self, exception: Exception) -> bool:
        """Check if a store exception should trigger another attempt."""
        return isinstance(exception, self.retryable_exceptions)
