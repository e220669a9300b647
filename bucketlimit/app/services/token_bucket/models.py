"""Data models for the token bucket limiter."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from bucketlimit.app.exceptions import ConfigError

LIMIT_SORT_KEY = "LIMIT"
SETTINGS_SORT_KEY = "SETTINGS"


class FailPolicy(str, Enum):
    """What a terminal limiter failure means for the guarded operation."""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class DecisionReason(str, Enum):
    """Why a LimitDecision came out the way it did."""

    ALLOWED = "allowed"
    DENIED = "denied"
    COST_EXCEEDS_CAPACITY = "cost_exceeds_capacity"
    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class CommitOutcome(str, Enum):
    """Result of a conditional commit against the store."""

    SUCCESS = "success"
    CONFLICT = "conflict"


class CreateOutcome(str, Enum):
    """Result of a create-if-absent write against the store."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class Policy:
    """Rate limit settings for one identifier.

    Attributes:
        max_tokens: Bucket capacity
        refill_rate: Tokens added every ``refill_interval``
        refill_interval: Seconds between refills
        starting_tokens: Tokens a brand-new bucket starts with (None = full)
    """

    max_tokens: int
    refill_rate: int
    refill_interval: int
    starting_tokens: Optional[int] = None

    @property
    def initial_tokens(self) -> int:
        """Token count used when a bucket is created."""
        if self.starting_tokens is None:
            return self.max_tokens
        return self.starting_tokens

    def validate(self, identifier: str | None = None) -> "Policy":
        """Check the policy is usable by the refill arithmetic.

        Args:
            identifier: Included in the error message when given

        Returns:
            The same policy, for chaining

        Raises:
            ConfigError: If any value is non-positive or starting_tokens is out of range
        """
        for name in ("max_tokens", "refill_rate", "refill_interval"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}", identifier)
        if self.starting_tokens is not None:
            if not 0 <= self.starting_tokens <= self.max_tokens:
                raise ConfigError(
                    f"starting_tokens must be between 0 and max_tokens ({self.max_tokens}), "
                    f"got {self.starting_tokens!r}",
                    identifier,
                )
        return self

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        data = {
            "max_tokens": self.max_tokens,
            "refill_rate": self.refill_rate,
            "refill_interval": self.refill_interval,
        }
        if self.starting_tokens is not None:
            data["starting_tokens"] = self.starting_tokens
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Policy":
        """Create from dictionary."""
        starting = data.get("starting_tokens")
        return cls(
            max_tokens=int(data["max_tokens"]),
            refill_rate=int(data["refill_rate"]),
            refill_interval=int(data["refill_interval"]),
            starting_tokens=int(starting) if starting is not None else None,
        )


@dataclass(frozen=True)
class BucketState:
    """Stored token count of one identifier.

    Attributes:
        identifier: Partition key of the bucket
        tokens: Tokens currently available
        last_updated: Epoch seconds the refill clock is anchored to
    """

    identifier: str
    tokens: int
    last_updated: int


@dataclass(frozen=True)
class LimitDecision:
    """Outcome of a ``limit()`` call. Never persisted."""

    allowed: bool
    remaining_tokens: int
    retry_after: Optional[int] = None
    reason: DecisionReason = DecisionReason.ALLOWED
    limit: int = 0

    @classmethod
    def fallback(cls, fail_policy: FailPolicy, limit: int = 0) -> "LimitDecision":
        """Decision realized when the limiter itself is unavailable."""
        if fail_policy == FailPolicy.FAIL_OPEN:
            return cls(allowed=True, remaining_tokens=0, reason=DecisionReason.FAIL_OPEN, limit=limit)
        return cls(allowed=False, remaining_tokens=0, reason=DecisionReason.FAIL_CLOSED, limit=limit)


@dataclass(frozen=True)
class FetchResult:
    """Single logical read of an identifier's items.

    Attributes:
        state: Stored bucket, or None if the identifier has never been limited
        policy: Stored policy, or None if absent (or not read)
        token: Opaque snapshot of the observed LIMIT item for conditional commit
        includes_policy: Whether ``policy`` reflects a read of the SETTINGS item
    """

    state: Optional[BucketState]
    policy: Optional[Policy]
    token: Any = field(default=None, compare=False)
    includes_policy: bool = True
