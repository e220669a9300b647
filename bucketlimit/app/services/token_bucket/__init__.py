"""Distributed token bucket rate limiting.

State lives in a shared store and is committed with conditional writes;
refill is computed lazily from elapsed time on every call.
"""

from .models import (
    BucketState,
    CommitOutcome,
    CreateOutcome,
    DecisionReason,
    FailPolicy,
    FetchResult,
    LimitDecision,
    Policy,
)
from .refill import RefillResult, refill, retry_after
from .retry import BackoffPolicy
from .settings_resolver import SettingsResolver
from .engine import (
    TokenBucketLimiter,
    build_limiter,
    get_token_bucket_limiter,
    reset_token_bucket_limiter,
)

__all__ = [
    "BucketState",
    "CommitOutcome",
    "CreateOutcome",
    "DecisionReason",
    "FailPolicy",
    "FetchResult",
    "LimitDecision",
    "Policy",
    "RefillResult",
    "refill",
    "retry_after",
    "BackoffPolicy",
    "SettingsResolver",
    "TokenBucketLimiter",
    "build_limiter",
    "get_token_bucket_limiter",
    "reset_token_bucket_limiter",
]
