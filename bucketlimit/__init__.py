"""Distributed token bucket rate limiter.

Bucket state lives in a shared key-value store (Redis) and is updated with
conditional writes, so any number of stateless processes can share one
limiter per identifier without a coordinator.
"""

from bucketlimit.app.exceptions import (
    BucketLimitError,
    ConfigError,
    LimiterUnavailable,
    PermanentStoreError,
    StoreError,
    TransientStoreError,
)
from bucketlimit.app.services.token_bucket import (
    BackoffPolicy,
    BucketState,
    DecisionReason,
    FailPolicy,
    LimitDecision,
    Policy,
    SettingsResolver,
    TokenBucketLimiter,
    build_limiter,
    get_token_bucket_limiter,
    reset_token_bucket_limiter,
)
from bucketlimit.app.stores import BucketStore, InMemoryBucketStore, RedisBucketStore

__version__ = "0.1.0"

__all__ = [
    # Errors
    "BucketLimitError",
    "ConfigError",
    "LimiterUnavailable",
    "PermanentStoreError",
    "StoreError",
    "TransientStoreError",
    # Engine
    "BackoffPolicy",
    "BucketState",
    "DecisionReason",
    "FailPolicy",
    "LimitDecision",
    "Policy",
    "SettingsResolver",
    "TokenBucketLimiter",
    "build_limiter",
    "get_token_bucket_limiter",
    "reset_token_bucket_limiter",
    # Stores
    "BucketStore",
    "InMemoryBucketStore",
    "RedisBucketStore",
]
