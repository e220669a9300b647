"""Bucket store adapters.

The engine only talks to ``BucketStore``; Redis is the shared store for
multi-process deployments, the in-memory store serves tests and
single-process use.
"""

from bucketlimit.app.stores.base import BucketStore
from bucketlimit.app.stores.memory import InMemoryBucketStore
from bucketlimit.app.stores.redis_store import RedisBucketStore, map_redis_error

__all__ = [
    "BucketStore",
    "InMemoryBucketStore",
    "RedisBucketStore",
    "map_redis_error",
]
