"""HTTP middleware for the limiter."""

from bucketlimit.app.middleware.token_bucket import (
    KeyTooLongError,
    TokenBucketMiddleware,
    default_key_func,
)

__all__ = ["KeyTooLongError", "TokenBucketMiddleware", "default_key_func"]
