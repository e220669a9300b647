"""Core utilities for the limiter."""

from bucketlimit.app.core.cache import CacheBackend, InMemoryCache
from bucketlimit.app.core.config import Settings, settings
from bucketlimit.app.core.logging import get_logger, setup_logging

__all__ = [
    "CacheBackend",
    "InMemoryCache",
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
]
