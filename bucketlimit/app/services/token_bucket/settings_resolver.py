"""Policy resolution with a bounded-staleness cache.

Resolves the rate limit policy of an identifier from its SETTINGS item,
falling back to the process-wide default policy when none is stored.
Cached entries expire after a short TTL; there is no push invalidation, so
an operator change becomes visible to every process within one TTL.
"""

import json
from typing import Optional

from bucketlimit.app.core.cache import CacheBackend, InMemoryCache
from bucketlimit.app.core.logging import get_log_context, get_logger
from bucketlimit.app.services.token_bucket.models import Policy
from bucketlimit.app.stores.base import BucketStore

logger = get_logger(__name__)


class SettingsResolver:
    """Resolve and cache policies per identifier.

    Cache key format: policy:{identifier}
    """

    CACHE_KEY_PREFIX = "policy"
    DEFAULT_TTL_SECONDS = 5.0

    def __init__(
        self,
        store: BucketStore,
        default_policy: Policy,
        cache: Optional[CacheBackend] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ) -> None:
        """Initialize the resolver.

        Args:
            store: Store used when a policy was not read alongside the bucket
            default_policy: Policy for identifiers without a SETTINGS item
            cache: Cache backend, a private InMemoryCache if None
            ttl_seconds: Cache entry lifetime, 0 disables caching

        Raises:
            ConfigError: If the default policy is invalid
        """
        self._store = store
        self._default_policy = default_policy.validate()
        self._cache = cache if cache is not None else InMemoryCache()
        self._ttl = ttl_seconds

    @property
    def default_policy(self) -> Policy:
        return self._default_policy

    def _make_key(self, identifier: str) -> str:
        return f"{self.CACHE_KEY_PREFIX}:{identifier}"

    async def resolve(self, identifier: str) -> Policy:
        """Return the current policy of an identifier.

        Raises:
            ConfigError: If the stored policy is structurally invalid
            StoreError: If the store read fails
        """
        cached = await self._get_cached(identifier)
        if cached is not None:
            return cached
        stored = await self._store.fetch_policy(identifier)
        return await self.accept(identifier, stored)

    async def accept(self, identifier: str, stored: Optional[Policy]) -> Policy:
        """Validate a freshly read policy (or fall back) and prime the cache.

        Args:
            identifier: Identifier the policy belongs to
            stored: Policy read from the store, None if no SETTINGS item exists

        Raises:
            ConfigError: If ``stored`` is structurally invalid
        """
        if stored is None:
            logger.debug(
                f"No stored policy for {identifier}, using default",
                extra=get_log_context(identifier=identifier, outcome="default_policy"),
            )
            policy = self._default_policy
        else:
            policy = stored.validate(identifier)

        if self._ttl > 0:
            data = json.dumps(policy.to_dict()).encode("utf-8")
            await self._cache.set(self._make_key(identifier), data, ttl=self._ttl)
        return policy

    async def invalidate(self, identifier: str) -> None:
        """Drop the cached policy of an identifier in this process."""
        await self._cache.delete(self._make_key(identifier))

    async def _get_cached(self, identifier: str) -> Optional[Policy]:
        if self._ttl <= 0:
            return None
        data = await self._cache.get(self._make_key(identifier))
        if data is None:
            return None
        try:
            return Policy.from_dict(json.loads(data.decode("utf-8")))
        except (json.JSONDecodeError, KeyError, UnicodeDecodeError, ValueError):
            # Invalid cache data, treat as miss
            return None
