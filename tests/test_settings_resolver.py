"""Tests for SettingsResolver."""

import pytest
from unittest.mock import AsyncMock

from bucketlimit.app.core.cache import InMemoryCache
from bucketlimit.app.exceptions import ConfigError
from bucketlimit.app.services.token_bucket.models import Policy
from bucketlimit.app.services.token_bucket.settings_resolver import SettingsResolver
from bucketlimit.app.stores.memory import InMemoryBucketStore

DEFAULT = Policy(max_tokens=60, refill_rate=1, refill_interval=1)
CUSTOM = Policy(max_tokens=10, refill_rate=5, refill_interval=60)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSettingsResolver:
    """Test SettingsResolver."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Fresh store, clock and resolver for each test."""
        self.store = InMemoryBucketStore()
        self.clock = FakeClock()
        self.resolver = SettingsResolver(
            self.store,
            DEFAULT,
            cache=InMemoryCache(clock=self.clock),
            ttl_seconds=5,
        )

    @pytest.mark.asyncio
    async def test_falls_back_to_default_policy(self):
        assert await self.resolver.resolve("user-1") == DEFAULT

    @pytest.mark.asyncio
    async def test_resolves_stored_policy(self):
        await self.store.put_policy("user-1", CUSTOM)
        assert await self.resolver.resolve("user-1") == CUSTOM

    @pytest.mark.asyncio
    async def test_cached_until_ttl_expires(self):
        """An operator change is invisible until the cached entry expires."""
        assert await self.resolver.resolve("user-1") == DEFAULT
        await self.store.put_policy("user-1", CUSTOM)

        self.clock.now = 4.9
        assert await self.resolver.resolve("user-1") == DEFAULT

        self.clock.now = 5.0
        assert await self.resolver.resolve("user-1") == CUSTOM

    @pytest.mark.asyncio
    async def test_cache_hit_skips_store(self):
        self.store.fetch_policy = AsyncMock(return_value=CUSTOM)

        await self.resolver.resolve("user-1")
        await self.resolver.resolve("user-1")

        assert self.store.fetch_policy.await_count == 1

    @pytest.mark.asyncio
    async def test_zero_ttl_disables_cache(self):
        resolver = SettingsResolver(self.store, DEFAULT, ttl_seconds=0)
        self.store.fetch_policy = AsyncMock(return_value=None)

        await resolver.resolve("user-1")
        await resolver.resolve("user-1")

        assert self.store.fetch_policy.await_count == 2

    @pytest.mark.asyncio
    async def test_invalid_stored_policy_raises_config_error(self):
        await self.store.put_raw_item(
            "user-1", "SETTINGS", {"max_tokens": 0, "refill_rate": 5, "refill_interval": 60}
        )
        with pytest.raises(ConfigError, match="max_tokens"):
            await self.resolver.resolve("user-1")

    @pytest.mark.asyncio
    async def test_accept_validates_and_primes_cache(self):
        assert await self.resolver.accept("user-1", CUSTOM) == CUSTOM

        self.store.fetch_policy = AsyncMock(return_value=None)
        assert await self.resolver.resolve("user-1") == CUSTOM
        self.store.fetch_policy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_accept_rejects_invalid_policy(self):
        with pytest.raises(ConfigError):
            await self.resolver.accept("user-1", Policy(max_tokens=10, refill_rate=0, refill_interval=60))

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self):
        await self.resolver.resolve("user-1")
        await self.store.put_policy("user-1", CUSTOM)
        await self.resolver.invalidate("user-1")
        assert await self.resolver.resolve("user-1") == CUSTOM

    def test_invalid_default_policy_rejected(self):
        with pytest.raises(ConfigError):
            SettingsResolver(self.store, Policy(max_tokens=10, refill_rate=1, refill_interval=0))
