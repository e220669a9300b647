"""Token bucket limiter engine.

Turns a stored ``(tokens, last_updated)`` snapshot and a policy into an
allow/deny decision, then commits the new snapshot with a conditional write.
The store's conditional write is the only synchronization between callers:
there is no process-local lock, and a lost race simply re-reads and retries.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, Tuple

from bucketlimit.app.core.cache import InMemoryCache
from bucketlimit.app.core.config import settings
from bucketlimit.app.core.logging import get_log_context, get_logger
from bucketlimit.app.exceptions import LimiterUnavailable, StoreError
from bucketlimit.app.services.token_bucket.models import (
    BucketState,
    CommitOutcome,
    CreateOutcome,
    DecisionReason,
    FailPolicy,
    LimitDecision,
    Policy,
)
from bucketlimit.app.services.token_bucket.refill import RefillResult, refill, retry_after
from bucketlimit.app.services.token_bucket.retry import BackoffPolicy
from bucketlimit.app.services.token_bucket.settings_resolver import SettingsResolver
from bucketlimit.app.stores.base import BucketStore
from bucketlimit.app.stores.memory import InMemoryBucketStore
from bucketlimit.app.stores.redis_store import RedisBucketStore

logger = get_logger(__name__)


class TokenBucketLimiter:
    """Distributed token bucket limiter over a conditional-write store.

    Each ``limit()`` call runs at most ``backoff.max_attempts`` attempts of
    fetch -> refill -> decide -> conditional commit. Write conflicts and
    transient store errors are absorbed by the loop; only configuration
    errors and terminal unavailability reach the caller.

    Example:
        >>> limiter = TokenBucketLimiter(
        ...     InMemoryBucketStore(),
        ...     default_policy=Policy(max_tokens=10, refill_rate=5, refill_interval=60),
        ... )
        >>> decision = await limiter.limit("user-1")
    """

    def __init__(
        self,
        store: BucketStore,
        default_policy: Optional[Policy] = None,
        resolver: Optional[SettingsResolver] = None,
        backoff: Optional[BackoffPolicy] = None,
        on_exhaustion: FailPolicy = FailPolicy.FAIL_CLOSED,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Bucket store holding LIMIT and SETTINGS items
            default_policy: Policy for identifiers without a stored one
                (required unless ``resolver`` is given)
            resolver: Policy resolver, built from ``default_policy`` if None
            backoff: Attempt bound and backoff parameters
            on_exhaustion: Fallback when the limiter is unavailable, overridable per call
            clock: Wall-clock source in epoch seconds
            sleep: Coroutine used for backoff sleeps

        Raises:
            ConfigError: If the default policy is invalid
            ValueError: If neither ``default_policy`` nor ``resolver`` is given
        """
        if resolver is None:
            if default_policy is None:
                raise ValueError("default_policy is required when no resolver is given")
            resolver = SettingsResolver(store, default_policy)
        self._store = store
        self._resolver = resolver
        self._backoff = backoff or BackoffPolicy()
        self._on_exhaustion = FailPolicy(on_exhaustion)
        self._clock = clock
        self._sleep = sleep

    @property
    def store(self) -> BucketStore:
        return self._store

    @property
    def resolver(self) -> SettingsResolver:
        return self._resolver

    @property
    def on_exhaustion(self) -> FailPolicy:
        return self._on_exhaustion

    async def limit(
        self,
        identifier: str,
        cost: int = 1,
        on_exhaustion: Optional[FailPolicy] = None,
    ) -> LimitDecision:
        """Spend ``cost`` tokens from the bucket of ``identifier`` if available.

        An empty bucket is a normal denied decision, never an error.

        Args:
            identifier: Rate-limited subject
            cost: Tokens to spend (default 1)
            on_exhaustion: Fallback for this call, the limiter default if None

        Returns:
            LimitDecision for this call

        Raises:
            ValueError: If identifier is empty or cost is below 1
            ConfigError: If the identifier's stored policy is invalid
            LimiterUnavailable: After exhausting attempts, or on a permanent store error
        """
        if not identifier:
            raise ValueError("identifier must be a non-empty string")
        if cost < 1:
            raise ValueError("cost must be >= 1")

        fail_policy = FailPolicy(on_exhaustion) if on_exhaustion is not None else self._on_exhaustion
        max_attempts = self._backoff.max_attempts
        last_error: Optional[StoreError] = None
        known_limit = 0

        for attempt in range(1, max_attempts + 1):
            try:
                decision, known_limit = await self._attempt(identifier, cost, attempt)
            except StoreError as e:
                if not self._backoff.is_retryable(e):
                    logger.error(
                        f"Permanent store error for {identifier}: {e}",
                        extra=get_log_context(identifier=identifier, attempt=attempt, outcome="permanent_error"),
                    )
                    raise LimiterUnavailable(
                        LimitDecision.fallback(fail_policy, known_limit),
                        reason="permanent_store_error",
                        attempts=attempt,
                        last_error=e,
                    ) from e
                last_error = e
                logger.warning(
                    f"Transient store error for {identifier} (attempt {attempt}/{max_attempts}): {e}",
                    extra=get_log_context(identifier=identifier, attempt=attempt, outcome="transient"),
                )
            else:
                if decision is not None:
                    return decision
                logger.warning(
                    f"Commit conflict for {identifier} (attempt {attempt}/{max_attempts})",
                    extra=get_log_context(identifier=identifier, attempt=attempt, outcome="conflict"),
                )

            if attempt < max_attempts:
                await self._sleep(self._backoff.calculate_delay(attempt - 1))

        logger.warning(
            f"Rate limiter exhausted {max_attempts} attempts for {identifier}, applying {fail_policy.value}",
            extra=get_log_context(identifier=identifier, attempt=max_attempts, outcome=fail_policy.value),
        )
        raise LimiterUnavailable(
            LimitDecision.fallback(fail_policy, known_limit),
            reason="exhausted",
            attempts=max_attempts,
            last_error=last_error,
        )

    async def limit_or_fallback(
        self,
        identifier: str,
        cost: int = 1,
        on_exhaustion: Optional[FailPolicy] = None,
    ) -> LimitDecision:
        """Like ``limit()``, but returns the fallback decision instead of raising
        ``LimiterUnavailable``. Configuration errors still raise.
        """
        try:
            return await self.limit(identifier, cost, on_exhaustion)
        except LimiterUnavailable as e:
            logger.warning(
                f"Using {e.decision.reason.value} decision for {identifier}: {e}",
                extra=get_log_context(identifier=identifier, outcome=e.decision.reason.value),
            )
            return e.decision

    async def set_policy(self, identifier: str, policy: Policy) -> None:
        """Store a policy for an identifier and drop this process's cached copy.

        Other processes pick the change up on their next combined fetch, or
        after their cache TTL when the policy is resolved separately.
        """
        policy.validate(identifier)
        await self._store.put_policy(identifier, policy)
        await self._resolver.invalidate(identifier)

    async def close(self) -> None:
        await self._store.close()

    async def _attempt(
        self, identifier: str, cost: int, attempt: int
    ) -> Tuple[Optional[LimitDecision], int]:
        """Run one fetch/decide/commit round.

        Returns:
            (decision, max_tokens): decision is None when the commit lost a race
        """
        now = int(self._clock())
        fetched = await self._store.fetch(identifier)
        if fetched.includes_policy:
            policy = await self._resolver.accept(identifier, fetched.policy)
        else:
            policy = await self._resolver.resolve(identifier)

        if fetched.state is None:
            refilled = refill(policy.initial_tokens, now, now, policy)
        else:
            refilled = refill(fetched.state.tokens, fetched.state.last_updated, now, policy)

        decision, candidate = self._decide(identifier, refilled, cost, policy)

        if fetched.state is None:
            created = await self._store.create_if_absent(identifier, candidate)
            if created != CreateOutcome.CREATED:
                return None, policy.max_tokens
            logger.info(
                f"Created bucket for {identifier} with {policy.initial_tokens} tokens",
                extra=get_log_context(identifier=identifier, attempt=attempt, outcome="created"),
            )
        else:
            committed = await self._store.commit_if_unchanged(identifier, candidate, fetched.token)
            if committed != CommitOutcome.SUCCESS:
                return None, policy.max_tokens

        logger.debug(
            f"{decision.reason.value} {identifier}: cost={cost} remaining={decision.remaining_tokens}",
            extra=get_log_context(
                identifier=identifier,
                attempt=attempt,
                outcome=decision.reason.value,
                cost=cost,
                store=self._store.name,
            ),
        )
        return decision, policy.max_tokens

    @staticmethod
    def _decide(
        identifier: str, refilled: RefillResult, cost: int, policy: Policy
    ) -> Tuple[LimitDecision, BucketState]:
        tokens = refilled.tokens
        if cost <= tokens:
            decision = LimitDecision(
                allowed=True,
                remaining_tokens=tokens - cost,
                reason=DecisionReason.ALLOWED,
                limit=policy.max_tokens,
            )
            return decision, BucketState(identifier, tokens - cost, refilled.last_updated)

        # Refill is persisted on denial so elapsed time is never lost
        reason = (
            DecisionReason.COST_EXCEEDS_CAPACITY
            if cost > policy.max_tokens
            else DecisionReason.DENIED
        )
        decision = LimitDecision(
            allowed=False,
            remaining_tokens=tokens,
            retry_after=retry_after(tokens, cost, policy),
            reason=reason,
            limit=policy.max_tokens,
        )
        return decision, BucketState(identifier, tokens, refilled.last_updated)


# Global limiter instance
_token_bucket_limiter: Optional[TokenBucketLimiter] = None


def build_limiter(app_settings=None, store: Optional[BucketStore] = None) -> TokenBucketLimiter:
    """Build a limiter from settings.

    Uses the Redis store when ``redis_enabled`` is set, otherwise the
    in-memory store, unless ``store`` is given.
    """
    app_settings = app_settings or settings

    if store is None:
        if app_settings.redis_enabled:
            store = RedisBucketStore(
                redis_url=app_settings.redis_url,
                key_prefix=app_settings.redis_key_prefix,
                bucket_ttl_seconds=app_settings.bucket_ttl_seconds,
            )
            logger.info("Using Redis bucket store")
        else:
            store = InMemoryBucketStore()
            logger.info("Using in-memory bucket store (per-process limits)")

    resolver = SettingsResolver(
        store,
        app_settings.default_policy,
        cache=InMemoryCache(max_entries=app_settings.policy_cache_max_entries),
        ttl_seconds=app_settings.policy_cache_ttl_seconds,
    )
    backoff = BackoffPolicy(
        max_attempts=app_settings.limiter_max_attempts,
        backoff_base=app_settings.limiter_backoff_base,
        backoff_cap=app_settings.limiter_backoff_cap,
    )
    return TokenBucketLimiter(
        store,
        resolver=resolver,
        backoff=backoff,
        on_exhaustion=app_settings.limiter_on_exhaustion,
    )


def get_token_bucket_limiter() -> TokenBucketLimiter:
    """Get the global limiter instance, building it from settings on first use."""
    global _token_bucket_limiter
    if _token_bucket_limiter is None:
        _token_bucket_limiter = build_limiter()
    return _token_bucket_limiter


def reset_token_bucket_limiter() -> None:
    """Reset the global limiter instance.

    Useful for testing.
    """
    global _token_bucket_limiter
    _token_bucket_limiter = None
