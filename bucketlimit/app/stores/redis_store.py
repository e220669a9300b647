"""Redis-backed bucket store for multi-instance deployments.

Items are Redis hashes:
- {prefix}{digest}:LIMIT    - pk, sk, tokens, last_updated
- {prefix}{digest}:SETTINGS - pk, sk, max_tokens, refill_rate, refill_interval[, starting_tokens]

The hash tag (``{...}``) holds a SHA-256 digest of the identifier rather than
the identifier itself, so both items hash to the same cluster slot whatever
characters the identifier contains, and one script can read them together.
"""

import hashlib
from typing import Any, Optional

import redis
import redis.asyncio as aioredis

from bucketlimit.app.core.config import settings
from bucketlimit.app.core.logging import get_logger
from bucketlimit.app.exceptions import PermanentStoreError, StoreError, TransientStoreError
from bucketlimit.app.services.token_bucket.models import (
    LIMIT_SORT_KEY,
    SETTINGS_SORT_KEY,
    BucketState,
    CommitOutcome,
    CreateOutcome,
    FetchResult,
    Policy,
)
from bucketlimit.app.stores.base import BucketStore
from bucketlimit.app.stores.redis_lua import (
    COMMIT_SCRIPT,
    CREATE_SCRIPT,
    FETCH_SCRIPT,
    PUT_SETTINGS_SCRIPT,
)

logger = get_logger(__name__)

_TRANSIENT_RESPONSE_PREFIXES = ("BUSY", "LOADING", "MASTERDOWN", "TRYAGAIN", "CLUSTERDOWN")


def map_redis_error(error: Exception) -> StoreError:
    """Translate a Redis client exception into the store error taxonomy."""
    if isinstance(error, (redis.AuthenticationError, redis.exceptions.AuthorizationError)):
        return PermanentStoreError(f"Redis access denied: {error}")
    if isinstance(error, (redis.ConnectionError, redis.TimeoutError, TimeoutError, OSError)):
        return TransientStoreError(f"Redis unavailable: {error}")
    if isinstance(error, (redis.exceptions.TryAgainError, redis.exceptions.ClusterDownError)):
        return TransientStoreError(f"Redis cluster busy: {error}")
    if isinstance(error, redis.ResponseError) and str(error).startswith(_TRANSIENT_RESPONSE_PREFIXES):
        return TransientStoreError(f"Redis busy: {error}")
    return PermanentStoreError(f"Redis error: {error}")


def _to_str(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def _pairs_to_dict(flat: Any) -> dict[str, str]:
    """Convert a flat HGETALL reply (or a dict) into a str -> str dict."""
    if isinstance(flat, dict):
        return {_to_str(k): _to_str(v) for k, v in flat.items()}
    items = list(flat or [])
    return {_to_str(items[i]): _to_str(items[i + 1]) for i in range(0, len(items) - 1, 2)}


def _script_flag(identifier: str, result: Any) -> bool:
    """Interpret the 1/0 reply of a conditional write script."""
    try:
        return int(result) == 1
    except (TypeError, ValueError) as e:
        raise PermanentStoreError(f"Unexpected script reply for {identifier!r}: {result!r}") from e


class RedisBucketStore(BucketStore):
    """Bucket store on Redis using Lua scripts for atomic conditional writes.

    The commit token is the ``(tokens, last_updated)`` pair exactly as read
    from the server, so a commit succeeds only against an unchanged item.
    """

    name = "redis"

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        key_prefix: Optional[str] = None,
        bucket_ttl_seconds: Optional[int] = None,
    ) -> None:
        """Initialize the Redis bucket store.

        Args:
            redis_client: Optional ``redis.asyncio`` client instance
            redis_url: Redis connection URL, defaults to ``settings.redis_url``
            key_prefix: Prefix for all keys, defaults to ``settings.redis_key_prefix``
            bucket_ttl_seconds: Expiry applied to LIMIT items on write (0 = none)
        """
        self._redis = redis_client
        self._redis_url = redis_url or settings.redis_url
        self._key_prefix = settings.redis_key_prefix if key_prefix is None else key_prefix
        self._bucket_ttl = (
            settings.bucket_ttl_seconds if bucket_ttl_seconds is None else bucket_ttl_seconds
        )

    def _get_redis(self) -> Any:
        """Get or create Redis client."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    def make_key(self, identifier: str, sort_key: str) -> str:
        """Create the Redis key of one item of an identifier.

        Braces in the identifier would end the hash tag early, so the tag is
        a hex digest. The raw identifier is kept in the item's ``pk`` field.
        """
        digest = hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:32]
        return f"{self._key_prefix}{{{digest}}}:{sort_key}"

    async def _eval(self, script: str, keys: list[str], args: list[Any]) -> Any:
        client = self._get_redis()
        try:
            return await client.eval(script, len(keys), *keys, *args)
        except (redis.RedisError, OSError) as e:
            mapped = map_redis_error(e)
            logger.warning(f"Redis script failed: {type(e).__name__}: {e}")
            raise mapped from e

    async def fetch(self, identifier: str) -> FetchResult:
        limit_key = self.make_key(identifier, LIMIT_SORT_KEY)
        settings_key = self.make_key(identifier, SETTINGS_SORT_KEY)
        result = await self._eval(FETCH_SCRIPT, [limit_key, settings_key], [])
        try:
            limit_fields, settings_fields = result
        except (TypeError, ValueError) as e:
            raise PermanentStoreError(f"Unexpected fetch reply for {identifier!r}: {result!r}") from e

        limit_item = _pairs_to_dict(limit_fields)
        settings_item = _pairs_to_dict(settings_fields)

        state: Optional[BucketState] = None
        token: Optional[tuple[str, str]] = None
        if limit_item:
            try:
                token = (limit_item["tokens"], limit_item["last_updated"])
                state = BucketState(
                    identifier=identifier,
                    tokens=int(token[0]),
                    last_updated=int(token[1]),
                )
            except (KeyError, ValueError) as e:
                raise PermanentStoreError(f"Malformed LIMIT item for {identifier!r}: {e}") from e

        policy = self._decode_policy(identifier, settings_item) if settings_item else None
        return FetchResult(state=state, policy=policy, token=token, includes_policy=True)

    async def commit_if_unchanged(
        self, identifier: str, new_state: BucketState, token: Any
    ) -> CommitOutcome:
        if token is None:
            return CommitOutcome.CONFLICT
        observed_tokens, observed_updated = token
        result = await self._eval(
            COMMIT_SCRIPT,
            [self.make_key(identifier, LIMIT_SORT_KEY)],
            [
                observed_tokens,  # ARGV[1]
                observed_updated,  # ARGV[2]
                str(new_state.tokens),  # ARGV[3]
                str(new_state.last_updated),  # ARGV[4]
                self._bucket_ttl,  # ARGV[5]
            ],
        )
        return CommitOutcome.SUCCESS if _script_flag(identifier, result) else CommitOutcome.CONFLICT

    async def create_if_absent(self, identifier: str, initial_state: BucketState) -> CreateOutcome:
        result = await self._eval(
            CREATE_SCRIPT,
            [self.make_key(identifier, LIMIT_SORT_KEY)],
            [
                identifier,
                str(initial_state.tokens),
                str(initial_state.last_updated),
                self._bucket_ttl,
            ],
        )
        return CreateOutcome.CREATED if _script_flag(identifier, result) else CreateOutcome.ALREADY_EXISTS

    async def fetch_policy(self, identifier: str) -> Optional[Policy]:
        client = self._get_redis()
        try:
            raw = await client.hgetall(self.make_key(identifier, SETTINGS_SORT_KEY))
        except (redis.RedisError, OSError) as e:
            raise map_redis_error(e) from e
        item = _pairs_to_dict(raw)
        return self._decode_policy(identifier, item) if item else None

    async def put_policy(self, identifier: str, policy: Policy) -> None:
        policy.validate(identifier)
        fields: list[Any] = ["pk", identifier, "sk", SETTINGS_SORT_KEY]
        for name, value in policy.to_dict().items():
            fields.extend([name, str(value)])
        await self._eval(PUT_SETTINGS_SCRIPT, [self.make_key(identifier, SETTINGS_SORT_KEY)], fields)
        logger.info(f"Stored policy for {identifier}: {policy.to_dict()}")

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def _decode_policy(identifier: str, item: dict[str, str]) -> Policy:
        try:
            return Policy.from_dict(item)
        except (KeyError, ValueError) as e:
            raise PermanentStoreError(f"Malformed SETTINGS item for {identifier!r}: {e}") from e
