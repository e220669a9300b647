"""In-process bucket store.

Same item layout and conditional-write semantics as the Redis store, backed
by a dictionary. Suitable for tests and single-process deployments only: each
process gets its own buckets.
"""

import asyncio
from typing import Any, Optional

from bucketlimit.app.core.logging import get_logger
from bucketlimit.app.exceptions import PermanentStoreError
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

logger = get_logger(__name__)


class InMemoryBucketStore(BucketStore):
    """Dictionary-backed store keyed by ``(identifier, sort_key)``.

    Items are plain dicts shaped like the Redis hashes so malformed-item
    handling can be exercised the same way.
    """

    name = "memory"

    def __init__(self) -> None:
        self._items: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def fetch(self, identifier: str) -> FetchResult:
        async with self._lock:
            limit_item = self._items.get((identifier, LIMIT_SORT_KEY))
            settings_item = self._items.get((identifier, SETTINGS_SORT_KEY))
            snapshot = dict(limit_item) if limit_item is not None else None
            settings_snapshot = dict(settings_item) if settings_item is not None else None

        state = _decode_state(identifier, snapshot) if snapshot is not None else None
        policy = _decode_policy(identifier, settings_snapshot) if settings_snapshot is not None else None
        return FetchResult(state=state, policy=policy, token=snapshot, includes_policy=True)

    async def commit_if_unchanged(
        self, identifier: str, new_state: BucketState, token: Any
    ) -> CommitOutcome:
        async with self._lock:
            current = self._items.get((identifier, LIMIT_SORT_KEY))
            if token is None or current != token:
                return CommitOutcome.CONFLICT
            self._items[(identifier, LIMIT_SORT_KEY)] = _encode_state(new_state)
            return CommitOutcome.SUCCESS

    async def create_if_absent(self, identifier: str, initial_state: BucketState) -> CreateOutcome:
        async with self._lock:
            key = (identifier, LIMIT_SORT_KEY)
            if key in self._items:
                return CreateOutcome.ALREADY_EXISTS
            self._items[key] = _encode_state(initial_state)
            return CreateOutcome.CREATED

    async def fetch_policy(self, identifier: str) -> Optional[Policy]:
        async with self._lock:
            item = self._items.get((identifier, SETTINGS_SORT_KEY))
            item = dict(item) if item is not None else None
        return _decode_policy(identifier, item) if item is not None else None

    async def put_policy(self, identifier: str, policy: Policy) -> None:
        policy.validate(identifier)
        item: dict[str, Any] = {"pk": identifier, "sk": SETTINGS_SORT_KEY}
        item.update(policy.to_dict())
        async with self._lock:
            self._items[(identifier, SETTINGS_SORT_KEY)] = item
        logger.info(f"Stored policy for {identifier}: {policy.to_dict()}")

    async def put_raw_item(self, identifier: str, sort_key: str, item: dict[str, Any]) -> None:
        """Write an item verbatim, bypassing encoding. Used to seed state."""
        async with self._lock:
            self._items[(identifier, sort_key)] = {"pk": identifier, "sk": sort_key, **item}

    async def get_state(self, identifier: str) -> Optional[BucketState]:
        """Read the LIMIT item without a commit token."""
        return (await self.fetch(identifier)).state


def _encode_state(state: BucketState) -> dict[str, Any]:
    return {
        "pk": state.identifier,
        "sk": LIMIT_SORT_KEY,
        "tokens": state.tokens,
        "last_updated": state.last_updated,
    }


def _decode_state(identifier: str, item: dict[str, Any]) -> BucketState:
    try:
        return BucketState(
            identifier=identifier,
            tokens=int(item["tokens"]),
            last_updated=int(item["last_updated"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise PermanentStoreError(f"Malformed LIMIT item for {identifier!r}: {e}") from e


def _decode_policy(identifier: str, item: dict[str, Any]) -> Policy:
    try:
        return Policy.from_dict(item)
    except (KeyError, TypeError, ValueError) as e:
        raise PermanentStoreError(f"Malformed SETTINGS item for {identifier!r}: {e}") from e
