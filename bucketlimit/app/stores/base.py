"""Bucket store interface.

The limiter engine depends on this abstraction, never on a concrete store,
so the backing key-value store can be swapped (Redis, in-memory) without
touching the refill or commit logic.

Stores report contention as a return value (``CommitOutcome.CONFLICT``,
``CreateOutcome.ALREADY_EXISTS``) and infrastructure failures by raising
``TransientStoreError`` or ``PermanentStoreError``.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from bucketlimit.app.services.token_bucket.models import (
    BucketState,
    CommitOutcome,
    CreateOutcome,
    FetchResult,
    Policy,
)


class BucketStore(ABC):
    """Abstract base class for bucket stores."""

    name: str = "store"

    @abstractmethod
    async def fetch(self, identifier: str) -> FetchResult:
        """Read the LIMIT and SETTINGS items of an identifier.

        Args:
            identifier: Partition key

        Returns:
            FetchResult whose ``token`` is passed back to ``commit_if_unchanged``
        """
        pass

    @abstractmethod
    async def commit_if_unchanged(
        self, identifier: str, new_state: BucketState, token: Any
    ) -> CommitOutcome:
        """Write ``new_state`` only if the LIMIT item still matches ``token``.

        Returns:
            SUCCESS if written, CONFLICT if another writer committed first
        """
        pass

    @abstractmethod
    async def create_if_absent(self, identifier: str, initial_state: BucketState) -> CreateOutcome:
        """Atomically create the LIMIT item if it does not exist yet.

        Returns:
            CREATED if written, ALREADY_EXISTS if another writer created it first
        """
        pass

    @abstractmethod
    async def fetch_policy(self, identifier: str) -> Optional[Policy]:
        """Read only the SETTINGS item of an identifier."""
        pass

    @abstractmethod
    async def put_policy(self, identifier: str, policy: Policy) -> None:
        """Unconditionally write the SETTINGS item of an identifier."""
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        pass
