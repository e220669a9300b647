"""Lazy token bucket refill arithmetic.

Refill is computed on read from the stored snapshot; there is no background
timer. All functions here are pure.
"""

import math
from dataclasses import dataclass
from typing import Optional

from bucketlimit.app.services.token_bucket.models import Policy


@dataclass(frozen=True)
class RefillResult:
    """Token count and refill anchor after applying elapsed intervals."""

    tokens: int
    last_updated: int


def refill(old_tokens: int, last_updated: int, now: int, policy: Policy) -> RefillResult:
    """Apply whole elapsed refill intervals to a stored snapshot.

    The anchor advances by ``elapsed_intervals * refill_interval`` rather than
    to ``now``, so partial progress toward the next interval is kept.

    Args:
        old_tokens: Tokens in the stored snapshot
        last_updated: Refill anchor of the stored snapshot (epoch seconds)
        now: Current time (epoch seconds)
        policy: A validated policy

    Returns:
        RefillResult with tokens clamped to ``[0, max_tokens]``

    Example:
        >>> p = Policy(max_tokens=10, refill_rate=5, refill_interval=60)
        >>> refill(0, 1000, 1130, p)
        RefillResult(tokens=10, last_updated=1120)
    """
    elapsed = now - last_updated
    # Clock skew between callers can put now behind the stored anchor
    elapsed_intervals = elapsed // policy.refill_interval if elapsed > 0 else 0

    tokens = old_tokens + elapsed_intervals * policy.refill_rate
    tokens = max(0, min(policy.max_tokens, tokens))

    if elapsed_intervals >= 1:
        last_updated = last_updated + elapsed_intervals * policy.refill_interval

    return RefillResult(tokens=tokens, last_updated=last_updated)


def retry_after(tokens: int, cost: int, policy: Policy) -> Optional[int]:
    """Estimate seconds until ``cost`` tokens are available.

    Uses the average refill rate: ``(cost - tokens) * refill_interval / refill_rate``,
    rounded up.

    Returns:
        0 if the cost is already covered, None if the cost exceeds the bucket
        capacity and can never be covered.
    """
    if cost > policy.max_tokens:
        return None
    needed = cost - tokens
    if needed <= 0:
        return 0
    return math.ceil(needed * policy.refill_interval / policy.refill_rate)
