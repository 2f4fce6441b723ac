"""Token-bucket rate limiting for outgoing telemetry.

The bucket refills lazily: available tokens are recomputed from the
elapsed time whenever :meth:`TokenBucket.allow` is called, so no
background timer is needed.  Event storms such as rapid click spam are
capped at ``capacity`` events per refill period without dropping the
rest of the session.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    """Lazily refilled token bucket.

    Parameters
    ----------
    capacity:
        Maximum number of tokens (burst size).  The bucket starts full.
    refill_period_seconds:
        Time needed to refill an empty bucket completely.
    clock:
        Monotonic time source in seconds.  Defaults to
        :func:`time.monotonic`.
    """

    def __init__(
        self,
        capacity: int,
        refill_period_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"Rate limiter capacity must be at least 1, got {capacity}")
        if refill_period_seconds <= 0:
            raise ValueError(f"Refill period must be positive, got {refill_period_seconds}")
        self._capacity = float(capacity)
        self._period = refill_period_seconds
        self._clock = clock
        self._tokens = float(capacity)
        self._last = clock()

    @property
    def capacity(self) -> int:
        return int(self._capacity)

    @property
    def tokens(self) -> float:
        """Tokens available right now (after refill)."""
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._last, 0.0)
        self._last = now
        self._tokens = min(self._capacity, self._tokens + elapsed / self._period * self._capacity)

    def allow(self) -> bool:
        """Consume one token and return True, or return False if none is left."""
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        logger.debug("Rate limit reached (capacity=%d per %.0fs)", self.capacity, self._period)
        return False
