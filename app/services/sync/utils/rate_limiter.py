"""Token bucket rate limiter for outbound API calls.

Each adapter owns its own bucket (passed in at construction), so tests and
multiple adapters never share hidden module-level state.

The bucket may go negative: a caller that has to wait reserves its token up
front and then sleeps, so concurrent callers queue behind each other instead
of all waking at the same moment.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional


class RateLimitExceeded(Exception):
    """Acquiring a token would take longer than the caller is willing to wait."""

    def __init__(self, retry_after: float):
        super().__init__(f"Rate limit exceeded, retry after {retry_after:.1f}s")
        self.retry_after = retry_after


class TokenBucket:
    """
    Classic token bucket.

    Args:
        capacity: Maximum burst size
        refill_per_second: Steady-state tokens added per second
        clock: Monotonic clock, injectable for tests
        sleep: Async sleep, injectable for tests
    """

    def __init__(
        self,
        capacity: int,
        refill_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be positive")

        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated_at = clock()

    @property
    def tokens(self) -> float:
        """Currently available tokens (negative when callers are queued)."""
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_per_second)
        self._updated_at = now

    def wait_time(self) -> float:
        """Seconds until one more token would be available."""
        self._refill()
        if self._tokens >= 1:
            return 0.0
        return (1 - self._tokens) / self.refill_per_second

    def try_acquire(self) -> bool:
        """Take a token if one is available right now."""
        if self.wait_time() > 0:
            return False
        self._tokens -= 1
        return True

    async def acquire(self, max_wait: Optional[float] = None) -> float:
        """
        Take a token, sleeping until it is available.

        Args:
            max_wait: Fail instead of sleeping longer than this many seconds

        Returns:
            Seconds spent waiting

        Raises:
            RateLimitExceeded: if the wait would exceed max_wait
        """
        wait = self.wait_time()
        if max_wait is not None and wait > max_wait:
            raise RateLimitExceeded(wait)

        # Reserve before sleeping; no await between check and reservation
        self._tokens -= 1
        if wait > 0:
            await self._sleep(wait)
        return wait
