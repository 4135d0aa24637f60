"""
Token-bucket throttle for upstream LLM calls.
"""

import asyncio
import time

DEFAULT_BURST = 5
DEFAULT_RATE_PER_MINUTE = 30.0


class RateLimiter:
    """Token bucket shared by every turn to cap the aggregate call rate.

    Construct one and pass it to whoever needs it; there is no module-level
    instance.
    """

    def __init__(self, max_burst: int = DEFAULT_BURST, rate_per_minute: float = DEFAULT_RATE_PER_MINUTE):
        if max_burst <= 0:
            max_burst = DEFAULT_BURST
        if rate_per_minute <= 0:
            rate_per_minute = DEFAULT_RATE_PER_MINUTE

        self.max = float(max_burst)
        self.rate = rate_per_minute / 60.0  # tokens per second
        self._tokens = float(max_burst)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def available(self) -> float:
        """Tokens left at the last refill."""
        return self._tokens

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(self.max, self._tokens + elapsed * self.rate)
        self._last_refill = now

    async def wait(self) -> None:
        """Block until a token is available and take it.

        Only fails through cancellation. A cancelled caller gets
        CancelledError even when a token is free.
        """
        await asyncio.sleep(0)

        while True:
            async with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait_seconds = (1.0 - self._tokens) / self.rate

            await asyncio.sleep(wait_seconds)
