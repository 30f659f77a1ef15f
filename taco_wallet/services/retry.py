"""
Retry policy for upstream calls.

GUARANTEES:
- Bounded attempts with exponential backoff
- Only UpstreamUnavailableError is retried; every other typed error
  (revert, signing refusal, relay rejection) propagates on first occurrence
- The last upstream error is re-raised once attempts are exhausted
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from taco_wallet.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    def __init__(self, max_attempts: int = 3, min_wait: float = 0.5, max_wait: float = 4.0):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.min_wait = min_wait
        self.max_wait = max_wait

    def backoff(self, attempt: int) -> float:
        return min(self.min_wait * (2 ** attempt), self.max_wait)

    async def run(self, fn: Callable[[], Awaitable[T]], what: str = "upstream call") -> T:
        """
        Await fn() until it succeeds or attempts run out.

        Args:
            fn: Zero-argument coroutine factory; called once per attempt
            what: Description used in retry log lines

        Raises:
            UpstreamUnavailableError: last transient failure after max_attempts
        """
        attempt = 0
        while True:
            try:
                return await fn()
            except UpstreamUnavailableError as e:
                attempt += 1
                if attempt >= self.max_attempts:
                    logger.error("%s failed after %d attempts: %s", what, attempt, e.message)
                    raise
                wait_time = self.backoff(attempt)
                logger.warning(
                    "Retry %d/%d for %s after %.1fs (%s)",
                    attempt,
                    self.max_attempts,
                    what,
                    wait_time,
                    e.message,
                )
                await asyncio.sleep(wait_time)
