"""
Retry with exponential backoff for FPL API failures.

One policy shared by on-demand generation, full refresh, sync and current
gameweek discovery. Only UpstreamUnavailable errors flagged retryable are
retried; everything else propagates on the first attempt.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from config import Config
from errors import UpstreamRateLimited, UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, UpstreamUnavailable) and error.retryable


@dataclass
class RetryPolicy:
    """Bounded exponential backoff: base_delay, 2*base_delay, ... capped at max_delay."""

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.0
    sleep: Optional[Callable[[float], Awaitable[None]]] = None

    @classmethod
    def from_config(cls, config: Config) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_retries,
            base_delay=config.retry_backoff_base,
            max_delay=float(config.max_retry_delay),
            jitter=config.retry_jitter,
        )

    def delay_for(self, attempt: int) -> float:
        """
        Backoff before the retry that follows a failed attempt.

        Args:
            attempt: Zero-based index of the attempt that just failed
        """
        backoff = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            backoff += backoff * self.jitter * (random.random() * 2 - 1)
        return max(backoff, 0.0)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "operation"
    ) -> T:
        """
        Await operation() until it succeeds or attempts run out.

        Raises:
            The last error once max_attempts is reached, or any non-retryable error immediately
        """
        sleep = self.sleep or asyncio.sleep
        attempt = 0
        while True:
            try:
                return await operation()
            except UpstreamUnavailable as e:
                if not is_retryable(e) or attempt + 1 >= self.max_attempts:
                    if is_retryable(e):
                        logger.error("Retries exhausted", extra={
                            "operation": description,
                            "attempts": attempt + 1,
                            "error": str(e)
                        })
                    raise
                wait_time = self.delay_for(attempt)
                if isinstance(e, UpstreamRateLimited) and e.retry_after:
                    wait_time = max(wait_time, e.retry_after)
                logger.warning("Upstream unavailable, retrying", extra={
                    "operation": description,
                    "attempt": attempt + 1,
                    "timeout": e.timeout,
                    "status_code": e.status_code,
                    "wait_time": wait_time
                })
                await sleep(wait_time)
                attempt += 1
