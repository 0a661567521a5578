"""
Time-boxed memoization in front of the FPL API.

Entries expire on read after ``ttl_seconds``; nothing is purged proactively, a
stale entry is simply overwritten by the next load. Failed loads are never
stored.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


class TTLCache:
    """Async get-or-load cache with an injectable clock."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Optional[Callable[[], float]] = None
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}

    async def get(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the cached value for key, or await loader() and cache its result.

        Args:
            key: Cache key, e.g. ("standings", league_id)
            loader: Zero-argument coroutine function producing the value

        Returns:
            Cached or freshly loaded value
        """
        entry = self._entries.get(key)
        if entry is not None:
            stored_at, value = entry
            age = self._clock() - stored_at
            if age < self.ttl_seconds:
                logger.debug("Cache hit", extra={"cache_key": str(key), "cache_age_seconds": age})
                return value

        value = await loader()
        self._entries[key] = (self._clock(), value)
        return value

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()
        logger.debug("Cache cleared")

    def __len__(self) -> int:
        return len(self._entries)
