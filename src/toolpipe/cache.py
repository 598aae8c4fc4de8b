"""
Result cache for large tool output.

Holds full outputs keyed by an opaque id so the model can receive a summary
and fetch the rest on demand.

Eviction runs on every store, in this order:
    1. Entries older than the maximum age are dropped.
    2. If the cache is still at capacity, the oldest entries are dropped,
       plus a little headroom so the next stores do not evict again.
"""

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from toolpipe.schema import CachedResult, CacheMetadata, RuntimeSettings

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100
DEFAULT_MAX_AGE_SECONDS = 30 * 60
DEFAULT_HEADROOM = 10


@dataclass(frozen=True)
class CacheStats:
    """Size of the cache and age of its oldest entry in seconds (0 when empty)."""

    size: int
    oldest_age: float


def effective_headroom(capacity: int, headroom: int) -> int:
    """Headroom clamped to a tenth of capacity, never below one."""
    return max(1, min(headroom, capacity // 10))


class ResultCache:
    """
    In-memory cache of full tool outputs.

    Args:
        capacity: Maximum number of entries
        max_age_seconds: Age after which entries are evicted
        headroom: Extra entries evicted when the cache is full
        clock: Time source returning seconds (injectable for tests)
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        headroom: int = DEFAULT_HEADROOM,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity < 1:
            msg = "Cache capacity must be at least 1"
            raise ValueError(msg)
        self.capacity = capacity
        self.max_age_seconds = max_age_seconds
        self.headroom = effective_headroom(capacity, headroom)
        self._clock = clock
        self._entries: dict[str, CachedResult] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: RuntimeSettings) -> "ResultCache":
        return cls(
            capacity=settings.cache_capacity,
            max_age_seconds=settings.cache_max_age_seconds,
            headroom=settings.cache_headroom,
        )

    def store(self, tool_name: str, full_content: str, metadata: CacheMetadata | None = None) -> str:
        """
        Cache a full output.

        Returns:
            The new entry's id
        """
        with self._lock:
            now = self._clock()
            self._evict(now)
            result_id = f"result_{uuid.uuid4().hex}"
            self._entries[result_id] = CachedResult(
                id=result_id,
                tool_name=tool_name,
                timestamp=now,
                full_content=full_content,
                metadata=metadata or CacheMetadata(),
            )
        logger.debug("Cached %d chars from %s as %s", len(full_content), tool_name, result_id)
        return result_id

    def _evict(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if now - entry.timestamp > self.max_age_seconds]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.info("Evicted %d expired cache entries", len(expired))

        if len(self._entries) >= self.capacity:
            excess = len(self._entries) - self.capacity + self.headroom
            oldest = sorted(self._entries.values(), key=lambda entry: entry.timestamp)[:excess]
            for entry in oldest:
                del self._entries[entry.id]
            logger.info("Evicted %d oldest cache entries over capacity %d", len(oldest), self.capacity)

    def get(self, result_id: str) -> CachedResult | None:
        """Look up an entry. A miss returns None."""
        with self._lock:
            return self._entries.get(result_id)

    def get_content(self, result_id: str) -> str | None:
        entry = self.get(result_id)
        return entry.full_content if entry else None

    def has(self, result_id: str) -> bool:
        with self._lock:
            return result_id in self._entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            if not self._entries:
                return CacheStats(size=0, oldest_age=0.0)
            oldest = min(entry.timestamp for entry in self._entries.values())
            return CacheStats(size=len(self._entries), oldest_age=self._clock() - oldest)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, result_id: str) -> bool:
        return self.has(result_id)

    def __repr__(self) -> str:
        return f"<ResultCache: {len(self._entries)}/{self.capacity}>"
