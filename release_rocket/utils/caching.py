"""TTL cache for gateway lookups.

The GitHub gateway uses this to remember credential and repository
validation results so a settings screen that re-validates on every
keystroke does not hammer the API.

Example:
    >>> cache = AsyncCache(ttl_seconds=300, max_size=256)
    >>> key = cache_key("repository", "acme/app", token)
    >>> if (valid := await cache.get(key)) is None:
    ...     valid = await check_repository()
    ...     await cache.set(key, valid)
"""

import asyncio
import hashlib
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

log = structlog.get_logger(__name__)


def cache_key(*parts: Any) -> str:
    """Build a fixed-length cache key from its parts.

    Parts are joined with colons and hashed, so credentials used as key
    material never appear in logs.
    """
    joined = ":".join(str(part) for part in parts)
    return hashlib.sha256(joined.encode()).hexdigest()


class AsyncCache:
    """Async key-value cache with expiry and a size cap.

    Entries older than the TTL are dropped when read. When the cache is
    full, the oldest entry is evicted before a new one is stored. All
    access goes through an asyncio.Lock.

    ``None`` means "not cached", so ``None`` values cannot be stored;
    ``False`` can.
    """

    def __init__(self, ttl_seconds: float = 300, max_size: int = 256) -> None:
        self._entries: dict[str, tuple[Any, datetime]] = {}
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_size = max_size
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None if missing or expired."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if datetime.now(UTC) - stored_at < self._ttl:
                return value
            del self._entries[key]
            log.debug("cache_expired", key=key[:12])
            return None

    async def set(self, key: str, value: Any) -> None:
        """Store a value, resetting its expiry."""
        async with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_size:
                self._evict_oldest()
            self._entries[key] = (value, datetime.now(UTC))

    def _evict_oldest(self) -> None:
        # Caller holds the lock
        if not self._entries:
            return
        oldest_key = min(self._entries, key=lambda k: self._entries[k][1])
        del self._entries[oldest_key]
        log.debug("cache_evicted", key=oldest_key[:12])
