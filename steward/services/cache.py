"""In-memory response cache for the query agent.

Entries are keyed by an optional user scope plus a logical key. User-scoped
keys are stored as ``"{user_id}:{key}"``; global keys are stored unprefixed,
so the two namespaces never collide. Expired entries are dropped lazily on
access and by an optional periodic sweep task.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from steward.config import settings
from steward.models import CacheHealth, CacheStats

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Single cache entry with value and expiration timestamp."""

    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def make_key(key: str, user_id: str | None = None) -> str:
    """Build the fully-qualified storage key."""
    return f"{user_id}:{key}" if user_id else key


def _estimate_size(value: Any) -> int:
    """Rough memory estimate: two bytes per serialized character."""
    try:
        if isinstance(value, BaseModel):
            return len(value.model_dump_json()) * 2
        return len(json.dumps(value, default=str)) * 2
    except (TypeError, ValueError):
        return 1024


class ResponseCache:
    """TTL cache with per-user namespacing and hit/miss accounting."""

    def __init__(
        self,
        default_ttl: float | None = None,
        sweep_interval: float | None = None,
    ):
        self.default_ttl = default_ttl if default_ttl is not None else settings.agent_cache_ttl_seconds
        self.sweep_interval = (
            sweep_interval if sweep_interval is not None else settings.cache_sweep_interval_seconds
        )
        self._entries: dict[str, CacheEntry] = {}
        self._user_keys: set[str] = set()
        self._hits = 0
        self._misses = 0
        self._sweeper: asyncio.Task | None = None
        self._disposed = False

    # ==================== READS ====================

    async def get(self, key: str, user_id: str | None = None) -> Any | None:
        """
        Return the cached value, or None on a miss.

        Never-set keys, expired entries and stored None values all count as
        one miss.
        """
        if self._disposed:
            return None

        full_key = make_key(key, user_id)
        entry = self._entries.get(full_key)

        if entry is None:
            self._misses += 1
            logger.debug(f"Cache miss: {full_key}")
            return None

        if entry.is_expired(time.monotonic()):
            self._remove(full_key)
            self._misses += 1
            logger.debug(f"Cache expired: {full_key}")
            return None

        if entry.value is None:
            self._misses += 1
            return None

        self._hits += 1
        logger.debug(f"Cache hit: {full_key}")
        return entry.value

    # ==================== WRITES ====================

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float | None = None,
        user_id: str | None = None,
    ) -> None:
        """Store a value, overwriting any existing entry and resetting its expiry."""
        self.set_sync(key, value, ttl_seconds, user_id=user_id)

    def set_sync(
        self,
        key: str,
        value: Any,
        ttl_seconds: float | None = None,
        user_id: str | None = None,
    ) -> None:
        """Same as set() for callers that cannot await."""
        if self._disposed:
            logger.debug(f"Ignoring write to disposed cache: {key}")
            return

        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        full_key = make_key(key, user_id)
        self._entries[full_key] = CacheEntry(value=value, expires_at=time.monotonic() + ttl)
        if user_id:
            self._user_keys.add(full_key)

    async def delete(self, key: str, user_id: str | None = None) -> bool:
        """Delete a single entry. Returns True if it existed."""
        full_key = make_key(key, user_id)
        if full_key in self._entries:
            self._remove(full_key)
            return True
        return False

    def clear_user(self, user_id: str) -> int:
        """Remove every entry scoped to user_id. Returns the number removed."""
        prefix = f"{user_id}:"
        keys = [k for k in self._user_keys if k.startswith(prefix)]
        for k in keys:
            self._remove(k)
        logger.info(f"Cleared {len(keys)} cache entries for user {user_id}")
        return len(keys)

    async def clear(self) -> None:
        """Remove all entries and reset counters."""
        self._entries.clear()
        self._user_keys.clear()
        self._hits = 0
        self._misses = 0

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns the number purged."""
        now = time.monotonic()
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for k in expired:
            self._remove(k)
        if expired:
            logger.debug(f"Purged {len(expired)} expired cache entries")
        return len(expired)

    def _remove(self, full_key: str) -> None:
        self._entries.pop(full_key, None)
        self._user_keys.discard(full_key)

    # ==================== MONITORING ====================

    def get_stats(self) -> CacheStats:
        """Derive statistics from the current entries and counters."""
        lookups = self._hits + self._misses
        return CacheStats(
            size=len(self._entries),
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / lookups if lookups else 0.0,
            user_specific_entries=len(self._user_keys),
            keys=list(self._entries.keys()),
        )

    def get_health(self) -> CacheHealth:
        """
        Classify cache health.

        Status only gets worse as hit rate falls or size grows. Hit-rate
        thresholds apply once enough lookups have been seen to be meaningful.
        """
        stats = self.get_stats()
        lookups = stats.hits + stats.misses
        rated = lookups >= settings.cache_health_min_lookups

        if stats.size >= settings.cache_unhealthy_size or (
            rated and stats.hit_rate < settings.cache_unhealthy_hit_rate
        ):
            status = "unhealthy"
        elif stats.size >= settings.cache_degraded_size or (
            rated and stats.hit_rate < settings.cache_degraded_hit_rate
        ):
            status = "degraded"
        else:
            status = "healthy"

        return CacheHealth(
            status=status,
            hit_rate=stats.hit_rate,
            size=stats.size,
            memory_usage=sum(_estimate_size(e.value) for e in self._entries.values()),
        )

    # ==================== LIFECYCLE ====================

    def start_sweeper(self) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        if self._disposed or (self._sweeper is not None and not self._sweeper.done()):
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.purge_expired()

    def dispose(self) -> None:
        """Stop the sweep task. Later writes are ignored and reads miss."""
        if self._sweeper is not None and not self._sweeper.done():
            self._sweeper.cancel()
        self._sweeper = None
        self._disposed = True
        self._entries.clear()
        self._user_keys.clear()
