"""
OutcomeAwareCache - Per-process response cache with outcome-aware TTLs.

Features:
- Caches every outcome, success or not, keyed by request fingerprint
- Long TTL for 2xx outcomes, short TTL for everything else (negative caching)
- Bounded size with FIFO eviction (oldest inserted key goes first)
- Expired entries are kept until evicted so callers can serve them on error
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from loguru import logger


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


@dataclass(frozen=True)
class TTLPolicy:
    """How long an outcome stays fresh, by outcome class."""

    success_ttl: timedelta = timedelta(minutes=5)
    failure_ttl: timedelta = timedelta(minutes=1)

    def ttl_for(self, status_code: int) -> timedelta:
        return self.success_ttl if is_success(status_code) else self.failure_ttl


@dataclass(frozen=True)
class CacheEntry:
    """A cached upstream outcome. Replaced on write, never mutated."""

    payload: Any
    status_code: int
    created_at: datetime
    ttl: timedelta

    @property
    def is_success(self) -> bool:
        return is_success(self.status_code)

    def age(self, now: datetime) -> timedelta:
        return now - self.created_at

    def is_fresh(self, now: datetime) -> bool:
        """Check if entry is still within its TTL."""
        return self.age(now) < self.ttl


class OutcomeAwareCache:
    """
    Bounded fingerprint -> outcome cache.

    Usage:
        cache = OutcomeAwareCache(max_size=200)

        entry = cache.get(fp)
        if entry is None:
            status, payload = await call_upstream()
            entry = cache.record(fp, payload, status)

        # On upstream failure, any previous outcome is still reachable
        stale = cache.peek(fp)
    """

    def __init__(
        self,
        max_size: int = 200,
        policy: TTLPolicy | None = None,
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        # dict preserves insertion order, which is the FIFO eviction order
        self._entries: dict[str, CacheEntry] = {}
        self._max_size = max_size
        self._policy = policy or TTLPolicy()
        self._clock = clock
        self._debug = debug
        self._stats = CacheStats()

    @property
    def policy(self) -> TTLPolicy:
        return self._policy

    def now(self) -> datetime:
        return self._clock()

    def get(self, key: str) -> CacheEntry | None:
        """Return the entry if it is still fresh under its TTL."""
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}")
            return None

        if not entry.is_fresh(self.now()):
            self._stats.misses += 1
            self._log(f"EXPIRED: {key[:50]}")
            return None

        if entry.is_success:
            self._stats.hits += 1
            self._log(f"HIT: {key[:50]}")
        else:
            self._stats.negative_hits += 1
            self._log(f"NEG HIT: {key[:50]} (status {entry.status_code})")
        return entry

    def peek(self, key: str) -> CacheEntry | None:
        """Return whatever entry exists for key, fresh or not."""
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        """Store entry, evicting the oldest inserted key if at capacity."""
        if key not in self._entries and len(self._entries) >= self._max_size:
            self._evict_oldest()

        self._entries[key] = entry
        self._log(
            f"SET: {key[:50]} (status {entry.status_code}, "
            f"TTL: {entry.ttl.total_seconds()}s)"
        )

    def record(
        self,
        key: str,
        payload: Any,
        status_code: int,
        policy: TTLPolicy | None = None,
    ) -> CacheEntry:
        """Build an entry for an outcome using the TTL policy and store it."""
        policy = policy or self._policy
        entry = CacheEntry(
            payload=payload,
            status_code=status_code,
            created_at=self.now(),
            ttl=policy.ttl_for(status_code),
        )
        self.set(key, entry)
        return entry

    def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        if key in self._entries:
            del self._entries[key]
            self._log(f"DELETE: {key[:50]}")
            return True
        return False

    def clear(self) -> None:
        """Clear all cache entries."""
        count = len(self._entries)
        self._entries.clear()
        self._log(f"CLEAR: {count} entries removed")

    def cleanup_expired(self, max_age_factor: float = 2.0) -> int:
        """
        Drop entries older than `max_age_factor` times their own TTL.

        Entries that are merely expired stay, since they are still useful as
        stale-on-error fallbacks. Returns count of removed entries.
        """
        now = self.now()
        expired_keys = [
            k
            for k, entry in self._entries.items()
            if entry.age(now) > entry.ttl * max_age_factor
        ]
        for key in expired_keys:
            del self._entries[key]

        if expired_keys:
            self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")
        return len(expired_keys)

    def keys(self) -> list[str]:
        """Keys in insertion (eviction) order."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def _evict_oldest(self) -> None:
        """Evict the oldest inserted entry (FIFO)."""
        oldest_key = next(iter(self._entries))
        del self._entries[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}")

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._entries)
        self._stats.max_size = self._max_size
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[OutcomeAwareCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    negative_hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Fraction of lookups answered from cache, negative hits included."""
        total = self.hits + self.negative_hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits + self.negative_hits) / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "negative_hits": self.negative_hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
