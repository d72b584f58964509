"""GrowthSync — Bounded TTL cache for remote source calls.

One instance is created per process (or per test) and injected into the
chunker and orchestrator. The map is shared mutable state; under asyncio's
single-threaded scheduling no lock is needed because nothing below awaits
between reading and mutating it.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from growthsync.config import CacheConfig
from growthsync.core.logging import get_logger

logger = get_logger("cache")

T = TypeVar("T")

EVICTION_FRACTION = 0.2


@dataclass
class CacheEntry(Generic[T]):
    value: T
    created_at: float
    expires_at: float
    seq: int

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def _format_param(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return ",".join(_format_param(v) for v in value)
    return str(value)


def make_cache_key(operation: str, **params: Any) -> str:
    """Canonical key: operation name followed by the sorted parameter list."""
    param_str = "|".join(
        f"{key}={_format_param(value)}" for key, value in sorted(params.items())
    )
    return f"{operation}:{param_str}"


class TTLCache:
    """Time-expiring memoization with a hard bound on entry count."""

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: Dict[str, CacheEntry[Any]] = {}
        self._seq = 0
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    # ── Core API ──

    def get(self, key: str) -> Optional[Any]:
        """Return the live value for ``key`` or ``None``."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        now = self._clock()
        ttl = self.config.ttl_seconds if ttl is None else ttl
        self._seq += 1
        # Re-setting a key counts as a fresh insertion for age-based eviction
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(value, now, now + ttl, self._seq)
        if len(self._entries) > self.config.max_entries:
            self._evict()

    async def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> T:
        """Serve ``key`` from cache, or await ``fetch_fn`` once and store the result.

        Exceptions from ``fetch_fn`` propagate and nothing is stored, so the
        next call fetches again.
        """
        entry = self._entries.get(key)
        if entry is not None and not entry.is_expired(self._clock()):
            self.hits += 1
            return entry.value

        self.misses += 1
        value = await fetch_fn()
        self.set(key, value, ttl)
        return value

    # ── Invalidation ──

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def clear_all(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"Cache cleared ({count} entries)")

    # ── Eviction ──

    def _evict(self) -> None:
        """Purge expired entries, then drop the oldest 20% by insertion time."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for k in expired:
            del self._entries[k]

        overflow = len(self._entries) - self.config.max_entries
        if overflow <= 0:
            return

        to_remove = max(int(self.config.max_entries * EVICTION_FRACTION), overflow)
        oldest = sorted(
            self._entries.items(), key=lambda item: (item[1].created_at, item[1].seq)
        )[:to_remove]
        for k, _ in oldest:
            del self._entries[k]
        logger.info(
            f"Cache evicted {len(expired)} expired and {len(oldest)} oldest entries"
        )

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        entries = list(self._entries.values())
        expired = sum(1 for e in entries if e.is_expired(now))
        return {
            "total_entries": len(entries),
            "valid_entries": len(entries) - expired,
            "expired_entries": expired,
            "max_entries": self.config.max_entries,
            "oldest_entry_age_s": round(now - min(e.created_at for e in entries), 3)
            if entries
            else None,
            "newest_entry_age_s": round(now - max(e.created_at for e in entries), 3)
            if entries
            else None,
            "hits": self.hits,
            "misses": self.misses,
        }


async def paced(fn: Callable[[], Awaitable[T]], delay: float) -> T:
    """Await a small courtesy delay before issuing a remote call."""
    if delay > 0:
        await asyncio.sleep(delay)
    return await fn()
