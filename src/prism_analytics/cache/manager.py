"""Bounded in-memory cache with per-entry TTL, LRU eviction and single-flight."""

from __future__ import annotations

import fnmatch
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar

from prism_analytics.domain.exceptions import CacheUnavailableError
from prism_analytics.domain.models import CacheStats

V = TypeVar("V")

_GLOB_CHARS = frozenset("*?[")


@dataclass
class CacheEntry:
    """Single cached value; times come from the manager's monotonic clock."""

    key: str
    value: Any
    inserted_at: float
    expires_at: float
    last_accessed_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheManager:
    """Thread-safe key/value store bounded to ``max_size`` entries.

    Expired entries are purged lazily when looked up. Hit and miss counters
    are lifetime counters and survive ``clear()``.
    """

    def __init__(
        self,
        *,
        max_size: int = 1000,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be greater than zero")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be greater than zero")
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._in_flight: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._coalesced = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or ``None`` on a miss."""

        with self._lock:
            entry = self._lookup(key)
            if entry is None:
                self._misses += 1
                self._logger.debug("cache_miss", extra={"key": key})
                return None
            self._hits += 1
            self._logger.debug("cache_hit", extra={"key": key})
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        lifetime = self._default_ttl if ttl is None else ttl
        if lifetime <= 0:
            raise ValueError("ttl must be greater than zero")
        with self._lock:
            self._store(key, value, lifetime)

    def has(self, key: str) -> bool:
        """Report whether a live entry exists without touching statistics."""

        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        """Remove keys containing ``pattern`` (or matching it as a glob)."""

        if any(char in _GLOB_CHARS for char in pattern):
            matches: Callable[[str], bool] = lambda key: fnmatch.fnmatchcase(
                key, pattern
            )
        else:
            matches = lambda key: pattern in key
        with self._lock:
            doomed = [key for key in self._entries if matches(key)]
            for key in doomed:
                del self._entries[key]
        self._logger.info(
            "cache_pattern_deleted", extra={"pattern": pattern, "removed": len(doomed)}
        )
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        self._logger.info("cache_cleared", extra={"removed": removed})

    def get_stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                max_size=self._max_size,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                coalesced=self._coalesced,
            )

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], V],
        ttl: Optional[float] = None,
    ) -> V:
        """Cache-aside lookup where concurrent misses share one computation.

        The first caller to miss registers an in-flight future under the lock
        and runs ``compute``; later callers for the same key wait on that
        future. Failures propagate to every waiter and nothing is cached.
        """

        lifetime = self._default_ttl if ttl is None else ttl
        if lifetime <= 0:
            raise ValueError("ttl must be greater than zero")
        with self._lock:
            entry = self._lookup(key)
            if entry is not None:
                self._hits += 1
                self._logger.debug("cache_hit", extra={"key": key})
                return entry.value
            self._misses += 1
            pending = self._in_flight.get(key)
            if pending is None:
                leader = True
                pending = Future()
                self._in_flight[key] = pending
            else:
                leader = False
                self._coalesced += 1

        if not leader:
            self._logger.debug("cache_coalesced", extra={"key": key})
            return pending.result()

        try:
            value = compute()
        except BaseException as exc:
            with self._lock:
                self._in_flight.pop(key, None)
            pending.set_exception(exc)
            raise
        with self._lock:
            self._store(key, value, lifetime)
            self._in_flight.pop(key, None)
        pending.set_result(value)
        return value

    # ------------------------------------------------------------------
    # Internal helpers (caller holds the lock)
    # ------------------------------------------------------------------
    def _lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if entry.is_expired(now):
            del self._entries[key]
            self._expirations += 1
            return None
        entry.last_accessed_at = now
        self._entries.move_to_end(key)
        return entry

    def _store(self, key: str, value: Any, ttl: float) -> None:
        now = self._clock()
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._max_size:
            self._evict_lru()
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            inserted_at=now,
            expires_at=now + ttl,
            last_accessed_at=now,
        )
        if len(self._entries) > self._max_size:
            raise CacheUnavailableError(
                "Cache exceeded its capacity",
                context={"size": len(self._entries), "max_size": self._max_size},
            )

    def _evict_lru(self) -> None:
        # entries are kept in access order, so the first one is least recent
        key, _ = self._entries.popitem(last=False)
        self._evictions += 1
        self._logger.debug("cache_evicted", extra={"key": key})
