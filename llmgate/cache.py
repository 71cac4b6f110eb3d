import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


# Returned by CacheStore.get for absent or expired keys
MISSING: Any = _Missing()

DEFAULT_TTL = 5 * 60.0
DEFAULT_MAX_SIZE = 100
DEFAULT_CLEANUP_INTERVAL = 2 * 60.0

# Share of max_size dropped in one eviction batch
EVICTION_FRACTION = 0.2


@dataclass
class CacheEntry:
    value: Any
    inserted_at: float
    expires_at: Optional[float] = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


@dataclass
class _NamedCache:
    max_size: int
    ttl: Optional[float]
    last_cleanup: float
    entries: Dict[Hashable, CacheEntry] = field(default_factory=dict)
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0


class CacheStore:
    """
    Named, TTL-bounded and size-bounded key/value caches.

    One store is shared by every provider of a client. Each named cache keeps
    its own size limit, default TTL and hit/miss statistics.

    Expiry is lazy: `get` and `has` drop an entry once `now > expires_at`, and
    a sweep removes every expired entry when more than `cleanup_interval`
    seconds passed since the previous one. Eviction happens on `set` only and
    ranks entries by insertion time (reads never refresh it, this is not LRU).

    No method raises: unknown caches and keys yield `MISSING` (or the default).
    """

    def __init__(
        self,
        default_ttl: Optional[float] = DEFAULT_TTL,
        default_max_size: int = DEFAULT_MAX_SIZE,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.default_max_size = default_max_size
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._caches: Dict[str, _NamedCache] = {}

    # ==========================================================================
    # Cache Creation
    # ==========================================================================

    def create(
        self,
        name: str,
        max_size: Optional[int] = None,
        ttl: Optional[float] = None,
    ) -> None:
        """
        Create (or reset) a named cache.

        Args:
            name (str): Cache name.
            max_size (int, optional): Entry limit. Defaults to the store default.
            ttl (float, optional): Default entry lifetime in seconds. A falsy
                store default means entries never expire.
        """
        self._caches[name] = _NamedCache(
            max_size=max(1, max_size or self.default_max_size),
            ttl=ttl if ttl is not None else self.default_ttl,
            last_cleanup=self._clock(),
        )

    def ensure(self, name: str, max_size: Optional[int] = None, ttl: Optional[float] = None) -> None:
        if name not in self._caches:
            self.create(name, max_size=max_size, ttl=ttl)

    def names(self):
        return list(self._caches)

    # ==========================================================================
    # Entry Operations
    # ==========================================================================

    def set(self, name: str, key: Hashable, value: Any, ttl: Optional[float] = None) -> Any:
        """
        Store a value, evicting the oldest entries when the cache is full.

        Returns:
            Any: The stored value.
        """
        self.ensure(name)
        cache = self._caches[name]
        now = self._clock()

        if key not in cache.entries and len(cache.entries) >= cache.max_size:
            self._evict(name, cache)

        lifetime = ttl if ttl is not None else cache.ttl
        cache.entries[key] = CacheEntry(
            value=value,
            inserted_at=now,
            expires_at=now + lifetime if lifetime else None,
        )
        cache.sets += 1

        self._maybe_sweep(name, cache, now)
        return value

    def get(self, name: str, key: Hashable, default: Any = MISSING) -> Any:
        cache = self._caches.get(name)
        if cache is None:
            return default

        now = self._clock()
        self._maybe_sweep(name, cache, now)

        entry = cache.entries.get(key)
        if entry is None:
            cache.misses += 1
            return default

        if entry.expired(now):
            del cache.entries[key]
            cache.deletes += 1
            cache.misses += 1
            return default

        cache.hits += 1
        return entry.value

    def has(self, name: str, key: Hashable) -> bool:
        cache = self._caches.get(name)
        if cache is None:
            return False

        entry = cache.entries.get(key)
        if entry is None:
            return False

        if entry.expired(self._clock()):
            del cache.entries[key]
            cache.deletes += 1
            return False
        return True

    def delete(self, name: str, key: Hashable) -> bool:
        cache = self._caches.get(name)
        if cache is None or key not in cache.entries:
            return False
        del cache.entries[key]
        cache.deletes += 1
        return True

    def size(self, name: str) -> int:
        cache = self._caches.get(name)
        return len(cache.entries) if cache else 0

    def clear(self, name: str) -> None:
        """Empty one cache and reset its statistics."""
        cache = self._caches.get(name)
        if cache is None:
            return
        cache.entries.clear()
        cache.hits = cache.misses = cache.sets = cache.deletes = 0
        cache.last_cleanup = self._clock()

    def clear_all(self) -> None:
        for name in self._caches:
            self.clear(name)

    # ==========================================================================
    # Maintenance
    # ==========================================================================

    def _evict(self, name: str, cache: _NamedCache) -> None:
        remove_count = math.floor(cache.max_size * EVICTION_FRACTION)
        # sorted() is stable, so equal timestamps keep insertion order
        oldest = sorted(cache.entries.items(), key=lambda item: item[1].inserted_at)
        for key, _ in oldest[:remove_count]:
            del cache.entries[key]
            cache.deletes += 1

        while cache.entries and len(cache.entries) >= cache.max_size:
            key = min(cache.entries, key=lambda k: cache.entries[k].inserted_at)
            del cache.entries[key]
            cache.deletes += 1

        logger.debug("Evicted entries from cache %r, %d left", name, len(cache.entries))

    def sweep(self, name: str) -> int:
        """
        Remove every expired entry of a cache.

        Returns:
            int: Number of entries removed.
        """
        cache = self._caches.get(name)
        if cache is None:
            return 0
        now = self._clock()
        expired = [key for key, entry in cache.entries.items() if entry.expired(now)]
        for key in expired:
            del cache.entries[key]
            cache.deletes += 1
        cache.last_cleanup = now
        return len(expired)

    def _maybe_sweep(self, name: str, cache: _NamedCache, now: float) -> None:
        if now - cache.last_cleanup > self.cleanup_interval:
            removed = self.sweep(name)
            if removed:
                logger.debug("Swept %d expired entries from cache %r", removed, name)

    # ==========================================================================
    # Statistics
    # ==========================================================================

    def stats(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Get statistics for a named cache, or None if it does not exist.

        `size` counts only entries that are not expired yet.
        """
        cache = self._caches.get(name)
        if cache is None:
            return None

        now = self._clock()
        accesses = cache.hits + cache.misses
        return {
            "name": name,
            "size": sum(1 for entry in cache.entries.values() if not entry.expired(now)),
            "max_size": cache.max_size,
            "hits": cache.hits,
            "misses": cache.misses,
            "sets": cache.sets,
            "deletes": cache.deletes,
            "hit_rate": cache.hits / accesses if accesses else 0.0,
            "last_cleanup": cache.last_cleanup,
            "age": now - cache.last_cleanup,
        }

    def all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: self.stats(name) for name in self._caches}
