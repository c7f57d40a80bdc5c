"""
Rental Cache Manager
====================

Bounded in-memory TTL cache used by the rental dashboard to front its hosted
key/value tables.

Key Features:
-------------
- **Per-entry TTL**: every entry carries its own time-to-live, defaulting to
  the cache-wide value. Expired entries are never served.
- **Least-recently-accessed eviction**: entries live in a ``cachetools.LRUCache``
  whose recency order is refreshed by ``set`` and ``get`` only. When the cache
  is full, the least recently accessed entry is evicted before a new key is added.
- **Background sweep**: a daemon thread periodically removes expired entries
  so that keys nobody reads again do not linger.
- **Hit/miss accounting**: hits, misses, evictions, size and hit rate are
  tracked for the lifetime of the cache and reset only by ``clear()``.
- **Thread Safety**: every operation, reads included, runs under one
  coordinated component lock shared with the sweeper.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypedDict, TypeVar

from cachetools import Cache, LRUCache

from cache_config import DEFAULT_MAX_SIZE, DEFAULT_SWEEP_INTERVAL, DEFAULT_TTL_SECONDS
from lock_utils import coordinated_lock, create_component_lock, unregister_lock

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Seconds to wait for an in-flight sweep tick when the cache is destroyed
SWEEPER_JOIN_TIMEOUT = 2.0


class CacheStats(TypedDict):
    """Snapshot of a cache's lifetime counters."""

    hits: int
    misses: int
    evictions: int
    size: int
    hit_rate: float


class CacheEntry(Generic[T]):
    """A cached value together with its expiry and access metadata."""

    __slots__ = ("data", "timestamp", "ttl", "access_count", "last_accessed")

    def __init__(self, data: T, timestamp: float, ttl: float):
        self.data = data
        self.timestamp = timestamp
        self.ttl = ttl
        self.access_count = 0
        self.last_accessed = timestamp

    def is_expired(self, now: float) -> bool:
        """An entry is live while ``now - timestamp <= ttl``."""
        return now - self.timestamp > self.ttl

    def touch(self, now: float) -> None:
        self.access_count += 1
        self.last_accessed = now

    def __repr__(self) -> str:
        return (
            f"CacheEntry(timestamp={self.timestamp}, ttl={self.ttl}, "
            f"access_count={self.access_count}, last_accessed={self.last_accessed})"
        )


class EntryStore(LRUCache):
    """
    ``LRUCache`` of ``CacheEntry`` objects that reports capacity evictions.

    ``LRUCache`` calls ``popitem`` when a new key would exceed ``maxsize``;
    that is the only place entries leave the map without an explicit delete.
    """

    def __init__(self, maxsize: int, on_evict: Callable[[str, CacheEntry], None]):
        super().__init__(maxsize=maxsize)
        self._on_evict = on_evict

    def popitem(self) -> Tuple[str, CacheEntry]:
        key, entry = super().popitem()
        self._on_evict(key, entry)
        return key, entry

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Look up ``key`` without refreshing its recency."""
        if key not in self:
            return None
        return Cache.__getitem__(self, key)

    def snapshot(self) -> List[Tuple[str, CacheEntry]]:
        """All ``(key, entry)`` pairs in insertion order, recency untouched."""
        return [(key, Cache.__getitem__(self, key)) for key in list(self)]


class CacheManager:
    """
    Bounded TTL cache with least-recently-accessed eviction and a background sweeper.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        namespace: str = "general",
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Optional[Callable[[], float]] = None,
        start_sweeper: bool = True,
    ):
        """
        Initialize the cache.

        Args:
            max_size: Hard cap on the number of entries
            default_ttl: Time-to-live in seconds for entries set without an explicit TTL
            namespace: Cache name, used for the lock and in log messages
            sweep_interval: Seconds between background sweeps of expired entries
            clock: Monotonic time source in seconds (defaults to ``time.monotonic``)
            start_sweeper: Start the background sweeper thread immediately

        Raises:
            ValueError: If the size, TTL or sweep interval is out of range
        """
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        if default_ttl < 0:
            raise ValueError(f"default_ttl must not be negative, got {default_ttl}")
        if sweep_interval <= 0:
            raise ValueError(f"sweep_interval must be positive, got {sweep_interval}")

        self.namespace = namespace
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock or time.monotonic

        self._entries = self._new_store()
        self._lock = create_component_lock(f"cache_{namespace}")

        self.stats: Dict[str, Any] = self._empty_stats()

        self._stop_sweeping = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

        if start_sweeper:
            self.start_sweeper()

        logger.debug(
            f"Initialized cache {namespace} (max_size={max_size}, "
            f"default_ttl={default_ttl}s, sweep_interval={sweep_interval}s)"
        )

    def _new_store(self) -> EntryStore:
        return EntryStore(self.max_size, on_evict=self._on_capacity_evict)

    @staticmethod
    def _empty_stats() -> Dict[str, Any]:
        return {"hits": 0, "misses": 0, "evictions": 0, "size": 0, "hit_rate": 0.0}

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        """
        Store ``data`` under ``key``, evicting the least recently accessed entry when full.

        Overwriting a key that is already cached does not evict anything, since
        the number of entries does not grow.

        Args:
            key: Cache key
            data: Value to cache (opaque to the cache)
            ttl: Time-to-live in seconds (uses the cache default if None)
        """
        with coordinated_lock(self._lock):
            now = self._clock()
            self._entries[key] = CacheEntry(
                data, now, self.default_ttl if ttl is None else ttl
            )
            self._update_stats()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Retrieve a live entry, recording a hit or a miss.

        An expired entry is removed and counted as both a miss and an eviction.

        Args:
            key: Cache key
            default: Value returned when the key is absent or expired

        Returns:
            The cached value, or ``default``
        """
        with coordinated_lock(self._lock):
            entry = self._entries.get(key)

            if entry is None:
                self.stats["misses"] += 1
                self._update_stats()
                return default

            now = self._clock()
            if entry.is_expired(now):
                del self._entries[key]
                self.stats["misses"] += 1
                self.stats["evictions"] += 1
                self._update_stats()
                return default

            entry.touch(now)
            self.stats["hits"] += 1
            self._update_stats()
            return entry.data

    def has(self, key: str) -> bool:
        """
        Check whether ``key`` holds a live entry without touching stats or access metadata.

        An expired entry found this way is dropped.
        """
        with coordinated_lock(self._lock):
            entry = self._entries.peek(key)
            if entry is None:
                return False

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._update_stats()
                return False

            return True

    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True (and counts an eviction) if it was present."""
        with coordinated_lock(self._lock):
            if self._entries.pop(key, None) is None:
                return False
            self.stats["evictions"] += 1
            self._update_stats()
            return True

    def delete_matching(self, predicate: Callable[[str], bool]) -> int:
        """
        Atomically delete every key for which ``predicate`` returns True.

        Args:
            predicate: Called with each cache key

        Returns:
            int: Number of entries removed (each counted as an eviction)
        """
        with coordinated_lock(self._lock):
            doomed = [key for key in self._entries if predicate(key)]
            for key in doomed:
                del self._entries[key]
            if doomed:
                self.stats["evictions"] += len(doomed)
                self._update_stats()
            return len(doomed)

    def clear(self) -> None:
        """Remove every entry and reset all counters."""
        with coordinated_lock(self._lock):
            self._entries = self._new_store()
            self.stats = self._empty_stats()

    def keys(self) -> List[str]:
        """Snapshot of the keys currently stored, expired or not."""
        with coordinated_lock(self._lock):
            return list(self._entries)

    def get_stats(self) -> CacheStats:
        """Get a snapshot of the cache statistics."""
        with coordinated_lock(self._lock):
            return CacheStats(**self.stats)

    def sweep(self) -> int:
        """
        Remove every expired entry now.

        Returns:
            int: Number of entries removed
        """
        return self._sweep_expired(from_timer=False)

    # ------------------------------------------------------------------
    # Sweeper lifecycle
    # ------------------------------------------------------------------

    def start_sweeper(self) -> None:
        """Start the background sweeper thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return

        self._stop_sweeping.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            daemon=True,
            name=f"CacheSweeper-{self.namespace}",
        )
        self._sweeper.start()
        logger.debug(f"Sweeper started for cache {self.namespace}")

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def destroy(self) -> None:
        """
        Stop the sweeper and clear the cache.

        Safe to call more than once and while a sweep tick is running: the
        tick re-checks the stop flag under the cache lock before mutating.
        """
        self._stop_sweeping.set()

        sweeper = self._sweeper
        self._sweeper = None
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join(timeout=SWEEPER_JOIN_TIMEOUT)
            if sweeper.is_alive():
                logger.warning(
                    f"Sweeper for cache {self.namespace} did not stop within "
                    f"{SWEEPER_JOIN_TIMEOUT} seconds"
                )
            else:
                logger.debug(f"Sweeper stopped for cache {self.namespace}")

        self.clear()

    def close(self) -> None:
        """Destroy the cache and release its lock registration."""
        self.destroy()
        unregister_lock(self._lock)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _sweep_loop(self) -> None:
        while not self._stop_sweeping.wait(self.sweep_interval):
            try:
                self._sweep_expired(from_timer=True)
            except Exception as e:
                logger.error(f"Error sweeping cache {self.namespace}: {e}")

    def _sweep_expired(self, from_timer: bool) -> int:
        with coordinated_lock(self._lock):
            if from_timer and self._stop_sweeping.is_set():
                return 0

            now = self._clock()
            expired = [
                key for key, entry in self._entries.snapshot() if entry.is_expired(now)
            ]
            for key in expired:
                del self._entries[key]

            self.stats["evictions"] += len(expired)
            self._update_stats()

        if expired:
            logger.debug(
                f"Swept {len(expired)} expired entries from cache {self.namespace}"
            )
        return len(expired)

    def _on_capacity_evict(self, key: str, entry: CacheEntry) -> None:
        self.stats["evictions"] += 1
        logger.debug(f"Evicted {key} from cache {self.namespace}")

    def _update_stats(self) -> None:
        self.stats["size"] = len(self._entries)
        total = self.stats["hits"] + self.stats["misses"]
        self.stats["hit_rate"] = self.stats["hits"] / total if total > 0 else 0.0

    def __len__(self) -> int:
        with coordinated_lock(self._lock):
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __repr__(self) -> str:
        return (
            f"CacheManager(namespace={self.namespace!r}, max_size={self.max_size}, "
            f"default_ttl={self.default_ttl})"
        )
