"""
Application context owning the process-lifetime cache instances.

Request handlers receive an ``AppContext`` instead of reaching for module
level singletons. One context is built at startup and shut down once when
the process stops.
"""

import logging
from typing import Any, Callable, Dict, Optional

from cache_config import (
    IMAGE_METADATA_CACHE,
    NAMED_CACHES,
    PROPERTY_ANALYSIS_CACHE,
    USER_DATA_CACHE,
    get_cache_settings,
    hash_config_sections,
    load_config,
)
from cache_manager import CacheManager, CacheStats
from cache_utils import CacheUtils
from cached_data_store import CachedDataStore
from lock_utils import coordinated_lock, create_component_lock, unregister_lock
from rate_limiter import RateLimiter
from remote_store import RemoteStore

logger = logging.getLogger(__name__)


class AppContext:
    """The three named caches plus the services built on them."""

    def __init__(
        self,
        remote_store: RemoteStore,
        config: Optional[Dict[str, Any]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            remote_store: Authoritative store fronted by the caches
            config: Configuration dictionary (defaults to ``load_config()``)
            clock: Time source shared by the caches and the rate limiter
        """
        self.config = config if config is not None else load_config()
        self.config_hash = hash_config_sections(self.config)
        self.remote_store = remote_store

        self.caches: Dict[str, CacheManager] = {}
        for name in NAMED_CACHES:
            settings = get_cache_settings(self.config, name)
            self.caches[name] = CacheManager(namespace=name, clock=clock, **settings)

        self.data_store = CachedDataStore(
            remote_store,
            self.user_data_cache,
            self.image_metadata_cache,
            self.property_analysis_cache,
        )
        self.rate_limiter = RateLimiter.from_config(self.config, clock=clock)

        self._lock = create_component_lock(f"app_context_{id(self)}")
        self._closed = False

        logger.info(
            f"Application context ready with caches {', '.join(self.caches)} "
            f"(config {self.config_hash[:8]})"
        )

    @classmethod
    def from_config(
        cls,
        remote_store: RemoteStore,
        overrides: Optional[Dict[str, Any]] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> "AppContext":
        """Build a context from ``DEFAULT_CONFIG`` merged with ``overrides``."""
        return cls(remote_store, load_config(overrides), clock=clock)

    @property
    def user_data_cache(self) -> CacheManager:
        return self.caches[USER_DATA_CACHE]

    @property
    def image_metadata_cache(self) -> CacheManager:
        return self.caches[IMAGE_METADATA_CACHE]

    @property
    def property_analysis_cache(self) -> CacheManager:
        return self.caches[PROPERTY_ANALYSIS_CACHE]

    @property
    def closed(self) -> bool:
        return self._closed

    def get_cache_stats(self) -> Dict[str, CacheStats]:
        return CacheUtils.get_cache_stats(self.caches)

    def shutdown(self) -> None:
        """
        Stop every sweeper, clear every cache and release the lock registrations.

        Safe to call more than once. The remote store is not owned by the
        context and is left open.
        """
        with coordinated_lock(self._lock):
            if self._closed:
                return
            self._closed = True

        for name, cache in self.caches.items():
            try:
                cache.close()
            except Exception as e:
                logger.error(f"Error destroying cache {name}: {e}")

        self.rate_limiter.close()
        unregister_lock(self._lock)

        logger.info("Application context shut down")

    def __enter__(self) -> "AppContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
