"""
Read-through / write-through wrapper around the remote store.

Reads consult the cache first and populate it on a miss. Writes go to the
remote store first; the cache is refreshed only once the write has been
persisted, so it is never ahead of the source of truth.

The cache lock is never held across a remote call. Two concurrent misses for
the same key may both fetch and both populate the cache; the remote data is
authoritative, so the last write simply wins.

User data is deep-copied into and out of the cache, so callers mutating a
value they wrote or read cannot change what the cache serves.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from cache_manager import CacheManager
from cache_utils import CacheUtils
from remote_store import RemoteStore

logger = logging.getLogger(__name__)

_MISSING = object()


class CachedDataStore:
    """Fronts the remote store with the named caches."""

    def __init__(
        self,
        remote_store: RemoteStore,
        user_data_cache: CacheManager,
        image_cache: CacheManager,
        property_analysis_cache: Optional[CacheManager] = None,
    ):
        """
        Args:
            remote_store: Authoritative key/value store
            user_data_cache: Cache for per-user key/value data
            image_cache: Cache for image metadata listings
            property_analysis_cache: Cache for property analyses (optional)
        """
        self.remote_store = remote_store
        self.user_data_cache = user_data_cache
        self.image_cache = image_cache
        self.property_analysis_cache = property_analysis_cache

    def get_cached_user_data(self, user_id: str, data_key: str) -> Optional[Any]:
        """
        Get a user's value for ``data_key``, from cache when possible.

        A missing record is not cached, so every lookup for it goes back to
        the remote store until a value exists. Remote errors degrade to None.

        Args:
            user_id: Owner of the data
            data_key: Key within the user's data

        Returns:
            The stored value, or None if there is none (or the store failed)
        """
        cache_key = CacheUtils.user_data_key(user_id, data_key)

        cached = self.user_data_cache.get(cache_key, _MISSING)
        if cached is not _MISSING:
            return copy.deepcopy(cached)

        try:
            value = self.remote_store.fetch_user_data(user_id, data_key)
        except Exception as e:
            logger.warning(f"Failed to fetch user data {user_id}/{data_key}: {e}")
            return None

        if value is None:
            return None

        self.user_data_cache.set(cache_key, copy.deepcopy(value))
        return value

    def set_cached_user_data(self, user_id: str, data_key: str, data: Any) -> None:
        """
        Persist a user's value and refresh the cache.

        Args:
            user_id: Owner of the data
            data_key: Key within the user's data
            data: Value to store

        Raises:
            RemoteStoreError: If the remote write fails; the cache is left untouched
        """
        cache_key = CacheUtils.user_data_key(user_id, data_key)

        try:
            self.remote_store.upsert_user_data(user_id, data_key, data)
        except Exception as e:
            logger.error(f"Failed to store user data {user_id}/{data_key}: {e}")
            raise

        self.user_data_cache.set(cache_key, copy.deepcopy(data))

    def get_cached_images(
        self, user_id: str, category: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Get a user's image metadata, optionally restricted to one category.

        A remote failure presents as an empty list and is not cached.
        """
        cache_key = CacheUtils.image_metadata_key(user_id, category)

        cached = self.image_cache.get(cache_key, _MISSING)
        if cached is not _MISSING:
            return cached

        try:
            images = self.remote_store.list_images(user_id, category)
        except Exception as e:
            logger.warning(f"Failed to list images for {user_id}: {e}")
            return []

        result = list(images or [])
        self.image_cache.set(cache_key, result)
        return result

    def get_cached_property_analyses(
        self, user_id: str, analysis_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Same read-through pattern as ``get_cached_images`` for property analyses."""
        if self.property_analysis_cache is None:
            raise RuntimeError("No property analysis cache configured")

        cache_key = CacheUtils.property_analysis_key(user_id, analysis_id)

        cached = self.property_analysis_cache.get(cache_key, _MISSING)
        if cached is not _MISSING:
            return cached

        try:
            analyses = self.remote_store.list_property_analyses(user_id, analysis_id)
        except Exception as e:
            logger.warning(f"Failed to list property analyses for {user_id}: {e}")
            return []

        result = list(analyses or [])
        self.property_analysis_cache.set(cache_key, result)
        return result

    def invalidate_user_cache(self, user_id: str) -> int:
        """
        Drop everything cached for ``user_id``.

        Returns:
            int: Number of entries removed across the caches
        """
        removed = CacheUtils.invalidate_user_data(self.user_data_cache, user_id)
        removed += CacheUtils.invalidate_image_cache(self.image_cache, user_id)
        if self.property_analysis_cache is not None:
            removed += CacheUtils.invalidate_property_analyses(
                self.property_analysis_cache, user_id
            )
        return removed
