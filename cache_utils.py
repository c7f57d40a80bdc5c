"""
Cache key construction and invalidation utilities.

Keys are namespaced strings of the form ``prefix:part1:part2``. Invalidation
is a linear prefix scan over the target cache. The named caches hold a few
hundred entries at most, so a per-user secondary index would cost more to
maintain than the scan it saves.
"""

import logging
from typing import Mapping, Optional

from cache_manager import CacheManager, CacheStats

logger = logging.getLogger(__name__)

KEY_DELIMITER = ":"

USER_DATA_PREFIX = "userdata"
IMAGE_METADATA_PREFIX = "images"
PROPERTY_ANALYSIS_PREFIX = "property"

ALL_ITEMS = "all"


class CacheUtils:
    """Deterministic key builders and prefix invalidation for the named caches."""

    @staticmethod
    def generate_key(prefix: str, *parts: str) -> str:
        """
        Join ``prefix`` and ``parts`` into a canonical cache key.

        Parts are not escaped; callers must use identifiers (e.g. UUIDs)
        that do not contain the delimiter.
        """
        return KEY_DELIMITER.join((prefix,) + tuple(str(part) for part in parts))

    @classmethod
    def user_data_key(cls, user_id: str, data_key: str) -> str:
        return cls.generate_key(USER_DATA_PREFIX, user_id, data_key)

    @classmethod
    def image_metadata_key(cls, user_id: str, category: Optional[str] = None) -> str:
        return cls.generate_key(IMAGE_METADATA_PREFIX, user_id, category or ALL_ITEMS)

    @classmethod
    def property_analysis_key(
        cls, user_id: str, analysis_id: Optional[str] = None
    ) -> str:
        return cls.generate_key(
            PROPERTY_ANALYSIS_PREFIX, user_id, analysis_id or ALL_ITEMS
        )

    @classmethod
    def _invalidate_prefix(cls, cache: CacheManager, prefix: str, user_id: str) -> int:
        # The trailing delimiter keeps "u1" from matching "u10"
        user_prefix = cls.generate_key(prefix, user_id) + KEY_DELIMITER
        removed = cache.delete_matching(lambda key: key.startswith(user_prefix))
        if removed:
            logger.info(
                f"Invalidated {removed} entries for {user_prefix}* in cache {cache.namespace}"
            )
        return removed

    @classmethod
    def invalidate_user_data(cls, cache: CacheManager, user_id: str) -> int:
        """
        Remove every user-data entry belonging to ``user_id``.

        Args:
            cache: The user-data cache
            user_id: Owner of the entries

        Returns:
            int: Number of entries removed
        """
        return cls._invalidate_prefix(cache, USER_DATA_PREFIX, user_id)

    @classmethod
    def invalidate_image_cache(cls, cache: CacheManager, user_id: str) -> int:
        """Remove every image-metadata listing cached for ``user_id``."""
        return cls._invalidate_prefix(cache, IMAGE_METADATA_PREFIX, user_id)

    @classmethod
    def invalidate_property_analyses(cls, cache: CacheManager, user_id: str) -> int:
        """Remove every property-analysis entry cached for ``user_id``."""
        return cls._invalidate_prefix(cache, PROPERTY_ANALYSIS_PREFIX, user_id)

    @staticmethod
    def get_cache_stats(caches: Mapping[str, CacheManager]) -> dict:
        """Collect ``{name: stats}`` for a mapping of named caches."""
        stats: dict = {}
        for name, cache in caches.items():
            cache_stats: CacheStats = cache.get_stats()
            stats[name] = cache_stats
        return stats
