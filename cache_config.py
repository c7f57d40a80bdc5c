"""
Configuration helpers for the rental cache layer.

Configuration is a nested dictionary. Each named cache reads its own section
under ``caching`` and falls back to the global ``caching`` values, then to
the module defaults. A handful of settings may be overridden from the
environment so operators can retune a deployment without a code change.
"""

import copy
import json
import os
import logging
from typing import Any, Dict, List, Optional

import xxhash

logger = logging.getLogger(__name__)

# Generic defaults for an unnamed cache
DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_SWEEP_INTERVAL = 60

USER_DATA_CACHE = "user_data"
IMAGE_METADATA_CACHE = "image_metadata"
PROPERTY_ANALYSIS_CACHE = "property_analysis"

NAMED_CACHES = (USER_DATA_CACHE, IMAGE_METADATA_CACHE, PROPERTY_ANALYSIS_CACHE)

DEFAULT_CONFIG: Dict[str, Any] = {
    "caching": {
        "cache_size": DEFAULT_MAX_SIZE,
        "ttl": DEFAULT_TTL_SECONDS,
        "sweep_interval": DEFAULT_SWEEP_INTERVAL,
        "sweeper_enabled": True,
        USER_DATA_CACHE: {"cache_size": 500, "ttl": 2 * 60},
        IMAGE_METADATA_CACHE: {"cache_size": 200, "ttl": 10 * 60},
        PROPERTY_ANALYSIS_CACHE: {"cache_size": 100, "ttl": 5 * 60},
    },
    "rate_limiting": {
        "window_seconds": 60,
        "max_requests": 100,
        "max_tracked_users": 10000,
    },
}


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Build the effective configuration.

    Priority (highest first): environment variables, ``overrides``,
    ``DEFAULT_CONFIG``.

    Args:
        overrides: Partial configuration merged over the defaults

    Returns:
        Dict[str, Any]: A fresh configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    if overrides:
        _merge(config, overrides)

    caching = config["caching"]

    sweep_interval = os.environ.get("RENTAL_CACHE_SWEEP_INTERVAL")
    if sweep_interval:
        try:
            caching["sweep_interval"] = float(sweep_interval)
        except ValueError:
            logger.warning(
                f"Ignoring invalid RENTAL_CACHE_SWEEP_INTERVAL value: {sweep_interval!r}"
            )

    if os.environ.get("RENTAL_CACHE_DISABLE_SWEEPER", "").lower() in ("1", "true", "yes"):
        caching["sweeper_enabled"] = False

    return config


def get_cache_settings(config: Dict[str, Any], namespace: str) -> Dict[str, Any]:
    """
    Resolve the settings of one named cache.

    Args:
        config: Configuration dictionary
        namespace: Cache name (e.g. ``user_data``)

    Returns:
        Dict with ``max_size``, ``default_ttl``, ``sweep_interval`` and
        ``start_sweeper`` keys
    """
    caching = config.get("caching", {})
    component_config = caching.get(namespace, {})

    return {
        "max_size": component_config.get(
            "cache_size", caching.get("cache_size", DEFAULT_MAX_SIZE)
        ),
        "default_ttl": component_config.get(
            "ttl", caching.get("ttl", DEFAULT_TTL_SECONDS)
        ),
        "sweep_interval": component_config.get(
            "sweep_interval", caching.get("sweep_interval", DEFAULT_SWEEP_INTERVAL)
        ),
        "start_sweeper": caching.get("sweeper_enabled", True),
    }


def hash_config_sections(
    config: Dict[str, Any], sections: Optional[List[str]] = None
) -> str:
    """
    Create a fingerprint of the configuration sections that shape the caches.

    Args:
        config: Configuration dictionary
        sections: Specific sections to include (defaults to caching and rate limiting)

    Returns:
        str: Hexadecimal hash of the configuration
    """
    if sections is None:
        sections = ["caching", "rate_limiting"]

    relevant_config = {
        section: config.get(section) for section in sections if section in config
    }
    config_str = json.dumps(relevant_config, sort_keys=True, default=str)
    return xxhash.xxh3_64(config_str.encode("utf-8")).hexdigest()
