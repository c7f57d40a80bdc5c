"""
Framework-agnostic handlers for the storage and health endpoints.

Each handler returns ``(status_code, payload)`` and leaves routing, request
parsing and response rendering to the web layer that calls it.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from app_context import AppContext
from data_validation import format_errors, validate_user_data
from memory_utils import get_memory_status

logger = logging.getLogger(__name__)

Response = Tuple[int, Dict[str, Any]]

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."


def handle_storage_get(
    ctx: AppContext, user_id: Optional[str], key: Optional[str]
) -> Response:
    """GET /api/storage?userId=...&key=..."""
    if not user_id or not key:
        return 400, {"error": "Missing userId or key"}

    if not ctx.rate_limiter.is_allowed(user_id):
        return 429, {"error": RATE_LIMIT_MESSAGE}

    try:
        data = ctx.data_store.get_cached_user_data(user_id, key)
    except Exception as e:
        logger.error(f"Storage read failed for {user_id}/{key}: {e}")
        return 500, {"error": str(e)}

    if data is None:
        return 404, {"error": "Not Found"}

    return 200, {"data": data}


def handle_storage_put(ctx: AppContext, body: Dict[str, Any]) -> Response:
    """
    PUT /api/storage with a JSON body ``{"userId", "key", "data"}``.

    ``data`` must match ``UserData``; the validated value is what gets stored.
    A failed remote write is reported as a 500 and nothing is cached.
    """
    user_id = body.get("userId")
    key = body.get("key")
    if not user_id or not key:
        return 400, {"error": "Missing userId or key"}

    if not ctx.rate_limiter.is_allowed(user_id):
        return 429, {"error": RATE_LIMIT_MESSAGE}

    try:
        data = validate_user_data(body.get("data"))
    except ValidationError as e:
        return 400, {"error": "Invalid data format", "details": format_errors(e)}

    try:
        ctx.data_store.set_cached_user_data(user_id, key, data)
    except Exception as e:
        return 500, {"error": str(e)}

    return 200, {"success": True}


def _wire_stats(stats: Dict[str, Any]) -> Dict[str, Any]:
    """Cache stats with the camelCase keys the dashboard reads."""
    wire = dict(stats)
    wire["hitRate"] = wire.pop("hit_rate")
    return wire


def handle_health(ctx: AppContext) -> Response:
    """GET /api/health: cache statistics per named cache plus memory status."""
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        cache_stats = {
            name: _wire_stats(stats) for name, stats in ctx.get_cache_stats().items()
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return 500, {"status": "unhealthy", "error": str(e), "timestamp": timestamp}

    return 200, {
        "status": "unhealthy" if ctx.closed else "healthy",
        "timestamp": timestamp,
        "cache": cache_stats,
        "memory": get_memory_status(),
        "config_hash": ctx.config_hash,
    }
