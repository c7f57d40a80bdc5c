"""
Memory utilities for the rental cache layer.
Reports process and system memory for the health payload.
"""

import logging
from typing import Any, Dict

import psutil

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


def get_memory_status() -> Dict[str, Any]:
    """
    Get current memory status.

    Returns:
        Dict with process RSS and system memory statistics, or an ``error``
        key if psutil could not read them
    """
    try:
        vm = psutil.virtual_memory()
        process = psutil.Process()
        return {
            "process_rss_mb": process.memory_info().rss / _MB,
            "total_mb": vm.total / _MB,
            "available_mb": vm.available / _MB,
            "percent": vm.percent,
        }
    except (psutil.Error, OSError) as e:
        logger.error(f"Error getting memory status: {e}")
        return {"error": str(e)}
