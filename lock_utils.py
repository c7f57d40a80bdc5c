"""
Lock utilities for the rental cache layer.
Provides a coordinated lock management system to prevent deadlocks between
the application context, the named caches and their sweeper threads.
"""

import threading
import logging
from contextlib import contextmanager
from typing import Dict, Any, Iterator, List, Optional

logger = logging.getLogger(__name__)

# Global lock registry to track lock order and detect potential deadlocks
_lock_registry: Dict[int, Dict[str, Any]] = {}
_global_registry_lock = threading.RLock()

# Locks currently held by each thread, in acquisition order
_held = threading.local()

# Lock hierarchy levels - higher numbers must be acquired first
LOCK_HIERARCHY = {
    "app_context": 100,
    "rate_limiter": 80,
    "remote_store": 70,
    "cache": 60,
    "component": 40,
}

DEFAULT_LOCK_TIMEOUT = 10.0


class LockOrderViolation(Exception):
    """Exception raised when locks are acquired out of order."""

    pass


class LockTimeout(Exception):
    """Exception raised when a lock cannot be acquired within the timeout."""

    pass


def get_hierarchy_level(lock_name: str) -> int:
    """Get the hierarchy level for a lock name."""
    for prefix, level in LOCK_HIERARCHY.items():
        if lock_name.startswith(prefix):
            return level
    return 0  # Default level for unnamed locks


def register_lock(lock_obj: threading.RLock, name: str) -> None:
    """
    Register a lock with the given name in the global registry.

    Args:
        lock_obj: The lock object
        name: A unique name for the lock, used for hierarchy
    """
    with _global_registry_lock:
        _lock_registry[id(lock_obj)] = {
            "name": name,
            "level": get_hierarchy_level(name),
        }
        logger.debug(f"Registered lock: {name} with level {get_hierarchy_level(name)}")


def unregister_lock(lock_obj: threading.RLock) -> None:
    """
    Remove a lock from the registry.

    Args:
        lock_obj: The lock object to unregister
    """
    with _global_registry_lock:
        info = _lock_registry.pop(id(lock_obj), None)
        if info is not None:
            logger.debug(f"Unregistered lock: {info['name']}")


def _thread_locks() -> List[threading.RLock]:
    locks = getattr(_held, "locks", None)
    if locks is None:
        locks = []
        _held.locks = locks
    return locks


@contextmanager
def coordinated_lock(
    lock_obj: threading.RLock,
    timeout: float = DEFAULT_LOCK_TIMEOUT,
    name: Optional[str] = None,
) -> Iterator[None]:
    """
    Context manager for acquiring locks in a coordinated manner that prevents deadlocks.

    Re-entering a lock the current thread already holds is free. Acquiring a
    lock ranked higher than one already held is refused.

    Args:
        lock_obj: The lock to acquire
        timeout: Maximum time to wait for lock acquisition in seconds
        name: Optional name for unregistered locks

    Raises:
        LockOrderViolation: If acquiring this lock would violate the hierarchy
        LockTimeout: If the lock cannot be acquired within the timeout
    """
    thread_locks = _thread_locks()
    if any(held is lock_obj for held in thread_locks):
        yield
        return

    with _global_registry_lock:
        if id(lock_obj) not in _lock_registry and name:
            register_lock(lock_obj, name)

        lock_info = _lock_registry.get(id(lock_obj), {"name": "unnamed", "level": 0})

        for held_lock in thread_locks:
            held_lock_info = _lock_registry.get(
                id(held_lock), {"name": "unknown", "level": 0}
            )
            if held_lock_info["level"] < lock_info["level"]:
                error_msg = (
                    f"Lock order violation: trying to acquire {lock_info['name']} "
                    f"(level {lock_info['level']}) while holding {held_lock_info['name']} "
                    f"(level {held_lock_info['level']})"
                )
                logger.error(error_msg)
                raise LockOrderViolation(error_msg)

    if not lock_obj.acquire(timeout=timeout):
        error_msg = (
            f"Timeout waiting for lock {lock_info['name']} after {timeout} seconds"
        )
        logger.error(error_msg)
        raise LockTimeout(error_msg)

    thread_locks.append(lock_obj)
    try:
        yield
    finally:
        thread_locks.remove(lock_obj)
        lock_obj.release()


def create_component_lock(component_name: str) -> threading.RLock:
    """
    Create a registered lock for a component.

    Args:
        component_name: Name of the component, prefixed with its hierarchy
            family (e.g. ``cache_user_data``)

    Returns:
        A registered RLock
    """
    lock = threading.RLock()
    register_lock(lock, component_name)
    return lock
