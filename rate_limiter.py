"""
Sliding-window request limiter for the storage handlers.
"""

import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

from cachetools import TTLCache

from lock_utils import coordinated_lock, create_component_lock, unregister_lock

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60
DEFAULT_MAX_REQUESTS = 100
DEFAULT_MAX_TRACKED_USERS = 10000


class RateLimiter:
    """
    Per-user sliding-window limiter.

    Request timestamps are kept per user in a ``TTLCache`` whose TTL equals
    the window, so users who stop calling are forgotten and the number of
    tracked users stays bounded.
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        max_tracked_users: int = DEFAULT_MAX_TRACKED_USERS,
        clock: Optional[Callable[[], float]] = None,
    ):
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        if max_requests <= 0:
            raise ValueError(f"max_requests must be positive, got {max_requests}")

        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock or time.monotonic
        self._requests: TTLCache = TTLCache(
            maxsize=max_tracked_users, ttl=window_seconds, timer=self._clock
        )
        self._lock = create_component_lock(f"rate_limiter_{id(self)}")

    @classmethod
    def from_config(
        cls, config: Dict[str, Any], clock: Optional[Callable[[], float]] = None
    ) -> "RateLimiter":
        settings = config.get("rate_limiting", {})
        return cls(
            window_seconds=settings.get("window_seconds", DEFAULT_WINDOW_SECONDS),
            max_requests=settings.get("max_requests", DEFAULT_MAX_REQUESTS),
            max_tracked_users=settings.get(
                "max_tracked_users", DEFAULT_MAX_TRACKED_USERS
            ),
            clock=clock,
        )

    def _valid_requests(self, user_id: str, now: float) -> Deque[float]:
        requests: Deque[float] = self._requests.get(user_id) or deque()
        while requests and now - requests[0] >= self.window_seconds:
            requests.popleft()
        return requests

    def is_allowed(self, user_id: str) -> bool:
        """Record a request for ``user_id`` if the window still has room."""
        with coordinated_lock(self._lock):
            now = self._clock()
            requests = self._valid_requests(user_id, now)

            if len(requests) >= self.max_requests:
                logger.info(f"Rate limit exceeded for user {user_id}")
                return False

            requests.append(now)
            self._requests[user_id] = requests
            return True

    def get_remaining_requests(self, user_id: str) -> int:
        with coordinated_lock(self._lock):
            requests = self._valid_requests(user_id, self._clock())
            return max(0, self.max_requests - len(requests))

    def reset(self, user_id: str) -> None:
        with coordinated_lock(self._lock):
            self._requests.pop(user_id, None)

    def close(self) -> None:
        """Forget all tracked users and release the lock registration."""
        with coordinated_lock(self._lock):
            self._requests.clear()
        unregister_lock(self._lock)
