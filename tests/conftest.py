import pytest

from cache_manager import CacheManager
from remote_store import InMemoryRemoteStore


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_cache(clock):
    """Factory for caches driven by the fake clock, without a sweeper thread."""
    created = []

    def _make(max_size=10, default_ttl=60.0, namespace="test", **kwargs):
        kwargs.setdefault("start_sweeper", False)
        cache = CacheManager(
            max_size=max_size,
            default_ttl=default_ttl,
            namespace=namespace,
            clock=clock,
            **kwargs,
        )
        created.append(cache)
        return cache

    yield _make

    for cache in created:
        cache.close()


@pytest.fixture
def remote_store():
    store = InMemoryRemoteStore()
    yield store
    store.close()
