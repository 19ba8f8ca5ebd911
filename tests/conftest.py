import time

import pytest

from metrics_cache.core import CacheStore


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    return _wait_for


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """A store whose cleanup timer never fires during a test."""
    cache = CacheStore(clock=clock, default_ttl=60, max_entries=100, cleanup_interval=3600)
    yield cache
    cache.close()


@pytest.fixture
def make_store(clock):
    """Factory for stores with custom options, closed after the test."""
    created = []

    def factory(**options):
        options.setdefault("cleanup_interval", 3600)
        cache = CacheStore(clock=clock, **options)
        created.append(cache)
        return cache

    yield factory
    for cache in created:
        cache.close()


@pytest.fixture
def volume_data():
    return {
        "volume_24h": 125_000.5,
        "volume_7d": 810_000.0,
        "volume_30d": 3_200_000.0,
        "concentration_risk": 0.35,
    }


@pytest.fixture
def user_metrics_data():
    return {
        "unique_users_24h": 420,
        "unique_users_7d": 2_100,
        "unique_users_30d": 7_800,
        "active_wallets": 1_950,
        "new_users": 130,
        "user_retention": 0.62,
    }


@pytest.fixture
def aggregated_data():
    return {
        "total_volume_24h": 1_500_000.0,
        "total_volume_7d": 9_000_000.0,
        "total_volume_30d": 36_000_000.0,
        "total_users_24h": 5_000,
        "total_users_7d": 21_000,
        "total_users_30d": 64_000,
        "protocol_count": 3,
    }
