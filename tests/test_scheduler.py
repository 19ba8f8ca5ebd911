import threading
import time

import pytest
from structlog.testing import capture_logs

from metrics_cache.core import CacheStore
from metrics_cache.scheduler import PeriodicTimer


def test_timer_runs_periodically():
    ticks = []
    done = threading.Event()

    def tick():
        ticks.append(time.monotonic())
        if len(ticks) >= 3:
            done.set()

    timer = PeriodicTimer(0.01, tick)
    timer.start()
    try:
        assert done.wait(2.0)
    finally:
        timer.stop()
    assert not timer.running


def test_timer_survives_failing_tick():
    calls = []
    done = threading.Event()

    def tick():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        done.set()

    timer = PeriodicTimer(0.01, tick)
    timer.start()
    try:
        assert done.wait(2.0)
    finally:
        timer.stop()


def test_timer_lifecycle():
    timer = PeriodicTimer(60, lambda: None)
    timer.start()
    assert timer.running

    with pytest.raises(RuntimeError):
        timer.start()

    timer.stop()
    timer.stop()
    assert not timer.running

    with pytest.raises(ValueError):
        PeriodicTimer(0, lambda: None)


def test_sweep_removes_expired_entries(clock, wait_for):
    store = CacheStore(clock=clock, cleanup_interval=0.02)
    try:
        store.set("a", {"x": 1}, ttl=0.1)
        assert store.get("a") == {"x": 1}

        clock.advance(0.15)
        assert store.get("a") is None
        assert wait_for(lambda: store.get_stats().total_entries == 0)
    finally:
        store.close()


def test_sweep_logs_removed_count(store, clock):
    store.set("a", 1, ttl=1)
    store.set("b", 2, ttl=1)
    clock.advance(5)

    with capture_logs() as logs:
        assert store.run_cleanup() == 2

    assert {"event": "cache_swept", "removed": 2, "log_level": "info"} in logs


def test_close_halts_cleanup_timer(clock):
    store = CacheStore(clock=clock, cleanup_interval=0.02)
    store.close()
    assert store.closed
    assert not store._cleanup_timer.running

    store.set("a", 1, ttl=1)
    clock.advance(1_000)
    time.sleep(0.1)
    assert store.get_stats().total_entries == 1

    store.close()


def test_context_manager_closes(clock):
    with CacheStore(clock=clock, cleanup_interval=0.02) as store:
        store.set("a", 1)
    assert store.closed
    assert not store._cleanup_timer.running
    # Data remains readable after close
    assert store.get("a") == 1
