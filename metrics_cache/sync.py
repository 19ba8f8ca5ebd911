"""
Background refresh of the typed metric views.

``BackgroundSyncService`` periodically pulls pool volumes, protocol user
metrics and chain aggregates from a ``MetricsSource`` (the blockchain RPC
wrapper) and writes them into a ``CacheStore``. Source calls are retried
and routed through a shared circuit breaker.
"""
import threading
import time
from typing import Any, Callable, Mapping, Optional, Protocol, TypeVar

import structlog

from .circuit_breaker import CircuitBreaker
from .core import CacheStore
from .scheduler import PeriodicTimer
from .schema import CacheStats, SyncStats
from .settings import SyncConfig
from .views import MetricsData

logger = structlog.get_logger()

T = TypeVar('T')

# Weight of the previous average in the sync time moving average
SYNC_TIME_SMOOTHING = 0.8


class MetricsSource(Protocol):
    """Boundary of the upstream metrics provider."""

    def fetch_volume(self, protocol: str) -> Mapping[str, MetricsData]:
        """Volume figures of every pool of ``protocol``, keyed by pool."""
        ...

    def fetch_user_metrics(self, protocol: str) -> Optional[MetricsData]:
        ...

    def fetch_aggregated_metrics(self, chain: str) -> MetricsData:
        ...


class BackgroundSyncService:
    """Keeps the typed views of a ``CacheStore`` fresh."""

    def __init__(
        self,
        store: CacheStore,
        source: MetricsSource,
        config: Optional[SyncConfig] = None,
        *,
        breaker: Optional[CircuitBreaker] = None,
        wait: Optional[Callable[[float], bool]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.source = source
        self.config = config or SyncConfig()
        self.breaker = breaker or CircuitBreaker(name="metrics-source", clock=clock)
        self._stop_event = threading.Event()
        # Returns True when stop() interrupted the wait
        self._wait = wait or self._stop_event.wait
        self._clock = clock

        self._stats = SyncStats()
        self._stats_lock = threading.Lock()
        self._sync_lock = threading.Lock()
        self._timer: Optional[PeriodicTimer] = None
        self._initial_sync: Optional[threading.Timer] = None

        logger.info("background_sync_initialized", **self.config.model_dump())

    @property
    def running(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        """Start periodic syncing, with a first sync after ``initial_delay``."""
        if not self.config.enabled:
            logger.info("background_sync_disabled")
            return
        if self._timer is not None:
            logger.info("background_sync_already_running")
            return

        self._timer = PeriodicTimer(self.config.interval, self.perform_sync, name="metrics-sync")
        self._timer.start()

        self._initial_sync = threading.Timer(self.config.initial_delay, self.perform_sync)
        self._initial_sync.daemon = True
        self._initial_sync.start()

        logger.info("background_sync_started", interval=self.config.interval)

    def stop(self) -> None:
        """
        Stop syncing and wait for the sync threads to exit.

        A sync in flight abandons its pending retries and remaining targets.
        """
        self._stop_event.set()
        try:
            initial, self._initial_sync = self._initial_sync, None
            if initial is not None:
                initial.cancel()
                if initial is not threading.current_thread():
                    initial.join()

            timer, self._timer = self._timer, None
            if timer is not None:
                timer.stop()
                logger.info("background_sync_stopped")
        finally:
            self._stop_event.clear()

    def perform_sync(self) -> SyncStats:
        """
        Sync every configured protocol and, if enabled, the chain aggregates.

        A sync already in progress is not interrupted; the call returns the
        current statistics instead. Failures are collected into the stats.
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.info("background_sync_skipped", reason="sync already in progress")
            return self.get_stats()

        started = self._clock()
        try:
            logger.info("background_sync_starting", protocols=self.config.protocols)
            protocols_updated = 0
            errors = []

            for protocol in self.config.protocols:
                if self._stop_event.is_set():
                    break
                try:
                    self._with_retry(self._sync_protocol, protocol)
                    protocols_updated += 1
                except Exception as e:
                    message = f"Failed to sync {protocol}: {e}"
                    errors.append(message)
                    logger.error("protocol_sync_failed", protocol=protocol, error=str(e))

            if self.config.enable_aggregated_metrics:
                for chain in self.config.chains:
                    if self._stop_event.is_set():
                        break
                    try:
                        self._with_retry(self._sync_chain, chain)
                    except Exception as e:
                        message = f"Failed to sync aggregated metrics for {chain}: {e}"
                        errors.append(message)
                        logger.error("aggregated_sync_failed", chain=chain, error=str(e))

            if self._stop_event.is_set():
                errors.append("Sync interrupted by stop")
                logger.info("background_sync_interrupted")

            finished = self._clock()
            sync_time = finished - started
            with self._stats_lock:
                stats = self._stats
                self._stats = SyncStats(
                    last_sync=finished,
                    successful_syncs=stats.successful_syncs + (0 if errors else 1),
                    failed_syncs=stats.failed_syncs + (1 if errors else 0),
                    protocols_updated=protocols_updated,
                    avg_sync_time=self._average_sync_time(stats.avg_sync_time, sync_time),
                    errors=errors,
                )

            logger.info("background_sync_completed", duration=sync_time,
                        protocols_updated=protocols_updated, errors=len(errors))
            return self.get_stats()
        finally:
            self._sync_lock.release()

    def _with_retry(self, operation: Callable[[str], T], target: str) -> T:
        attempts = self.config.retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                return operation(target)
            except CircuitBreaker.CircuitBreakerError:
                raise
            except Exception as e:
                if attempt == attempts:
                    raise
                logger.warning("sync_attempt_failed", target=target, attempt=attempt,
                               retry_in=self.config.retry_delay, error=str(e))
                if self._wait(self.config.retry_delay):
                    logger.info("sync_retry_abandoned", target=target, attempt=attempt)
                    raise
        raise RuntimeError("retry_attempts must be at least 1")

    def _sync_protocol(self, protocol: str) -> None:
        volumes = self.breaker.call(self.source.fetch_volume, protocol)
        for pool, data in volumes.items():
            self.store.set_volume_data(protocol, pool, data)

        user_metrics = self.breaker.call(self.source.fetch_user_metrics, protocol)
        if user_metrics is not None:
            self.store.set_user_metrics(protocol, user_metrics)

    def _sync_chain(self, chain: str) -> None:
        data = self.breaker.call(self.source.fetch_aggregated_metrics, chain)
        self.store.set_aggregated_metrics(chain, data)

    @staticmethod
    def _average_sync_time(previous: float, latest: float) -> float:
        if previous == 0:
            return latest
        return previous * SYNC_TIME_SMOOTHING + latest * (1 - SYNC_TIME_SMOOTHING)

    def force_sync(self) -> SyncStats:
        """Run a sync now, outside the periodic schedule."""
        logger.info("background_sync_forced")
        return self.perform_sync()

    def get_stats(self) -> SyncStats:
        with self._stats_lock:
            return self._stats.model_copy(deep=True)

    def is_sync_in_progress(self) -> bool:
        return self._sync_lock.locked()

    def get_cache_stats(self) -> Optional[CacheStats]:
        try:
            return self.store.get_stats()
        except Exception as e:
            logger.error("cache_stats_failed", error=str(e))
            return None

    def clear_errors(self) -> None:
        with self._stats_lock:
            self._stats.errors = []

    def update_config(self, **changes: Any) -> None:
        """
        Apply configuration changes, restarting the timer when needed.

        A new interval restarts a running service; toggling ``enabled``
        starts or stops it.
        """
        was_enabled = self.config.enabled
        interval_changed = "interval" in changes and changes["interval"] != self.config.interval
        self.config = SyncConfig(**{**self.config.model_dump(), **changes})

        if interval_changed and self.running:
            logger.info("background_sync_restarting", interval=self.config.interval)
            self.stop()
            self.start()
        elif not was_enabled and self.config.enabled:
            self.start()
        elif was_enabled and not self.config.enabled:
            self.stop()
