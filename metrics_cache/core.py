"""
Core cache store for DeFi dashboard metrics.

``CacheStore`` is an in-process, time-bounded cache: a generic key/value
store with per-entry TTL, capacity-triggered batch eviction, a background
sweep of expired entries, three typed views for computed metrics and
hit/miss statistics. Construct one store at startup and pass it to its
consumers; there is no global instance.
"""
import functools
import hashlib
import heapq
import json
import math
import threading
import time
from typing import Any, Callable, Dict, Optional, TypeVar, cast

import structlog
from pydantic import BaseModel

from .exceptions import ReadFailure, SerializationError
from .logging_config import log_error
from .monitoring import (
    AGGREGATED_CACHE,
    GENERIC_CACHE,
    USER_METRICS_CACHE,
    VOLUME_CACHE,
    CacheMonitor,
)
from .scheduler import PeriodicTimer
from .schema import AggregatedMetrics, CacheEntry, CacheStats, UserMetricsEntry, VolumeEntry
from .settings import CacheConfig
from .views import MetricsData, aggregated_key, build_views, user_metrics_key, volume_key

logger = structlog.get_logger()

T = TypeVar('T')

# Share of max_entries evicted by one pruning pass
PRUNE_FRACTION = 0.1

_MISSING = object()


def _to_plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _check_round_trip(value: Any) -> None:
    """Reject containers that JSON would hand back as a different value."""
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise TypeError(f"dict key {k!r} is not a string")
            _check_round_trip(v)
    elif isinstance(value, list):
        for item in value:
            _check_round_trip(item)
    elif isinstance(value, (tuple, set, frozenset)):
        raise TypeError(f"{type(value).__name__} values are not supported, use a list")


class CacheStore:
    """
    Time-bounded metrics cache.

    Values written through ``set`` must be plain JSON-compatible data
    (dicts with string keys, lists, strings, numbers, booleans, None, or
    pydantic models, which are stored as their JSON dump). Tuples and sets
    are rejected. Values are snapshotted on write and
    every ``get`` returns a fresh copy, so callers can never mutate what is
    cached.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
        monitor: Optional[CacheMonitor] = None,
        **overrides: Any,
    ):
        """
        Initialize the store and start its cleanup timer.

        Args:
            config: Cache configuration, or None to load it from the environment
            clock: Time source returning seconds
            monitor: Prometheus monitor; one is created when stats are enabled
            **overrides: CacheConfig fields overriding ``config``
        """
        if config is None:
            config = CacheConfig(**overrides)
        elif overrides:
            config = CacheConfig(**{**config.model_dump(), **overrides})
        self.config = config
        self._clock = clock

        self._entries: Dict[str, CacheEntry] = {}
        self._volume, self._user_metrics, self._aggregated = build_views(clock, config.view_ttl)
        self._lock = threading.RLock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._swept = 0

        self.monitor: Optional[CacheMonitor] = None
        if config.enable_stats:
            self.monitor = monitor or CacheMonitor()
            self.monitor.attach(self)

        self._closed = False
        self._cleanup_timer = PeriodicTimer(config.cleanup_interval, self.run_cleanup, name="cache-cleanup")
        self._cleanup_timer.start()

        logger.info(
            "cache_initialized",
            default_ttl=config.default_ttl,
            max_entries=config.max_entries,
            cleanup_interval=config.cleanup_interval,
            view_ttl=config.view_ttl,
        )

    def __enter__(self) -> "CacheStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(cast(str, key))
            return entry is not None and not entry.is_expired(self._clock())

    @property
    def closed(self) -> bool:
        return self._closed

    # Generic entry store

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store a snapshot of ``value`` under ``key``, replacing any prior entry.

        Args:
            key: Cache key
            value: JSON-compatible value to cache
            ttl: Time-to-live in seconds, or None to use the default

        Raises:
            SerializationError: If ``value`` is not JSON-compatible
            ValueError: If ``ttl`` is not positive
        """
        if ttl is None:
            ttl = self.config.default_ttl
        elif ttl <= 0:
            raise ValueError(f"TTL must be positive, got {ttl}")

        try:
            payload = json.dumps(value, default=_to_plain)
            # dumps has already rejected cycles, so the walk terminates
            _check_round_trip(value)
        except (TypeError, ValueError, RecursionError) as e:
            raise SerializationError(key, str(e)) from e

        with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(
                key=key,
                payload=payload,
                ttl=ttl,
                created_at=now,
                updated_at=now,
                expires_at=now + ttl,
                last_accessed=now,
                access_count=1,
            )
            self._prune_if_needed()

        logger.debug("cache_set", key=key, ttl=ttl)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a copy of the value under ``key``.

        Args:
            key: Cache key
            default: Returned on a miss (absent or expired)

        Returns:
            The cached value, or ``default``
        """
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None or entry.expires_at <= now:
                self._record_miss(GENERIC_CACHE)
                return default

            try:
                value = json.loads(entry.payload)
            except (TypeError, ValueError) as e:
                log_error(logger, ReadFailure(key, str(e)), {"key": key})
                self._record_miss(GENERIC_CACHE)
                return default

            entry.last_accessed = now
            entry.access_count += 1
            self._record_hit(GENERIC_CACHE)
            return value

    def delete(self, key: str) -> bool:
        """
        Delete a key from the cache.

        Returns:
            True if the key existed
        """
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.debug("cache_deleted", key=key)
        return removed

    def clear(self) -> None:
        """Empty the generic store and every typed view. Hit/miss totals are kept."""
        with self._lock:
            self._entries.clear()
            self._volume.clear()
            self._user_metrics.clear()
            self._aggregated.clear()
        logger.info("cache_cleared")

    # Typed views

    def set_volume_data(self, protocol: str, pool: str, data: MetricsData) -> VolumeEntry:
        """Store the volume figures of ``pool`` on ``protocol``."""
        with self._lock:
            return self._volume.put(volume_key(protocol, pool), data, protocol=protocol, pool=pool)

    def get_volume_data(self, protocol: str, pool: str) -> Optional[VolumeEntry]:
        with self._lock:
            return self._view_lookup(self._volume, volume_key(protocol, pool), VOLUME_CACHE)

    def delete_volume_data(self, protocol: str, pool: str) -> bool:
        with self._lock:
            return self._volume.delete(volume_key(protocol, pool))

    def set_user_metrics(self, protocol: str, data: MetricsData) -> UserMetricsEntry:
        """Store user activity figures of ``protocol``."""
        with self._lock:
            return self._user_metrics.put(user_metrics_key(protocol), data, protocol=protocol)

    def get_user_metrics(self, protocol: str) -> Optional[UserMetricsEntry]:
        with self._lock:
            return self._view_lookup(self._user_metrics, user_metrics_key(protocol), USER_METRICS_CACHE)

    def delete_user_metrics(self, protocol: str) -> bool:
        with self._lock:
            return self._user_metrics.delete(user_metrics_key(protocol))

    def set_aggregated_metrics(self, chain: str, data: MetricsData) -> AggregatedMetrics:
        """Store the cross-protocol totals of ``chain``."""
        with self._lock:
            return self._aggregated.put(aggregated_key(chain), data, chain=chain)

    def get_aggregated_metrics(self, chain: str) -> Optional[AggregatedMetrics]:
        with self._lock:
            return self._view_lookup(self._aggregated, aggregated_key(chain), AGGREGATED_CACHE)

    def delete_aggregated_metrics(self, chain: str) -> bool:
        with self._lock:
            return self._aggregated.delete(aggregated_key(chain))

    def _view_lookup(self, view, key: str, cache_type: str):
        record = view.get(key)
        # View lookups feed Prometheus only; hit_rate covers the generic store
        if self.monitor is not None:
            if record is None:
                self.monitor.record_miss(cache_type)
            else:
                self.monitor.record_hit(cache_type)
        return record

    # Expiration, pruning and statistics

    def run_cleanup(self) -> int:
        """
        Remove every generic entry whose expiry has passed.

        Typed views are swept too when ``view_ttl`` is configured. Called by
        the cleanup timer; failures are logged, never raised.

        Returns:
            Number of entries removed
        """
        try:
            with self._lock:
                now = self._clock()
                expired = [key for key, entry in self._entries.items() if entry.expires_at < now]
                for key in expired:
                    del self._entries[key]
                removed = len(expired)

                if self.config.view_ttl is not None:
                    removed += self._volume.purge_expired(now)
                    removed += self._user_metrics.purge_expired(now)
                    removed += self._aggregated.purge_expired(now)

                self._swept += removed
                if self.monitor is not None:
                    self.monitor.record_expired(removed)
        except Exception as e:
            log_error(logger, e, {"operation": "cleanup"})
            return 0

        if removed > 0:
            logger.info("cache_swept", removed=removed)
        return removed

    def _prune_if_needed(self) -> None:
        # Caller holds the lock
        max_entries = self.config.max_entries
        if len(self._entries) <= max_entries:
            return

        prune_count = math.ceil(max_entries * PRUNE_FRACTION)
        if prune_count <= 0:
            return

        oldest = heapq.nsmallest(
            prune_count, self._entries.items(), key=lambda item: item[1].last_accessed
        )
        for key, _ in oldest:
            del self._entries[key]

        self._evictions += len(oldest)
        if self.monitor is not None:
            self.monitor.record_evictions(len(oldest))
        logger.info("cache_pruned", evicted=len(oldest), remaining=len(self._entries))

    def _record_hit(self, cache_type: str) -> None:
        if not self.config.enable_stats:
            return
        self._hits += 1
        if self.monitor is not None:
            self.monitor.record_hit(cache_type)

    def _record_miss(self, cache_type: str) -> None:
        if not self.config.enable_stats:
            return
        self._misses += 1
        if self.monitor is not None:
            self.monitor.record_miss(cache_type)

    def get_stats(self) -> CacheStats:
        """
        Get cache statistics.

        ``expired_entries`` counts generic entries past their expiry that the
        sweep has not removed yet. ``average_ttl`` is the mean TTL of the
        entries currently held, or the default TTL when the store is empty.
        """
        with self._lock:
            now = self._clock()
            entries = list(self._entries.values())
            expired = sum(1 for entry in entries if entry.expires_at < now)
            average_ttl = (
                sum(entry.ttl for entry in entries) / len(entries)
                if entries else self.config.default_ttl
            )

            hits, misses = (self._hits, self._misses) if self.config.enable_stats else (0, 0)
            total = hits + misses

            stats = CacheStats(
                total_entries=len(entries),
                expired_entries=expired,
                volume_entries=len(self._volume),
                user_metrics_entries=len(self._user_metrics),
                aggregated_entries=len(self._aggregated),
                average_ttl=average_ttl,
                hit_rate=hits / total * 100 if total > 0 else 0.0,
                hits=hits,
                misses=misses,
                evictions=self._evictions,
                swept=self._swept,
            )

        if self.monitor is not None:
            self.monitor.update_size(GENERIC_CACHE, stats.total_entries)
            self.monitor.update_size(VOLUME_CACHE, stats.volume_entries)
            self.monitor.update_size(USER_METRICS_CACHE, stats.user_metrics_entries)
            self.monitor.update_size(AGGREGATED_CACHE, stats.aggregated_entries)
        return stats

    def close(self) -> None:
        """Stop the cleanup timer. Cached data stays readable; safe to call twice."""
        if self._closed:
            return
        self._cleanup_timer.stop()
        self._closed = True
        logger.info("cache_closed")


def cached(store: CacheStore, ttl: Optional[float] = None, prefix: Optional[str] = None):
    """
    Decorator for read-through caching of function results in ``store``.

    The key is derived from the function's qualified name (or ``prefix``)
    and its arguments. Results must be JSON-compatible.

    Args:
        store: Cache store to read from and write to
        ttl: Cache time-to-live in seconds, or None to use the store default
        prefix: Readable key prefix, defaults to module and qualified name
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        namespace = prefix or f"{func.__module__}.{func.__qualname__}"

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            key_parts = [str(args)] if args else []
            if kwargs:
                # Sort kwargs by key for consistent hashing
                key_parts.append(str(sorted(kwargs.items())))
            digest = hashlib.md5(":".join(key_parts).encode()).hexdigest()
            key = cache_key(namespace, digest)

            cached_result = store.get(key, _MISSING)
            if cached_result is not _MISSING:
                logger.debug("cache_hit", function=func.__name__, key=key)
                return cast(T, cached_result)

            result = func(*args, **kwargs)
            store.set(key, result, ttl)
            logger.debug("cache_miss", function=func.__name__, key=key)
            return result

        return wrapper
    return decorator


def cache_key(*args: Any, **kwargs: Any) -> str:
    """
    Generate a cache key from arguments.

    The first argument is the namespace; remaining arguments and sorted
    keyword arguments are appended, joined with colons.
    """
    if not args:
        return ""

    key_parts = [str(arg) for arg in args]
    for k, v in sorted(kwargs.items()):
        key_parts.append(f"{k}={v}")
    return ":".join(key_parts)
