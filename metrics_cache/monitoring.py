"""
Prometheus export for the metrics cache.

``CacheStore`` reports every hit, miss, eviction and sweep to a
``CacheMonitor`` when statistics are enabled; the monitor forwards them to
process-wide Prometheus collectors labelled by cache namespace.
"""
import time
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog
from prometheus_client import Counter, Gauge

if TYPE_CHECKING:
    from .core import CacheStore

logger = structlog.get_logger()

CACHE_HITS = Counter('metrics_cache_hits_total', 'Total number of cache hits', ['cache_type'])
CACHE_MISSES = Counter('metrics_cache_misses_total', 'Total number of cache misses', ['cache_type'])
CACHE_EVICTIONS = Counter('metrics_cache_evictions_total',
                          'Entries removed by capacity pruning', ['cache_type'])
CACHE_EXPIRED = Counter('metrics_cache_expired_total',
                        'Expired entries removed by the cleanup sweep', ['cache_type'])
CACHE_ITEMS = Gauge('metrics_cache_items', 'Current number of items in cache', ['cache_type'])

# Cache namespaces
GENERIC_CACHE = 'generic'
VOLUME_CACHE = 'volume'
USER_METRICS_CACHE = 'user_metrics'
AGGREGATED_CACHE = 'aggregated'


class CacheMonitor:
    """Forwards cache events of one store to the Prometheus collectors."""

    def __init__(self):
        self.start_time = time.time()
        self.store: Optional["CacheStore"] = None

    def attach(self, store: "CacheStore") -> None:
        self.store = store

    def record_hit(self, cache_type: str = GENERIC_CACHE) -> None:
        CACHE_HITS.labels(cache_type=cache_type).inc()

    def record_miss(self, cache_type: str = GENERIC_CACHE) -> None:
        CACHE_MISSES.labels(cache_type=cache_type).inc()

    def record_evictions(self, count: int, cache_type: str = GENERIC_CACHE) -> None:
        if count:
            CACHE_EVICTIONS.labels(cache_type=cache_type).inc(count)

    def record_expired(self, count: int, cache_type: str = GENERIC_CACHE) -> None:
        if count:
            CACHE_EXPIRED.labels(cache_type=cache_type).inc(count)

    def update_size(self, cache_type: str, size: int) -> None:
        CACHE_ITEMS.labels(cache_type=cache_type).set(size)

    def get_metrics_report(self) -> Dict[str, Any]:
        """
        Combine the attached store's statistics with monitor uptime.

        Returns:
            Dictionary suitable for structured logging
        """
        report: Dict[str, Any] = {'uptime_seconds': time.time() - self.start_time}
        if self.store is not None:
            report.update(self.store.get_stats().model_dump())
        return report

    def log_metrics(self) -> None:
        """Log current cache metrics."""
        logger.info("cache_metrics_report", **self.get_metrics_report())
