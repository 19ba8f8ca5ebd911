"""
DeFi Metrics Cache

An in-process, time-bounded cache that serves as the read-through store for
computed dashboard metrics: per-pool volume, per-protocol user activity and
per-chain aggregates. It provides:
- A generic key/value store with per-entry TTL and lazy expiry
- Capacity-triggered eviction of the least recently accessed entries
- Typed views for volume, user metrics and aggregated metrics
- A background cleanup sweep and hit/miss statistics
"""

from .core import CacheStore, cached, cache_key
from .exceptions import CacheError, ReadFailure, SerializationError, StorageFailure
from .schema import (
    AggregatedMetrics,
    CacheStats,
    SyncStats,
    UserMetricsEntry,
    VolumeEntry
)
from .settings import CacheConfig, SyncConfig
from .sync import BackgroundSyncService, MetricsSource
from .logging_config import configure_logging

__all__ = [
    'CacheStore',
    'cached',
    'cache_key',
    'CacheError',
    'StorageFailure',
    'SerializationError',
    'ReadFailure',
    'VolumeEntry',
    'UserMetricsEntry',
    'AggregatedMetrics',
    'CacheStats',
    'SyncStats',
    'CacheConfig',
    'SyncConfig',
    'BackgroundSyncService',
    'MetricsSource',
    'configure_logging'
]

__version__ = "0.1.0"
