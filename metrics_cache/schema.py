"""Records held by the metrics cache."""
import time
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


@dataclass
class CacheEntry:
    """A generic store entry. ``payload`` is the JSON snapshot of the value."""
    key: str
    payload: str
    ttl: float
    created_at: float
    updated_at: float
    expires_at: float
    last_accessed: float
    access_count: int = 1

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class MetricsRecord(BaseModel):
    """Common fields of every typed view record."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    id: str
    timestamp: float = Field(default_factory=time.time)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    expires_at: Optional[float] = None


class VolumeEntry(MetricsRecord):
    """Trading volume of a single pool, keyed by ``protocol:pool``."""

    protocol: str
    pool: str
    volume_24h: float = Field(ge=0)
    volume_7d: float = Field(ge=0)
    volume_30d: float = Field(ge=0)
    concentration_risk: float


class UserMetricsEntry(MetricsRecord):
    """User activity of a protocol."""

    protocol: str
    unique_users_24h: int = Field(ge=0)
    unique_users_7d: int = Field(ge=0)
    unique_users_30d: int = Field(ge=0)
    active_wallets: int = Field(ge=0)
    new_users: int = Field(ge=0)
    user_retention: float


class AggregatedMetrics(MetricsRecord):
    """Totals across every protocol on a chain."""

    chain: str
    total_volume_24h: float = Field(ge=0)
    total_volume_7d: float = Field(ge=0)
    total_volume_30d: float = Field(ge=0)
    total_users_24h: int = Field(ge=0)
    total_users_7d: int = Field(ge=0)
    total_users_30d: int = Field(ge=0)
    protocol_count: int = Field(ge=0)


class SyncStats(BaseModel):
    """Progress of ``BackgroundSyncService``."""

    last_sync: float = 0.0
    successful_syncs: int = 0
    failed_syncs: int = 0
    protocols_updated: int = 0
    avg_sync_time: float = 0.0
    errors: List[str] = Field(default_factory=list)


class CacheStats(BaseModel):
    """Snapshot returned by ``CacheStore.get_stats``."""

    total_entries: int = 0
    expired_entries: int = 0
    volume_entries: int = 0
    user_metrics_entries: int = 0
    aggregated_entries: int = 0
    average_ttl: float = 0.0
    hit_rate: float = 0.0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    swept: int = 0
