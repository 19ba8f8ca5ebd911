"""Configuration for the metrics cache and the background sync service.

Both classes read overrides from the environment (and an optional ``.env``
file), e.g. ``METRICS_CACHE_DEFAULT_TTL=60`` or
``METRICS_SYNC_PROTOCOLS='["tinyman"]'``. Durations are in seconds.
"""
from typing import List, Optional

from pydantic import Field, PositiveFloat
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheConfig(BaseSettings):
    """Options recognised by ``CacheStore``."""

    model_config = SettingsConfigDict(
        env_prefix="METRICS_CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    default_ttl: float = Field(default=5 * 60, gt=0, description="TTL applied when set() omits one")
    max_entries: int = Field(default=1000, gt=0, description="Capacity bound that triggers pruning")
    cleanup_interval: float = Field(default=10 * 60, gt=0, description="Sweep period")
    enable_stats: bool = Field(default=True, description="Track hits and misses")
    # None keeps the typed views alive until overwritten or cleared
    view_ttl: Optional[PositiveFloat] = None


class SyncConfig(BaseSettings):
    """Options recognised by ``BackgroundSyncService``."""

    model_config = SettingsConfigDict(
        env_prefix="METRICS_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = True
    interval: float = Field(default=30 * 60, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=5 * 60, ge=0)
    initial_delay: float = Field(default=5.0, ge=0)
    protocols: List[str] = Field(default_factory=lambda: ["folks-finance", "tinyman", "pact"])
    chains: List[str] = Field(default_factory=lambda: ["algorand"])
    enable_aggregated_metrics: bool = True
