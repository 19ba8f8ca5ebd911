import pytest
from pydantic import ValidationError

from metrics_cache.settings import CacheConfig, SyncConfig


def test_cache_config_defaults():
    config = CacheConfig()
    assert config.default_ttl == 300
    assert config.max_entries == 1000
    assert config.cleanup_interval == 600
    assert config.enable_stats is True
    assert config.view_ttl is None


def test_cache_config_from_environment(monkeypatch):
    monkeypatch.setenv("METRICS_CACHE_DEFAULT_TTL", "45")
    monkeypatch.setenv("METRICS_CACHE_ENABLE_STATS", "false")

    config = CacheConfig()
    assert config.default_ttl == 45
    assert config.enable_stats is False


def test_cache_config_validation():
    with pytest.raises(ValidationError):
        CacheConfig(max_entries=0)
    with pytest.raises(ValidationError):
        CacheConfig(cleanup_interval=-1)
    with pytest.raises(ValidationError):
        CacheConfig(view_ttl=0)


def test_sync_config(monkeypatch):
    monkeypatch.setenv("METRICS_SYNC_PROTOCOLS", '["tinyman"]')
    config = SyncConfig()
    assert config.protocols == ["tinyman"]
    assert config.chains == ["algorand"]
    assert config.retry_attempts == 3

    with pytest.raises(ValidationError):
        SyncConfig(retry_attempts=0)


def test_store_overrides_config(make_store):
    store = make_store(default_ttl=12, max_entries=7)
    assert store.config.default_ttl == 12
    assert store.config.max_entries == 7
    assert store.config.enable_stats is True
