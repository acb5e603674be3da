"""Unit tests for the cache adapters"""

import json
from unittest.mock import MagicMock

import pytest
import redis

from ledger_bank_api.infrastructure import cache as cache_module
from ledger_bank_api.infrastructure.cache import MemoryCache, RedisCache


@pytest.fixture
def clock(monkeypatch):
    """Controllable monotonic clock"""
    now = [1000.0]
    monkeypatch.setattr(cache_module.time, "monotonic", lambda: now[0])
    return now


def test_put_and_get():
    cache = MemoryCache()
    cache.put("a", {"x": 1})
    assert cache.get("a") == {"x": 1}
    assert cache.get("missing") is None


def test_entries_expire(clock):
    cache = MemoryCache(default_ttl=10)
    cache.put("a", 1)
    clock[0] += 9
    assert cache.get("a") == 1
    clock[0] += 1
    assert cache.get("a") is None
    assert cache.stats()["evictions"] == 1


def test_zero_ttl_never_expires(clock):
    cache = MemoryCache()
    cache.put("a", 1, ttl=0)
    clock[0] += 10**6
    assert cache.get("a") == 1


def test_get_or_put_calls_loader_once():
    cache = MemoryCache()
    loader = MagicMock(return_value=42)
    assert cache.get_or_put("k", loader) == 42
    assert cache.get_or_put("k", loader) == 42
    loader.assert_called_once()


def test_get_or_put_does_not_store_none():
    cache = MemoryCache()
    assert cache.get_or_put("k", lambda: None) is None
    assert cache.stats()["size"] == 0


def test_delete_and_delete_prefix():
    cache = MemoryCache()
    cache.put("account:1", 1)
    cache.put("account:2", 2)
    cache.put("banks:active", [])
    cache.delete("account:1")
    assert cache.get("account:1") is None
    assert cache.delete_prefix("account:") == 1
    assert cache.get("banks:active") == []


def test_incr_starts_window_and_resets_after_ttl(clock):
    cache = MemoryCache()
    assert cache.incr("rl", ttl=60) == 1
    assert cache.incr("rl", ttl=60) == 2
    clock[0] += 60
    assert cache.incr("rl", ttl=60) == 1


def test_cleanup_removes_expired(clock):
    cache = MemoryCache()
    cache.put("short", 1, ttl=5)
    cache.put("long", 2, ttl=500)
    clock[0] += 10
    assert cache.cleanup() == 1
    assert cache.stats()["size"] == 1


def test_stats_hit_ratio():
    cache = MemoryCache()
    cache.put("a", 1)
    cache.get("a")
    cache.get("b")
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_ratio"] == 50.0
    assert stats["backend"] == "memory"


def test_redis_cache_namespaces_and_serializes():
    client = MagicMock()
    cache = RedisCache(client, default_ttl=30)
    cache.put("account:1", {"balance": "10.00"})
    client.setex.assert_called_once_with("ledger:account:1", 30, json.dumps({"balance": "10.00"}))

    client.get.return_value = json.dumps({"balance": "10.00"})
    assert cache.get("account:1") == {"balance": "10.00"}
    client.get.assert_called_with("ledger:account:1")


def test_redis_cache_incr_sets_ttl_only_on_new_key():
    client = MagicMock()
    pipe = client.pipeline.return_value
    pipe.execute.return_value = [3, False]
    cache = RedisCache(client)
    assert cache.incr("rate_limit:x", ttl=60) == 3
    pipe.incr.assert_called_once_with("ledger:rate_limit:x")
    pipe.expire.assert_called_once_with("ledger:rate_limit:x", 60, nx=True)


def test_redis_ping_failure_is_reported_as_unhealthy():
    client = MagicMock()
    client.ping.side_effect = redis.ConnectionError("down")
    assert RedisCache(client).ping() is False


def test_redis_stats_failure_is_reported_not_raised():
    client = MagicMock()
    client.info.side_effect = redis.ConnectionError("down")
    stats = RedisCache(client).stats()
    assert stats["backend"] == "redis"
    assert "down" in stats["error"]
