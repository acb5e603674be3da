"""Key/value cache with TTL, backed by process memory or Redis"""

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import redis

from ledger_bank_api.config import Settings, settings
from ledger_bank_api.infrastructure.observability.metrics import cache_hits_counter, cache_misses_counter

logger = logging.getLogger(__name__)


class MemoryCache:
    """Thread-safe in-process cache. Expired entries are dropped lazily or by ``cleanup``."""

    backend = "memory"

    def __init__(self, default_ttl: int = 300):
        self.default_ttl = default_ttl
        self._data: Dict[str, tuple] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _expired(self, expires_at: Optional[float], now: float) -> bool:
        return expires_at is not None and expires_at <= now

    def get(self, key: str) -> Optional[Any]:
        now = time.monotonic()
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self._misses += 1
                cache_misses_counter.labels(backend=self.backend).inc()
                return None
            value, expires_at = entry
            if self._expired(expires_at, now):
                del self._data[key]
                self._evictions += 1
                self._misses += 1
                cache_misses_counter.labels(backend=self.backend).inc()
                return None
            self._hits += 1
            cache_hits_counter.labels(backend=self.backend).inc()
            return value

    def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        expires_at = time.monotonic() + ttl if ttl > 0 else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def get_or_put(self, key: str, fun: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        value = self.get(key)
        if value is None:
            value = fun()
            if value is not None:
                self.put(key, value, ttl)
        return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._data if key.startswith(prefix)]
            for key in keys:
                del self._data[key]
        return len(keys)

    def incr(self, key: str, ttl: Optional[int] = None) -> int:
        """Increment a counter; the TTL is set when the counter is created"""
        now = time.monotonic()
        with self._lock:
            entry = self._data.get(key)
            if entry is None or self._expired(entry[1], now):
                ttl = self.default_ttl if ttl is None else ttl
                self._data[key] = (1, now + ttl if ttl > 0 else None)
                return 1
            value, expires_at = entry
            self._data[key] = (value + 1, expires_at)
            return value + 1

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def cleanup(self) -> int:
        """Drop every expired entry, returning how many were removed"""
        now = time.monotonic()
        with self._lock:
            expired = [key for key, (_, expires_at) in self._data.items() if self._expired(expires_at, now)]
            for key in expired:
                del self._data[key]
            self._evictions += len(expired)
        return len(expired)

    def ping(self) -> bool:
        return True

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "backend": self.backend,
                "size": len(self._data),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_ratio": round(self._hits / lookups * 100, 2) if lookups else 0.0,
            }


class RedisCache:
    """Redis-backed cache. Values are stored as JSON."""

    backend = "redis"

    def __init__(self, client: redis.Redis, default_ttl: int = 300, namespace: str = "ledger"):
        self.client = client
        self.default_ttl = default_ttl
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, default_ttl: int = 300) -> "RedisCache":
        return cls(redis.Redis.from_url(url, decode_responses=True), default_ttl)

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(self._key(key))
        if raw is None:
            cache_misses_counter.labels(backend=self.backend).inc()
            return None
        cache_hits_counter.labels(backend=self.backend).inc()
        return json.loads(raw)

    def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        payload = json.dumps(value, default=str)
        if ttl > 0:
            self.client.setex(self._key(key), ttl, payload)
        else:
            self.client.set(self._key(key), payload)

    def get_or_put(self, key: str, fun: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        value = self.get(key)
        if value is None:
            value = fun()
            if value is not None:
                self.put(key, value, ttl)
        return value

    def delete(self, key: str) -> None:
        self.client.delete(self._key(key))

    def delete_prefix(self, prefix: str) -> int:
        keys = list(self.client.scan_iter(match=self._key(prefix) + "*"))
        if keys:
            self.client.delete(*keys)
        return len(keys)

    def incr(self, key: str, ttl: Optional[int] = None) -> int:
        ttl = self.default_ttl if ttl is None else ttl
        pipe = self.client.pipeline()
        pipe.incr(self._key(key))
        pipe.expire(self._key(key), ttl, nx=True)
        count, _ = pipe.execute()
        return int(count)

    def clear(self) -> None:
        self.delete_prefix("")

    def cleanup(self) -> int:
        # Redis expires keys itself
        return 0

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    def stats(self) -> Dict[str, Any]:
        try:
            info = self.client.info()
        except redis.RedisError as e:
            logger.warning(f"Redis stats failed: {e}")
            return {"backend": self.backend, "error": str(e)}
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "backend": self.backend,
            "used_memory": info.get("used_memory_human", "0B"),
            "hits": hits,
            "misses": misses,
            "hit_ratio": round(hits / max(1, hits + misses) * 100, 2),
        }


def build_cache(config: Settings = settings):
    """Create the cache adapter selected by ``cache_backend``"""
    if config.cache_backend == "redis":
        return RedisCache.from_url(config.redis_url, config.cache_default_ttl)
    return MemoryCache(config.cache_default_ttl)
