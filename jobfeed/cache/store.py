"""
Key-value stores the cache manager can sit on.

The store only moves bytes with an expiry; envelopes, namespacing and
freshness are the manager's job.
"""
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import redis

from jobfeed.errors import CacheUnavailable

logger = logging.getLogger("cache.store")


class CacheStore(Protocol):
    """
    Interface for key-value stores with per-entry expiry.

    Implementations:
    - InMemoryCacheStore: process-local dict (tests, local development)
    - RedisCacheStore: shared Redis instance (deployments)

    Failures are raised as CacheUnavailable. No atomicity across keys.
    """

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def list(self, prefix: str) -> List[str]:
        ...


class InMemoryCacheStore:
    """
    Thread-safe in-process store.

    Expired entries are dropped when touched or listed. The clock is
    injectable so tests can move time forward.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._data: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _alive(self, expires_at: Optional[float]) -> bool:
        return expires_at is None or self._clock() < expires_at

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if not self._alive(expires_at):
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds and ttl_seconds > 0 else None
        with self._lock:
            self._data[key] = (bytes(value), expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def list(self, prefix: str) -> List[str]:
        with self._lock:
            expired = [k for k, (_, exp) in self._data.items() if not self._alive(exp)]
            for key in expired:
                del self._data[key]
            return sorted(k for k in self._data if k.startswith(prefix))

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class RedisCacheStore:
    """
    Store backed by a redis-py client.

    Usage:
        store = RedisCacheStore.from_url("redis://localhost:6379/0")
    """

    def __init__(self, client, scan_count: int = 500):
        """
        Args:
            client: A redis.Redis (or compatible) client
            scan_count: COUNT hint for SCAN when listing keys
        """
        self._redis = client
        self._scan_count = scan_count

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisCacheStore":
        return cls(redis.Redis.from_url(url, **kwargs))

    def _call(self, operation: str, fn: Callable, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except redis.RedisError as e:
            logger.warning(f"Redis {operation} failed: {e}")
            raise CacheUnavailable(f"redis {operation} failed: {e}", cause=e) from e

    def get(self, key: str) -> Optional[bytes]:
        value = self._call("get", self._redis.get, key)
        if value is None:
            return None
        if isinstance(value, str):
            return value.encode("utf-8")
        return value

    def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if ttl_seconds and ttl_seconds > 0:
            self._call("set", self._redis.set, key, value, ex=int(ttl_seconds))
        else:
            self._call("set", self._redis.set, key, value)

    def delete(self, key: str) -> None:
        self._call("delete", self._redis.delete, key)

    def list(self, prefix: str) -> List[str]:
        keys = self._call(
            "scan",
            lambda: list(self._redis.scan_iter(match=f"{prefix}*", count=self._scan_count)),
        )
        return sorted(k.decode("utf-8") if isinstance(k, bytes) else k for k in keys)
