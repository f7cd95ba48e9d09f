"""
Tests for the Redis-backed store against an in-process stand-in client.
"""
import fnmatch

import pytest
import redis

from jobfeed.cache import CacheKind, CacheManager, RedisCacheStore
from jobfeed.errors import CacheUnavailable


class FakeRedis:
    """The subset of redis.Redis the store uses, returning bytes like the real client."""

    def __init__(self):
        self.data = {}
        self.expiries = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiries[key] = ex
        return True

    def delete(self, key):
        self.expiries.pop(key, None)
        return 1 if self.data.pop(key, None) is not None else 0

    def scan_iter(self, match=None, count=None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key.encode("utf-8")


class DownRedis:
    def _fail(self, *args, **kwargs):
        raise redis.ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    get = set = delete = scan_iter = _fail


class TestRedisCacheStore:
    def test_set_passes_expiry(self):
        client = FakeRedis()
        store = RedisCacheStore(client)

        store.set("k", b"v", 120)
        store.set("forever", b"v", 0)

        assert store.get("k") == b"v"
        assert client.expiries == {"k": 120, "forever": None}

    def test_list_decodes_keys(self):
        client = FakeRedis()
        store = RedisCacheStore(client)
        for key in ("test_details:2", "test_details:1", "test_listings:1"):
            store.set(key, b"v", 10)

        assert store.list("test_details:") == ["test_details:1", "test_details:2"]

    def test_missing_key(self):
        assert RedisCacheStore(FakeRedis()).get("nope") is None

    @pytest.mark.parametrize("call", [
        lambda store: store.get("k"),
        lambda store: store.set("k", b"v", 10),
        lambda store: store.delete("k"),
        lambda store: store.list("test_"),
    ])
    def test_redis_errors_become_cache_unavailable(self, call):
        with pytest.raises(CacheUnavailable) as exc_info:
            call(RedisCacheStore(DownRedis()))
        assert isinstance(exc_info.value.cause, redis.RedisError)

    def test_from_url_does_not_connect(self):
        store = RedisCacheStore.from_url("redis://localhost:6379/0")
        assert isinstance(store, RedisCacheStore)


class TestManagerOverRedis:
    def test_round_trip(self):
        manager = CacheManager(RedisCacheStore(FakeRedis()), environment="test")
        assert manager.set("k", {"v": 1}, CacheKind.DETAILS)
        assert manager.get("k", CacheKind.DETAILS) == {"v": 1}
        assert manager.get_cache_size()["size_by_kind"] == {"details": 1}
        manager.close()

    def test_outage_is_a_miss(self):
        manager = CacheManager(RedisCacheStore(DownRedis()), environment="test")
        assert manager.get("k", CacheKind.DETAILS) is None
        assert manager.get_or_set("k", CacheKind.DETAILS, lambda: "live") == "live"
        assert manager.health_check().healthy is False
        manager.close()
