import json

import redis

from app.cache import MemoryTTLCache, RedisTTLCache


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    def scan_iter(self, match):
        prefix = match.rstrip("*")
        return [key for key in self.store if key.startswith(prefix)]


class BrokenRedis:
    def get(self, key):
        raise redis.ConnectionError("connection refused")

    def setex(self, key, ttl, value):
        raise redis.ConnectionError("connection refused")


def test_memory_cache_hit_and_expiry():
    cache = MemoryTTLCache(default_ttl=60)

    cache.set("clerk:user:1", {"id": "user_1"})
    cache.set("clerk:jwks", {"keys": []}, ttl=0)

    assert cache.get("clerk:user:1") == {"id": "user_1"}
    assert cache.get("clerk:jwks") is None
    assert cache.get("missing") is None


def test_memory_cache_invalidation():
    cache = MemoryTTLCache()
    cache.set("clerk:user:1", 1)
    cache.set("clerk:user:2", 2)
    cache.set("other", 3)

    assert cache.invalidate("clerk:user:1") is True
    assert cache.invalidate("clerk:user:1") is False
    assert cache.invalidate_prefix("clerk:") == 1
    assert cache.get("other") == 3


def test_memory_cache_evicts_when_full():
    cache = MemoryTTLCache(default_ttl=60, max_entries=2)
    cache.set("a", 1, ttl=10)
    cache.set("b", 2, ttl=100)

    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_redis_cache_round_trips_json_with_ttl():
    client = FakeRedis()
    cache = RedisTTLCache(client=client, default_ttl=120)

    assert cache.set("clerk:user:1", {"id": "user_1"}) is True

    assert json.loads(client.store["cache:clerk:user:1"]) == {"id": "user_1"}
    assert client.ttls["cache:clerk:user:1"] == 120
    assert cache.get("clerk:user:1") == {"id": "user_1"}
    assert cache.invalidate_prefix("clerk:") == 1
    assert cache.get("clerk:user:1") is None


def test_redis_failures_read_as_misses():
    cache = RedisTTLCache(client=BrokenRedis())

    assert cache.get("clerk:jwks") is None
    assert cache.set("clerk:jwks", {"keys": []}) is False
