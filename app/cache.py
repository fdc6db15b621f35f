"""
TTL caching for read-mostly lookups (Clerk users, JWKS documents)

Callers receive a cache object through their constructor or the get_cache dependency;
entries expire after their TTL and are evicted lazily on read.
"""

import json
import logging
import os
import time
from typing import Any, Optional

import redis
from fastapi import Request

from .config import CACHE_DEFAULT_TTL, REDIS_URL

logger = logging.getLogger(__name__)

redis_client = None


def get_redis_client() -> redis.Redis:
    """Get or create the shared Redis client"""
    global redis_client

    if redis_client is None:
        redis_url = REDIS_URL or os.getenv("REDIS_URL")
        if not redis_url:
            raise RuntimeError("REDIS_URL not configured")

        # Mask password in URL for logging
        if "@" in redis_url:
            url_parts = redis_url.split("@")
            protocol = url_parts[0].split(":")[0]
            masked_url = f"{protocol}:****@{url_parts[1]}"
        else:
            masked_url = "****"
        logger.info(f"📡 Using Redis URL connection: {masked_url}")

        redis_client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=15,
            socket_timeout=30,
            retry_on_timeout=True,
        )
    return redis_client


class MemoryTTLCache:
    """In-process cache with per-entry expiry"""

    def __init__(self, default_ttl: int = CACHE_DEFAULT_TTL, max_entries: int = 1024):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"❌ Cache MISS: {key}")
            return None

        expires_at, value = entry
        if expires_at <= time.monotonic():
            del self._entries[key]
            logger.debug(f"⌛ Cache EXPIRED: {key}")
            return None

        logger.debug(f"✅ Cache HIT: {key}")
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ttl = self.default_ttl if ttl is None else ttl
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._evict()
        self._entries[key] = (time.monotonic() + ttl, value)
        logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
        return True

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def _evict(self) -> None:
        """Drop expired entries, then the entry closest to expiry if still full"""
        now = time.monotonic()
        for key in [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]
        if len(self._entries) >= self.max_entries:
            soonest = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[soonest]


class RedisTTLCache:
    """Redis-backed cache with JSON serialization; any Redis failure reads as a miss"""

    def __init__(self, client=None, default_ttl: int = CACHE_DEFAULT_TTL, prefix: str = "cache:"):
        self.redis_client = client
        self.default_ttl = default_ttl
        self.prefix = prefix

    def _get_client(self):
        """Lazy load Redis client"""
        if self.redis_client is None:
            try:
                self.redis_client = get_redis_client()
            except Exception as e:
                logger.warning(f"⚠️ Redis cache unavailable: {e}")
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.get(self.prefix + key)
            if value:
                logger.debug(f"✅ Cache HIT: {key}")
                return json.loads(value)
            logger.debug(f"❌ Cache MISS: {key}")
            return None
        except Exception as e:
            logger.error(f"❌ Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        client = self._get_client()
        if not client:
            return False

        ttl = self.default_ttl if ttl is None else ttl
        try:
            client.setex(self.prefix + key, ttl, json.dumps(value))
            logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False

    def invalidate(self, key: str) -> bool:
        client = self._get_client()
        if not client:
            return False

        try:
            return bool(client.delete(self.prefix + key))
        except Exception as e:
            logger.error(f"❌ Cache delete error for {key}: {e}")
            return False

    def invalidate_prefix(self, prefix: str) -> int:
        client = self._get_client()
        if not client:
            return 0

        try:
            keys = list(client.scan_iter(match=f"{self.prefix}{prefix}*"))
            return client.delete(*keys) if keys else 0
        except Exception as e:
            logger.error(f"❌ Cache delete pattern error for {prefix}: {e}")
            return 0


def build_cache():
    """Redis when configured, otherwise an in-process cache"""
    if REDIS_URL:
        logger.info("🗄️ Using Redis cache backend")
        return RedisTTLCache()
    logger.info("🗄️ REDIS_URL not set, using in-process cache backend")
    return MemoryTTLCache()


def get_cache(request: Request):
    """FastAPI dependency returning the cache owned by the running application"""
    return request.app.state.cache
