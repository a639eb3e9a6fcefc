import logging
from typing import Optional, Protocol

import redis

from .config import REDIS_URL

logger = logging.getLogger(__name__)


class SeedCache(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl: int, nx: bool = False) -> bool: ...

    def expire(self, key: str, ttl: int) -> bool: ...

    def delete(self, *keys: str) -> int: ...


class RedisCache:
    """
    Best-effort string cache on top of redis-py.

    Every failure is logged and swallowed: a get miss and an unreachable
    server look the same to callers.
    """

    def __init__(self, client: Optional[redis.Redis] = None, url: str = REDIS_URL):
        self.client = client if client is not None else redis.Redis.from_url(url, decode_responses=True)

    def get(self, key: str) -> Optional[str]:
        try:
            value = self.client.get(key)
        except redis.RedisError as e:
            logger.warning("Cache get error for %s: %s", key, e)
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def set(self, key: str, value: str, ttl: int, nx: bool = False) -> bool:
        try:
            return bool(self.client.set(key, value, ex=ttl, nx=nx))
        except redis.RedisError as e:
            logger.warning("Cache set error for %s: %s", key, e)
            return False

    def expire(self, key: str, ttl: int) -> bool:
        """Reset the TTL of an existing key; False when the key is gone."""
        try:
            return bool(self.client.expire(key, ttl))
        except redis.RedisError as e:
            logger.warning("Cache expire error for %s: %s", key, e)
            return False

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return self.client.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Cache delete error for %s: %s", keys, e)
            return 0
