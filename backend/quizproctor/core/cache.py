import json
import logging
from typing import Any, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

from .config import settings

logger = logging.getLogger(__name__)


class CacheManager:
    """Async Redis cache for submission results, roster snapshots and notifications.

    Redis is an accelerator, never the source of truth: every failure is
    logged and reported as a miss (``None`` / ``False`` / ``[]``).
    """

    def __init__(self, redis_url: Optional[str] = None, default_ttl: Optional[int] = None):
        self.redis_url = redis_url or settings.redis_url
        self.default_ttl = default_ttl or settings.cache_default_ttl
        self._redis: Optional[aioredis.Redis] = None

    def _client(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
        return self._redis

    def _reset_on(self, error: Exception) -> None:
        # A new client is built on the next call after a broken connection
        if isinstance(error, (RedisConnectionError, RedisTimeoutError)):
            self._redis = None

    @staticmethod
    def _dumps(value: Any) -> str:
        return json.dumps(value, default=str)

    @staticmethod
    def _loads(raw: Optional[str]) -> Any:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Discarding non-JSON cache value: {raw[:80]}")
            return None

    async def aget(self, key: str) -> Optional[Any]:
        try:
            return self._loads(await self._client().get(key))
        except Exception as e:
            logger.warning(f"Cache get failed for '{key}': {e}")
            self._reset_on(e)
            return None

    async def aset(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            return bool(await self._client().setex(key, ttl or self.default_ttl, self._dumps(value)))
        except Exception as e:
            logger.warning(f"Cache set failed for '{key}': {e}")
            self._reset_on(e)
            return False

    async def adelete(self, key: str) -> bool:
        try:
            return bool(await self._client().delete(key))
        except Exception as e:
            logger.warning(f"Cache delete failed for '{key}': {e}")
            self._reset_on(e)
            return False

    async def apush(self, key: str, value: Any, max_length: int, ttl: Optional[int] = None) -> bool:
        """Prepend to a capped list (newest first) and refresh its expiry"""
        try:
            async with self._client().pipeline(transaction=True) as pipe:
                pipe.lpush(key, self._dumps(value))
                pipe.ltrim(key, 0, max_length - 1)
                pipe.expire(key, ttl or self.default_ttl)
                await pipe.execute()
            return True
        except Exception as e:
            logger.warning(f"Cache push failed for '{key}': {e}")
            self._reset_on(e)
            return False

    async def alist(self, key: str, limit: int = 100) -> List[Any]:
        try:
            raw_items = await self._client().lrange(key, 0, limit - 1)
        except Exception as e:
            logger.warning(f"Cache list read failed for '{key}': {e}")
            self._reset_on(e)
            return []
        return [item for item in (self._loads(raw) for raw in raw_items) if item is not None]

    async def ahealth_check(self) -> bool:
        try:
            return bool(await self._client().ping())
        except Exception as e:
            logger.warning(f"Cache health check failed: {e}")
            self._reset_on(e)
            return False

    async def aclose(self) -> None:
        redis, self._redis = self._redis, None
        if redis is not None:
            await redis.aclose()


cache = CacheManager()
