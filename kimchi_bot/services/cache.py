"""Redis read models and the per-(user, symbol) trade execution lock.

Keys:
    premium:{symbol}:latest            latest PremiumResult, TTL
    monitoring:latest                  latest cycle summary, TTL
    intensity:{symbol}                 global-scope intensity mirror, TTL
    intensity:user:{user_id}:{symbol}  user-scope intensity mirror, TTL
    trading_opportunities              newest-first list, bounded
    lock:trade:{user_id}:{symbol}      ownership token, SET NX EX
"""

import json
import logging
import uuid
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from kimchi_bot.config import settings
from kimchi_bot.utils.constants import GLOBAL_SCOPE

logger = logging.getLogger(__name__)

_redis: aioredis.Redis | None = None

OPPORTUNITIES_KEY = "trading_opportunities"
SUMMARY_KEY = "monitoring:latest"


def get_redis() -> aioredis.Redis:
    """Shared client for the configured Redis URL."""
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis():
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def intensity_key(scope_key: str, symbol: str) -> str:
    if scope_key == GLOBAL_SCOPE:
        return f"intensity:{symbol}"
    return f"intensity:{scope_key}:{symbol}"


class ReadModelCache:
    """JSON read models consumed by dashboards and the HTTP API."""

    def __init__(
        self,
        client: aioredis.Redis | None = None,
        ttl_seconds: int | None = None,
        history_size: int | None = None,
    ):
        self.redis = client or get_redis()
        self.ttl = ttl_seconds or settings.cache_ttl_seconds
        self.history_size = history_size or settings.opportunity_history_size

    async def _set_json(self, key: str, value: Any):
        await self.redis.set(key, json.dumps(value, default=str), ex=self.ttl)

    async def _get_json(self, key: str) -> Any:
        raw = await self.redis.get(key)
        return json.loads(raw) if raw else None

    async def set_premium(self, symbol: str, premium: dict):
        await self._set_json(f"premium:{symbol}:latest", premium)

    async def get_premium(self, symbol: str) -> dict | None:
        return await self._get_json(f"premium:{symbol}:latest")

    async def set_summary(self, summary: dict):
        await self._set_json(SUMMARY_KEY, summary)

    async def get_summary(self) -> dict | None:
        return await self._get_json(SUMMARY_KEY)

    async def set_intensity(self, scope_key: str, symbol: str, intensity: dict):
        await self._set_json(intensity_key(scope_key, symbol), intensity)

    async def get_intensity(self, scope_key: str, symbol: str) -> dict | None:
        return await self._get_json(intensity_key(scope_key, symbol))

    async def push_opportunity(self, opportunity: dict):
        """Prepend to the bounded newest-first history."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lpush(OPPORTUNITIES_KEY, json.dumps(opportunity, default=str))
            pipe.ltrim(OPPORTUNITIES_KEY, 0, self.history_size - 1)
            await pipe.execute()

    async def get_opportunities(self, limit: int | None = None) -> list[dict]:
        end = (limit or self.history_size) - 1
        raw = await self.redis.lrange(OPPORTUNITIES_KEY, 0, end)
        return [json.loads(item) for item in raw]


class ExecutionLock:
    """Mutual exclusion for one (user, symbol) trade with an ownership token.

    Usage:
        lock = ExecutionLock(redis, user_id, "BTC")
        if not await lock.acquire():
            ...  # already in progress
        try:
            ...
        finally:
            await lock.release()
    """

    def __init__(
        self,
        client: aioredis.Redis,
        user_id: int | None,
        symbol: str,
        ttl_seconds: int | None = None,
    ):
        self.redis = client
        self.key = f"lock:trade:{user_id}:{symbol}"
        self.ttl = ttl_seconds or settings.trade_lock_ttl_seconds
        self.token = str(uuid.uuid4())
        self.acquired = False

    async def acquire(self) -> bool:
        self.acquired = bool(await self.redis.set(self.key, self.token, nx=True, ex=self.ttl))
        return self.acquired

    async def release(self) -> bool:
        """Delete the key only if it still holds our token.

        A lock that expired and was re-acquired by a later attempt is left alone.
        """
        if not self.acquired:
            return False
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(self.key)
                current = await pipe.get(self.key)
                if current != self.token:
                    await pipe.unwatch()
                    logger.warning(f"Lock {self.key} no longer owned, skipping release")
                    return False
                pipe.multi()
                pipe.delete(self.key)
                await pipe.execute()
            except WatchError:
                logger.warning(f"Lock {self.key} changed during release, skipping")
                return False
        self.acquired = False
        return True
