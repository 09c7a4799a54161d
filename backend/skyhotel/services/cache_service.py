"""Redis cache service for provider room searches shown to agents."""

import json
import logging
from datetime import date
from typing import Any

import redis.asyncio as redis

from skyhotel.config import settings

logger = logging.getLogger(__name__)


class CacheService:
    """Redis-backed cache. Every failure degrades to a cache miss."""

    def __init__(self):
        self._redis: redis.Redis | None = None

    async def _get_redis(self) -> redis.Redis | None:
        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    settings.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._redis.ping()
            except Exception as e:
                logger.warning(f"Redis unavailable, cache disabled: {e}")
                self._redis = None
                return None
        return self._redis

    async def get(self, key: str) -> Any | None:
        """Get a value from cache. Returns None on miss or error."""
        try:
            r = await self._get_redis()
            if r is None:
                return None
            raw = await r.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except Exception:
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Set a value with TTL (defaults to the room search TTL). Returns False on error."""
        try:
            r = await self._get_redis()
            if r is None:
                return False
            await r.set(key, json.dumps(value, default=str), ex=ttl or settings.hotel_search_cache_ttl)
            return True
        except Exception:
            return False

    def rooms_key(self, chain_id: str, check_in: date, check_out: date) -> str:
        return f"rooms:{chain_id}:{check_in.isoformat()}:{check_out.isoformat()}"

    async def get_rooms(self, chain_id: str, check_in: date, check_out: date) -> list[dict] | None:
        return await self.get(self.rooms_key(chain_id, check_in, check_out))

    async def set_rooms(self, chain_id: str, check_in: date, check_out: date, data: list[dict]):
        await self.set(self.rooms_key(chain_id, check_in, check_out), data)

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None


cache_service = CacheService()
