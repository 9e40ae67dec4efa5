"""
Redis caching layer for profile briefs and dashboard stats
"""
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import json
import logging

import redis.asyncio as redis

from ..config import settings
from ..domain.models import Gender, Profile, ProfileBrief
from ..domain.repositories import IProfileRepository

logger = logging.getLogger(__name__)


def redis_url() -> str:
    return f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"


class RedisCache:
    """Redis cache manager for profile data"""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.redis: Optional[redis.Redis] = client

    async def connect(self):
        """Connect to Redis"""
        if not settings.REDIS_ENABLED:
            logger.info("Redis caching is disabled")
            return

        try:
            self.redis = redis.from_url(
                redis_url(),
                password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
                encoding="utf-8",
                decode_responses=True,
            )
            # Test connection
            await self.redis.ping()
            logger.info("Connected to Redis successfully")
        except Exception as e:
            logger.warning(f"Failed to connect to Redis: {e}. Continuing without cache.")
            self.redis = None

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("Disconnected from Redis")

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        if not self.redis:
            return None

        try:
            value = await self.redis.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            logger.error(f"Error getting cache key {key}: {e}")
            return None

    async def get_many(self, keys: List[str]) -> List[Optional[Any]]:
        """Get several values in one round trip"""
        if not self.redis or not keys:
            return [None] * len(keys)

        try:
            values = await self.redis.mget(keys)
            return [json.loads(v) if v else None for v in values]
        except Exception as e:
            logger.error(f"Error getting {len(keys)} cache keys: {e}")
            return [None] * len(keys)

    async def set(self, key: str, value: Any, ttl: int = 300):
        """Set value in cache with TTL"""
        if not self.redis:
            return

        try:
            await self.redis.setex(key, ttl, json.dumps(value))
        except Exception as e:
            logger.error(f"Error setting cache key {key}: {e}")

    async def delete(self, key: str):
        """Delete key from cache"""
        if not self.redis:
            return

        try:
            await self.redis.delete(key)
        except Exception as e:
            logger.error(f"Error deleting cache key {key}: {e}")

    # Profile-specific cache methods
    def _brief_key(self, user_id: str) -> str:
        """Generate cache key for a profile brief"""
        return f"am4m:profile_brief:{user_id}"

    def _stats_key(self, user_id: str) -> str:
        """Generate cache key for dashboard stats"""
        return f"am4m:stats:{user_id}"

    async def get_briefs(self, user_ids: List[str]) -> Dict[str, ProfileBrief]:
        """Cached briefs for the ids that are present"""
        values = await self.get_many([self._brief_key(uid) for uid in user_ids])
        return {
            uid: ProfileBrief(**value)
            for uid, value in zip(user_ids, values)
            if value is not None
        }

    async def set_briefs(self, briefs: Dict[str, ProfileBrief]):
        """Cache briefs"""
        for uid, brief in briefs.items():
            await self.set(self._brief_key(uid), asdict(brief), settings.CACHE_TTL_PROFILE_BRIEF)

    async def invalidate_brief(self, user_id: str):
        """Drop a cached brief"""
        await self.delete(self._brief_key(user_id))

    async def get_stats(self, user_id: str) -> Optional[dict]:
        """Get cached dashboard stats"""
        return await self.get(self._stats_key(user_id))

    async def set_stats(self, user_id: str, stats: dict):
        """Cache dashboard stats"""
        await self.set(self._stats_key(user_id), stats, settings.CACHE_TTL_STATS)

    async def invalidate_stats(self, *user_ids: str):
        """Drop cached stats after a connection change"""
        for uid in user_ids:
            await self.delete(self._stats_key(uid))


class CachedProfileRepository(IProfileRepository):
    """Profile repository with briefs served from Redis when possible"""

    def __init__(self, repository: IProfileRepository, cache: RedisCache):
        self.repository = repository
        self.cache = cache

    async def find_by_id(self, user_id: str) -> Optional[Profile]:
        profile = await self.repository.find_by_id(user_id)
        if profile is None:
            await self.cache.invalidate_brief(user_id)
        return profile

    async def get_gender(self, user_id: str) -> Gender:
        return await self.repository.get_gender(user_id)

    async def get_briefs(self, user_ids: Iterable[str]) -> Dict[str, ProfileBrief]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}

        briefs = await self.cache.get_briefs(ids)
        misses = [uid for uid in ids if uid not in briefs]
        if misses:
            fetched = await self.repository.get_briefs(misses)
            await self.cache.set_briefs(fetched)
            briefs.update(fetched)
            logger.debug(f"Profile briefs: {len(ids) - len(misses)} cached, {len(fetched)} fetched")
        return briefs

    async def search(self, viewer_id: str, gender: Gender, **filters) -> List[Profile]:
        return await self.repository.search(viewer_id, gender, **filters)

    async def record_view(self, viewer_id: str, viewed_id: str) -> None:
        await self.repository.record_view(viewer_id, viewed_id)

    async def count_views_since(self, user_id: str, since: datetime) -> int:
        return await self.repository.count_views_since(user_id, since)


# Global cache instance
cache = RedisCache()
