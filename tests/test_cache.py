import json

import pytest

from am4m_social.infrastructure.cache import CachedProfileRepository, RedisCache

from .conftest import USER_X, USER_Y, USER_Z


class StubRedis:
    """The handful of redis.asyncio calls the cache makes"""

    def __init__(self):
        self.store = {}
        self.mget_calls = 0

    async def get(self, key):
        return self.store.get(key)

    async def mget(self, keys):
        self.mget_calls += 1
        return [self.store.get(k) for k in keys]

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def delete(self, key):
        self.store.pop(key, None)


class BrokenRedis(StubRedis):
    async def mget(self, keys):
        raise ConnectionError("redis down")


@pytest.mark.asyncio
async def test_briefs_are_cached_after_first_fetch(profiles):
    redis = StubRedis()
    repo = CachedProfileRepository(profiles, RedisCache(client=redis))

    first = await repo.get_briefs([USER_X, USER_Y])
    second = await repo.get_briefs([USER_Y, USER_X])

    assert set(first) == {USER_X, USER_Y}
    assert second[USER_Y].first_name == first[USER_Y].first_name
    assert profiles.brief_calls == 1
    assert json.loads(redis.store["am4m:profile_brief:user-y"])["id"] == USER_Y


@pytest.mark.asyncio
async def test_only_misses_are_fetched(profiles):
    repo = CachedProfileRepository(profiles, RedisCache(client=StubRedis()))
    await repo.get_briefs([USER_X])

    briefs = await repo.get_briefs([USER_X, USER_Z, "user-gone"])

    assert set(briefs) == {USER_X, USER_Z}
    assert profiles.brief_calls == 2


@pytest.mark.asyncio
async def test_missing_profile_drops_cached_brief(profiles):
    redis = StubRedis()
    repo = CachedProfileRepository(profiles, RedisCache(client=redis))
    await repo.get_briefs([USER_Y])
    del profiles.profiles[USER_Y]

    assert await repo.find_by_id(USER_Y) is None

    assert "am4m:profile_brief:user-y" not in redis.store
    assert await repo.get_briefs([USER_Y]) == {}
    assert profiles.brief_calls == 2


@pytest.mark.asyncio
async def test_cache_failure_falls_back_to_store(profiles):
    repo = CachedProfileRepository(profiles, RedisCache(client=BrokenRedis()))

    briefs = await repo.get_briefs([USER_Y])

    assert set(briefs) == {USER_Y}


@pytest.mark.asyncio
async def test_disabled_cache_is_transparent(profiles):
    repo = CachedProfileRepository(profiles, RedisCache())

    assert set(await repo.get_briefs([USER_X])) == {USER_X}
    assert await repo.get_briefs([]) == {}


@pytest.mark.asyncio
async def test_stats_round_trip_and_invalidate():
    cache = RedisCache(client=StubRedis())

    await cache.set_stats(USER_Y, {"user_id": USER_Y, "views_7d": 3})
    assert (await cache.get_stats(USER_Y))["views_7d"] == 3

    await cache.invalidate_stats(USER_X, USER_Y)
    assert await cache.get_stats(USER_Y) is None
