from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from blogbot.config import settings
from blogbot.services.cache import (
    CachedValue,
    CacheKeys,
    DatabaseTier,
    MemoryTier,
    MultiTierCache,
    RedisTier,
    SingleFlight,
    build_cache,
)


class Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class DictTier:
    """Slow tier kept in a dict; records the TTLs it was given."""

    def __init__(self, name="durable", ttl_remaining=None):
        self.name = name
        self.ttl_remaining = ttl_remaining
        self.entries: dict[str, tuple[str, tuple[str, ...]]] = {}
        self.ttls: dict[str, float] = {}

    async def get(self, key):
        if key not in self.entries:
            return None
        payload, tags = self.entries[key]
        return CachedValue(payload, self.ttl_remaining, tags)

    async def set(self, key, payload, ttl, tags):
        self.entries[key] = (payload, tuple(tags))
        self.ttls[key] = ttl

    async def delete(self, key):
        return self.entries.pop(key, None) is not None

    async def invalidate_tags(self, tags):
        doomed = [k for k, (_, t) in self.entries.items() if set(t) & set(tags)]
        for key in doomed:
            del self.entries[key]
        return len(doomed)

    async def clear(self):
        self.entries.clear()


class BrokenTier(DictTier):
    async def get(self, key):
        raise ConnectionError("tier offline")

    async def set(self, key, payload, ttl, tags):
        raise ConnectionError("tier offline")

    async def invalidate_tags(self, tags):
        raise ConnectionError("tier offline")

    async def clear(self):
        raise ConnectionError("tier offline")


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __getattr__(self, name):
        command = getattr(self.redis, name)

        def queue(*args):
            self.ops.append((command, args))

        return queue

    async def execute(self):
        return [await command(*args) for command, args in self.ops]


class FakeRedis:
    def __init__(self):
        self.values: dict[str, str] = {}
        self.expiry: dict[str, int] = {}
        self.sets: dict[str, set[str]] = {}
        self.closed = False

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def get(self, key):
        return self.values.get(key)

    async def setex(self, key, seconds, value):
        self.values[key] = value
        self.expiry[key] = seconds
        return True

    async def sadd(self, key, member):
        self.sets.setdefault(key, set()).add(member)
        return 1

    async def srem(self, key, member):
        members = self.sets.get(key, set())
        removed = int(member in members)
        members.discard(member)
        return removed

    async def expire(self, key, seconds):
        self.expiry[key] = seconds
        return True

    async def ttl(self, key):
        if key not in self.values and key not in self.sets:
            return -2
        return self.expiry.get(key, -1)

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            self.expiry.pop(key, None)
            removed += int(self.values.pop(key, None) is not None or self.sets.pop(key, None) is not None)
        return removed

    async def scan_iter(self, match=None):
        prefix = (match or "*").rstrip("*")
        for key in list(self.values) + list(self.sets):
            if key.startswith(prefix):
                yield key

    async def aclose(self):
        self.closed = True


def test_cache_keys_normalize_inputs():
    assert CacheKeys.research("  Edge   AI ", 6) == "research:edge ai:6"
    a = CacheKeys.analysis(["https://b.com", "https://a.com"], "heuristic")
    b = CacheKeys.analysis(["https://a.com", "https://b.com"], "heuristic")
    c = CacheKeys.analysis(["https://a.com", "https://b.com"], "llm:gpt-4o-mini")
    assert a == b
    assert a != c
    assert a.startswith("analysis:")


@pytest.mark.asyncio
async def test_memory_entries_expire_with_injected_clock():
    clock = Clock()
    cache = MultiTierCache([MemoryTier(timer=clock)])

    await cache.set("research:edge ai:6", {"topic": "Edge AI"}, ttl=10)
    assert await cache.get("research:edge ai:6") == {"topic": "Edge AI"}

    clock.now += 11
    assert await cache.get("research:edge ai:6") is None
    assert cache.stats.to_dict() == {"hits": 1, "misses": 1, "sets": 1, "deletes": 0, "hit_rate": 0.5}


@pytest.mark.asyncio
async def test_memory_tier_evicts_least_recently_used():
    tier = MemoryTier(maxsize=2, timer=Clock())
    await tier.set("a", "1", 60, ())
    await tier.set("b", "2", 60, ())
    await tier.get("a")
    await tier.set("c", "3", 60, ())

    assert await tier.get("b") is None
    assert (await tier.get("a")).payload == "1"
    assert len(tier) == 2


@pytest.mark.asyncio
async def test_memory_tag_index_forgets_evicted_expired_and_deleted_keys():
    clock = Clock()
    tier = MemoryTier(maxsize=10, timer=clock)

    for n in range(5000):
        await tier.set(f"research:topic-{n}:6", "{}", 60, ("research",))
    assert len(tier) == 10
    assert len(tier._tag_index["research"]) == 10

    for n in range(4990, 4995):
        assert await tier.delete(f"research:topic-{n}:6")
    assert len(tier._tag_index["research"]) == 5

    clock.now += 61
    await tier.set("analysis:fresh", "{}", 60, ("analysis",))
    assert "research" not in tier._tag_index
    assert tier._tag_index == {"analysis": {"analysis:fresh"}}


@pytest.mark.asyncio
async def test_tag_invalidation_is_selective_across_tiers():
    durable = DictTier()
    cache = MultiTierCache([MemoryTier(timer=Clock()), durable])

    await cache.set("research:x:3", [1], tags=["research"])
    await cache.set("analysis:y", [2], tags=["analysis"])

    removed = await cache.invalidate_tags(["research"])

    assert removed == 1
    assert await cache.get("research:x:3") is None
    assert await cache.get("analysis:y") == [2]
    assert list(durable.entries) == ["analysis:y"]
    assert cache.stats.deletes == 1


@pytest.mark.asyncio
async def test_lower_tier_hit_backfills_memory_with_remaining_ttl_and_tags():
    clock = Clock()
    memory = MemoryTier(timer=clock)
    durable = DictTier(ttl_remaining=30)
    durable.entries["research:x:3"] = (json.dumps({"topic": "x"}), ("research",))
    cache = MultiTierCache([memory, durable])

    assert await cache.get("research:x:3") == {"topic": "x"}
    backfilled = await memory.get("research:x:3")
    assert backfilled.tags == ("research",)
    assert backfilled.ttl_remaining == pytest.approx(30)

    assert await memory.invalidate_tags(["research"]) == 1
    clock.now += 31
    assert await memory.get("research:x:3") is None


@pytest.mark.asyncio
async def test_backfill_without_known_ttl_uses_default():
    memory = MemoryTier(timer=Clock())
    durable = DictTier(ttl_remaining=None)
    durable.entries["k"] = ("1", ())
    cache = MultiTierCache([memory, durable], default_ttl=120)

    await cache.get("k")

    assert (await memory.get("k")).ttl_remaining == pytest.approx(120)


@pytest.mark.asyncio
async def test_lower_tier_failures_are_swallowed():
    cache = MultiTierCache([MemoryTier(timer=Clock()), BrokenTier()])

    await cache.set("k", {"v": 1})
    assert await cache.get("k") == {"v": 1}
    assert await cache.get("missing") is None
    assert await cache.invalidate_tags(["research"]) == 0
    await cache.clear()


@pytest.mark.asyncio
async def test_disabled_cache_always_computes():
    cache = MultiTierCache([MemoryTier(timer=Clock())], enabled=False)
    calls = []

    async def compute():
        calls.append(1)
        return {"n": len(calls)}

    first, hit1 = await cache.get_or_compute("k", compute)
    second, hit2 = await cache.get_or_compute("k", compute)

    assert (first, hit1, second, hit2) == ({"n": 1}, False, {"n": 2}, False)


@pytest.mark.asyncio
async def test_get_or_compute_is_cache_aside():
    cache = MultiTierCache([MemoryTier(timer=Clock())])
    calls = []

    async def compute():
        calls.append(1)
        return {"sources": ["a"]}

    assert await cache.get_or_compute("k", compute, ttl=60, tags=["research"]) == ({"sources": ["a"]}, False)
    assert await cache.get_or_compute("k", compute, ttl=60, tags=["research"]) == ({"sources": ["a"]}, True)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_computation():
    cache = MultiTierCache([MemoryTier(timer=Clock())])
    release = asyncio.Event()
    calls = []

    async def compute():
        calls.append(1)
        await release.wait()
        return {"value": 42}

    first = asyncio.create_task(cache.get_or_compute("k", compute))
    second = asyncio.create_task(cache.get_or_compute("k", compute))
    await asyncio.sleep(0)
    release.set()

    results = await asyncio.gather(first, second)

    assert [value for value, _ in results] == [{"value": 42}, {"value": 42}]
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_single_flight_shares_failures_then_allows_retry():
    flight = SingleFlight()
    release = asyncio.Event()

    async def failing():
        await release.wait()
        raise RuntimeError("compute failed")

    first = asyncio.create_task(flight.do("k", failing))
    await asyncio.sleep(0)
    assert flight.in_flight("k")
    second = asyncio.create_task(flight.do("k", failing))
    await asyncio.sleep(0)
    release.set()

    for task in (first, second):
        with pytest.raises(RuntimeError, match="compute failed"):
            await task

    assert not flight.in_flight("k")

    async def ok():
        return "fresh"

    assert await flight.do("k", ok) == "fresh"


@pytest.mark.asyncio
async def test_single_flight_survives_cancelled_first_caller():
    flight = SingleFlight()
    release = asyncio.Event()
    runs = []

    async def slow():
        runs.append("started")
        await release.wait()
        return "value"

    first = asyncio.create_task(flight.do("k", slow))
    await asyncio.sleep(0)
    second = asyncio.create_task(flight.do("k", slow))
    await asyncio.sleep(0)

    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    release.set()
    assert await second == "value"
    assert runs == ["started"]
    assert not flight.in_flight("k")


@pytest.mark.asyncio
async def test_redis_tier_keeps_tags_and_invalidates_by_set():
    client = FakeRedis()
    tier = RedisTier(client, prefix="test:")

    await tier.set("research:a:3", '{"a": 1}', 90.7, ("research",))
    await tier.set("analysis:b", '{"b": 2}', 90, ("analysis",))

    hit = await tier.get("research:a:3")
    assert hit.payload == '{"a": 1}'
    assert hit.tags == ("research",)
    assert hit.ttl_remaining == 90.0
    assert client.sets["test:tag:research"] == {"test:research:a:3"}

    assert await tier.invalidate_tags(["research"]) == 1
    assert await tier.get("research:a:3") is None
    assert await tier.get("analysis:b") is not None

    await tier.clear()
    assert client.values == {}
    await tier.close()
    assert client.closed


@pytest.mark.asyncio
async def test_redis_tag_sets_expire_and_shrink_on_delete():
    client = FakeRedis()
    tier = RedisTier(client, prefix="test:")

    await tier.set("research:a:3", "{}", 300, ("research",))
    await tier.set("research:b:3", "{}", 60, ("research",))
    assert client.expiry["test:tag:research"] == 300

    await tier.set("research:c:3", "{}", 900, ("research",))
    assert client.expiry["test:tag:research"] == 900

    assert await tier.delete("research:a:3") is True
    assert await tier.delete("research:a:3") is False
    assert client.sets["test:tag:research"] == {"test:research:b:3", "test:research:c:3"}


class FakeCacheDatabase:
    def __init__(self):
        self.rows = {}

    async def cache_get(self, key):
        return self.rows.get(key)

    async def cache_set(self, key, value, tags, expires_at):
        self.rows[key] = {"value": value, "tags": tags, "expires_at": expires_at}

    async def cache_delete(self, key):
        return self.rows.pop(key, None) is not None

    async def cache_invalidate_tags(self, tags):
        doomed = [k for k, row in self.rows.items() if set(row["tags"]) & set(tags)]
        for key in doomed:
            del self.rows[key]
        return len(doomed)

    async def cache_clear(self):
        self.rows.clear()

    async def cache_cleanup(self):
        now = datetime.now(timezone.utc)
        doomed = [k for k, row in self.rows.items() if row["expires_at"] <= now]
        for key in doomed:
            del self.rows[key]
        return len(doomed)


@pytest.mark.asyncio
async def test_database_tier_reports_remaining_ttl_and_cleanup():
    db = FakeCacheDatabase()
    tier = DatabaseTier(db)

    await tier.set("analysis:x", '{"x": 1}', 600, ("analysis",))
    hit = await tier.get("analysis:x")
    assert hit.tags == ("analysis",)
    assert 590 < hit.ttl_remaining <= 600

    db.rows["stale"] = {
        "value": "1",
        "tags": [],
        "expires_at": datetime.now(timezone.utc) - timedelta(seconds=5),
    }
    cache = MultiTierCache([MemoryTier(timer=Clock()), tier])
    assert await cache.cleanup() == 1
    assert "stale" not in db.rows


@pytest.mark.asyncio
async def test_build_cache_picks_tiers_from_settings():
    local = settings.model_copy(update={"redis_url": "", "cache_enabled": True})
    assert build_cache(local).tier_names == ["memory"]
    assert build_cache(local, FakeCacheDatabase()).tier_names == ["memory", "database"]

    with_redis = settings.model_copy(update={"redis_url": "redis://localhost:6379/0"})
    cache = build_cache(with_redis)
    assert cache.tier_names == ["memory", "redis"]
    await cache.close()
