"""Layered cache-aside store: in-process memory, optional Redis, optional PostgreSQL.

Reads walk the tiers fastest-first and back-fill every faster tier on a lower
hit. Writes go to every tier; failures below the memory tier are logged and
swallowed. Tag invalidation is selective in every tier.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Protocol

import redis.asyncio as redis
from cachetools import TLRUCache
from loguru import logger

if TYPE_CHECKING:
    from blogbot.config import Settings
    from blogbot.services.database import Database


class CacheTags:
    RESEARCH = "research"
    ANALYSIS = "analysis"
    POSTS = "posts"
    POST = "post"


class CacheKeys:
    @staticmethod
    def research(topic: str, cap: int) -> str:
        normalized = re.sub(r"\s+", " ", topic.strip().lower())
        return f"research:{normalized}:{cap}"

    @staticmethod
    def analysis(urls: Iterable[str], mode: str) -> str:
        digest = hashlib.sha256(("\n".join(sorted(urls)) + "|" + mode).encode("utf-8")).hexdigest()
        return f"analysis:{digest}"

    @staticmethod
    def post(slug: str) -> str:
        return f"post:{slug}"

    @staticmethod
    def posts_list(page: int, limit: int) -> str:
        return f"posts:list:{page}:{limit}"


@dataclass
class CachedValue:
    payload: str
    ttl_remaining: float | None = None
    tags: tuple[str, ...] = ()


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "hit_rate": round(self.hit_rate, 4),
        }


class CacheTier(Protocol):
    name: str

    async def get(self, key: str) -> CachedValue | None: ...

    async def set(self, key: str, payload: str, ttl: float, tags: tuple[str, ...]) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def invalidate_tags(self, tags: Iterable[str]) -> int: ...

    async def clear(self) -> None: ...


# --- Tiers ---


@dataclass(frozen=True)
class _MemoryEntry:
    payload: str
    tags: tuple[str, ...]
    expires_at: float


class _IndexedTLRUCache(TLRUCache):
    """TLRUCache that reports every eviction and expiry to ``on_drop``."""

    def __init__(self, maxsize, ttu, timer, on_drop: Callable[[str, "_MemoryEntry"], None]):
        super().__init__(maxsize=maxsize, ttu=ttu, timer=timer)
        self._on_drop = on_drop

    def popitem(self):
        key, entry = super().popitem()
        self._on_drop(key, entry)
        return key, entry

    def expire(self, now=None):
        expired = super().expire(now)
        for key, entry in expired:
            self._on_drop(key, entry)
        return expired


class MemoryTier:
    """Bounded LRU with per-entry expiry and a tag index."""

    name = "memory"

    def __init__(self, maxsize: int = 1000, timer: Callable[[], float] = time.monotonic):
        self._timer = timer
        self._cache: _IndexedTLRUCache = _IndexedTLRUCache(
            maxsize=maxsize,
            ttu=lambda _key, entry, _now: entry.expires_at,
            timer=timer,
            on_drop=self._unindex,
        )
        self._tag_index: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._cache)

    def _unindex(self, key: str, entry: _MemoryEntry) -> None:
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._tag_index[tag]

    async def get(self, key: str) -> CachedValue | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        return CachedValue(entry.payload, max(entry.expires_at - self._timer(), 0.0), entry.tags)

    async def set(self, key: str, payload: str, ttl: float, tags: tuple[str, ...]) -> None:
        previous = self._cache.pop(key, None)
        if previous is not None:
            self._unindex(key, previous)
        self._cache[key] = _MemoryEntry(payload, tags, self._timer() + ttl)
        if key not in self._cache:
            return
        for tag in tags:
            self._tag_index.setdefault(tag, set()).add(key)

    async def delete(self, key: str) -> bool:
        entry = self._cache.pop(key, None)
        if entry is None:
            return False
        self._unindex(key, entry)
        return True

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        removed = 0
        for tag in tags:
            for key in list(self._tag_index.get(tag, ())):
                if await self.delete(key):
                    removed += 1
            self._tag_index.pop(tag, None)
        return removed

    async def clear(self) -> None:
        self._cache.clear()
        self._tag_index.clear()

    def expire(self) -> int:
        return len(self._cache.expire())


class RedisTier:
    """Redis values under a key prefix; each tag is a Redis set of member keys.

    Values are stored as ``{"payload": ..., "tags": [...]}`` so a back-fill
    into memory keeps its tags.
    """

    name = "redis"

    def __init__(self, client: redis.Redis, prefix: str = "blogbot:"):
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return self._prefix + key

    def _tag_key(self, tag: str) -> str:
        return f"{self._prefix}tag:{tag}"

    async def get(self, key: str) -> CachedValue | None:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        envelope = json.loads(raw)
        ttl = await self._client.ttl(self._key(key))
        return CachedValue(
            envelope["payload"],
            float(ttl) if ttl and ttl > 0 else None,
            tuple(envelope.get("tags") or ()),
        )

    async def set(self, key: str, payload: str, ttl: float, tags: tuple[str, ...]) -> None:
        full_key = self._key(key)
        seconds = max(int(ttl), 1)
        envelope = json.dumps({"payload": payload, "tags": list(tags)})
        async with self._client.pipeline(transaction=False) as pipe:
            pipe.setex(full_key, seconds, envelope)
            for tag in tags:
                pipe.sadd(self._tag_key(tag), full_key)
                pipe.ttl(self._tag_key(tag))
            results = await pipe.execute()
        # A tag set lives at least as long as its longest-lived member.
        short_lived = [tag for tag, remaining in zip(tags, results[2::2]) if remaining < seconds]
        if short_lived:
            async with self._client.pipeline(transaction=False) as pipe:
                for tag in short_lived:
                    pipe.expire(self._tag_key(tag), seconds)
                await pipe.execute()

    async def delete(self, key: str) -> bool:
        full_key = self._key(key)
        raw = await self._client.get(full_key)
        if raw is None:
            return False
        async with self._client.pipeline(transaction=False) as pipe:
            pipe.delete(full_key)
            for tag in json.loads(raw).get("tags") or ():
                pipe.srem(self._tag_key(tag), full_key)
            await pipe.execute()
        return True

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        removed = 0
        for tag in tags:
            tag_key = self._tag_key(tag)
            members = await self._client.smembers(tag_key)
            if members:
                removed += int(await self._client.delete(*members))
            await self._client.delete(tag_key)
        return removed

    async def clear(self) -> None:
        keys = [key async for key in self._client.scan_iter(match=f"{self._prefix}*")]
        if keys:
            await self._client.delete(*keys)

    async def close(self) -> None:
        await self._client.aclose()


class DatabaseTier:
    """Durable rows in ``cache_entries``; expired rows are dropped on read."""

    name = "database"

    def __init__(self, database: "Database"):
        self._db = database

    async def get(self, key: str) -> CachedValue | None:
        row = await self._db.cache_get(key)
        if row is None:
            return None
        expires_at: datetime | None = row.get("expires_at")
        remaining = None
        if expires_at is not None:
            remaining = (expires_at - datetime.now(timezone.utc)).total_seconds()
        return CachedValue(row["value"], remaining, tuple(row.get("tags") or ()))

    async def set(self, key: str, payload: str, ttl: float, tags: tuple[str, ...]) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
        await self._db.cache_set(key, payload, list(tags), expires_at)

    async def delete(self, key: str) -> bool:
        return await self._db.cache_delete(key)

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        return await self._db.cache_invalidate_tags(list(tags))

    async def clear(self) -> None:
        await self._db.cache_clear()

    async def cleanup(self) -> int:
        return await self._db.cache_cleanup()


# --- Single flight ---


class SingleFlight:
    """Collapse concurrent computations for one key into a single task.

    Every caller awaits the shared task through ``asyncio.shield``, so a
    cancelled caller detaches without cancelling the work for the others.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Retrieve so a failure with every caller gone does not warn on GC.
            task.exception()

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        return await asyncio.shield(task)


# --- Facade ---


class MultiTierCache:
    def __init__(
        self,
        tiers: list[CacheTier] | None = None,
        *,
        default_ttl: float = 900,
        enabled: bool = True,
    ):
        self.tiers: list[CacheTier] = tiers or [MemoryTier()]
        self.default_ttl = default_ttl
        self.enabled = enabled
        self.stats = CacheStats()
        self._flight = SingleFlight()

    @property
    def tier_names(self) -> list[str]:
        return [tier.name for tier in self.tiers]

    async def _guard(self, tier: CacheTier, index: int, op: str, call: Awaitable[Any]) -> Any:
        if index == 0:
            return await call
        try:
            return await call
        except Exception as exc:
            logger.warning(f"Cache tier {tier.name} {op} failed: {exc}")
            return None

    async def get(self, key: str) -> Any | None:
        if not self.enabled:
            return None
        for index, tier in enumerate(self.tiers):
            hit: CachedValue | None = await self._guard(tier, index, "get", tier.get(key))
            if hit is None:
                continue
            if index > 0:
                await self._backfill(key, hit, index)
            self.stats.hits += 1
            return json.loads(hit.payload)
        self.stats.misses += 1
        return None

    async def _backfill(self, key: str, hit: CachedValue, found_at: int) -> None:
        ttl = hit.ttl_remaining if hit.ttl_remaining and hit.ttl_remaining > 0 else self.default_ttl
        for index, tier in enumerate(self.tiers[:found_at]):
            await self._guard(tier, index, "backfill", tier.set(key, hit.payload, ttl, hit.tags))

    async def set(
        self,
        key: str,
        value: Any,
        *,
        ttl: float | None = None,
        tags: Iterable[str] = (),
    ) -> None:
        if not self.enabled:
            return
        payload = json.dumps(value, default=str)
        ttl_seconds = ttl or self.default_ttl
        tag_tuple = tuple(tags)
        for index, tier in enumerate(self.tiers):
            await self._guard(tier, index, "set", tier.set(key, payload, ttl_seconds, tag_tuple))
        self.stats.sets += 1

    async def delete(self, key: str) -> None:
        for index, tier in enumerate(self.tiers):
            await self._guard(tier, index, "delete", tier.delete(key))
        self.stats.deletes += 1

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        tag_list = list(tags)
        removed = 0
        for index, tier in enumerate(self.tiers):
            count = await self._guard(tier, index, "invalidate", tier.invalidate_tags(tag_list))
            if index == 0:
                removed = count or 0
        self.stats.deletes += removed
        logger.info(f"Invalidated cache tags {tag_list}: {removed} memory entries removed")
        return removed

    async def clear(self) -> None:
        for index, tier in enumerate(self.tiers):
            await self._guard(tier, index, "clear", tier.clear())
        logger.info("Cache cleared")

    async def cleanup(self) -> int:
        """Sweep expired entries; returns the number of durable rows removed."""
        removed = 0
        for index, tier in enumerate(self.tiers):
            if isinstance(tier, MemoryTier):
                tier.expire()
            elif isinstance(tier, DatabaseTier):
                removed += await self._guard(tier, index, "cleanup", tier.cleanup()) or 0
        return removed

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        *,
        ttl: float | None = None,
        tags: Iterable[str] = (),
    ) -> tuple[Any, bool]:
        """Cache-aside read. Returns ``(value, hit)``.

        ``compute`` must return a JSON-serialisable value. Concurrent misses on
        the same key share one computation.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached, True

        async def _compute_and_store() -> Any:
            value = await compute()
            await self.set(key, value, ttl=ttl, tags=tags)
            return value

        value = await self._flight.do(key, _compute_and_store)
        return value, False

    async def close(self) -> None:
        for tier in self.tiers:
            if isinstance(tier, RedisTier):
                await tier.close()


def build_cache(settings: "Settings", database: "Database | None" = None) -> MultiTierCache:
    """Memory tier always; Redis when ``redis_url`` is set; PostgreSQL when a database is given."""
    tiers: list[CacheTier] = [MemoryTier(maxsize=settings.cache_memory_max_entries)]
    if settings.redis_url:
        tiers.append(RedisTier(redis.from_url(settings.redis_url, decode_responses=True)))
    if database is not None:
        tiers.append(DatabaseTier(database))
    logger.info(f"Cache tiers: {[tier.name for tier in tiers]}")
    return MultiTierCache(
        tiers,
        default_ttl=settings.cache_default_ttl_seconds,
        enabled=settings.cache_enabled,
    )
