"""PostgreSQL persistence for posts, analytics and the durable cache tier, using asyncpg."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import asyncpg

from blogbot.errors import NotFoundError
from blogbot.models.content import GeneratedPost
from blogbot.services.cache import CacheKeys, CacheTags, MultiTierCache
from blogbot.services.logger import log_db_operation


SCHEMA = """
CREATE TABLE IF NOT EXISTS posts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    title TEXT NOT NULL,
    slug TEXT NOT NULL UNIQUE,
    content TEXT NOT NULL,
    topic TEXT NOT NULL,
    target_questions JSONB NOT NULL DEFAULT '[]',
    sources JSONB NOT NULL DEFAULT '[]',
    excerpt TEXT,
    reading_time INTEGER,
    word_count INTEGER,
    generation_time_ms INTEGER,
    model TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS post_views (
    id BIGSERIAL PRIMARY KEY,
    post_id UUID NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
    user_agent TEXT,
    ip TEXT,
    country TEXT,
    referer TEXT,
    load_time DOUBLE PRECISION,
    viewed_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS post_views_post_id_idx ON post_views (post_id, viewed_at);

CREATE TABLE IF NOT EXISTS performance_metrics (
    id BIGSERIAL PRIMARY KEY,
    operation TEXT NOT NULL,
    duration_ms DOUBLE PRECISION NOT NULL,
    status TEXT NOT NULL,
    metadata JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS performance_metrics_op_idx ON performance_metrics (operation, created_at);

CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    tags TEXT[] NOT NULL DEFAULT '{}',
    expires_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS cache_entries_tags_idx ON cache_entries USING GIN (tags);
"""

POST_COLUMNS = """
    id, title, slug, content, topic, target_questions, sources, excerpt,
    reading_time, word_count, generation_time_ms, model, created_at
"""

POST_CACHE_TTL_SECONDS = 30 * 60
POST_LIST_CACHE_TTL_SECONDS = 15 * 60


def _coerce_json(value: Any, default: Any) -> Any:
    """Normalize JSON columns that may come back as strings."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return default
    return default if value is None else value


def _post_row(record: asyncpg.Record) -> dict[str, Any]:
    row = dict(record)
    row["id"] = str(row["id"])
    row["target_questions"] = _coerce_json(row.get("target_questions"), [])
    row["sources"] = _coerce_json(row.get("sources"), [])
    return row


def make_excerpt(post: GeneratedPost, max_chars: int = 200) -> str:
    """First paragraph of prose in the body, for list views."""
    for block in post.body.split("\n\n"):
        text = block.strip()
        if text and not text.startswith(("#", "-", "*", "|", ">")):
            return text[:max_chars]
    return post.title[:max_chars]


class Database:
    def __init__(self, dsn: str, *, cache: MultiTierCache | None = None):
        self.dsn = dsn
        self.cache = cache
        self._pool: asyncpg.Pool | None = None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first")
        return self._pool

    async def connect(self) -> None:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(self.dsn, min_size=1, max_size=10)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA)

    # --- Posts ---

    async def create_post(
        self,
        post: GeneratedPost,
        *,
        target_questions: list[str],
        generation_time_ms: int | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        try:
            async with self.pool.acquire() as conn:
                result = await conn.fetchrow(
                    f"""
                    INSERT INTO posts (
                        title, slug, content, topic, target_questions, sources,
                        excerpt, reading_time, word_count, generation_time_ms, model
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                    RETURNING {POST_COLUMNS}
                    """,
                    post.title,
                    post.slug,
                    post.markdown,
                    post.topic,
                    json.dumps(target_questions),
                    json.dumps([dict(s) for s in post.sources]),
                    make_excerpt(post),
                    post.reading_time,
                    post.word_count,
                    generation_time_ms,
                    model,
                )
        except asyncpg.PostgresError as exc:
            log_db_operation("insert", "posts", "error", details=post.slug, error=str(exc))
            raise

        if self.cache is not None:
            await self.cache.invalidate_tags([CacheTags.POSTS])
        log_db_operation("insert", "posts", "success", details=post.slug)
        return _post_row(result)

    async def get_post_by_slug(self, slug: str) -> dict[str, Any] | None:
        cache_key = CacheKeys.post(slug)
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return cached

        async with self.pool.acquire() as conn:
            result = await conn.fetchrow(
                f"SELECT {POST_COLUMNS} FROM posts WHERE slug = $1",
                slug,
            )
        if result is None:
            return None

        row = _post_row(result)
        if self.cache is not None:
            await self.cache.set(
                cache_key,
                row,
                ttl=POST_CACHE_TTL_SECONDS,
                tags=[CacheTags.POST, CacheTags.POSTS],
            )
        return row

    async def slug_exists(self, slug: str) -> bool:
        async with self.pool.acquire() as conn:
            found = await conn.fetchval("SELECT 1 FROM posts WHERE slug = $1", slug)
        return found is not None

    async def list_posts(self, page: int = 1, limit: int = 10) -> dict[str, Any]:
        page = max(page, 1)
        limit = max(limit, 1)
        cache_key = CacheKeys.posts_list(page, limit)
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return cached

        async with self.pool.acquire() as conn:
            results = await conn.fetch(
                f"""
                SELECT {POST_COLUMNS}
                FROM posts
                ORDER BY created_at DESC
                OFFSET $1 LIMIT $2
                """,
                (page - 1) * limit,
                limit,
            )
            total = await conn.fetchval("SELECT count(*) FROM posts")

        listing = {
            "posts": [_post_row(r) for r in results],
            "total": total,
            "total_pages": -(-total // limit),
            "current_page": page,
        }
        if self.cache is not None:
            await self.cache.set(
                cache_key, listing, ttl=POST_LIST_CACHE_TTL_SECONDS, tags=[CacheTags.POSTS]
            )
        return listing

    # --- Views ---

    async def track_post_view(self, post_id: str, metadata: dict[str, Any]) -> None:
        """Record a view. Failures are logged, never raised."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO post_views (post_id, user_agent, ip, country, referer, load_time)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    """,
                    post_id,
                    metadata.get("user_agent"),
                    metadata.get("ip"),
                    metadata.get("country"),
                    metadata.get("referer"),
                    metadata.get("load_time"),
                )
        except Exception as exc:
            log_db_operation("insert", "post_views", "error", details=post_id, error=str(exc))
            return
        log_db_operation("insert", "post_views", "success", details=post_id)

    async def get_post_analytics(self, slug: str, days: int = 30) -> dict[str, Any]:
        async with self.pool.acquire() as conn:
            post_id = await conn.fetchval("SELECT id FROM posts WHERE slug = $1", slug)
            if post_id is None:
                raise NotFoundError(f"Post not found: {slug}")

            since = "viewed_at >= now() - make_interval(days => $2)"
            totals = await conn.fetchrow(
                f"""
                SELECT count(*) AS total_views,
                       count(DISTINCT ip) AS unique_views,
                       coalesce(avg(coalesce(load_time, 0)), 0) AS avg_load_time
                FROM post_views
                WHERE post_id = $1 AND {since}
                """,
                post_id,
                days,
            )
            countries = await conn.fetch(
                f"""
                SELECT country, count(*) AS count
                FROM post_views
                WHERE post_id = $1 AND {since} AND country IS NOT NULL
                GROUP BY country
                ORDER BY count DESC
                LIMIT 10
                """,
                post_id,
                days,
            )
            daily = await conn.fetch(
                f"""
                SELECT viewed_at::date AS date, count(*) AS views
                FROM post_views
                WHERE post_id = $1 AND {since}
                GROUP BY 1
                ORDER BY 1
                """,
                post_id,
                days,
            )

        return {
            "total_views": totals["total_views"],
            "unique_views": totals["unique_views"],
            "avg_load_time": float(totals["avg_load_time"]),
            "top_countries": [dict(r) for r in countries],
            "views_over_time": [dict(r) for r in daily],
        }

    # --- Performance metrics ---

    async def track_operation(
        self,
        operation: str,
        duration_ms: float,
        status: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Store one timing sample. Failures are logged, never raised."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO performance_metrics (operation, duration_ms, status, metadata)
                    VALUES ($1, $2, $3, $4)
                    """,
                    operation,
                    duration_ms,
                    status,
                    json.dumps(metadata, default=str) if metadata else None,
                )
        except Exception as exc:
            log_db_operation("insert", "performance_metrics", "error", details=operation, error=str(exc))

    async def get_performance_stats(self, operation: str | None = None, days: int = 7) -> dict[str, Any]:
        where = "created_at >= now() - make_interval(days => $1) AND ($2::text IS NULL OR operation = $2)"
        async with self.pool.acquire() as conn:
            totals = await conn.fetchrow(
                f"""
                SELECT count(*) AS total_operations,
                       coalesce(avg(duration_ms), 0) AS avg_duration,
                       coalesce(avg(CASE WHEN status = 'success' THEN 1.0 ELSE 0.0 END), 0) AS success_rate
                FROM performance_metrics
                WHERE {where}
                """,
                days,
                operation,
            )
            daily = await conn.fetch(
                f"""
                SELECT created_at::date AS date, count(*) AS count, avg(duration_ms) AS avg_duration
                FROM performance_metrics
                WHERE {where}
                GROUP BY 1
                ORDER BY 1
                """,
                days,
                operation,
            )

        return {
            "avg_duration": float(totals["avg_duration"]),
            "success_rate": float(totals["success_rate"]),
            "total_operations": totals["total_operations"],
            "operations_over_time": [
                {"date": r["date"], "count": r["count"], "avg_duration": float(r["avg_duration"])}
                for r in daily
            ],
        }

    # --- Durable cache rows ---

    async def cache_get(self, key: str) -> dict[str, Any] | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT value, tags, expires_at FROM cache_entries WHERE key = $1",
                key,
            )
            if row is None:
                return None
            expires_at: datetime | None = row["expires_at"]
            if expires_at is not None and expires_at <= datetime.now(timezone.utc):
                await conn.execute("DELETE FROM cache_entries WHERE key = $1", key)
                return None
        return dict(row)

    async def cache_set(self, key: str, value: str, tags: list[str], expires_at: datetime | None) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO cache_entries (key, value, tags, expires_at)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (key) DO UPDATE
                SET value = EXCLUDED.value, tags = EXCLUDED.tags,
                    expires_at = EXCLUDED.expires_at, created_at = now()
                """,
                key,
                value,
                tags,
                expires_at,
            )

    async def cache_delete(self, key: str) -> bool:
        async with self.pool.acquire() as conn:
            status = await conn.execute("DELETE FROM cache_entries WHERE key = $1", key)
        return status != "DELETE 0"

    async def cache_invalidate_tags(self, tags: list[str]) -> int:
        async with self.pool.acquire() as conn:
            status = await conn.execute("DELETE FROM cache_entries WHERE tags && $1::text[]", tags)
        return int(status.split()[-1])

    async def cache_clear(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute("DELETE FROM cache_entries")

    async def cache_cleanup(self) -> int:
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                "DELETE FROM cache_entries WHERE expires_at IS NOT NULL AND expires_at <= now()"
            )
        removed = int(status.split()[-1])
        if removed:
            log_db_operation("cleanup", "cache_entries", "success", details=f"{removed} expired rows")
        return removed
