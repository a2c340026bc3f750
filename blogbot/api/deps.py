from __future__ import annotations

from fastapi import Request

from blogbot.agents.orchestrator import PostOrchestrator
from blogbot.errors import AppError, RateLimitError
from blogbot.services.cache import MultiTierCache
from blogbot.services.database import Database
from blogbot.services.post_store import PostStore
from blogbot.services.rate_limiter import RateLimiter, client_identifier


def get_orchestrator(request: Request) -> PostOrchestrator:
    return request.app.state.orchestrator


def get_cache(request: Request) -> MultiTierCache:
    return request.app.state.cache


def get_post_store(request: Request) -> PostStore:
    return request.app.state.post_store


def get_database(request: Request) -> Database | None:
    return getattr(request.app.state, "database", None)


def require_database(request: Request) -> Database:
    database = get_database(request)
    if database is None:
        raise AppError("Analytics database is not configured", status_code=503)
    return database


def get_client_id(request: Request) -> str:
    peer = request.client.host if request.client else None
    return client_identifier(request.headers, peer)


def enforce_rate_limit(request: Request) -> None:
    limiter: RateLimiter = request.app.state.rate_limiter
    identifier = get_client_id(request)
    if not limiter.check(identifier):
        info = limiter.info(identifier) or {}
        retry_after = int(info.get("retry_after", limiter.window_seconds)) + 1
        raise RateLimitError("Too many requests. Please try again later.", retry_after=retry_after)
