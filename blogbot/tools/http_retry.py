"""Outbound HTTP with bounded retries and exponential backoff."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from blogbot.config import settings
from blogbot.errors import NetworkError

Sleeper = Callable[[float], Awaitable[None]]


async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_attempts: int | None = None,
    backoff_seconds: float | None = None,
    backoff_multiplier: float | None = None,
    sleep: Sleeper = asyncio.sleep,
    **request_kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying 5xx, 429 and transport failures.

    Other 4xx statuses fail immediately. After the last attempt the final
    ``NetworkError`` is raised.
    """
    attempts = max(1, max_attempts or settings.fetch_max_attempts)
    delay = settings.fetch_backoff_seconds if backoff_seconds is None else backoff_seconds
    multiplier = (
        settings.fetch_backoff_multiplier if backoff_multiplier is None else backoff_multiplier
    )

    for attempt in range(1, attempts + 1):
        try:
            response = await client.request(method, url, **request_kwargs)
            if response.status_code >= 400:
                raise NetworkError(
                    f"HTTP {response.status_code} from {url}",
                    url=url,
                    status=response.status_code,
                )
            return response
        except NetworkError as exc:
            error = exc
        except httpx.HTTPError as exc:
            error = NetworkError(f"Request to {url} failed: {exc}", url=url)

        if not error.is_retryable or attempt == attempts:
            raise error
        logger.debug(f"Retrying {url} in {delay:.2f}s (attempt {attempt}/{attempts}): {error.message}")
        await sleep(delay)
        delay *= multiplier

    raise NetworkError(f"No request attempted for {url}", url=url)
