from __future__ import annotations

import httpx

from blogbot.config import settings
from blogbot.tools.http_retry import fetch_with_retry


def default_headers() -> dict[str, str]:
    return {"User-Agent": settings.fetch_user_agent}


async def fetch_html(url: str, *, client: httpx.AsyncClient | None = None) -> str:
    """GET a page and return its body text.

    Raises ``NetworkError`` once retries are exhausted or on a non-retryable status.
    """
    if client is not None:
        response = await fetch_with_retry(client, "GET", url, headers=default_headers())
        return response.text

    async with httpx.AsyncClient(
        timeout=settings.fetch_timeout_seconds,
        follow_redirects=True,
    ) as own_client:
        response = await fetch_with_retry(own_client, "GET", url, headers=default_headers())
        return response.text
