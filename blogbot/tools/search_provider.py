from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from blogbot.config import settings
from blogbot.tools.web_fetch import default_headers

SERPAPI_URL = "https://serpapi.com/search.json"
DUCKDUCKGO_HTML_URL = "https://duckduckgo.com/html/"


@dataclass
class SearchResult:
    """Normalized web search hit."""
    title: str
    url: str
    snippet: str | None = None


def _unwrap_duckduckgo_href(href: str) -> str:
    # DuckDuckGo wraps outbound links as /l/?kh=-1&uddg=<encoded target>
    target = parse_qs(urlparse(href).query).get("uddg")
    if target:
        return target[0]
    if href.startswith("//"):
        return "https:" + href
    return href


def parse_duckduckgo_html(html: str, max_results: int) -> list[SearchResult]:
    soup = BeautifulSoup(html, "html.parser")
    results: list[SearchResult] = []
    for anchor in soup.select("a.result__a"):
        if len(results) >= max_results:
            break
        href = anchor.get("href")
        title = anchor.get_text(strip=True)
        if not href or not title:
            continue
        container = anchor.find_parent(class_="result")
        snippet_node = container.select_one(".result__snippet") if container else None
        results.append(
            SearchResult(
                title=title,
                url=_unwrap_duckduckgo_href(str(href)),
                snippet=snippet_node.get_text(strip=True) if snippet_node else None,
            )
        )
    return results


async def _search_serpapi(client: httpx.AsyncClient, query: str, max_results: int) -> list[SearchResult]:
    response = await client.get(
        SERPAPI_URL,
        params={
            "engine": "google",
            "q": query,
            "num": min(max_results, 10),
            "api_key": settings.serpapi_api_key,
        },
        headers=default_headers(),
    )
    response.raise_for_status()
    payload = response.json()

    mapped: list[SearchResult] = []
    for item in (payload.get("organic_results") or [])[:max_results]:
        url = item.get("link")
        if not isinstance(url, str) or not url:
            continue
        title = item.get("title") if isinstance(item.get("title"), str) else url
        snippet = item.get("snippet") if isinstance(item.get("snippet"), str) else None
        mapped.append(SearchResult(title=title, url=url, snippet=snippet))
    return mapped


async def _search_duckduckgo(client: httpx.AsyncClient, query: str, max_results: int) -> list[SearchResult]:
    response = await client.get(DUCKDUCKGO_HTML_URL, params={"q": query}, headers=default_headers())
    response.raise_for_status()
    return parse_duckduckgo_html(response.text, max_results)


async def _search(client: httpx.AsyncClient, query: str, max_results: int) -> list[SearchResult]:
    if settings.serpapi_api_key:
        try:
            results = await _search_serpapi(client, query, max_results)
            if results:
                return results
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"SerpAPI search failed for {query!r}, falling back to DuckDuckGo: {exc}")
    return await _search_duckduckgo(client, query, max_results)


async def search(
    query: str,
    *,
    max_results: int = 10,
    client: httpx.AsyncClient | None = None,
) -> list[SearchResult]:
    """Search the web, preferring SerpAPI when a key is configured."""
    if client is not None:
        return await _search(client, query, max_results)
    async with httpx.AsyncClient(timeout=settings.search_timeout_seconds, follow_redirects=True) as own_client:
        return await _search(own_client, query, max_results)
