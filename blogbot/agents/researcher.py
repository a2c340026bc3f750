from __future__ import annotations

import asyncio
from datetime import date
from typing import Awaitable, Callable

from loguru import logger

from blogbot.config import settings
from blogbot.models.content import ResearchResult, Source
from blogbot.tools import search_provider
from blogbot.tools.content_extractor import ExtractedContent, extract_main_content
from blogbot.tools.search_provider import SearchResult
from blogbot.tools.web_fetch import fetch_html
from blogbot.tools.web_utils import clean_content, is_valid_url, normalize_url

SearchFn = Callable[..., Awaitable[list[SearchResult]]]
FetchFn = Callable[[str], Awaitable[str]]
ExtractFn = Callable[[str], ExtractedContent]

MIN_SOURCES = 1
MAX_SOURCES = 10


def clamp_sources(value: int | None) -> int:
    cap = settings.default_max_sources if value is None else int(value)
    return min(max(cap, MIN_SOURCES), MAX_SOURCES)


def build_queries(topic: str, year: int) -> list[str]:
    return [
        f"{topic} overview",
        f"{topic} latest news",
        f"{topic} research analysis",
        f"{topic} trends {year}",
    ]


class Researcher:
    """Collects deduplicated, readable sources for a topic from web search results."""

    def __init__(
        self,
        *,
        search: SearchFn = search_provider.search,
        fetch: FetchFn = fetch_html,
        extract: ExtractFn = extract_main_content,
        min_content_chars: int | None = None,
        max_content_chars: int | None = None,
        max_parallel: int | None = None,
        today: Callable[[], date] = date.today,
    ):
        self._search = search
        self._fetch = fetch
        self._extract = extract
        self.min_content_chars = min_content_chars or settings.min_content_chars
        self.max_content_chars = max_content_chars or settings.max_content_chars
        self.max_parallel = max(1, max_parallel or settings.fetch_max_parallel)
        self._today = today

    async def run(self, topic: str, max_sources: int | None = None) -> ResearchResult:
        cap = clamp_sources(max_sources)
        seen: set[str] = set()
        sources: list[Source] = []

        for query in build_queries(topic, self._today().year):
            if len(sources) >= cap:
                break
            await self._collect(query, cap, seen, sources)

        if len(sources) < min(3, cap):
            logger.info(f"Only {len(sources)} sources for {topic!r}, retrying with the bare topic")
            await self._collect(topic, cap, seen, sources)

        logger.info(f"Research for {topic!r} collected {len(sources)}/{cap} sources")
        return ResearchResult(topic=topic, sources=sources)

    async def _collect(self, query: str, cap: int, seen: set[str], sources: list[Source]) -> None:
        try:
            results = await self._search(query, max_results=cap)
        except Exception as exc:
            logger.warning(f"Search failed for {query!r}: {exc}")
            return

        candidates: list[SearchResult] = []
        for result in results:
            if not result.url or not result.title or not is_valid_url(result.url):
                continue
            key = normalize_url(result.url)
            if key in seen:
                continue
            seen.add(key)
            candidates.append(result)

        while candidates and len(sources) < cap:
            batch_size = min(self.max_parallel, cap - len(sources))
            batch, candidates = candidates[:batch_size], candidates[batch_size:]
            fetched = await asyncio.gather(*(self._load(result) for result in batch))
            for source in fetched:
                if source is not None and len(sources) < cap:
                    sources.append(source)

    async def _load(self, result: SearchResult) -> Source | None:
        try:
            html = await self._fetch(result.url)
            extracted = self._extract(html)
        except Exception as exc:
            logger.debug(f"Skipping {result.url}: {exc}")
            return None

        body = clean_content(extracted.text, max_length=self.max_content_chars)
        if len(body) < self.min_content_chars:
            logger.debug(f"Skipping {result.url}: only {len(body)} chars of content")
            return None
        return Source(
            title=result.title or extracted.title,
            url=result.url,
            snippet=result.snippet,
            content=body,
        )
