from __future__ import annotations

from datetime import date

from blogbot.models.content import GeneratedPost, OutlineSection
from blogbot.tools.content_extractor import ExtractedContent
from blogbot.tools.search_provider import SearchResult

FIXED_DAY = date(2026, 3, 14)

ARTICLE = (
    "Edge AI moves inference from the data center onto phones, cameras and gateways. "
    "Running models locally cuts round-trip latency to a few milliseconds for most workloads. "
    "Keeping sensor data on the device also reduces the privacy exposure of sending raw video upstream. "
    "Quantized models trade a little accuracy for large savings in memory and power draw. "
    "Hardware vendors now ship dedicated neural accelerators in low-cost microcontrollers. "
) * 3


class FakeSearch:
    """Returns canned results per query and records every call."""

    def __init__(self, results_by_query=None, default=None, fail_on=()):
        self.results_by_query = results_by_query or {}
        self.default = default or []
        self.fail_on = set(fail_on)
        self.calls: list[tuple[str, int]] = []

    async def __call__(self, query, *, max_results=10):
        self.calls.append((query, max_results))
        if query in self.fail_on:
            raise RuntimeError(f"search backend down for {query}")
        return list(self.results_by_query.get(query, self.default))


class FakeFetch:
    def __init__(self, pages=None, default=ARTICLE, fail=()):
        self.pages = pages or {}
        self.default = default
        self.fail = set(fail)
        self.calls: list[str] = []

    async def __call__(self, url):
        self.calls.append(url)
        if url in self.fail:
            raise ConnectionError(f"cannot reach {url}")
        return self.pages.get(url, self.default)


def passthrough_extract(html: str) -> ExtractedContent:
    return ExtractedContent(title="Extracted", text=html, method="trafilatura")


def hit(url: str, title: str = "Result") -> SearchResult:
    return SearchResult(title=title, url=url, snippet=f"snippet for {url}")


class FakeLLM:
    """Stand-in for LLMClient: replies are served in order, exceptions are raised."""

    def __init__(self, replies=(), configured=True, default_model="test-model"):
        self.replies = list(replies)
        self.is_configured = configured
        self.default_model = default_model
        self.calls: list[dict] = []

    async def complete(self, messages, *, model=None, temperature=0.2, caller="llm"):
        self.calls.append({"messages": messages, "model": model, "temperature": temperature, "caller": caller})
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


def make_post(slug: str = "2026-03-14-edge-ai", title: str = "Edge AI", date: str = "2026-03-14") -> GeneratedPost:
    markdown = (
        f'---\ntitle: "{title}"\ndate: "{date}"\nslug: "{slug}"\naudience: "Engineers"\n---\n\n'
        f"# {title}\n\n## Why it matters\n- Latency drops\n\n## Sources\n- [Primer](https://example.com/primer)\n"
    )
    return GeneratedPost(
        title=title,
        slug=slug,
        markdown=markdown,
        outline=(OutlineSection("Why it matters", ("Latency drops",)),),
        sources=({"title": "Primer", "url": "https://example.com/primer"},),
        date=date,
        topic="Edge AI",
        audience="Engineers",
        tone="Direct",
    )
