from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest

from blogbot.tools import search_provider
from blogbot.tools.search_provider import parse_duckduckgo_html

DDG_HTML = """
<html><body>
  <div class="result">
    <a class="result__a" href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fexample.com%2Fedge-ai&amp;rut=abc">Edge AI explained</a>
    <a class="result__snippet">Inference at the edge.</a>
  </div>
  <div class="result">
    <a class="result__a" href="">Missing link</a>
  </div>
  <div class="result">
    <a class="result__a" href="https://example.org/direct">Direct link</a>
  </div>
</body></html>
"""


def test_parse_duckduckgo_html_unwraps_redirects_and_drops_empty_links():
    results = parse_duckduckgo_html(DDG_HTML, max_results=10)

    assert [(r.title, r.url) for r in results] == [
        ("Edge AI explained", "https://example.com/edge-ai"),
        ("Direct link", "https://example.org/direct"),
    ]
    assert results[0].snippet == "Inference at the edge."
    assert results[1].snippet is None


def test_parse_duckduckgo_html_respects_max_results():
    assert len(parse_duckduckgo_html(DDG_HTML, max_results=1)) == 1


@pytest.mark.asyncio
async def test_search_uses_duckduckgo_without_serpapi_key():
    seen_hosts = []

    def handler(request):
        seen_hosts.append(request.url.host)
        return httpx.Response(200, text=DDG_HTML)

    with patch("blogbot.tools.search_provider.settings") as mock_settings:
        mock_settings.serpapi_api_key = ""
        mock_settings.fetch_user_agent = "test-agent"
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            results = await search_provider.search("edge ai", max_results=5, client=client)

    assert seen_hosts == ["duckduckgo.com"]
    assert len(results) == 2


@pytest.mark.asyncio
async def test_search_prefers_serpapi_and_falls_back_on_failure():
    def serp_ok(request):
        if request.url.host == "serpapi.com":
            assert request.url.params["q"] == "edge ai"
            return httpx.Response(
                200,
                json={"organic_results": [{"title": "Serp hit", "link": "https://serp.example/a", "snippet": "s"}]},
            )
        return httpx.Response(200, text=DDG_HTML)

    def serp_down(request):
        if request.url.host == "serpapi.com":
            return httpx.Response(500, json={"error": "down"})
        return httpx.Response(200, text=DDG_HTML)

    with patch("blogbot.tools.search_provider.settings") as mock_settings:
        mock_settings.serpapi_api_key = "serp-key"
        async with httpx.AsyncClient(transport=httpx.MockTransport(serp_ok)) as client:
            preferred = await search_provider.search("edge ai", max_results=5, client=client)
        async with httpx.AsyncClient(transport=httpx.MockTransport(serp_down)) as client:
            fallback = await search_provider.search("edge ai", max_results=5, client=client)

    assert [r.url for r in preferred] == ["https://serp.example/a"]
    assert [r.url for r in fallback] == ["https://example.com/edge-ai", "https://example.org/direct"]
