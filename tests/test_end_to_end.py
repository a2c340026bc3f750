from __future__ import annotations

import re

import pytest
from fastapi.testclient import TestClient

from blogbot.agents.analyst import Analyst
from blogbot.agents.orchestrator import PostOrchestrator
from blogbot.agents.researcher import Researcher
from blogbot.agents.strategist import Strategist
from blogbot.main import app
from blogbot.models.schemas import GenerateRequest
from blogbot.services.cache import MemoryTier, MultiTierCache
from blogbot.services.post_store import PostStore, parse
from blogbot.services.rate_limiter import RateLimiter
from tests.fakes import FakeFetch, FakeSearch, hit, passthrough_extract

SCENARIO = {
    "topic": "Edge AI for IoT",
    "targetQuestions": ["What is Edge AI?"],
    "maxSources": 3,
    "useLLM": False,
}


@pytest.fixture
def orchestrator(tmp_path):
    search = FakeSearch(
        default=[
            hit("https://iot.example.com/edge-ai", "Edge AI on IoT devices"),
            hit("https://iot.example.com/edge-ai?ref=feed", "Duplicate"),
            hit("https://chips.example.org/npu", "Neural accelerators"),
            hit("https://blog.example.net/latency", "Latency at the edge"),
            hit("https://blog.example.net/extra", "One too many"),
        ]
    )
    researcher = Researcher(
        search=search,
        fetch=FakeFetch(),
        extract=passthrough_extract,
        min_content_chars=500,
        max_content_chars=15000,
        max_parallel=1,
    )
    return PostOrchestrator(
        researcher,
        Analyst(None),
        Strategist(None),
        post_store=PostStore(tmp_path / "posts"),
        cache=MultiTierCache([MemoryTier()]),
    )


@pytest.mark.asyncio
async def test_edge_ai_scenario_produces_a_complete_post(orchestrator):
    result = await orchestrator.generate_post(GenerateRequest(**SCENARIO))
    post = result.post

    assert re.match(r"^\d{4}-\d{2}-\d{2}-edge-ai-for-iot", post.slug)
    assert "## What is Edge AI?" in post.markdown
    assert 0 <= len(post.sources) <= 3

    metadata, body = parse(post.markdown)
    assert metadata["slug"] == post.slug
    assert len(re.findall(r"^# ", body, flags=re.MULTILINE)) == 1
    headings = re.findall(r"^## (.+)$", body, flags=re.MULTILINE)
    assert headings == [s.heading for s in post.outline] + ["Sources"]
    for source in post.sources:
        assert body.count(f"]({source['url']})") == 1


@pytest.mark.asyncio
async def test_research_respects_source_invariants(orchestrator):
    research = await orchestrator.researcher.run("Edge AI for IoT", 3)

    urls = [re.sub(r"[#?].*$", "", s.url) for s in research.sources]
    assert len(urls) == len(set(urls)) <= 3
    assert all(500 <= len(s.content) <= 15000 for s in research.sources)


def test_scenario_over_http(orchestrator, monkeypatch):
    monkeypatch.setattr("sse_starlette.sse.AppStatus.should_exit_event", None, raising=False)
    app.state.orchestrator = orchestrator
    app.state.cache = orchestrator.cache
    app.state.post_store = orchestrator.post_store
    app.state.database = None
    app.state.rate_limiter = RateLimiter(max_requests=5, window_seconds=60)
    client = TestClient(app)

    created = client.post("/api/generate", json=SCENARIO)
    assert created.status_code == 200
    slug = created.json()["slug"]

    markdown = client.get(f"/api/post/{slug}")
    assert markdown.status_code == 200
    assert "## What is Edge AI?" in markdown.text

    again = client.post("/api/generate", json=SCENARIO).json()
    assert again["cache_stats"] == {"hits": ["research", "analysis"], "misses": []}
    assert again["slug"] == f"{slug}-2"

    stats = client.get("/api/cache").json()["stats"]
    assert stats["hits"] == 2
