from __future__ import annotations

import json
import time

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from blogbot.agents.orchestrator import PostOrchestrator
from blogbot.api.deps import enforce_rate_limit, get_orchestrator
from blogbot.models.schemas import CacheStatsModel, GenerateRequest, GenerateResponse
from blogbot.services import logger as log_service

router = APIRouter(prefix="/api/generate", tags=["generate"])


@router.post("", response_model=GenerateResponse, dependencies=[Depends(enforce_rate_limit)])
async def generate(
    body: GenerateRequest,
    orchestrator: PostOrchestrator = Depends(get_orchestrator),
):
    """Run the whole pipeline and return the saved post's summary."""
    started = time.perf_counter()
    log_service.log_event(
        event_type="generation_started",
        message="Post generation started",
        topic=body.topic,
        questions=len(body.target_questions),
        use_llm=body.use_llm,
    )
    result = await orchestrator.generate_post(body)
    post = result.post
    duration_ms = int((time.perf_counter() - started) * 1000)
    log_service.log_event(
        event_type="generation_completed",
        message="Post generation completed",
        slug=post.slug,
        duration_ms=duration_ms,
    )
    return GenerateResponse(
        slug=post.slug,
        title=post.title,
        file_path=result.file_path,
        duration_ms=duration_ms,
        generation_time_ms=result.metadata.generation_time_ms,
        reading_time=post.reading_time,
        word_count=post.word_count,
        provenance={
            "outline": post.outline_provenance.value,
            "body": post.body_provenance.value,
        },
        cache_stats=CacheStatsModel(
            hits=result.metadata.cache_hits,
            misses=result.metadata.cache_misses,
        ),
    )


@router.post("/stream", dependencies=[Depends(enforce_rate_limit)])
async def generate_stream(
    body: GenerateRequest,
    orchestrator: PostOrchestrator = Depends(get_orchestrator),
):
    """SSE endpoint that reports each pipeline phase, then done or error."""

    async def event_generator():
        async for event in orchestrator.stream_post(body):
            yield {
                "event": event.event.value,
                "data": json.dumps(event.data),
            }

    return EventSourceResponse(event_generator())
