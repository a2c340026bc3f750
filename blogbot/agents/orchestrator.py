"""Research -> analysis -> strategy pipeline with cache-aside stages and persistence."""
from __future__ import annotations

import time
from pathlib import Path
from typing import AsyncGenerator, Literal

from loguru import logger

from blogbot.agents.analyst import Analyst
from blogbot.agents.researcher import Researcher, clamp_sources
from blogbot.agents.strategist import Strategist
from blogbot.config import Settings
from blogbot.errors import AppError, get_error_context, get_error_message
from blogbot.llm_client import LLMClient
from blogbot.models.content import (
    AnalysisResult,
    GeneratedPost,
    GenerationMetadata,
    GenerationResult,
    ResearchResult,
)
from blogbot.models.events import Phase, SSEEvent
from blogbot.models.schemas import GenerateRequest
from blogbot.services import streaming
from blogbot.services.cache import CacheKeys, CacheTags, MultiTierCache
from blogbot.services.database import Database
from blogbot.services.logger import log_stage
from blogbot.services.performance import PerformanceMonitor
from blogbot.services.post_store import PostStore

CacheKind = Literal["research", "analysis", "all"]
MAX_SLUG_SUFFIX = 100


class PostOrchestrator:
    def __init__(
        self,
        researcher: Researcher,
        analyst: Analyst,
        strategist: Strategist,
        *,
        post_store: PostStore,
        cache: MultiTierCache | None = None,
        monitor: PerformanceMonitor | None = None,
        database: Database | None = None,
        research_ttl: float = 24 * 3600,
        analysis_ttl: float = 12 * 3600,
    ):
        self.researcher = researcher
        self.analyst = analyst
        self.strategist = strategist
        self.post_store = post_store
        self.cache = cache or MultiTierCache()
        self.monitor = monitor or PerformanceMonitor()
        self.database = database
        self.research_ttl = research_ttl
        self.analysis_ttl = analysis_ttl

    # --- Stages ---

    async def _research(self, request: GenerateRequest, metadata: GenerationMetadata) -> tuple[ResearchResult, bool]:
        cap = clamp_sources(request.max_sources)
        key = CacheKeys.research(request.topic, cap)

        async def compute() -> dict:
            result = await self.researcher.run(request.topic, cap)
            return result.to_dict()

        log_stage("research", "started", topic=request.topic, cap=cap)
        async with self.monitor.measure("research", topic=request.topic):
            value, hit = await self.cache.get_or_compute(
                key, compute, ttl=self.research_ttl, tags=[CacheTags.RESEARCH]
            )
        (metadata.cache_hits if hit else metadata.cache_misses).append("research")
        research = ResearchResult.from_dict(value)
        log_stage("research", "completed", sources=len(research.sources), cached=hit)
        return research, hit

    def _analysis_mode(self, request: GenerateRequest) -> str:
        if self.analyst.llm_available(request.use_llm):
            return f"llm:{request.model or self.analyst.llm.default_model}"
        return "heuristic"

    async def _analysis(
        self,
        request: GenerateRequest,
        research: ResearchResult,
        metadata: GenerationMetadata,
    ) -> tuple[AnalysisResult, bool]:
        key = CacheKeys.analysis([s.url for s in research.sources], self._analysis_mode(request))

        async def compute() -> dict:
            result = await self.analyst.run(research.sources, use_llm=request.use_llm, model=request.model)
            return result.to_dict()

        log_stage("analysis", "started", sources=len(research.sources))
        async with self.monitor.measure("analysis", sources=len(research.sources)):
            value, hit = await self.cache.get_or_compute(
                key, compute, ttl=self.analysis_ttl, tags=[CacheTags.ANALYSIS]
            )
        (metadata.cache_hits if hit else metadata.cache_misses).append("analysis")
        analysis = AnalysisResult.from_dict(value)
        log_stage("analysis", "completed", analyzed=len(analysis.analyzed), cached=hit)
        return analysis, hit

    async def _strategy(self, request: GenerateRequest, analysis: AnalysisResult) -> GeneratedPost:
        log_stage("strategy", "started", questions=len(request.target_questions))
        async with self.monitor.measure("strategy", questions=len(request.target_questions)):
            post = await self.strategist.run(
                topic=request.topic,
                target_questions=list(request.target_questions),
                analyzed=analysis.analyzed,
                audience=request.audience,
                tone=request.tone,
                use_llm=request.use_llm,
                model=request.model,
            )
        log_stage(
            "strategy",
            "completed",
            slug=post.slug,
            outline=post.outline_provenance.value,
            body=post.body_provenance.value,
        )
        return post

    async def _slug_taken(self, slug: str) -> bool:
        if self.post_store.exists(slug):
            return True
        if self.database is None:
            return False
        try:
            return await self.database.slug_exists(slug)
        except Exception as exc:
            logger.warning(f"Slug lookup failed for {slug}: {exc}")
            return False

    async def _unique(self, post: GeneratedPost) -> GeneratedPost:
        if not await self._slug_taken(post.slug):
            return post
        for suffix in range(2, MAX_SLUG_SUFFIX + 1):
            candidate = f"{post.slug}-{suffix}"
            if not await self._slug_taken(candidate):
                logger.info(f"Slug {post.slug} taken, using {candidate}")
                return post.with_slug(candidate)
        raise AppError(f"No free slug for {post.slug}")

    async def _save(
        self,
        request: GenerateRequest,
        post: GeneratedPost,
        generation_time_ms: int,
    ) -> tuple[GeneratedPost, Path, str | None]:
        post = await self._unique(post)
        path = self.post_store.save(post)

        post_id = None
        if self.database is not None:
            try:
                record = await self.database.create_post(
                    post,
                    target_questions=list(request.target_questions),
                    generation_time_ms=generation_time_ms,
                    model=request.model if request.use_llm else None,
                )
                post_id = record["id"]
            except Exception as exc:
                logger.error(f"Failed to persist post {post.slug}: {exc}")
        log_stage("save", "completed", slug=post.slug, path=str(path), post_id=post_id)
        return post, path, post_id

    # --- Public API ---

    async def generate_post(self, request: GenerateRequest) -> GenerationResult:
        metadata = GenerationMetadata()
        started = time.perf_counter()
        async with self.monitor.measure("post_generation", topic=request.topic):
            research, _ = await self._research(request, metadata)
            analysis, _ = await self._analysis(request, research, metadata)
            post = await self._strategy(request, analysis)
            metadata.generation_time_ms = int((time.perf_counter() - started) * 1000)
            post, path, post_id = await self._save(request, post, metadata.generation_time_ms)

        logger.info(
            f"Generated post {post.slug} in {metadata.generation_time_ms}ms "
            f"(hits={metadata.cache_hits}, misses={metadata.cache_misses})"
        )
        return GenerationResult(post=post, metadata=metadata, file_path=str(path), post_id=post_id)

    async def stream_post(self, request: GenerateRequest) -> AsyncGenerator[SSEEvent, None]:
        """Same pipeline as ``generate_post``, reported as progress events."""
        metadata = GenerationMetadata()
        started = time.perf_counter()
        phase = Phase.RESEARCH
        try:
            async with self.monitor.measure("post_generation", topic=request.topic, streamed=True):
                yield streaming.research_started()
                research, hit = await self._research(request, metadata)
                yield streaming.research_completed(len(research.sources), cached=hit)

                phase = Phase.ANALYSIS
                yield streaming.analysis_started()
                analysis, hit = await self._analysis(request, research, metadata)
                yield streaming.analysis_completed(len(analysis.analyzed), cached=hit)

                phase = Phase.STRATEGY
                yield streaming.strategy_started()
                post = await self._strategy(request, analysis)
                metadata.generation_time_ms = int((time.perf_counter() - started) * 1000)

                phase = Phase.SAVE
                yield streaming.save_started()
                post, path, _ = await self._save(request, post, metadata.generation_time_ms)
        except Exception as exc:
            log_stage(phase.value, "error", error=get_error_context(exc))
            message = get_error_message(exc) if isinstance(exc, AppError) else "Failed to generate post"
            yield streaming.error(message, phase)
            return

        yield streaming.done(
            post.slug,
            post.title,
            file_path=str(path),
            generation_time_ms=metadata.generation_time_ms,
            cache_hits=metadata.cache_hits,
            cache_misses=metadata.cache_misses,
        )

    async def clear_cache(self, kind: CacheKind = "all") -> None:
        if kind == "research":
            await self.cache.invalidate_tags([CacheTags.RESEARCH])
        elif kind == "analysis":
            await self.cache.invalidate_tags([CacheTags.ANALYSIS])
        else:
            await self.cache.clear()


def build_orchestrator(
    settings: Settings,
    *,
    cache: MultiTierCache | None = None,
    database: Database | None = None,
    monitor: PerformanceMonitor | None = None,
    llm: LLMClient | None = None,
    post_store: PostStore | None = None,
) -> PostOrchestrator:
    """Wire the default collaborators from settings."""
    llm = llm or LLMClient()
    return PostOrchestrator(
        Researcher(
            min_content_chars=settings.min_content_chars,
            max_content_chars=settings.max_content_chars,
            max_parallel=settings.fetch_max_parallel,
        ),
        Analyst(llm),
        Strategist(llm),
        post_store=post_store or PostStore(settings.posts_dir),
        cache=cache,
        monitor=monitor,
        database=database,
        research_ttl=settings.research_cache_ttl_seconds,
        analysis_ttl=settings.analysis_cache_ttl_seconds,
    )
