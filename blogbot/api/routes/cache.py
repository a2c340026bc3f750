from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query

from blogbot.agents.orchestrator import PostOrchestrator
from blogbot.api.deps import get_cache, get_orchestrator
from blogbot.models.schemas import CacheStatsResponse
from blogbot.services import logger as log_service
from blogbot.services.cache import MultiTierCache

router = APIRouter(prefix="/api/cache", tags=["cache"])


@router.get("")
async def cache_stats(cache: MultiTierCache = Depends(get_cache)):
    return {
        "ok": True,
        "enabled": cache.enabled,
        "tiers": cache.tier_names,
        "stats": CacheStatsResponse(**cache.stats.to_dict()),
    }


@router.delete("")
async def clear_cache(
    kind: Literal["research", "analysis", "all"] = Query("all", alias="type"),
    orchestrator: PostOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.clear_cache(kind)
    log_service.log_event(event_type="cache_cleared", message="Cache cleared via API", kind=kind)
    return {"ok": True, "message": f"Cache cleared: {kind}"}
