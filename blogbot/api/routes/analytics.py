from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from loguru import logger

from blogbot.api.deps import get_client_id, get_database, require_database
from blogbot.models.schemas import (
    PerformanceStatsResponse,
    PostAnalyticsResponse,
    TrackViewRequest,
    WebVitalsRequest,
)
from blogbot.services.database import Database
from blogbot.services.performance import track_web_vitals
from blogbot.services.validation import require_slug

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.post("/track-view")
async def track_view(
    body: TrackViewRequest,
    request: Request,
    database: Database | None = Depends(get_database),
):
    """Record a post view; without a database the view is only logged."""
    metadata = {
        "user_agent": body.user_agent or request.headers.get("user-agent"),
        "ip": get_client_id(request),
        "country": body.country,
        "referer": body.referer or request.headers.get("referer"),
        "load_time": body.load_time,
    }

    post_id = body.post_id
    if database is not None and post_id is None and body.slug:
        require_slug(body.slug)
        try:
            record = await database.get_post_by_slug(body.slug)
        except Exception as exc:
            logger.warning(f"Could not resolve post id for {body.slug}: {exc}")
            record = None
        post_id = record["id"] if record else None

    if database is not None and post_id:
        await database.track_post_view(post_id, metadata)
    else:
        logger.info(f"Post view (file-based): slug={body.slug} ip={metadata['ip']} load_time={body.load_time}")
    return {"ok": True, "message": "View tracked"}


@router.get("/posts/{slug}", response_model=PostAnalyticsResponse)
async def post_analytics(
    slug: str,
    days: int = Query(30, ge=1, le=365),
    database: Database = Depends(require_database),
):
    require_slug(slug)
    return await database.get_post_analytics(slug, days)


@router.get("/performance", response_model=PerformanceStatsResponse)
async def performance_stats(
    operation: str | None = Query(None, max_length=100),
    days: int = Query(7, ge=1, le=365),
    database: Database = Depends(require_database),
):
    return await database.get_performance_stats(operation, days)


@router.post("/web-vitals")
async def web_vitals(body: WebVitalsRequest):
    track_web_vitals(body.model_dump(by_alias=True))
    return {"ok": True, "message": "Web vitals tracked"}
