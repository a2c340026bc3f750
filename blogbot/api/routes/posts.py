from __future__ import annotations

from pathlib import Path

import markdown
from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates

from blogbot.api.deps import get_database, get_post_store
from blogbot.errors import NotFoundError
from blogbot.services.database import Database
from blogbot.services.post_store import PostStore, parse
from blogbot.services.validation import require_slug

TEMPLATES_DIR = Path(__file__).resolve().parents[2] / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
POSTS_INDEX_LIMIT = 50

router = APIRouter(tags=["posts"])


async def load_markdown(slug: str, store: PostStore, database: Database | None) -> str:
    """Markdown from the posts directory, else from the database."""
    raw = store.read(slug)
    if raw is not None:
        return raw
    if database is not None:
        record = await database.get_post_by_slug(slug)
        if record is not None:
            return record["content"]
    raise NotFoundError(f"Post not found: {slug}")


def render_html(body: str) -> str:
    return markdown.markdown(body, extensions=["extra", "tables", "fenced_code", "toc"])


@router.get("/api/post/{slug}", response_class=PlainTextResponse)
async def get_post_markdown(
    slug: str,
    store: PostStore = Depends(get_post_store),
    database: Database | None = Depends(get_database),
):
    require_slug(slug)
    raw = await load_markdown(slug, store, database)
    return PlainTextResponse(raw, media_type="text/markdown; charset=utf-8")


@router.get("/posts", response_class=HTMLResponse)
async def posts_index(
    request: Request,
    store: PostStore = Depends(get_post_store),
    database: Database | None = Depends(get_database),
):
    posts = store.list_posts()
    if not posts and database is not None:
        listing = await database.list_posts(page=1, limit=POSTS_INDEX_LIMIT)
        posts = [
            {"slug": row["slug"], "title": row["title"], "date": str(row.get("created_at") or "")[:10]}
            for row in listing["posts"]
        ]
    return templates.TemplateResponse(request, "posts_index.html", {"posts": posts})


@router.get("/posts/{slug}", response_class=HTMLResponse)
async def post_page(
    request: Request,
    slug: str,
    store: PostStore = Depends(get_post_store),
    database: Database | None = Depends(get_database),
):
    require_slug(slug)
    raw = await load_markdown(slug, store, database)
    metadata, body = parse(raw)
    return templates.TemplateResponse(
        request,
        "post.html",
        {
            "slug": slug,
            "title": metadata.get("title") or slug,
            "meta": metadata,
            "content": render_html(body),
        },
    )
