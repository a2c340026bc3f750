from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from blogbot.models.content import GeneratedPost
from blogbot.services.validation import is_valid_slug


def parse(raw: str) -> tuple[dict[str, Any], str]:
    """Split a Markdown document into (front-matter dict, body)."""
    if not raw.startswith("---\n"):
        return {}, raw
    end = raw.find("\n---", 3)
    if end == -1:
        return {}, raw
    try:
        metadata = yaml.safe_load(raw[4:end]) or {}
    except yaml.YAMLError as exc:
        logger.warning(f"Unreadable front-matter: {exc}")
        return {}, raw
    if not isinstance(metadata, dict):
        return {}, raw
    return metadata, raw[end + 4 :].lstrip("\n")


class PostStore:
    """Markdown files on disk, one ``<slug>.md`` per post."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def path_for(self, slug: str) -> Path:
        if not is_valid_slug(slug):
            raise ValueError(f"Invalid slug: {slug!r}")
        return self.root / f"{slug}.md"

    def exists(self, slug: str) -> bool:
        return is_valid_slug(slug) and self.path_for(slug).is_file()

    def save(self, post: GeneratedPost) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.path_for(post.slug)
        path.write_text(post.markdown, encoding="utf-8")
        logger.info(f"Saved post {post.slug} to {path}")
        return path

    def read(self, slug: str) -> str | None:
        if not self.exists(slug):
            return None
        return self.path_for(slug).read_text(encoding="utf-8")

    def list_posts(self) -> list[dict[str, Any]]:
        if not self.root.is_dir():
            return []
        posts: list[dict[str, Any]] = []
        for path in self.root.glob("*.md"):
            metadata, _ = parse(path.read_text(encoding="utf-8"))
            posts.append(
                {
                    "slug": str(metadata.get("slug") or path.stem),
                    "title": str(metadata.get("title") or path.stem),
                    "date": str(metadata.get("date") or ""),
                    "topic": metadata.get("topic"),
                }
            )
        posts.sort(key=lambda p: (p["date"], p["slug"]), reverse=True)
        return posts
