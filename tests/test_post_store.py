from __future__ import annotations

import pytest

from blogbot.models.content import GeneratedPost, OutlineSection
from blogbot.services.post_store import PostStore, parse


def _post(slug: str, date: str, title: str = "Edge AI") -> GeneratedPost:
    markdown = (
        f'---\ntitle: "{title}"\ndate: "{date}"\nslug: "{slug}"\ntopic: "Edge AI"\n---\n\n'
        f"# {title}\n\nBody text here.\n"
    )
    return GeneratedPost(
        title=title,
        slug=slug,
        markdown=markdown,
        outline=(OutlineSection("Intro"),),
        sources=(),
        date=date,
        topic="Edge AI",
        audience="Engineers",
        tone="Direct",
    )


def test_parse_splits_front_matter():
    metadata, body = parse('---\ntitle: "A: B"\ndate: "2026-03-14"\n---\n\n# A\n')
    assert metadata == {"title": "A: B", "date": "2026-03-14"}
    assert body == "# A\n"


def test_parse_without_front_matter_returns_raw():
    assert parse("# Just markdown\n") == ({}, "# Just markdown\n")
    assert parse("---\nnever closed") == ({}, "---\nnever closed")


def test_save_read_and_list(tmp_path):
    store = PostStore(tmp_path / "posts")
    older = _post("2026-01-01-edge-ai", "2026-01-01", "Older")
    newer = _post("2026-03-14-edge-ai", "2026-03-14", "Newer")

    path = store.save(older)
    store.save(newer)

    assert path == tmp_path / "posts" / "2026-01-01-edge-ai.md"
    assert store.exists("2026-01-01-edge-ai")
    assert store.read("2026-01-01-edge-ai") == older.markdown
    assert store.read("missing") is None
    assert [p["title"] for p in store.list_posts()] == ["Newer", "Older"]


def test_invalid_slugs_never_touch_the_filesystem(tmp_path):
    store = PostStore(tmp_path)
    assert not store.exists("../secrets")
    assert store.read("../secrets") is None
    with pytest.raises(ValueError):
        store.path_for("../secrets")


def test_list_posts_on_missing_directory(tmp_path):
    assert PostStore(tmp_path / "nothing").list_posts() == []


def test_generated_post_derived_fields():
    post = _post("2026-03-14-edge-ai", "2026-03-14")

    assert post.body == "# Edge AI\n\nBody text here.\n"
    assert post.word_count == 6
    assert post.reading_time == 1

    renamed = post.with_slug("2026-03-14-edge-ai-2")
    assert renamed.slug == "2026-03-14-edge-ai-2"
    assert 'slug: "2026-03-14-edge-ai-2"' in renamed.markdown
    assert post.with_slug(post.slug) is post
