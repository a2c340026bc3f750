from __future__ import annotations

import json
import re
from datetime import date
from typing import Any, Callable

from loguru import logger

from blogbot.llm_client import LLMClient, extract_json_object
from blogbot.models.content import AnalyzedSource, GeneratedPost, OutlineSection, Provenance
from blogbot.services.prompt_store import get_prompt, render_prompt
from blogbot.tools.web_utils import extract_domain, make_slug

DEFAULT_AUDIENCE = "General tech audience"
DEFAULT_TONE = "Informative and concise"
MAX_POINTS = 5
SOURCES_HEADING = "Sources"

_WORD = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset(
    "a an and are as at be by can do does for from how in is it of on or the this to what when "
    "where which who why will with you your about into its their there these those than then".split()
)


def _tokens(text: str) -> set[str]:
    return {w for w in _WORD.findall(text.lower()) if len(w) > 1 and w not in _STOPWORDS}


def rank_takeaways(question: str, analyzed: list[AnalyzedSource], limit: int = MAX_POINTS) -> list[str]:
    """Takeaways from every source ordered by word overlap with the question."""
    wanted = _tokens(question)
    if not wanted:
        return []
    scored: list[tuple[int, int, int, str]] = []
    seen: set[str] = set()
    for source_index, source in enumerate(analyzed):
        for point_index, point in enumerate(source.key_takeaways):
            if point in seen:
                continue
            seen.add(point)
            overlap = len(wanted & _tokens(point))
            if overlap:
                scored.append((-overlap, source_index, point_index, point))
    scored.sort()
    return [point for *_, point in scored[:limit]]


def _is_sources_heading(heading: str) -> bool:
    return heading.strip().rstrip("?:.!").lower() == SOURCES_HEADING.lower()


def build_outline(topic: str, questions: list[str], analyzed: list[AnalyzedSource]) -> list[OutlineSection]:
    outline = [
        OutlineSection(
            f"Introduction to {topic}",
            (f"Why {topic} matters", "What this post covers"),
        )
    ]
    for index, question in enumerate(questions):
        points = rank_takeaways(question, analyzed)
        if not points and index < len(analyzed):
            points = list(analyzed[index].key_takeaways[:MAX_POINTS])
        heading = f"About {question}" if _is_sources_heading(question) else question
        outline.append(OutlineSection(heading, tuple(points)))
    outline.append(OutlineSection("Conclusion", ("Key takeaways", "Next steps and further reading")))
    return outline


def render_front_matter(fields: dict[str, str]) -> str:
    lines = ["---"]
    lines.extend(f"{key}: {json.dumps(value, ensure_ascii=False)}" for key, value in fields.items())
    lines.append("---")
    return "\n".join(lines)


def render_sources(sources: list[dict[str, str]]) -> list[str]:
    return [f"## {SOURCES_HEADING}", *(f"- [{s['title'] or extract_domain(s['url'])}]({s['url']})" for s in sources)]


def render_markdown(
    title: str,
    outline: list[OutlineSection],
    sources: list[dict[str, str]],
    front_matter: dict[str, str],
) -> str:
    body: list[str] = [f"# {title}", ""]
    for section in outline:
        body.append(f"## {section.heading}")
        body.extend(f"- {point}" for point in section.points)
        body.append("")
    body.extend(render_sources(sources))
    body.append("")
    return f"{render_front_matter(front_matter)}\n\n" + "\n".join(body)


def _one_line(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def parse_outline(payload: dict[str, Any]) -> list[OutlineSection]:
    raw = payload.get("outline")
    if not isinstance(raw, list):
        return []
    sections: list[OutlineSection] = []
    for item in raw:
        if not isinstance(item, dict) or not isinstance(item.get("heading"), str):
            continue
        heading = _one_line(item["heading"]).lstrip("#").strip()
        if not heading or _is_sources_heading(heading):
            continue
        points = item.get("points") if isinstance(item.get("points"), list) else []
        cleaned = tuple(_one_line(p) for p in points if isinstance(p, str) and p.strip())
        sections.append(OutlineSection(heading, cleaned))
    return sections


class Strategist:
    """Turns analyzed sources and target questions into a Markdown post."""

    def __init__(self, llm: LLMClient | None = None, today: Callable[[], date] = date.today):
        self.llm = llm
        self._today = today

    async def run(
        self,
        *,
        topic: str,
        target_questions: list[str],
        analyzed: list[AnalyzedSource],
        audience: str | None = None,
        tone: str | None = None,
        use_llm: bool = False,
        model: str | None = None,
    ) -> GeneratedPost:
        audience = audience or DEFAULT_AUDIENCE
        tone = tone or DEFAULT_TONE
        post_date = self._today().isoformat()
        title = f"{topic}: Answers to {len(target_questions)} Key Questions"
        slug = make_slug(f"{post_date}-{title}")
        sources = [{"title": a.title, "url": a.url} for a in analyzed]
        front_matter = {
            "title": title,
            "date": post_date,
            "slug": slug,
            "topic": topic,
            "audience": audience,
            "tone": tone,
        }

        outline = build_outline(topic, target_questions, analyzed)
        outline_provenance = Provenance.HEURISTIC
        llm_enabled = bool(use_llm and self.llm is not None and self.llm.is_configured)

        if llm_enabled:
            planned = await self._plan_outline(topic, target_questions, analyzed, audience, tone, model)
            if planned:
                outline, outline_provenance = planned, Provenance.LLM

        markdown = render_markdown(title, outline, sources, front_matter)
        body_provenance = Provenance.HEURISTIC

        if llm_enabled:
            body = await self._write_body(title, outline, sources, audience, tone, model)
            if body:
                if f"## {SOURCES_HEADING}" not in body:
                    body = body + "\n\n" + "\n".join(render_sources(sources)) + "\n"
                markdown = f"{render_front_matter(front_matter)}\n\n{body}"
                body_provenance = Provenance.LLM

        return GeneratedPost(
            title=title,
            slug=slug,
            markdown=markdown,
            outline=tuple(outline),
            sources=tuple(sources),
            date=post_date,
            topic=topic,
            audience=audience,
            tone=tone,
            outline_provenance=outline_provenance,
            body_provenance=body_provenance,
        )

    async def _plan_outline(
        self,
        topic: str,
        questions: list[str],
        analyzed: list[AnalyzedSource],
        audience: str,
        tone: str,
        model: str | None,
    ) -> list[OutlineSection]:
        evidence = [{"title": a.title, "keyTakeaways": list(a.key_takeaways[:MAX_POINTS])} for a in analyzed]
        prompt = render_prompt(
            "strategist.outline",
            topic=topic,
            audience=audience,
            tone=tone,
            questions=json.dumps(questions, ensure_ascii=False),
            evidence=json.dumps(evidence, ensure_ascii=False),
        )
        try:
            reply = await self.llm.complete(
                [
                    {"role": "system", "content": get_prompt("strategist.outline_system")},
                    {"role": "user", "content": prompt},
                ],
                model=model,
                temperature=0.4,
                caller="strategist.outline",
            )
            outline = parse_outline(extract_json_object(reply))
        except Exception as exc:
            logger.warning(f"LLM outline failed, keeping heuristic outline: {exc}")
            return []
        if not outline:
            logger.warning("LLM outline was empty, keeping heuristic outline")
        return outline

    async def _write_body(
        self,
        title: str,
        outline: list[OutlineSection],
        sources: list[dict[str, str]],
        audience: str,
        tone: str,
        model: str | None,
    ) -> str:
        indexed = [{"index": i + 1, **s} for i, s in enumerate(sources)]
        prompt = render_prompt(
            "strategist.write",
            title=title,
            audience=audience,
            tone=tone,
            outline=json.dumps([s.to_dict() for s in outline], ensure_ascii=False),
            sources=json.dumps(indexed, ensure_ascii=False),
        )
        try:
            reply = await self.llm.complete(
                [
                    {"role": "system", "content": get_prompt("strategist.writer_system")},
                    {"role": "user", "content": prompt},
                ],
                model=model,
                temperature=0.5,
                caller="strategist.write",
            )
        except Exception as exc:
            logger.warning(f"LLM writing failed, keeping heuristic markdown: {exc}")
            return ""
        return reply.strip()
