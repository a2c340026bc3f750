from __future__ import annotations

import re

from loguru import logger

from blogbot.llm_client import LLMClient, extract_json_object
from blogbot.models.content import AnalysisResult, AnalyzedSource, Provenance, Source
from blogbot.services.prompt_store import get_prompt, render_prompt

_SENTENCE = re.compile(r"[^.!?]+[.!?]")
LLM_CONTENT_CHARS = 8000
MAX_TAKEAWAYS = 5


def split_sentences(text: str) -> list[str]:
    collapsed = re.sub(r"\s+", " ", text).strip()
    return [s.strip() for s in _SENTENCE.findall(collapsed)] or ([collapsed] if collapsed else [])


def summarize(text: str, max_sentences: int = 3) -> str:
    return " ".join(split_sentences(text)[:max_sentences]).strip()


def extract_takeaways(text: str, max_items: int = MAX_TAKEAWAYS) -> list[str]:
    """Longer sentences make the takeaways; fall back to a one-sentence summary."""
    long_sentences = [s for s in _SENTENCE.findall(re.sub(r"\s+", " ", text)) if len(s.strip()) > 60]
    takeaways = [s.strip() for s in long_sentences[:max_items]]
    if takeaways:
        return takeaways
    single = summarize(text, 1)
    return [single] if single else []


def analyze_heuristic(source: Source) -> AnalyzedSource:
    text = source.text
    summary = summarize(text) or source.title or source.url
    takeaways = extract_takeaways(text) or [summary]
    return AnalyzedSource(
        title=source.title,
        url=source.url,
        snippet=source.snippet,
        content=source.content,
        summary=summary,
        key_takeaways=tuple(takeaways),
        provenance=Provenance.HEURISTIC,
    )


def _clean_takeaways(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    items = [re.sub(r"\s+", " ", v).strip() for v in value if isinstance(v, str)]
    return [v for v in items if v][:MAX_TAKEAWAYS]


class Analyst:
    """Summarizes each source and pulls out its key takeaways."""

    def __init__(self, llm: LLMClient | None = None):
        self.llm = llm

    def llm_available(self, use_llm: bool) -> bool:
        return bool(use_llm and self.llm is not None and self.llm.is_configured)

    async def run(
        self,
        sources: list[Source],
        *,
        use_llm: bool = False,
        model: str | None = None,
    ) -> AnalysisResult:
        if not self.llm_available(use_llm):
            return AnalysisResult(analyzed=[analyze_heuristic(s) for s in sources])

        analyzed = []
        for source in sources:
            analyzed.append(await self._analyze_with_llm(source, model))
        return AnalysisResult(analyzed=analyzed)

    async def _analyze_with_llm(self, source: Source, model: str | None) -> AnalyzedSource:
        fallback = analyze_heuristic(source)
        prompt = render_prompt(
            "analyst.summarize",
            title=source.title,
            url=source.url,
            content=source.text[:LLM_CONTENT_CHARS],
        )
        try:
            reply = await self.llm.complete(
                [
                    {"role": "system", "content": get_prompt("analyst.system")},
                    {"role": "user", "content": prompt},
                ],
                model=model,
                temperature=0.3,
                caller="analyst",
            )
            payload = extract_json_object(reply)
        except Exception as exc:
            logger.warning(f"LLM analysis failed for {source.url}, using heuristic: {exc}")
            return fallback

        summary = payload.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            logger.warning(f"LLM analysis for {source.url} had no summary, using heuristic")
            return fallback

        takeaways = _clean_takeaways(payload.get("takeaways")) or list(fallback.key_takeaways)
        return AnalyzedSource(
            title=source.title,
            url=source.url,
            snippet=source.snippet,
            content=source.content,
            summary=summary.strip(),
            key_takeaways=tuple(takeaways),
            provenance=Provenance.LLM,
        )
