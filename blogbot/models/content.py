from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any


class Provenance(str, Enum):
    """Who authored a piece of pipeline output."""

    HEURISTIC = "heuristic"
    LLM = "llm"


@dataclass(frozen=True)
class Source:
    title: str
    url: str
    snippet: str | None = None
    content: str | None = None

    @property
    def text(self) -> str:
        return self.content or self.snippet or ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Source":
        return cls(
            title=str(data.get("title", "")),
            url=str(data.get("url", "")),
            snippet=data.get("snippet"),
            content=data.get("content"),
        )


@dataclass(frozen=True)
class AnalyzedSource(Source):
    summary: str = ""
    key_takeaways: tuple[str, ...] = ()
    provenance: Provenance = Provenance.HEURISTIC

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["key_takeaways"] = list(self.key_takeaways)
        data["provenance"] = self.provenance.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalyzedSource":
        return cls(
            title=str(data.get("title", "")),
            url=str(data.get("url", "")),
            snippet=data.get("snippet"),
            content=data.get("content"),
            summary=str(data.get("summary", "")),
            key_takeaways=tuple(data.get("key_takeaways") or ()),
            provenance=Provenance(data.get("provenance", Provenance.HEURISTIC.value)),
        )


@dataclass(frozen=True)
class OutlineSection:
    heading: str
    points: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"heading": self.heading, "points": list(self.points)}


@dataclass
class ResearchResult:
    topic: str
    sources: list[Source] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"topic": self.topic, "sources": [s.to_dict() for s in self.sources]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResearchResult":
        return cls(
            topic=str(data.get("topic", "")),
            sources=[Source.from_dict(s) for s in data.get("sources", [])],
        )


@dataclass
class AnalysisResult:
    analyzed: list[AnalyzedSource] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"analyzed": [a.to_dict() for a in self.analyzed]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisResult":
        return cls(analyzed=[AnalyzedSource.from_dict(a) for a in data.get("analyzed", [])])


@dataclass(frozen=True)
class GeneratedPost:
    title: str
    slug: str
    markdown: str
    outline: tuple[OutlineSection, ...]
    sources: tuple[dict[str, str], ...]
    date: str
    topic: str
    audience: str
    tone: str
    outline_provenance: Provenance = Provenance.HEURISTIC
    body_provenance: Provenance = Provenance.HEURISTIC

    @property
    def body(self) -> str:
        """Markdown without the front-matter block."""
        text = self.markdown
        if text.startswith("---\n"):
            end = text.find("\n---", 4)
            if end != -1:
                return text[end + 4 :].lstrip("\n")
        return text

    @property
    def word_count(self) -> int:
        return len(self.body.split())

    @property
    def reading_time(self) -> int:
        return max(1, round(self.word_count / 200))

    def with_slug(self, slug: str) -> "GeneratedPost":
        """Return a copy under a new slug, keeping the front-matter in sync."""
        if slug == self.slug:
            return self
        old_line = f'slug: "{self.slug}"'
        new_line = f'slug: "{slug}"'
        return replace(self, slug=slug, markdown=self.markdown.replace(old_line, new_line, 1))

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "slug": self.slug,
            "markdown": self.markdown,
            "outline": [s.to_dict() for s in self.outline],
            "sources": [dict(s) for s in self.sources],
            "date": self.date,
            "topic": self.topic,
            "audience": self.audience,
            "tone": self.tone,
            "outline_provenance": self.outline_provenance.value,
            "body_provenance": self.body_provenance.value,
            "word_count": self.word_count,
            "reading_time": self.reading_time,
        }


@dataclass
class GenerationMetadata:
    generation_time_ms: int = 0
    cache_hits: list[str] = field(default_factory=list)
    cache_misses: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generation_time_ms": self.generation_time_ms,
            "cache_hits": list(self.cache_hits),
            "cache_misses": list(self.cache_misses),
        }


@dataclass
class GenerationResult:
    post: GeneratedPost
    metadata: GenerationMetadata
    file_path: str | None = None
    post_id: str | None = None
