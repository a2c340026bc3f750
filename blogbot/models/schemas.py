from __future__ import annotations

from datetime import date
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from blogbot.services.validation import sanitize_text

Question = Annotated[str, StringConstraints(min_length=5, max_length=500)]


# --- Requests ---


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    topic: str = Field(min_length=3, max_length=200, pattern=r"^[a-zA-Z0-9\s\-_.,!?]+$")
    target_questions: list[Question] = Field(alias="targetQuestions", min_length=1, max_length=10)
    max_sources: int | None = Field(default=None, alias="maxSources", ge=3, le=10)
    audience: str | None = Field(default=None, max_length=100)
    tone: str | None = Field(default=None, max_length=100)
    use_llm: bool = Field(default=False, alias="useLLM")
    model: str | None = Field(default=None, pattern=r"^[a-zA-Z0-9\-_.]+$")

    @field_validator("topic", "audience", "tone", mode="before")
    @classmethod
    def _sanitize(cls, value: Any) -> Any:
        if isinstance(value, str):
            return sanitize_text(value)
        return value

    @field_validator("target_questions", mode="before")
    @classmethod
    def _sanitize_questions(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [sanitize_text(v) if isinstance(v, str) else v for v in value]
        return value


class TrackViewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    post_id: str | None = Field(default=None, alias="postId")
    slug: str | None = None
    user_agent: str | None = Field(default=None, alias="userAgent")
    referer: str | None = None
    country: str | None = None
    load_time: float | None = Field(default=None, alias="loadTime")


class WebVitalsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    CLS: float | None = None
    FID: float | None = None
    FCP: float | None = None
    LCP: float | None = None
    TTFB: float | None = None
    url: str | None = None
    user_agent: str | None = Field(default=None, alias="userAgent")
    timestamp: int | None = None


# --- Responses ---


class CacheStatsModel(BaseModel):
    hits: list[str]
    misses: list[str]


class GenerateResponse(BaseModel):
    ok: bool = True
    slug: str
    title: str
    file_path: str | None
    duration_ms: int
    generation_time_ms: int
    reading_time: int
    word_count: int
    provenance: dict[str, str]
    cache_stats: CacheStatsModel


class CacheStatsResponse(BaseModel):
    hits: int
    misses: int
    sets: int
    deletes: int
    hit_rate: float


class CountryCount(BaseModel):
    country: str
    count: int


class DailyViews(BaseModel):
    date: date
    views: int


class PostAnalyticsResponse(BaseModel):
    total_views: int
    unique_views: int
    avg_load_time: float
    top_countries: list[CountryCount]
    views_over_time: list[DailyViews]


class DailyOperations(BaseModel):
    date: date
    count: int
    avg_duration: float


class PerformanceStatsResponse(BaseModel):
    avg_duration: float
    success_rate: float
    total_operations: int
    operations_over_time: list[DailyOperations]
