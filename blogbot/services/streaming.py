from __future__ import annotations

from typing import Any

from blogbot.models.events import EventType, Phase, SSEEvent


def status(phase: Phase | str, message: str, **kwargs: Any) -> SSEEvent:
    phase_value = phase.value if isinstance(phase, Phase) else phase
    return SSEEvent(
        event=EventType.STATUS,
        data={"phase": phase_value, "message": message, **kwargs},
    )


def research_started() -> SSEEvent:
    return status(Phase.RESEARCH, "Starting research…")


def research_completed(sources_count: int, *, cached: bool = False) -> SSEEvent:
    return status(
        Phase.RESEARCH,
        f"Found {sources_count} sources",
        sources_count=sources_count,
        cached=cached,
    )


def analysis_started() -> SSEEvent:
    return status(Phase.ANALYSIS, "Analyzing sources…")


def analysis_completed(analyzed_count: int, *, cached: bool = False) -> SSEEvent:
    return status(
        Phase.ANALYSIS,
        f"Analyzed {analyzed_count} sources",
        analyzed_count=analyzed_count,
        cached=cached,
    )


def strategy_started() -> SSEEvent:
    return status(Phase.STRATEGY, "Drafting post…")


def save_started() -> SSEEvent:
    return status(Phase.SAVE, "Saving markdown…")


def done(slug: str, title: str, **kwargs: Any) -> SSEEvent:
    return SSEEvent(event=EventType.DONE, data={"slug": slug, "title": title, **kwargs})


def error(message: str, phase: Phase | str | None = None) -> SSEEvent:
    data: dict[str, Any] = {"message": message}
    if phase:
        data["phase"] = phase.value if isinstance(phase, Phase) else phase
    return SSEEvent(event=EventType.ERROR, data=data)
