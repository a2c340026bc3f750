from __future__ import annotations

import pytest

from blogbot.models.content import AnalyzedSource, Provenance, Source
from tests.fakes import ARTICLE


@pytest.fixture
def sources() -> list[Source]:
    return [
        Source(title="Edge AI primer", url="https://example.com/primer", content=ARTICLE),
        Source(title="Latency study", url="https://example.org/latency", content=ARTICLE),
        Source(title="Privacy brief", url="https://example.net/privacy", content=ARTICLE),
    ]


@pytest.fixture
def analyzed() -> list[AnalyzedSource]:
    return [
        AnalyzedSource(
            title="Latency study",
            url="https://example.org/latency",
            summary="On-device inference is fast.",
            key_takeaways=(
                "Local inference cuts latency to a few milliseconds.",
                "Batching still matters on small accelerators.",
            ),
        ),
        AnalyzedSource(
            title="Privacy brief",
            url="https://example.net/privacy",
            summary="Data stays on the device.",
            key_takeaways=("Keeping data on the device improves privacy.",),
            provenance=Provenance.LLM,
        ),
    ]
