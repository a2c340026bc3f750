from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    STATUS = "status"
    DONE = "done"
    ERROR = "error"


class Phase(str, Enum):
    RESEARCH = "research"
    ANALYSIS = "analysis"
    STRATEGY = "strategy"
    SAVE = "save"


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data)}\n\n"
