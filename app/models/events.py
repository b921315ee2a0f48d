from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    STATE = "state"
    RESULTS = "results"
    ERROR = "error"


@dataclass
class PushEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps({"type": self.event.value, "data": self.data})

    def format_sse(self) -> dict[str, str]:
        return {"event": self.event.value, "data": json.dumps(self.data)}
