from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DONE_SENTINEL = "[DONE]"


class EventType(str, Enum):
    JOB_UPDATE = "job_update"
    DONE = "done"
    ERROR = "error"


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def payload(self) -> str:
        if self.event is EventType.DONE:
            return DONE_SENTINEL
        return json.dumps(self.data)

    def to_sse(self) -> dict[str, str]:
        """Shape accepted by sse-starlette's EventSourceResponse (data-only frames)."""
        return {"data": self.payload()}
