from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    SNAPSHOT = "snapshot"
    STATUS = "status"
    ENTRY = "entry"
    TOKEN = "token"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ChannelEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)
    seq: int = 0

    def format(self) -> str:
        return f"id: {self.seq}\nevent: {self.event.value}\ndata: {json.dumps(self.data, default=str)}\n\n"

    def to_sse(self) -> dict[str, str]:
        return {
            "id": str(self.seq),
            "event": self.event.value,
            "data": json.dumps(self.data, default=str),
        }
