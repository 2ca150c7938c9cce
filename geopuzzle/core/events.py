from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

EventType = Literal[
    "SESSION_STARTED",
    "SESSION_PAUSED",
    "SESSION_RESUMED",
    "ITEM_SELECTED",
    "SELECTION_CLEARED",
    "ITEM_PLACED",
    "PLACEMENT_MISSED",
    "HINT_GRANTED",
    "HINT_EXPIRED",
    "SESSION_COMPLETED",
    "SESSION_RESET",
]


@dataclass(frozen=True, slots=True)
class SessionEvent:
    type: EventType
    payload: dict[str, Any]
    ts: datetime

    @staticmethod
    def now(*, type: EventType, payload: dict[str, Any], ts: datetime | None = None) -> "SessionEvent":
        return SessionEvent(type=type, payload=payload, ts=ts or datetime.now(timezone.utc))

    def as_fields(self) -> dict[str, str]:
        """Flat string mapping suitable for a Redis stream entry."""

        fields = {"type": self.type, "ts": self.ts.isoformat()}
        for k, v in self.payload.items():
            fields[str(k)] = "" if v is None else str(v)
        return fields
