from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import cast

import redis

from geopuzzle.core.events import SessionEvent

# Streams are capped so long-lived sessions don't grow without bound.
STREAM_MAXLEN = 1_000


@dataclass(frozen=True, slots=True)
class SessionStream:
    session_id: str

    @property
    def key(self) -> str:
        return f"events:session:{self.session_id}"


def publish_events(*, r: redis.Redis, stream: SessionStream, events: Sequence[SessionEvent]) -> list[str]:
    """Append session events to the session's stream; returns the entry ids."""

    ids: list[str] = []
    for event in events:
        stream_id = r.xadd(stream.key, event.as_fields(), maxlen=STREAM_MAXLEN, approximate=True)
        ids.append(cast(str, stream_id))
    return ids


def read_events(
    *,
    r: redis.Redis,
    stream: SessionStream,
    count: int = 50,
    start: str = "-",
    end: str = "+",
) -> list[tuple[str, dict[str, str]]]:
    entries = r.xrange(stream.key, min=start, max=end, count=count)
    return [(cast(str, mid), cast(dict[str, str], fields)) for mid, fields in entries]
