from __future__ import annotations

import asyncio
import logging
from uuid import UUID

from fastapi import WebSocket

from geopuzzle.api.models import SessionState, SessionUpdate

logger = logging.getLogger(__name__)


class SessionUpdateHub:
    """Pushes a `SessionUpdate` snapshot to every socket watching a session.

    Lives in one process. Subscribers get the derived view (phase, score,
    progress, hint status, summary once complete) so a board or scoreboard can
    redraw without fetching the session again.
    """

    def __init__(self) -> None:
        self._watchers: dict[UUID, set[WebSocket]] = {}
        self._guard = asyncio.Lock()

    async def subscribe(self, session_id: UUID, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._guard:
            self._watchers.setdefault(session_id, set()).add(websocket)

    async def unsubscribe(self, session_id: UUID, websocket: WebSocket) -> None:
        async with self._guard:
            self._drop(session_id, [websocket])

    def watcher_count(self, session_id: UUID) -> int:
        return len(self._watchers.get(session_id, ()))

    async def publish(self, state: SessionState) -> int:
        """Send the current snapshot of `state`; returns how many sockets received it."""

        async with self._guard:
            sockets = list(self._watchers.get(state.session_id, ()))
        if not sockets:
            return 0

        message = SessionUpdate.from_state(state).model_dump(mode="json")
        gone: list[WebSocket] = []
        for ws in sockets:
            try:
                await ws.send_json(message)
            except Exception:
                logger.debug("Dropping closed socket for session %s", state.session_id, exc_info=True)
                gone.append(ws)

        if gone:
            async with self._guard:
                self._drop(state.session_id, gone)
        return len(sockets) - len(gone)

    def _drop(self, session_id: UUID, sockets: list[WebSocket]) -> None:
        watchers = self._watchers.get(session_id)
        if watchers is None:
            return
        watchers.difference_update(sockets)
        if not watchers:
            del self._watchers[session_id]


hub = SessionUpdateHub()
