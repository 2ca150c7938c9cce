from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import UUID

import redis

from geopuzzle.api.models import PerformanceSummary, SessionState
from geopuzzle.catalog.registry import Catalog
from geopuzzle.core.hints import HintTier
from geopuzzle.core.modes import AllItems, ByGroups, Guided
from geopuzzle.core.session import AttemptResult, HintResult, Session, new_session_state
from geopuzzle.lock import session_lock
from geopuzzle.session_store import get_profile_best, record_summary, require_session, save_session
from geopuzzle.settings import GameSettings
from geopuzzle.streams import SessionStream, publish_events

logger = logging.getLogger(__name__)

ActionName = Literal["start", "pause", "resume", "reset", "pick", "clear_selection", "drop", "hint"]


@dataclass(frozen=True, slots=True)
class ActionResult:
    state: SessionState
    changed: bool
    event_ids: list[str] = field(default_factory=list)
    attempt: AttemptResult | None = None
    hint: HintResult | None = None


def create_session(
    *,
    r: redis.Redis,
    catalog: Catalog,
    settings: GameSettings,
    profile_id: str,
    selector: AllItems | ByGroups | Guided,
) -> SessionState:
    """Resolve the mode and persist a fresh NotStarted session.

    Raises InvalidSelector; the previous session of the player, if any, is left alone.
    """

    prior = get_profile_best(r=r, profile_id=profile_id)
    state = new_session_state(
        selector=selector,
        catalog=catalog,
        profile_id=profile_id,
        settings=settings,
        prior_best=prior,
    )
    save_session(r=r, state=state)
    return state


def _record_completion(*, r: redis.Redis, state: SessionState, summary: PerformanceSummary, catalog: Catalog) -> None:
    try:
        record_summary(r=r, state=state, summary=summary, catalog=catalog)
    except redis.RedisError:
        # The session is already saved as complete; only the profile record is lost.
        logger.warning("Could not record summary for session %s", state.session_id, exc_info=True)
        return
    logger.info(
        "Session %s complete: score=%s accuracy=%s",
        state.session_id,
        summary.final_score,
        summary.accuracy,
    )


def _apply(session: Session, action: ActionName, payload: dict[str, Any]) -> ActionResult:
    attempt: AttemptResult | None = None
    hint: HintResult | None = None

    if action == "start":
        changed = session.start()
    elif action == "pause":
        changed = session.pause()
    elif action == "resume":
        changed = session.resume()
    elif action == "reset":
        session.reset()
        changed = True
    elif action == "pick":
        changed = session.select(str(payload.get("item_id")))
    elif action == "clear_selection":
        had = session.state.selection is not None
        session.clear_selection()
        changed = had
    elif action == "drop":
        attempt = session.attempt(str(payload.get("target_id")), bool(payload.get("matched")))
        changed = attempt.applied
    elif action == "hint":
        try:
            tier = HintTier(str(payload.get("tier")))
        except ValueError as e:
            raise ValueError(f"Unknown hint tier: {payload.get('tier')}") from e
        hint = session.use_hint(tier)
        changed = hint.granted
    else:
        raise ValueError(f"Unknown action: {action}")

    return ActionResult(state=session.state, changed=changed, attempt=attempt, hint=hint)


def dispatch_action(
    *,
    r: redis.Redis,
    catalog: Catalog,
    session_id: UUID,
    action: ActionName,
    payload: dict[str, Any] | None = None,
) -> ActionResult:
    """Entry point for every gesture/lifecycle event.

    - acquires the per-session lock
    - rehydrates the session and lazily expires a stale hint aid
    - applies the action (no-ops are fine and still return the state)
    - persists state, records a completion summary, publishes session events
    """

    with session_lock(r=r, session_id=str(session_id)):
        state = require_session(r=r, session_id=session_id)

        summaries: list[PerformanceSummary] = []
        session = Session(state, catalog=catalog, on_complete=summaries.append)
        expired = session.expire_hint_if_due()

        result = _apply(session, action, payload or {})
        save_session(r=r, state=session.state)

        for summary in summaries:
            _record_completion(r=r, state=session.state, summary=summary, catalog=catalog)

        ids = publish_events(r=r, stream=SessionStream(session_id=str(session_id)), events=session.drain_events())

        return ActionResult(
            state=session.state,
            changed=result.changed or expired,
            event_ids=ids,
            attempt=result.attempt,
            hint=result.hint,
        )
