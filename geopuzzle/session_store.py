from __future__ import annotations

import logging
from uuid import UUID

import redis
from pydantic import ValidationError

from geopuzzle.api.models import PerformanceSummary, ProfileBest, SessionState
from geopuzzle.catalog.registry import Catalog
from geopuzzle.core.modes import selector_regions

logger = logging.getLogger(__name__)

SESSIONS_SET_KEY = "geopuzzle:sessions"
SESSION_KEY_PREFIX = "geopuzzle:session:"  # + {uuid}
PROFILE_KEY_PREFIX = "geopuzzle:profile:"  # + {profile_id}:best / :history

# Older summaries are dropped past this many.
HISTORY_LIMIT = 100


class SessionNotFound(LookupError):
    pass


def _session_key(session_id: UUID) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


def _best_key(profile_id: str) -> str:
    return f"{PROFILE_KEY_PREFIX}{profile_id}:best"


def _history_key(profile_id: str) -> str:
    return f"{PROFILE_KEY_PREFIX}{profile_id}:history"


def save_session(*, r: redis.Redis, state: SessionState) -> None:
    r.set(_session_key(state.session_id), state.model_dump_json())
    r.sadd(SESSIONS_SET_KEY, str(state.session_id))


def get_session(*, r: redis.Redis, session_id: UUID) -> SessionState | None:
    raw = r.get(_session_key(session_id))
    if not raw:
        return None
    return SessionState.model_validate_json(raw)


def require_session(*, r: redis.Redis, session_id: UUID) -> SessionState:
    state = get_session(r=r, session_id=session_id)
    if state is None:
        raise SessionNotFound("Session not found")
    return state


def delete_session(*, r: redis.Redis, session_id: UUID) -> None:
    r.delete(_session_key(session_id))
    r.srem(SESSIONS_SET_KEY, str(session_id))


def list_sessions(*, r: redis.Redis, profile_id: str | None = None) -> list[SessionState]:
    ids = sorted(r.smembers(SESSIONS_SET_KEY))
    out: list[SessionState] = []
    for sid in ids:
        try:
            session_id = UUID(sid)
        except ValueError:
            continue
        state = get_session(r=r, session_id=session_id)
        if state is None:
            continue
        if profile_id is not None and state.profile_id != profile_id:
            continue
        out.append(state)
    out.sort(key=lambda s: s.created_at, reverse=True)
    return out


def get_profile_best(*, r: redis.Redis, profile_id: str) -> ProfileBest | None:
    """Prior best for a profile, or None when there is no usable record.

    A failed or corrupt read is treated the same as "no record".
    """

    try:
        raw = r.get(_best_key(profile_id))
    except redis.RedisError:
        logger.warning("Could not read best record for profile %s", profile_id, exc_info=True)
        return None
    if not raw:
        return None
    try:
        return ProfileBest.model_validate_json(raw)
    except ValidationError:
        logger.warning("Ignoring corrupt best record for profile %s", profile_id)
        return None


def merge_best(
    prior: ProfileBest | None,
    summary: PerformanceSummary,
    *,
    completed_regions: frozenset[str] = frozenset(),
) -> ProfileBest:
    best = (prior or ProfileBest()).model_copy(deep=True)
    best.games_played += 1
    best.total_score += summary.final_score
    best.high_score = max(best.high_score, summary.final_score)
    if best.best_time_seconds is None or summary.elapsed_seconds < best.best_time_seconds:
        best.best_time_seconds = summary.elapsed_seconds
    if summary.misses == 0:
        best.perfect_games += 1
    if summary.within_time_limit:
        best.speed_challenges_won += 1
    best.completed_regions = sorted(set(best.completed_regions) | set(completed_regions))
    return best


def record_summary(
    *,
    r: redis.Redis,
    state: SessionState,
    summary: PerformanceSummary,
    catalog: Catalog,
) -> ProfileBest:
    """Append the summary to the profile history and fold it into the profile best."""

    regions = frozenset(reg.value for reg in selector_regions(state.selector, catalog))
    best = merge_best(get_profile_best(r=r, profile_id=state.profile_id), summary, completed_regions=regions)

    pipe = r.pipeline()
    pipe.lpush(_history_key(state.profile_id), summary.model_dump_json())
    pipe.ltrim(_history_key(state.profile_id), 0, HISTORY_LIMIT - 1)
    pipe.set(_best_key(state.profile_id), best.model_dump_json())
    pipe.execute()
    return best


def get_profile_history(*, r: redis.Redis, profile_id: str, count: int = 20) -> list[PerformanceSummary]:
    raws = r.lrange(_history_key(profile_id), 0, max(count, 1) - 1)
    out: list[PerformanceSummary] = []
    for raw in raws:
        try:
            out.append(PerformanceSummary.model_validate_json(raw))
        except ValidationError:
            continue
    return out
