from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from geopuzzle.api.models import (
    ItemStats,
    PerformanceSummary,
    ProfileBest,
    SessionPhase,
    SessionState,
)
from geopuzzle.catalog.registry import Catalog
from geopuzzle.core.events import EventType, SessionEvent
from geopuzzle.core.hints import HINT_DURATIONS, HintAid, HintTier, HintTimer, cost, reveal_for
from geopuzzle.core.modes import AllItems, ByGroups, Guided, hint_allotment, resolve, time_limit
from geopuzzle.fsm import SessionFSM
from geopuzzle.settings import GameSettings

logger = logging.getLogger(__name__)

BASE_POINTS = 100
PENALTY_PER_MISS = 10
MIN_POINTS = 10

Clock = Callable[[], datetime]
CompletionSink = Callable[[PerformanceSummary], None]


def _now() -> datetime:
    return datetime.now(tz=UTC)


def placement_points(miss_streak: int) -> int:
    """Reward for a correct placement after `miss_streak` consecutive misses."""

    return max(BASE_POINTS - PENALTY_PER_MISS * miss_streak, MIN_POINTS)


@dataclass(frozen=True, slots=True)
class AttemptResult:
    applied: bool
    matched: bool = False
    points: int = 0
    completed: bool = False


@dataclass(frozen=True, slots=True)
class HintResult:
    granted: bool
    aid: HintAid | None = None


def new_session_state(
    *,
    selector: AllItems | ByGroups | Guided,
    catalog: Catalog,
    profile_id: str,
    settings: GameSettings | None = None,
    prior_best: ProfileBest | None = None,
    now: datetime | None = None,
    session_id: UUID | None = None,
) -> SessionState:
    """Build a fresh NotStarted session. Raises InvalidSelector via resolve()."""

    settings = settings or GameSettings()
    active = resolve(selector, catalog)
    allotment = hint_allotment(selector, settings)
    ts = now or _now()
    return SessionState(
        session_id=session_id or uuid4(),
        profile_id=profile_id,
        selector=selector,
        active_set=active,
        hint_allotment=allotment,
        hint_balance=allotment,
        prior_best=prior_best,
        created_at=ts,
        last_updated_at=ts,
    )


class Session:
    """Owns one session's mutable state.

    Every operation is total: calls that don't make sense in the current state
    (stale selection, wrong phase, not enough points for a hint) leave the state
    untouched and report that nothing happened. The UI event source cannot be
    trusted to sequence perfectly.
    """

    def __init__(
        self,
        state: SessionState,
        *,
        catalog: Catalog,
        clock: Clock = _now,
        timer: HintTimer | None = None,
        on_complete: CompletionSink | None = None,
    ) -> None:
        self.state = state
        self.catalog = catalog
        self._clock = clock
        self._timer = timer
        self._on_complete = on_complete
        self._events: list[SessionEvent] = []
        self._fsm = SessionFSM(state)

    @classmethod
    def create(
        cls,
        *,
        selector: AllItems | ByGroups | Guided,
        catalog: Catalog,
        profile_id: str,
        settings: GameSettings | None = None,
        prior_best: ProfileBest | None = None,
        clock: Clock = _now,
        timer: HintTimer | None = None,
        on_complete: CompletionSink | None = None,
    ) -> "Session":
        state = new_session_state(
            selector=selector,
            catalog=catalog,
            profile_id=profile_id,
            settings=settings,
            prior_best=prior_best,
            now=clock(),
        )
        return cls(state, catalog=catalog, clock=clock, timer=timer, on_complete=on_complete)

    # Derived values

    @property
    def phase(self) -> SessionPhase:
        return self.state.phase

    @property
    def is_complete(self) -> bool:
        return self.state.phase == SessionPhase.complete

    @property
    def remaining(self) -> int:
        return len(self.state.active_set) - len(self.state.placed)

    @property
    def progress(self) -> float:
        return round(100.0 * len(self.state.placed) / len(self.state.active_set), 1)

    @property
    def summary(self) -> PerformanceSummary | None:
        return self.state.summary

    def elapsed(self, now: datetime | None = None) -> float:
        s = self.state
        if s.running_since is None:
            return s.elapsed_seconds
        now = now or self._clock()
        return s.elapsed_seconds + max(0.0, (now - s.running_since).total_seconds())

    def drain_events(self) -> list[SessionEvent]:
        out, self._events = self._events, []
        return out

    # Lifecycle

    def start(self) -> bool:
        if self.state.phase != SessionPhase.not_started:
            return False
        now = self._clock()
        self._fsm.start()
        self._fsm.sync_phase_to_model()
        self.state.running_since = now
        limit = time_limit(self.state.selector)
        self._emit("SESSION_STARTED", {"items": len(self.state.active_set), "time_limit_seconds": limit}, now)
        return True

    def pause(self) -> bool:
        if self.state.phase != SessionPhase.running:
            return False
        now = self._clock()
        self._fold_elapsed(now)
        self._fsm.pause()
        self._fsm.sync_phase_to_model()
        self._emit("SESSION_PAUSED", {"elapsed_seconds": round(self.state.elapsed_seconds, 3)}, now)
        return True

    def resume(self) -> bool:
        if self.state.phase != SessionPhase.paused:
            return False
        now = self._clock()
        self._fsm.resume()
        self._fsm.sync_phase_to_model()
        self.state.running_since = now
        self._emit("SESSION_RESUMED", {}, now)
        return True

    def reset(self) -> None:
        now = self._clock()
        self._cancel_aid()
        self._fsm.reset()
        self._fsm.sync_phase_to_model()

        s = self.state
        s.placed = set()
        s.selection = None
        s.score = 0
        s.miss_streak = 0
        s.correct = 0
        s.misses = 0
        s.hint_balance = s.hint_allotment
        s.hints_used = 0
        s.hints_by_tier = {}
        s.elapsed_seconds = 0.0
        s.running_since = None
        s.summary = None
        s.item_stats = {}
        self._emit("SESSION_RESET", {}, now)

    # Selection

    def select(self, item_id: str) -> bool:
        """Make `item_id` the current selection; the first selection starts the session.

        Returns False and changes nothing while the session is paused or
        complete, or when the item is outside the active set or already placed.
        Resume a paused session before picking again.
        """

        s = self.state
        if s.phase in (SessionPhase.complete, SessionPhase.paused):
            return False
        if item_id not in s.active_set or item_id in s.placed:
            return False
        if s.selection == item_id:
            return True

        if s.phase == SessionPhase.not_started:
            self.start()

        self._cancel_aid()
        s.selection = item_id
        self._emit("ITEM_SELECTED", {"item_id": item_id}, self._clock())
        return True

    def clear_selection(self) -> None:
        self._cancel_aid()
        if self.state.selection is None:
            return
        self.state.selection = None
        self._emit("SELECTION_CLEARED", {}, self._clock())

    # Scoring

    def attempt(self, target_id: str, is_match: bool) -> AttemptResult:
        s = self.state
        if s.phase != SessionPhase.running or s.selection is None:
            return AttemptResult(applied=False)

        now = self._clock()
        item_id = s.selection
        stats = s.item_stats.setdefault(item_id, ItemStats())
        stats.attempts += 1
        self._cancel_aid()
        s.selection = None

        if not is_match:
            # Misses never cost points; they shrink the next reward instead.
            s.miss_streak += 1
            s.misses += 1
            self._emit(
                "PLACEMENT_MISSED",
                {"item_id": item_id, "target_id": target_id, "miss_streak": s.miss_streak},
                now,
            )
            return AttemptResult(applied=True, matched=False)

        points = placement_points(s.miss_streak)
        stats.successes += 1
        s.placed.add(item_id)
        s.score += points
        s.correct += 1
        s.miss_streak = 0
        self._emit("ITEM_PLACED", {"item_id": item_id, "target_id": target_id, "points": points}, now)

        if s.placed >= s.active_set:
            self._complete(now)
            return AttemptResult(applied=True, matched=True, points=points, completed=True)
        return AttemptResult(applied=True, matched=True, points=points)

    # Hints

    def use_hint(self, tier: HintTier) -> HintResult:
        s = self.state
        now = self._clock()
        self.expire_hint_if_due(now)

        price = cost(tier)
        if s.phase != SessionPhase.running or s.selection is None:
            return HintResult(granted=False)
        if s.hint_balance < 1 or s.score < price:
            return HintResult(granted=False)

        item = self.catalog.get(s.selection)
        if item is None:
            return HintResult(granted=False)

        # Only one aid at a time: the new one supersedes whatever is showing.
        self._cancel_aid()

        s.score -= price
        s.hint_balance -= 1
        s.hints_used += 1
        s.hints_by_tier[tier] = s.hints_by_tier.get(tier, 0) + 1
        s.hint_token += 1

        duration = HINT_DURATIONS[tier]
        aid = HintAid(
            tier=tier,
            item_id=item.id,
            token=s.hint_token,
            granted_at=now,
            expires_at=now + timedelta(seconds=duration),
            reveal=reveal_for(tier, item, self.catalog),
        )
        s.hint_aid = aid

        if self._timer is not None:
            token = aid.token
            self._timer.schedule(duration, lambda: self._expire_aid(token))

        self._emit("HINT_GRANTED", {"tier": tier.value, "item_id": item.id, "cost": price}, now)
        return HintResult(granted=True, aid=aid)

    def expire_hint_if_due(self, now: datetime | None = None) -> bool:
        """Clear an aid whose expiry has passed. Used after rehydrating a stored session."""

        aid = self.state.hint_aid
        if aid is None:
            return False
        now = now or self._clock()
        if aid.expires_at > now:
            return False
        self._expire_aid(aid.token)
        return True

    # Internals

    def _expire_aid(self, token: int) -> None:
        aid = self.state.hint_aid
        if aid is None or aid.token != token:
            # A newer aid replaced the one this callback was scheduled for.
            return
        self.state.hint_aid = None
        self._emit("HINT_EXPIRED", {"tier": aid.tier.value, "item_id": aid.item_id}, self._clock())

    def _cancel_aid(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self.state.hint_aid = None

    def _fold_elapsed(self, now: datetime) -> None:
        s = self.state
        if s.running_since is not None:
            s.elapsed_seconds += max(0.0, (now - s.running_since).total_seconds())
            s.running_since = None

    def _complete(self, now: datetime) -> None:
        self._fold_elapsed(now)
        self._fsm.finish()
        self._fsm.sync_phase_to_model()

        summary = self._build_summary(now)
        self.state.summary = summary
        self._emit(
            "SESSION_COMPLETED",
            {
                "score": summary.final_score,
                "accuracy": summary.accuracy,
                "elapsed_seconds": summary.elapsed_seconds,
                "within_time_limit": summary.within_time_limit,
            },
            now,
        )

        if self._on_complete is None:
            return
        try:
            self._on_complete(summary)
        except Exception:
            # Placement and score stand even if the summary could not be stored.
            logger.exception("Failed to record summary for session %s", self.state.session_id)

    def _build_summary(self, now: datetime) -> PerformanceSummary:
        s = self.state
        attempts = s.correct + s.misses
        accuracy = round(100.0 * s.correct / attempts, 1) if attempts else 100.0
        prior = s.prior_best or ProfileBest()
        elapsed = round(s.elapsed_seconds, 3)
        limit = time_limit(s.selector)
        return PerformanceSummary(
            final_score=s.score,
            accuracy=accuracy,
            elapsed_seconds=elapsed,
            hints_used=s.hints_used,
            misses=s.misses,
            correct=s.correct,
            item_count=len(s.active_set),
            new_high_score=s.score > prior.high_score,
            new_best_time=prior.best_time_seconds is None or elapsed < prior.best_time_seconds,
            time_limit_seconds=limit,
            within_time_limit=None if limit is None else elapsed <= limit,
            completed_at=now,
        )

    def _emit(self, type: EventType, payload: dict[str, object], now: datetime) -> None:
        self.state.last_updated_at = now
        self._events.append(SessionEvent.now(type=type, payload=dict(payload), ts=now))
