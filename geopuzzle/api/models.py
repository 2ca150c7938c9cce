from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from geopuzzle.core.hints import HintAid, HintTier
from geopuzzle.core.modes import ModeSelector


class SessionPhase(StrEnum):
    not_started = "not_started"
    running = "running"
    paused = "paused"
    complete = "complete"


class DifficultyTag(StrEnum):
    easier = "easier"
    same = "same"
    harder = "harder"
    next = "next"


class PerformanceTier(StrEnum):
    excellent = "excellent"
    good = "good"
    fair = "fair"
    needs_practice = "needs_practice"


class ItemStats(BaseModel):
    attempts: int = 0
    successes: int = 0


class ProfileBest(BaseModel):
    high_score: int = 0
    # None until a session has been completed.
    best_time_seconds: float | None = None
    games_played: int = 0
    perfect_games: int = 0
    total_score: int = 0
    # Timed full-map runs finished inside their limit.
    speed_challenges_won: int = 0
    completed_regions: list[str] = Field(default_factory=list)


class PerformanceSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    final_score: int
    # Percentage, 0..100.
    accuracy: float
    elapsed_seconds: float
    hints_used: int
    misses: int
    correct: int
    item_count: int
    new_high_score: bool = False
    new_best_time: bool = False
    # Both None for untimed modes.
    time_limit_seconds: int | None = None
    within_time_limit: bool | None = None
    completed_at: datetime


class Recommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    selector: ModeSelector
    title: str
    rationale: str
    difficulty: DifficultyTag
    # Non-null means the entry is shown but cannot be picked yet.
    lock_reason: str | None = None

    @property
    def selectable(self) -> bool:
        return self.lock_reason is None


class SessionState(BaseModel):
    session_id: UUID
    profile_id: str
    selector: ModeSelector

    # Frozen at creation.
    active_set: frozenset[str]

    placed: set[str] = Field(default_factory=set)
    selection: str | None = None

    score: int = Field(default=0, ge=0)
    miss_streak: int = 0
    correct: int = 0
    misses: int = 0

    hint_allotment: int = 3
    hint_balance: int = Field(default=3, ge=0)
    hints_used: int = 0
    hints_by_tier: dict[HintTier, int] = Field(default_factory=dict)
    hint_aid: HintAid | None = None
    # Last token handed out; see HintAid.token.
    hint_token: int = 0

    # Accumulated while running; `running_since` marks the open interval, if any.
    elapsed_seconds: float = 0.0
    running_since: datetime | None = None

    phase: SessionPhase = SessionPhase.not_started

    # Read from the profile at creation, for "new record" comparisons.
    prior_best: ProfileBest | None = None
    summary: PerformanceSummary | None = None

    item_stats: dict[str, ItemStats] = Field(default_factory=dict)

    created_at: datetime
    last_updated_at: datetime


class SessionUpdate(BaseModel):
    """WebSocket message pushed after every state-changing action."""

    model_config = ConfigDict(frozen=True)

    type: Literal["session_updated"] = "session_updated"
    session_id: UUID
    phase: SessionPhase
    score: int
    placed: int
    remaining: int
    progress: float
    selection: str | None = None
    hint_balance: int
    hint_active: bool = False
    summary: PerformanceSummary | None = None
    updated_at: datetime

    @classmethod
    def from_state(cls, state: SessionState) -> "SessionUpdate":
        total = len(state.active_set)
        placed = len(state.placed)
        return cls(
            session_id=state.session_id,
            phase=state.phase,
            score=state.score,
            placed=placed,
            remaining=total - placed,
            progress=round(100.0 * placed / total, 1) if total else 0.0,
            selection=state.selection,
            hint_balance=state.hint_balance,
            hint_active=state.hint_aid is not None,
            summary=state.summary,
            updated_at=state.last_updated_at,
        )


class SessionCreateRequest(BaseModel):
    profile_id: str = Field(..., min_length=1, max_length=200)
    # Validated by geopuzzle.core.modes.parse_selector so a bad selector maps to InvalidSelector.
    selector: dict[str, Any]


class PickRequest(BaseModel):
    item_id: str


class DropRequest(BaseModel):
    target_id: str
    matched: bool


class HintRequest(BaseModel):
    tier: HintTier


class HintResponse(BaseModel):
    granted: bool
    aid: HintAid | None = None
    session: SessionState


class SessionView(BaseModel):
    """Session plus the derived values the UI renders."""

    session: SessionState
    progress: float
    remaining: int
    elapsed_seconds: float


class SessionListResponse(BaseModel):
    sessions: list[SessionState]


class RecommendationListResponse(BaseModel):
    session_id: UUID
    tier: PerformanceTier
    recommendations: list[Recommendation]


class CatalogItemOut(BaseModel):
    id: str
    name: str
    region: str
    capital: str
    area: float
    population: int
    trivia: str


class CatalogGroupOut(BaseModel):
    id: str
    size: int
    item_ids: list[str]


class CatalogResponse(BaseModel):
    items: list[CatalogItemOut]
    groups: list[CatalogGroupOut]
    difficulty_order: list[str]
