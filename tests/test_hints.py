from __future__ import annotations

import asyncio

import pytest

from geopuzzle.catalog.registry import Catalog, Region
from geopuzzle.core.hints import HINT_COSTS, AsyncioHintTimer, HintTier, cost, reveal_for
from geopuzzle.core.modes import ByGroups
from geopuzzle.core.session import Session


def _earned(catalog: Catalog, clock, timer=None, points: int = 2) -> Session:  # type: ignore[no-untyped-def]
    """Andina session with `points` correct placements already made."""

    s = Session.create(
        selector=ByGroups(groups=frozenset({Region.andina})),
        catalog=catalog,
        profile_id="p1",
        clock=clock,
        timer=timer,
    )
    for item_id in sorted(s.state.active_set)[:points]:
        s.select(item_id)
        s.attempt(item_id, True)
    return s


def test_costs_escalate() -> None:
    assert cost(HintTier.region) < cost(HintTier.letter) < cost(HintTier.flash)
    assert HINT_COSTS == {HintTier.region: 10, HintTier.letter: 20, HintTier.flash: 50}


@pytest.mark.parametrize("tier", list(HintTier))
def test_hint_needs_enough_score(catalog: Catalog, clock, tier: HintTier) -> None:  # type: ignore[no-untyped-def]
    s = _earned(catalog, clock, points=0)
    s.select("quindio")

    res = s.use_hint(tier)
    assert res.granted is False
    assert s.state.score == 0
    assert s.state.hint_balance == 3
    assert s.state.hint_aid is None


def test_hint_cost_clamp_when_score_below_cost(catalog: Catalog, clock) -> None:  # type: ignore[no-untyped-def]
    s = _earned(catalog, clock, points=0)
    s.select("quindio")
    s.attempt("x", False)
    s.select("quindio")
    s.attempt("quindio", True)  # 90 points
    s.select("tolima")
    assert s.use_hint(HintTier.flash).granted is True  # 90 -> 40
    before = (s.state.score, s.state.hint_balance)

    assert s.use_hint(HintTier.flash).granted is False
    assert (s.state.score, s.state.hint_balance) == before


def test_hint_deducts_score_and_balance(catalog: Catalog, clock) -> None:  # type: ignore[no-untyped-def]
    s = _earned(catalog, clock)
    s.select("tolima")

    res = s.use_hint(HintTier.letter)
    assert res.granted is True
    assert res.aid is not None
    assert res.aid.item_id == "tolima"
    assert s.state.score == 180
    assert s.state.hint_balance == 2
    assert s.state.hints_used == 1
    assert s.state.hints_by_tier == {HintTier.letter: 1}


def test_hint_requires_selection_and_balance(catalog: Catalog, clock) -> None:  # type: ignore[no-untyped-def]
    s = _earned(catalog, clock, points=5)
    assert s.use_hint(HintTier.region).granted is False  # no selection

    s.select("tolima")
    for _ in range(3):
        assert s.use_hint(HintTier.region).granted is True
    assert s.state.hint_balance == 0
    score = s.state.score
    assert s.use_hint(HintTier.region).granted is False
    assert s.state.score == score


def test_hint_is_refused_while_paused(catalog: Catalog, clock) -> None:  # type: ignore[no-untyped-def]
    s = _earned(catalog, clock)
    s.select("tolima")
    s.pause()
    assert s.use_hint(HintTier.region).granted is False


def test_new_hint_supersedes_previous_aid(catalog: Catalog, clock, timer) -> None:  # type: ignore[no-untyped-def]
    s = _earned(catalog, clock, timer)
    s.select("tolima")

    first = s.use_hint(HintTier.region).aid
    second = s.use_hint(HintTier.letter).aid
    assert first is not None and second is not None
    assert second.token > first.token
    assert s.state.hint_aid == second
    # One outstanding timer: the first was cancelled before the second was scheduled.
    assert timer.scheduled == 2
    assert timer.cancelled == 1


def test_timer_expiry_clears_the_aid(catalog: Catalog, clock, timer) -> None:  # type: ignore[no-untyped-def]
    s = _earned(catalog, clock, timer)
    s.select("tolima")
    s.use_hint(HintTier.flash)
    assert timer.delay == 3.0

    timer.fire()
    assert s.state.hint_aid is None
    assert [e.type for e in s.drain_events()][-1] == "HINT_EXPIRED"


def test_stale_expiry_does_not_clear_a_newer_aid(catalog: Catalog, clock, timer) -> None:  # type: ignore[no-untyped-def]
    s = _earned(catalog, clock, timer)
    s.select("tolima")
    s.use_hint(HintTier.region)
    stale_callback = timer.callback

    s.use_hint(HintTier.letter)
    stale_callback()
    assert s.state.hint_aid is not None
    assert s.state.hint_aid.tier == HintTier.letter


@pytest.mark.parametrize("action", ["select_other", "clear", "attempt", "reset"])
def test_aid_is_cancelled_by_selection_changes(catalog: Catalog, clock, timer, action: str) -> None:  # type: ignore[no-untyped-def]
    s = _earned(catalog, clock, timer)
    s.select("tolima")
    s.use_hint(HintTier.region)

    if action == "select_other":
        s.select("huila")
    elif action == "clear":
        s.clear_selection()
    elif action == "attempt":
        s.attempt("tolima", False)
    else:
        s.reset()

    assert s.state.hint_aid is None
    assert timer.callback is None


def test_lazy_expiry_after_rehydration(catalog: Catalog, clock) -> None:  # type: ignore[no-untyped-def]
    s = _earned(catalog, clock)
    s.select("tolima")
    s.use_hint(HintTier.region)

    clock.advance(4)
    assert s.expire_hint_if_due() is False
    clock.advance(2)

    rehydrated = Session(s.state.model_copy(deep=True), catalog=catalog, clock=clock)
    assert rehydrated.expire_hint_if_due() is True
    assert rehydrated.state.hint_aid is None


@pytest.mark.parametrize("item_id", ["san-andres", "choco", "quindio", "amazonas", "bogota", "la-guajira"])
def test_reveal_content_strictly_grows_with_tier(catalog: Catalog, item_id: str) -> None:
    item = catalog.require(item_id)
    region = reveal_for(HintTier.region, item, catalog)
    letter = reveal_for(HintTier.letter, item, catalog)
    flash = reveal_for(HintTier.flash, item, catalog)

    assert set(region) < set(letter) < set(flash)
    for k, v in region.items():
        assert letter[k] == v
    for k, v in letter.items():
        assert flash[k] == v

    assert flash["item_id"] == item_id
    assert "direction" in flash
    assert item_id in flash["group_item_ids"]


def test_asyncio_timer_keeps_a_single_handle() -> None:
    fired: list[str] = []

    async def _run() -> AsyncioHintTimer:
        t = AsyncioHintTimer()
        t.schedule(0.01, lambda: fired.append("first"))
        t.schedule(0.01, lambda: fired.append("second"))
        assert t.pending
        await asyncio.sleep(0.05)
        return t

    t = asyncio.run(_run())
    assert fired == ["second"]
    assert not t.pending
