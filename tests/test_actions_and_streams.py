from __future__ import annotations

from datetime import UTC, datetime

import fakeredis
import pytest
import redis

from geopuzzle import actions
from geopuzzle.actions import create_session, dispatch_action
from geopuzzle.api.models import SessionPhase
from geopuzzle.catalog.registry import Catalog
from geopuzzle.core.events import SessionEvent
from geopuzzle.core.modes import ByGroups, Guided
from geopuzzle.lock import SessionBusy, lock_key, release, session_lock
from geopuzzle.session_store import SessionNotFound, get_profile_best, get_session
from geopuzzle.settings import GameSettings
from geopuzzle.streams import STREAM_MAXLEN, SessionStream, publish_events, read_events


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


def test_event_fields_are_flat_strings() -> None:
    ev = SessionEvent.now(
        type="ITEM_PLACED",
        payload={"item_id": "meta", "points": 90, "target_id": None},
        ts=datetime(2024, 1, 1, tzinfo=UTC),
    )
    assert ev.as_fields() == {
        "type": "ITEM_PLACED",
        "ts": "2024-01-01T00:00:00+00:00",
        "item_id": "meta",
        "points": "90",
        "target_id": "",
    }


def test_publish_and_read_stream(r: fakeredis.FakeRedis) -> None:
    stream = SessionStream(session_id="abc")
    assert stream.key == "events:session:abc"

    events = [SessionEvent.now(type="SESSION_STARTED", payload={"items": i}) for i in range(3)]
    ids = publish_events(r=r, stream=stream, events=events)
    assert len(ids) == 3

    entries = read_events(r=r, stream=stream, count=2)
    assert [f["items"] for _, f in entries] == ["0", "1"]
    assert STREAM_MAXLEN >= 100


def test_session_lock_rejects_second_holder(r: fakeredis.FakeRedis) -> None:
    with session_lock(r=r, session_id="s1"):
        with pytest.raises(SessionBusy):
            with session_lock(r=r, session_id="s1"):
                pass
    # Released on exit.
    with session_lock(r=r, session_id="s1"):
        pass
    assert not r.exists(lock_key("s1"))


def test_session_lock_holds_a_unique_token(r: fakeredis.FakeRedis) -> None:
    with session_lock(r=r, session_id="s1") as first:
        assert r.get(lock_key("s1")) == first
        assert 0 < r.pttl(lock_key("s1")) <= 5_000
    with session_lock(r=r, session_id="s1") as second:
        assert second != first


def test_session_lock_leaves_a_newer_holder_alone(r: fakeredis.FakeRedis) -> None:
    with session_lock(r=r, session_id="s1"):
        # The hold expired mid-action and another request took the lock.
        r.delete(lock_key("s1"))
        r.set(lock_key("s1"), "other-request")
    assert r.get(lock_key("s1")) == "other-request"

    assert release(r=r, key=lock_key("s1"), token="stale") is False
    assert release(r=r, key=lock_key("s1"), token="other-request") is True
    assert not r.exists(lock_key("s1"))


def test_dispatch_persists_and_publishes(r: fakeredis.FakeRedis, catalog: Catalog) -> None:
    state = create_session(
        r=r,
        catalog=catalog,
        settings=GameSettings(),
        profile_id="p1",
        selector=ByGroups(groups=frozenset({"Orinoquía"})),
    )

    res = dispatch_action(r=r, catalog=catalog, session_id=state.session_id, action="pick", payload={"item_id": "meta"})
    assert res.changed is True
    assert len(res.event_ids) == 2

    stored = get_session(r=r, session_id=state.session_id)
    assert stored is not None
    assert stored.selection == "meta"
    assert stored.phase == SessionPhase.running

    # A stray gesture is a no-op but still returns the state.
    res = dispatch_action(r=r, catalog=catalog, session_id=state.session_id, action="pick", payload={"item_id": "bogota"})
    assert res.changed is False
    assert res.event_ids == []
    assert res.state.selection == "meta"


def test_dispatch_rejects_unknown_actions(r: fakeredis.FakeRedis, catalog: Catalog) -> None:
    state = create_session(r=r, catalog=catalog, settings=GameSettings(), profile_id="p1", selector=Guided())
    with pytest.raises(ValueError):
        dispatch_action(r=r, catalog=catalog, session_id=state.session_id, action="teleport")  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        dispatch_action(r=r, catalog=catalog, session_id=state.session_id, action="hint", payload={"tier": "psychic"})

    # The lock was released despite the errors.
    dispatch_action(r=r, catalog=catalog, session_id=state.session_id, action="start")


def test_dispatch_unknown_session(r: fakeredis.FakeRedis, catalog: Catalog) -> None:
    from uuid import uuid4

    with pytest.raises(SessionNotFound):
        dispatch_action(r=r, catalog=catalog, session_id=uuid4(), action="start")


def test_completion_survives_a_failed_summary_write(
    r: fakeredis.FakeRedis, catalog: Catalog, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _fail(**kwargs):  # type: ignore[no-untyped-def]
        raise redis.ConnectionError("down")

    monkeypatch.setattr(actions, "record_summary", _fail)

    state = create_session(r=r, catalog=catalog, settings=GameSettings(), profile_id="p1", selector=Guided())
    dispatch_action(r=r, catalog=catalog, session_id=state.session_id, action="pick", payload={"item_id": "san-andres"})
    res = dispatch_action(
        r=r,
        catalog=catalog,
        session_id=state.session_id,
        action="drop",
        payload={"target_id": "san-andres", "matched": True},
    )

    assert res.attempt is not None and res.attempt.completed
    stored = get_session(r=r, session_id=state.session_id)
    assert stored is not None
    assert stored.phase == SessionPhase.complete
    assert stored.score == 100
    assert get_profile_best(r=r, profile_id="p1") is None
