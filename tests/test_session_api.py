from __future__ import annotations

import fakeredis
from fastapi.testclient import TestClient


def _create(client: TestClient, selector: dict, profile_id: str = "p1") -> dict:
    resp = client.post("/session", json={"profile_id": profile_id, "selector": selector})
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_healthcheck_catalog_and_info(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, _ = client_and_redis

    assert client.get("/healthcheck").json() == {"status": "ok"}
    assert client.get("/info").json()["name"] == "geopuzzle"

    data = client.get("/catalog").json()
    assert len(data["items"]) == 33
    assert data["difficulty_order"][0] == "Insular"
    assert {g["id"]: g["size"] for g in data["groups"]}["Andina"] == 11


def test_scenario_a_over_http(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, r = client_and_redis

    state = _create(client, {"kind": "by_groups", "groups": ["Insular"]})
    sid = state["session_id"]
    assert state["phase"] == "not_started"
    assert state["active_set"] == ["san-andres"]

    # Recommendations only exist once the session is complete.
    assert client.get(f"/session/{sid}/recommendations").status_code == 409

    state = client.post(f"/session/{sid}/pick", json={"item_id": "san-andres"}).json()
    assert state["phase"] == "running"
    assert state["selection"] == "san-andres"

    state = client.post(f"/session/{sid}/drop", json={"target_id": "san-andres", "matched": True}).json()
    assert state["phase"] == "complete"
    assert state["score"] == 100
    assert state["summary"]["accuracy"] == 100.0

    recs = client.get(f"/session/{sid}/recommendations").json()
    assert recs["tier"] == "excellent"
    nxt = [x for x in recs["recommendations"] if x["difficulty"] == "next"]
    assert nxt[0]["selector"] == {"kind": "by_groups", "groups": ["Pacífica"]}

    best = client.get("/profiles/p1/best").json()
    assert best["high_score"] == 100
    assert best["completed_regions"] == ["Insular"]

    history = client.get("/profiles/p1/history").json()
    assert [h["final_score"] for h in history] == [100]

    events = client.get(f"/session/{sid}/events").json()["events"]
    assert [e["fields"]["type"] for e in events] == [
        "SESSION_STARTED",
        "ITEM_SELECTED",
        "ITEM_PLACED",
        "SESSION_COMPLETED",
    ]
    assert r.exists(f"events:session:{sid}")


def test_prior_best_carries_into_next_session(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, _ = client_and_redis

    first = _create(client, {"kind": "by_groups", "groups": ["Insular"]})
    client.post(f"/session/{first['session_id']}/pick", json={"item_id": "san-andres"})
    client.post(f"/session/{first['session_id']}/drop", json={"target_id": "san-andres", "matched": True})

    # The profile record is read when the next session is created.
    second = _create(client, {"kind": "guided"})
    assert second["hint_balance"] == 5
    assert second["prior_best"]["high_score"] == 100


def test_miss_then_hit_and_hint(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, _ = client_and_redis

    sid = _create(client, {"kind": "by_groups", "groups": ["Pacífica"]})["session_id"]

    client.post(f"/session/{sid}/pick", json={"item_id": "choco"})
    state = client.post(f"/session/{sid}/drop", json={"target_id": "cauca", "matched": False}).json()
    assert state["miss_streak"] == 1
    assert state["score"] == 0

    # No points yet: the hint is refused but the call succeeds.
    client.post(f"/session/{sid}/pick", json={"item_id": "choco"})
    body = client.post(f"/session/{sid}/hint", json={"tier": "region"}).json()
    assert body["granted"] is False
    assert body["session"]["hint_balance"] == 3

    state = client.post(f"/session/{sid}/drop", json={"target_id": "choco", "matched": True}).json()
    assert state["score"] == 90
    assert state["miss_streak"] == 0

    client.post(f"/session/{sid}/pick", json={"item_id": "cauca"})
    body = client.post(f"/session/{sid}/hint", json={"tier": "letter"}).json()
    assert body["granted"] is True
    assert body["aid"]["reveal"]["region"] == "Pacífica"
    assert body["session"]["score"] == 70
    assert body["session"]["hint_balance"] == 2

    view = client.get(f"/session/{sid}").json()
    assert view["remaining"] == 3
    assert view["progress"] == 25.0
    assert view["session"]["hint_aid"]["tier"] == "letter"

    state = client.post(f"/session/{sid}/clear_selection").json()
    assert state["selection"] is None
    assert state["hint_aid"] is None


def test_lifecycle_endpoints(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, _ = client_and_redis

    sid = _create(client, {"kind": "all_items"})["session_id"]

    # Pause before start is a no-op, not an error.
    assert client.post(f"/session/{sid}/pause").json()["phase"] == "not_started"
    assert client.post(f"/session/{sid}/start").json()["phase"] == "running"
    assert client.post(f"/session/{sid}/pause").json()["phase"] == "paused"

    # Gestures while paused are ignored.
    state = client.post(f"/session/{sid}/pick", json={"item_id": "meta"}).json()
    assert state["selection"] is None

    assert client.post(f"/session/{sid}/resume").json()["phase"] == "running"
    client.post(f"/session/{sid}/pick", json={"item_id": "meta"})
    client.post(f"/session/{sid}/drop", json={"target_id": "meta", "matched": True})

    state = client.post(f"/session/{sid}/reset").json()
    assert state["phase"] == "not_started"
    assert state["placed"] == []
    assert state["score"] == 0

    listed = client.get("/session", params={"profile_id": "p1"}).json()["sessions"]
    assert [s["session_id"] for s in listed] == [sid]


def test_error_mapping(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, r = client_and_redis

    resp = client.post("/session", json={"profile_id": "p1", "selector": {"kind": "by_groups", "groups": ["Atlantis"]}})
    assert resp.status_code == 422
    assert resp.json()["detail"]["fallback_selector"] == {"kind": "by_groups", "groups": ["Insular"]}

    resp = client.post("/session", json={"profile_id": "p1", "selector": {"kind": "teleport"}})
    assert resp.status_code == 422

    missing = "00000000-0000-0000-0000-000000000000"
    assert client.get(f"/session/{missing}").status_code == 404
    assert client.post(f"/session/{missing}/start").status_code == 404
    assert client.get(f"/session/{missing}/recommendations").status_code == 404
    assert client.get("/profiles/nobody/best").status_code == 404

    sid = _create(client, {"kind": "guided"})["session_id"]
    assert client.post(f"/session/{sid}/hint", json={"tier": "psychic"}).status_code == 422

    # Another request holds the per-session lock.
    r.set(f"lock:session:{sid}", "1")
    assert client.post(f"/session/{sid}/start").status_code == 409
    r.delete(f"lock:session:{sid}")
    assert client.post(f"/session/{sid}/start").status_code == 200
