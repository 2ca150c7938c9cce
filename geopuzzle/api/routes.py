from __future__ import annotations

from typing import Any
from uuid import UUID

import redis
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from geopuzzle.actions import ActionName, ActionResult, create_session, dispatch_action
from geopuzzle.api.deps import get_catalog, get_redis, get_settings
from geopuzzle.api.models import (
    CatalogGroupOut,
    CatalogItemOut,
    CatalogResponse,
    DropRequest,
    HintRequest,
    HintResponse,
    PerformanceSummary,
    PickRequest,
    ProfileBest,
    RecommendationListResponse,
    SessionCreateRequest,
    SessionListResponse,
    SessionPhase,
    SessionState,
    SessionView,
)
from geopuzzle.catalog.registry import Catalog, parse_region
from geopuzzle.core.modes import InvalidSelector, default_selector, parse_selector
from geopuzzle.core.recommend import classify, recommend
from geopuzzle.core.session import Session
from geopuzzle.lock import SessionBusy
from geopuzzle.session_store import (
    SessionNotFound,
    get_profile_best,
    get_profile_history,
    get_session,
    list_sessions,
)
from geopuzzle.settings import GameSettings
from geopuzzle.streams import SessionStream, read_events
from geopuzzle.websocket_hub import hub

router = APIRouter()


@router.websocket("/ws/session/{session_id}")
async def session_updates_ws(websocket: WebSocket, session_id: UUID) -> None:
    await hub.subscribe(session_id, websocket)

    try:
        # Updates only flow outward; inbound frames are read and ignored so pings keep the socket alive.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.unsubscribe(session_id, websocket)
    except Exception:
        await hub.unsubscribe(session_id, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/catalog", response_model=CatalogResponse)
async def catalog_route(catalog: Catalog = Depends(get_catalog)) -> CatalogResponse:
    return CatalogResponse(
        items=[
            CatalogItemOut(
                id=i.id,
                name=i.name,
                region=i.region.value,
                capital=i.capital,
                area=i.area,
                population=i.population,
                trivia=i.trivia,
            )
            for i in catalog.items
        ],
        groups=[CatalogGroupOut(id=g.id.value, size=g.size, item_ids=list(g.item_ids)) for g in catalog.groups],
        difficulty_order=[r.value for r in catalog.difficulty_order()],
    )


@router.post("/session", response_model=SessionState, status_code=status.HTTP_201_CREATED)
async def create_session_route(
    payload: SessionCreateRequest,
    r: redis.Redis = Depends(get_redis),
    catalog: Catalog = Depends(get_catalog),
    settings: GameSettings = Depends(get_settings),
) -> SessionState:
    try:
        selector = parse_selector(payload.selector)
        return create_session(r=r, catalog=catalog, settings=settings, profile_id=payload.profile_id, selector=selector)
    except InvalidSelector as e:
        # Tell the client which mode to fall back to.
        detail = {"error": str(e), "fallback_selector": default_selector(catalog).model_dump(mode="json")}
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail) from e


@router.get("/session", response_model=SessionListResponse)
async def list_sessions_route(profile_id: str | None = None, r: redis.Redis = Depends(get_redis)) -> SessionListResponse:
    return SessionListResponse(sessions=list_sessions(r=r, profile_id=profile_id))


@router.get("/session/{session_id}", response_model=SessionView)
async def get_session_route(
    session_id: UUID,
    r: redis.Redis = Depends(get_redis),
    catalog: Catalog = Depends(get_catalog),
) -> SessionView:
    state = get_session(r=r, session_id=session_id)
    if state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")

    # Read-only view: don't persist a lazily expired aid here, the next action will.
    session = Session(state, catalog=catalog)
    session.expire_hint_if_due()
    return SessionView(
        session=session.state,
        progress=session.progress,
        remaining=session.remaining,
        elapsed_seconds=round(session.elapsed(), 3),
    )


async def _run_action(
    *,
    r: redis.Redis,
    catalog: Catalog,
    session_id: UUID,
    action: ActionName,
    payload: dict[str, Any] | None = None,
) -> ActionResult:
    try:
        result = dispatch_action(r=r, catalog=catalog, session_id=session_id, action=action, payload=payload)
    except SessionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except SessionBusy as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    if result.changed:
        await hub.publish(result.state)
    return result


@router.post("/session/{session_id}/start", response_model=SessionState)
async def start_route(
    session_id: UUID,
    r: redis.Redis = Depends(get_redis),
    catalog: Catalog = Depends(get_catalog),
) -> SessionState:
    return (await _run_action(r=r, catalog=catalog, session_id=session_id, action="start")).state


@router.post("/session/{session_id}/pause", response_model=SessionState)
async def pause_route(
    session_id: UUID,
    r: redis.Redis = Depends(get_redis),
    catalog: Catalog = Depends(get_catalog),
) -> SessionState:
    return (await _run_action(r=r, catalog=catalog, session_id=session_id, action="pause")).state


@router.post("/session/{session_id}/resume", response_model=SessionState)
async def resume_route(
    session_id: UUID,
    r: redis.Redis = Depends(get_redis),
    catalog: Catalog = Depends(get_catalog),
) -> SessionState:
    return (await _run_action(r=r, catalog=catalog, session_id=session_id, action="resume")).state


@router.post("/session/{session_id}/reset", response_model=SessionState)
async def reset_route(
    session_id: UUID,
    r: redis.Redis = Depends(get_redis),
    catalog: Catalog = Depends(get_catalog),
) -> SessionState:
    return (await _run_action(r=r, catalog=catalog, session_id=session_id, action="reset")).state


@router.post("/session/{session_id}/pick", response_model=SessionState)
async def pick_route(
    session_id: UUID,
    payload: PickRequest,
    r: redis.Redis = Depends(get_redis),
    catalog: Catalog = Depends(get_catalog),
) -> SessionState:
    result = await _run_action(
        r=r, catalog=catalog, session_id=session_id, action="pick", payload={"item_id": payload.item_id}
    )
    return result.state


@router.post("/session/{session_id}/clear_selection", response_model=SessionState)
async def clear_selection_route(
    session_id: UUID,
    r: redis.Redis = Depends(get_redis),
    catalog: Catalog = Depends(get_catalog),
) -> SessionState:
    return (await _run_action(r=r, catalog=catalog, session_id=session_id, action="clear_selection")).state


@router.post("/session/{session_id}/drop", response_model=SessionState)
async def drop_route(
    session_id: UUID,
    payload: DropRequest,
    r: redis.Redis = Depends(get_redis),
    catalog: Catalog = Depends(get_catalog),
) -> SessionState:
    result = await _run_action(
        r=r,
        catalog=catalog,
        session_id=session_id,
        action="drop",
        payload={"target_id": payload.target_id, "matched": payload.matched},
    )
    return result.state


@router.post("/session/{session_id}/hint", response_model=HintResponse)
async def hint_route(
    session_id: UUID,
    payload: HintRequest,
    r: redis.Redis = Depends(get_redis),
    catalog: Catalog = Depends(get_catalog),
) -> HintResponse:
    result = await _run_action(
        r=r, catalog=catalog, session_id=session_id, action="hint", payload={"tier": payload.tier.value}
    )
    granted = result.hint is not None and result.hint.granted
    aid = result.hint.aid if result.hint is not None else None
    return HintResponse(granted=granted, aid=aid, session=result.state)


@router.get("/session/{session_id}/recommendations", response_model=RecommendationListResponse)
async def recommendations_route(
    session_id: UUID,
    r: redis.Redis = Depends(get_redis),
    catalog: Catalog = Depends(get_catalog),
) -> RecommendationListResponse:
    state = get_session(r=r, session_id=session_id)
    if state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    if state.phase != SessionPhase.complete or state.summary is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session is not complete")

    # Regions finished in earlier sessions count as covered.
    best = get_profile_best(r=r, profile_id=state.profile_id)
    completed = frozenset(
        reg for reg in (parse_region(name) for name in (best.completed_regions if best else [])) if reg is not None
    )

    recs = recommend(state.selector, state.summary, catalog=catalog, completed=completed)
    return RecommendationListResponse(session_id=session_id, tier=classify(state.summary), recommendations=recs)


@router.get("/session/{session_id}/events")
async def session_events_route(
    session_id: UUID,
    count: int = 50,
    start: str = "-",
    end: str = "+",
    r: redis.Redis = Depends(get_redis),
) -> dict[str, object]:
    """Debug endpoint: read a session's event stream."""

    if count < 1 or count > 500:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="count must be between 1 and 500")

    stream = SessionStream(session_id=str(session_id))
    try:
        entries = read_events(r=r, stream=stream, count=count, start=start, end=end)
    except redis.ResponseError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    events = [{"id": mid, "fields": fields} for mid, fields in entries]
    return {"session_id": str(session_id), "stream": stream.key, "events": events}


@router.get("/profiles/{profile_id}/best", response_model=ProfileBest)
async def profile_best_route(profile_id: str, r: redis.Redis = Depends(get_redis)) -> ProfileBest:
    best = get_profile_best(r=r, profile_id=profile_id)
    if best is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No record for profile")
    return best


@router.get("/profiles/{profile_id}/history", response_model=list[PerformanceSummary])
async def profile_history_route(
    profile_id: str,
    count: int = 20,
    r: redis.Redis = Depends(get_redis),
) -> list[PerformanceSummary]:
    if count < 1 or count > 100:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="count must be between 1 and 100")
    return get_profile_history(r=r, profile_id=profile_id, count=count)
