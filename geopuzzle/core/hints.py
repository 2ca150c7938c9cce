from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel

from geopuzzle.catalog.registry import Catalog, Item


class HintTier(StrEnum):
    region = "region"
    letter = "letter"
    flash = "flash"


# Points taken from the session score.
HINT_COSTS: dict[HintTier, int] = {
    HintTier.region: 10,
    HintTier.letter: 20,
    HintTier.flash: 50,
}

# How long the visual aid stays up.
HINT_DURATIONS: dict[HintTier, float] = {
    HintTier.region: 5.0,
    HintTier.letter: 5.0,
    HintTier.flash: 3.0,
}


def cost(tier: HintTier) -> int:
    return HINT_COSTS[tier]


class HintAid(BaseModel):
    tier: HintTier
    item_id: str
    # Increments per granted hint; lets an expiry callback tell whether it is stale.
    token: int
    granted_at: datetime
    expires_at: datetime
    reveal: dict[str, Any]


def _direction(item: Item, catalog: Catalog) -> str:
    lat0, lng0 = catalog.center()
    dlat, dlng = item.lat - lat0, item.lng - lng0
    ns = "north" if dlat > 0.5 else "south" if dlat < -0.5 else ""
    ew = "east" if dlng > 0.5 else "west" if dlng < -0.5 else ""
    if ns and ew:
        return f"{ns}-{ew}"
    return ns or ew or "center"


def reveal_for(tier: HintTier, item: Item, catalog: Catalog) -> dict[str, Any]:
    """Content of a hint. Each tier shows everything the cheaper tier shows, and more."""

    out: dict[str, Any] = {"region": item.region.value}
    if tier == HintTier.region:
        return out

    out["first_letter"] = item.name[:1].upper()
    out["name_length"] = len(item.name)
    if tier == HintTier.letter:
        return out

    group = catalog.group(item.region)
    out.update(
        {
            "item_id": item.id,
            "lat": item.lat,
            "lng": item.lng,
            "direction": _direction(item, catalog),
            "neighbors": list(catalog.neighbors(item.id)),
            "group_item_ids": list(group.item_ids) if group is not None else [item.id],
        }
    )
    return out


class HintTimer(Protocol):
    """Single outstanding expiry timer for a session's hint aid."""

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> None: ...

    def cancel(self) -> None: ...


class AsyncioHintTimer:
    """`HintTimer` on top of the running event loop.

    Scheduling always cancels the previous handle, so at most one expiry is pending.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None and not self._handle.cancelled()

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()

        def _fire() -> None:
            self._handle = None
            callback()

        self._handle = loop.call_later(delay_seconds, _fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
