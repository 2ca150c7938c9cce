from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from geopuzzle.catalog.registry import Catalog, Region, parse_region
from geopuzzle.settings import GameSettings


class InvalidSelector(ValueError):
    """The selector cannot produce a non-empty active set.

    Callers are expected to fall back to `default_selector()`.
    """


class AllItems(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["all_items"] = "all_items"
    # Set on speed-challenge replays.
    time_limit_seconds: int | None = None


class ByGroups(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["by_groups"] = "by_groups"
    groups: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("groups", mode="before")
    @classmethod
    def _canonical_regions(cls, v: Any) -> Any:
        # Known spellings become Region members; unknown ids are kept so
        # resolve() can report them instead of failing validation.
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple, set, frozenset)):
            return frozenset((parse_region(g) or g) if isinstance(g, str) else g for g in v)
        return v

    def regions(self) -> frozenset[Region]:
        return frozenset(r for r in (parse_region(g) for g in self.groups) if r is not None)


class Guided(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["guided"] = "guided"
    # 0 is the fixed starting group; each step unlocks the next group in difficulty order.
    step: int = 0


ModeSelector = Annotated[AllItems | ByGroups | Guided, Field(discriminator="kind")]

_SELECTOR_ADAPTER: TypeAdapter[AllItems | ByGroups | Guided] = TypeAdapter(ModeSelector)


def parse_selector(payload: Any) -> AllItems | ByGroups | Guided:
    """Validate untrusted input (e.g. a request body) into a selector."""

    if isinstance(payload, (AllItems, ByGroups, Guided)):
        return payload
    try:
        return _SELECTOR_ADAPTER.validate_python(payload)
    except ValidationError as e:
        raise InvalidSelector(f"Malformed mode selector: {e.error_count()} error(s)") from e


def _guided_region(step: int, catalog: Catalog) -> Region:
    if step < 0:
        raise InvalidSelector(f"Guided step must be >= 0, got {step}")
    order = catalog.difficulty_order()
    return order[min(step, len(order) - 1)]


def resolve(selector: AllItems | ByGroups | Guided, catalog: Catalog) -> frozenset[str]:
    """Compute the active item set for a session. Never returns an empty set."""

    if isinstance(selector, AllItems):
        return catalog.item_ids()

    if isinstance(selector, ByGroups):
        active = catalog.items_in(selector.regions())
        if not active:
            wanted = ",".join(sorted(str(g) for g in selector.groups)) or "<none>"
            raise InvalidSelector(f"No items for groups: {wanted}")
        return active

    if isinstance(selector, Guided):
        return catalog.items_in({_guided_region(selector.step, catalog)})

    raise TypeError(f"Unsupported selector: {selector!r}")


def default_selector(catalog: Catalog) -> ByGroups:
    return ByGroups(groups=frozenset({catalog.smallest_group()}))


def selector_regions(selector: AllItems | ByGroups | Guided, catalog: Catalog) -> frozenset[Region]:
    """Regions a selector covers."""

    if isinstance(selector, AllItems):
        return frozenset(g.id for g in catalog.groups)
    if isinstance(selector, ByGroups):
        return frozenset(r for r in selector.regions() if catalog.group(r) is not None)
    if isinstance(selector, Guided):
        order = catalog.difficulty_order()
        return frozenset(order[: min(max(selector.step, 0), len(order) - 1) + 1])
    raise TypeError(f"Unsupported selector: {selector!r}")


def group_count(selector: AllItems | ByGroups | Guided, catalog: Catalog) -> int:
    """How many groups a player must know to play this selector."""

    if isinstance(selector, Guided):
        return 1
    return len(selector_regions(selector, catalog))


def time_limit(selector: AllItems | ByGroups | Guided) -> int | None:
    if isinstance(selector, AllItems):
        return selector.time_limit_seconds
    return None


def hint_allotment(selector: AllItems | ByGroups | Guided, settings: GameSettings) -> int:
    if isinstance(selector, Guided):
        return settings.guided_hint_allotment
    return settings.hint_allotment


def describe(selector: AllItems | ByGroups | Guided) -> str:
    if isinstance(selector, AllItems):
        if selector.time_limit_seconds:
            return f"All departments in {selector.time_limit_seconds}s"
        return "All departments"
    if isinstance(selector, ByGroups):
        order = list(Region)
        names = sorted(selector.regions(), key=order.index)
        return " + ".join(r.value for r in names) or "No regions"
    if isinstance(selector, Guided):
        return f"Guided step {selector.step + 1}"
    raise TypeError(f"Unsupported selector: {selector!r}")
