from __future__ import annotations

import csv
import logging
import math
import re
import unicodedata
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

logger = logging.getLogger(__name__)


class Region(StrEnum):
    """Closed set of item groups.

    Declaration order doubles as the difficulty tie-break: when two regions hold
    the same number of items, the one declared first is considered easier.
    """

    insular = "Insular"
    pacifica = "Pacífica"
    orinoquia = "Orinoquía"
    amazonia = "Amazonía"
    caribe = "Caribe"
    andina = "Andina"


# Spellings seen in source data that name an existing region.
_REGION_ALIASES = {
    "pacifico": Region.pacifica,
}


def normalize_id(name: str) -> str:
    """Forgiving key used to match names coming from the map layer.

    Lower case, accents stripped, runs of non-alphanumerics collapsed to one dash.
    """

    if not name:
        return ""
    s = unicodedata.normalize("NFD", name.casefold())
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = re.sub(r"[^a-z0-9]+", "-", s)
    return s.strip("-")


_REGION_BY_KEY: dict[str, Region] = {normalize_id(r.value): r for r in Region}
_REGION_BY_KEY.update(_REGION_ALIASES)


def parse_region(value: str) -> Region | None:
    return _REGION_BY_KEY.get(normalize_id(value))


@dataclass(frozen=True, slots=True)
class Item:
    id: str
    name: str
    region: Region
    capital: str = ""
    area: float = 0.0
    population: int = 0
    lat: float = 0.0
    lng: float = 0.0
    trivia: str = ""


@dataclass(frozen=True, slots=True)
class Group:
    id: Region
    item_ids: tuple[str, ...]

    @property
    def size(self) -> int:
        return len(self.item_ids)


class CatalogLoadError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class Catalog:
    """Read-only snapshot of items and the regions they belong to.

    IDs are canonical; names are for display and forgiving lookups.
    """

    items: tuple[Item, ...]
    _by_id: dict[str, Item]
    _by_key: dict[str, str]
    _groups: dict[Region, Group]

    @staticmethod
    def from_items(rows: list[Item]) -> "Catalog":
        by_id: dict[str, Item] = {}
        by_key: dict[str, str] = {}
        members: dict[Region, list[str]] = {}

        for it in rows:
            if it.id in by_id:
                raise CatalogLoadError(f"Duplicate item id: {it.id}")
            by_id[it.id] = it
            by_key[normalize_id(it.name)] = it.id
            by_key.setdefault(normalize_id(it.id), it.id)
            members.setdefault(it.region, []).append(it.id)

        if not by_id:
            raise CatalogLoadError("Catalog has no items")

        # Keep Region declaration order so iteration is stable.
        groups = {r: Group(id=r, item_ids=tuple(members[r])) for r in Region if r in members}
        return Catalog(items=tuple(rows), _by_id=by_id, _by_key=by_key, _groups=groups)

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, item: object) -> bool:
        return isinstance(item, str) and item in self._by_id

    def get(self, id: str) -> Item | None:
        return self._by_id.get(id)

    def require(self, id: str) -> Item:
        item = self._by_id.get(id)
        if item is None:
            raise KeyError(f"Unknown item id: {id}")
        return item

    def resolve_id(self, name: str) -> str | None:
        return self._by_key.get(normalize_id(name))

    def item_ids(self) -> frozenset[str]:
        return frozenset(self._by_id)

    @property
    def groups(self) -> tuple[Group, ...]:
        return tuple(self._groups.values())

    def group(self, region: Region) -> Group | None:
        return self._groups.get(region)

    def group_size(self, region: Region) -> int:
        g = self._groups.get(region)
        return g.size if g is not None else 0

    def items_in(self, regions: frozenset[Region] | set[Region]) -> frozenset[str]:
        out: set[str] = set()
        for r in regions:
            g = self._groups.get(r)
            if g is not None:
                out.update(g.item_ids)
        return frozenset(out)

    def difficulty_order(self) -> tuple[Region, ...]:
        """Regions from easiest (fewest items) to hardest."""

        declared = list(Region)
        return tuple(sorted(self._groups, key=lambda r: (self._groups[r].size, declared.index(r))))

    def smallest_group(self) -> Region:
        return self.difficulty_order()[0]

    def hardest_group(self) -> Region:
        return self.difficulty_order()[-1]

    def center(self) -> tuple[float, float]:
        lat = sum(i.lat for i in self.items) / len(self.items)
        lng = sum(i.lng for i in self.items) / len(self.items)
        return lat, lng

    def neighbors(self, item_id: str) -> tuple[str, ...]:
        """Other items of the same region, nearest first."""

        item = self.require(item_id)
        group = self._groups[item.region]

        def _dist(other_id: str) -> float:
            o = self._by_id[other_id]
            return math.hypot(o.lat - item.lat, o.lng - item.lng)

        others = [i for i in group.item_ids if i != item_id]
        return tuple(sorted(others, key=lambda i: (_dist(i), i)))


def _read_csv_rows(path: Path) -> list[dict[str, str]]:
    try:
        raw = path.read_text(encoding="utf-8-sig")
    except FileNotFoundError as e:
        raise CatalogLoadError(f"Catalog file not found: {path}") from e

    reader = csv.DictReader(raw.splitlines())
    if reader.fieldnames is None:
        raise CatalogLoadError(f"Empty catalog CSV: {path}")

    header = [h.strip().casefold() for h in reader.fieldnames]
    missing = {"id", "name", "region"} - set(header)
    if missing:
        raise CatalogLoadError(f"Unexpected header in {path}: missing {sorted(missing)}")

    rows: list[dict[str, str]] = []
    for row in reader:
        cleaned = {(k or "").strip().casefold(): (v or "").strip() for k, v in row.items()}
        if any(cleaned.values()):
            rows.append(cleaned)
    return rows


def _float(raw: str, *, field: str, path: Path) -> float:
    if not raw:
        return 0.0
    try:
        return float(raw)
    except ValueError as e:
        raise CatalogLoadError(f"Bad {field} value {raw!r} in {path}") from e


def load_catalog_csv(path: Path) -> Catalog:
    out: list[Item] = []
    for row in _read_csv_rows(path):
        name = row.get("name", "")
        if not name:
            continue
        region = parse_region(row.get("region", ""))
        if region is None:
            raise CatalogLoadError(f"Unknown region {row.get('region')!r} for {name!r} in {path}")
        out.append(
            Item(
                id=row.get("id") or normalize_id(name),
                name=name,
                region=region,
                capital=row.get("capital", ""),
                area=_float(row.get("area", ""), field="area", path=path),
                population=int(_float(row.get("population", ""), field="population", path=path)),
                lat=_float(row.get("lat", ""), field="lat", path=path),
                lng=_float(row.get("lng", ""), field="lng", path=path),
                trivia=row.get("trivia", ""),
            )
        )
    return Catalog.from_items(out)


def _fallback_catalog() -> Catalog:
    """Tiny built-in dataset for dev/CI when the CSV is missing.

    One department per region, so every mode still resolves.
    """

    rows = [
        Item(id="san-andres", name="San Andrés y Providencia", region=Region.insular, lat=12.5847, lng=-81.7006),
        Item(id="choco", name="Chocó", region=Region.pacifica, lat=5.6919, lng=-76.6583),
        Item(id="meta", name="Meta", region=Region.orinoquia, lat=4.1420, lng=-73.6266),
        Item(id="amazonas", name="Amazonas", region=Region.amazonia, lat=-1.2154, lng=-71.9475),
        Item(id="atlantico", name="Atlántico", region=Region.caribe, lat=10.9878, lng=-74.7889),
        Item(id="bogota", name="Bogotá D.C.", region=Region.andina, lat=4.7110, lng=-74.0721),
    ]
    return Catalog.from_items(rows)


def load_catalog(*, root: Path, strict: bool = False) -> Catalog:
    path = root / "assets" / "departments.csv"
    try:
        return load_catalog_csv(path)
    except CatalogLoadError:
        if strict:
            raise
        logger.warning("Falling back to built-in catalog; could not load %s", path)
        return _fallback_catalog()
