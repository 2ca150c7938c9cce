"""Rule-based next-challenge suggestions.

`recommend()` is a pure function of the finished mode, the session's
PerformanceSummary and the catalog. It never returns an empty list, and the
list always holds at least one entry the player can pick right away.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from geopuzzle.api.models import DifficultyTag, PerformanceSummary, PerformanceTier, Recommendation
from geopuzzle.catalog.registry import Catalog, Region
from geopuzzle.core.modes import AllItems, ByGroups, Guided, group_count, selector_regions


@dataclass(frozen=True, slots=True)
class RecommendationThresholds:
    excellent_accuracy: float = 90.0
    good_accuracy: float = 75.0
    fair_accuracy: float = 50.0
    # Share of the catalog below which covered regions still count as a "small" set.
    small_set_fraction: float = 0.25
    # Speed replays target this fraction of the last run's time.
    speed_factor: float = 0.8
    min_time_limit_seconds: int = 30

    def small_set_limit(self, catalog: Catalog) -> int:
        return math.ceil(len(catalog) * self.small_set_fraction)


DEFAULT_THRESHOLDS = RecommendationThresholds()


def classify(summary: PerformanceSummary, thresholds: RecommendationThresholds = DEFAULT_THRESHOLDS) -> PerformanceTier:
    # A timed run that ran over its limit is at best Good.
    beat_clock = summary.within_time_limit is not False
    if summary.accuracy >= thresholds.excellent_accuracy and summary.hints_used == 0 and beat_clock:
        return PerformanceTier.excellent
    if summary.accuracy >= thresholds.good_accuracy:
        return PerformanceTier.good
    if summary.accuracy >= thresholds.fair_accuracy:
        return PerformanceTier.fair
    return PerformanceTier.needs_practice


@dataclass(slots=True)
class _Candidate:
    slot: int
    groups: int
    rec: Recommendation


@dataclass(slots=True)
class _Builder:
    catalog: Catalog
    candidates: list[_Candidate] = field(default_factory=list)

    def add(
        self,
        *,
        slot: int,
        selector: AllItems | ByGroups | Guided,
        title: str,
        rationale: str,
        difficulty: DifficultyTag,
        lock_reason: str | None = None,
    ) -> None:
        rec = Recommendation(
            selector=selector,
            title=title,
            rationale=rationale,
            difficulty=difficulty,
            lock_reason=lock_reason,
        )
        self.candidates.append(_Candidate(slot=slot, groups=group_count(selector, self.catalog), rec=rec))

    def has_selectable(self) -> bool:
        return any(c.rec.selectable for c in self.candidates)

    def build(self) -> list[Recommendation]:
        # Bucket by (slot, tag) in first-seen order; equal tags in a slot go simplest first.
        buckets: dict[tuple[int, DifficultyTag], list[_Candidate]] = {}
        for c in self.candidates:
            buckets.setdefault((c.slot, c.rec.difficulty), []).append(c)

        ordered: list[_Candidate] = []
        for key in sorted(buckets, key=lambda k: k[0]):
            ordered.extend(sorted(buckets[key], key=lambda c: c.groups))

        out: list[Recommendation] = []
        for c in ordered:
            if any(c.rec.selector == r.selector for r in out):
                continue
            out.append(c.rec)
        return out


def _region_list(regions: frozenset[Region]) -> str:
    order = list(Region)
    return " + ".join(r.value for r in sorted(regions, key=order.index))


def _full_map(
    b: _Builder,
    *,
    slot: int,
    tier: PerformanceTier,
    rationale: str,
) -> None:
    lock = None
    if tier == PerformanceTier.needs_practice:
        lock = "Get at least 50% accuracy on the regions you have covered to unlock the full map"
    b.add(
        slot=slot,
        selector=AllItems(),
        title="Full map",
        rationale=rationale,
        difficulty=DifficultyTag.harder,
        lock_reason=lock,
    )


def _single_group(
    b: _Builder,
    *,
    covered: frozenset[Region],
    summary: PerformanceSummary,
    tier: PerformanceTier,
    thresholds: RecommendationThresholds,
) -> None:
    catalog = b.catalog
    # Struggling players see the review first.
    next_slot, review_slot = (1, 0) if tier == PerformanceTier.needs_practice else (0, 1)

    nxt = next((r for r in catalog.difficulty_order() if r not in covered), None)
    if nxt is not None:
        b.add(
            slot=next_slot,
            selector=ByGroups(groups=frozenset({nxt})),
            title=f"Continue with {nxt.value}",
            rationale=f"Next challenge: {catalog.group_size(nxt)} departments",
            difficulty=DifficultyTag.next,
        )
    else:
        _full_map(
            b,
            slot=next_slot,
            tier=tier,
            rationale=f"Every region done; now all {len(catalog)} departments at once",
        )

    focus = "Improve your accuracy" if summary.accuracy < thresholds.excellent_accuracy else "Improve your speed"
    b.add(
        slot=review_slot,
        selector=ByGroups(groups=covered),
        title="Practice again",
        rationale=f"{focus} on {_region_list(covered)}",
        difficulty=DifficultyTag.same,
    )


def _multi_group(
    b: _Builder,
    *,
    covered: frozenset[Region],
    tier: PerformanceTier,
    thresholds: RecommendationThresholds,
) -> None:
    catalog = b.catalog
    order = catalog.difficulty_order()
    remaining = [r for r in order if r not in covered]
    covered_items = len(catalog.items_in(covered))

    if covered_items <= thresholds.small_set_limit(catalog):
        for r in remaining:
            b.add(
                slot=0,
                selector=ByGroups(groups=frozenset({r})),
                title=f"Explore {r.value}",
                rationale=f"{catalog.group_size(r)} new departments",
                difficulty=DifficultyTag.next,
            )
        if remaining:
            combined = covered | {remaining[0]}
            b.add(
                slot=1,
                selector=ByGroups(groups=frozenset(combined)),
                title="Combine regions",
                rationale=f"Mix {_region_list(frozenset(combined))} in one map",
                difficulty=DifficultyTag.harder,
            )
    else:
        declared = list(Region)
        largest = sorted(remaining, key=lambda r: (-catalog.group_size(r), declared.index(r)))[:2]
        for r in largest:
            b.add(
                slot=0,
                selector=ByGroups(groups=frozenset({r})),
                title=f"Take on {r.value}",
                rationale=f"One of the biggest regions left: {catalog.group_size(r)} departments",
                difficulty=DifficultyTag.next,
            )
        if remaining:
            _full_map(
                b,
                slot=1,
                tier=tier,
                rationale=f"All {len(catalog)} departments, including the regions still ahead",
            )

    if not remaining:
        _full_map(b, slot=0, tier=tier, rationale=f"Every region covered; put all {len(catalog)} departments together")

    b.add(
        slot=2,
        selector=ByGroups(groups=covered),
        title="Combined review",
        rationale=f"Review {_region_list(covered)}",
        difficulty=DifficultyTag.same,
    )


def _all_items(
    b: _Builder,
    *,
    prior: AllItems,
    summary: PerformanceSummary,
    tier: PerformanceTier,
    thresholds: RecommendationThresholds,
) -> None:
    catalog = b.catalog

    if tier == PerformanceTier.excellent:
        limit = max(thresholds.min_time_limit_seconds, int(summary.elapsed_seconds * thresholds.speed_factor))
        b.add(
            slot=0,
            selector=AllItems(time_limit_seconds=limit),
            title="Speed challenge",
            rationale=f"Flawless run; now finish in under {limit} seconds",
            difficulty=DifficultyTag.harder,
        )
    elif summary.within_time_limit is False and prior.time_limit_seconds is not None:
        over = round(summary.elapsed_seconds - prior.time_limit_seconds, 1)
        b.add(
            slot=0,
            selector=prior,
            title="Retry the speed challenge",
            rationale=f"{over} seconds over the {prior.time_limit_seconds}-second limit",
            difficulty=DifficultyTag.same,
        )

    if summary.accuracy < thresholds.excellent_accuracy:
        hardest = catalog.hardest_group()
        # A smaller map lowers the load even though this region is the toughest one.
        b.add(
            slot=0,
            selector=ByGroups(groups=frozenset({hardest})),
            title=f"Focus on {hardest.value}",
            rationale=f"Practise the hardest region on its own ({catalog.group_size(hardest)} departments)",
            difficulty=DifficultyTag.easier,
        )

    b.add(
        slot=1,
        selector=prior,
        title="Play again",
        rationale=f"Try to beat {summary.final_score} points",
        difficulty=DifficultyTag.same,
    )


def _guided(b: _Builder, *, prior: Guided, tier: PerformanceTier) -> None:
    catalog = b.catalog
    order = catalog.difficulty_order()
    nxt = max(prior.step, 0) + 1

    # Guided mode never dead-ends, whatever the performance.
    if nxt < len(order):
        b.add(
            slot=0,
            selector=Guided(step=nxt),
            title="Continue guided path",
            rationale=f"Next up: {order[nxt].value} ({catalog.group_size(order[nxt])} departments)",
            difficulty=DifficultyTag.next,
        )
    else:
        b.add(
            slot=0,
            selector=AllItems(),
            title="Continue guided path",
            rationale=f"Last stop: all {len(catalog)} departments together",
            difficulty=DifficultyTag.next,
        )

    if tier == PerformanceTier.needs_practice:
        b.add(
            slot=1,
            selector=prior,
            title="Repeat this step",
            rationale="One more pass before moving on",
            difficulty=DifficultyTag.same,
        )


def recommend(
    prior_selector: AllItems | ByGroups | Guided,
    summary: PerformanceSummary,
    *,
    catalog: Catalog,
    completed: frozenset[Region] | set[Region] = frozenset(),
    thresholds: RecommendationThresholds = DEFAULT_THRESHOLDS,
) -> list[Recommendation]:
    """Ranked suggestions for what to play after `prior_selector`.

    `completed` holds regions finished in earlier sessions; they count as covered
    alongside the regions of `prior_selector`.
    """

    tier = classify(summary, thresholds)
    b = _Builder(catalog=catalog)

    if isinstance(prior_selector, Guided):
        _guided(b, prior=prior_selector, tier=tier)
    elif isinstance(prior_selector, ByGroups):
        played = selector_regions(prior_selector, catalog)
        covered = frozenset(played | {r for r in completed if catalog.group(r) is not None})
        # Regions from earlier sessions count: one played group plus history is a multi-group path.
        if played and len(covered) == 1:
            _single_group(b, covered=covered, summary=summary, tier=tier, thresholds=thresholds)
        elif played:
            _multi_group(b, covered=covered, tier=tier, thresholds=thresholds)
    elif isinstance(prior_selector, AllItems):
        _all_items(b, prior=prior_selector, summary=summary, tier=tier, thresholds=thresholds)
    else:
        raise TypeError(f"Unsupported selector: {prior_selector!r}")

    if not b.has_selectable():
        smallest = catalog.smallest_group()
        b.add(
            slot=99,
            selector=ByGroups(groups=frozenset({smallest})),
            title=f"Start with {smallest.value}",
            rationale="The smallest region is a good place to warm up",
            difficulty=DifficultyTag.easier,
        )

    return b.build()
