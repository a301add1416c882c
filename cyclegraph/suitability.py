"""Cycling suitability of a way from its OSM tags.

Scoring walks an ordered rule table; the first rule whose predicate matches
decides the class. Every tag combination resolves to exactly one class, and
combinations no rule recognizes fall through to ``DEFAULT_SUITABILITY``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import IntEnum


class Suitability(IntEnum):
    """Ordinal rating, worst (0) to best (7)."""

    FORBIDDEN = 0
    UNRATED = 1
    HOSTILE = 2
    BUSY = 3
    MODERATE = 4
    CALM = 5
    QUIET = 6
    DEDICATED = 7

    @property
    def unsuitability(self) -> float:
        return UNSUITABILITY_WEIGHTS[self]

    @classmethod
    def from_unsuitability(cls, weight: float) -> "Suitability":
        for member, value in UNSUITABILITY_WEIGHTS.items():
            if value == weight:
                return member
        raise ValueError(f"unknown unsuitability weight {weight!r}")

    def downgraded(self, floor: "Suitability | None" = None) -> "Suitability":
        lowest = Suitability.UNRATED if floor is None else floor
        if self <= lowest:
            return self
        return Suitability(self - 1)


# Weights consumed by the routing engine; lower is better.
UNSUITABILITY_WEIGHTS: dict[Suitability, float] = {
    Suitability.FORBIDDEN: 10.0,
    Suitability.UNRATED: 6.0,
    Suitability.HOSTILE: 5.0,
    Suitability.BUSY: 4.0,
    Suitability.MODERATE: 3.0,
    Suitability.CALM: 2.0,
    Suitability.QUIET: 1.0,
    Suitability.DEDICATED: 0.5,
}

DEFAULT_SUITABILITY = Suitability.UNRATED

HIGHWAY_CLASSES: dict[str, Suitability] = {
    "cycleway": Suitability.DEDICATED,
    "living_street": Suitability.QUIET,
    "service": Suitability.QUIET,
    "track": Suitability.QUIET,
    "platform": Suitability.QUIET,
    "pedestrian": Suitability.QUIET,
    "path": Suitability.QUIET,
    "footway": Suitability.QUIET,
    "unclassified": Suitability.CALM,
    "residential": Suitability.CALM,
    "traffic_island": Suitability.CALM,
    "tertiary": Suitability.MODERATE,
    "tertiary_link": Suitability.MODERATE,
    "road": Suitability.MODERATE,
    "bridleway": Suitability.MODERATE,
    "secondary": Suitability.BUSY,
    "secondary_link": Suitability.BUSY,
    "primary": Suitability.HOSTILE,
    "primary_link": Suitability.HOSTILE,
}

# Highways cyclists may not use unless a cycleway or sidewalk says otherwise.
BICYCLE_BARRED_HIGHWAYS: frozenset[str] = frozenset(
    {
        "motorway",
        "motorway_link",
        "trunk",
        "trunk_link",
        "proposed",
        "steps",
        "elevator",
        "corridor",
        "raceway",
        "rest_area",
        "construction",
    }
)

FORBIDDING_BICYCLE_VALUES: frozenset[str] = frozenset({"no", "use_sidepath"})
ABSENT_VALUES: frozenset[str] = frozenset({"no", "none", "separate"})
CYCLEWAY_KEYS: tuple[str, ...] = ("cycleway", "cycleway:left", "cycleway:right", "cycleway:both")
SIDEWALK_KEYS: tuple[str, ...] = ("sidewalk", "sidewalk:left", "sidewalk:right", "sidewalk:both")

TagPredicate = Callable[[Mapping[str, str]], bool]


def tag_value(tags: Mapping[str, str], key: str) -> str | None:
    raw = tags.get(key)
    if raw is None:
        return None
    return str(raw).strip().lower()


def _bicycle_forbidden(tags: Mapping[str, str]) -> bool:
    return tag_value(tags, "bicycle") in FORBIDDING_BICYCLE_VALUES


def _bicycle_dismount(tags: Mapping[str, str]) -> bool:
    return tag_value(tags, "bicycle") == "dismount"


def _bicycle_allowed(tags: Mapping[str, str]) -> bool:
    value = tag_value(tags, "bicycle")
    return bool(value) and value not in FORBIDDING_BICYCLE_VALUES


def _has_cycleway(tags: Mapping[str, str]) -> bool:
    for key in CYCLEWAY_KEYS:
        value = tag_value(tags, key)
        if value and value not in ABSENT_VALUES:
            return True
    return False


def _has_sidewalk(tags: Mapping[str, str]) -> bool:
    for key in SIDEWALK_KEYS:
        value = tag_value(tags, key)
        if value and value not in ABSENT_VALUES:
            return True
    return False


def _highway_in(classes: Iterable[str]) -> TagPredicate:
    wanted = frozenset(classes)

    def _match(tags: Mapping[str, str]) -> bool:
        return tag_value(tags, "highway") in wanted

    return _match


@dataclass(frozen=True)
class SuitabilityRule:
    priority: int
    name: str
    predicate: TagPredicate
    suitability: Suitability


def _highway_rules(start_priority: int) -> list[SuitabilityRule]:
    grouped: dict[Suitability, list[str]] = {}
    for highway, suitability in HIGHWAY_CLASSES.items():
        grouped.setdefault(suitability, []).append(highway)
    rules: list[SuitabilityRule] = []
    for offset, suitability in enumerate(sorted(grouped, reverse=True)):
        rules.append(
            SuitabilityRule(
                priority=start_priority + offset,
                name=f"highway_{suitability.name.lower()}",
                predicate=_highway_in(grouped[suitability]),
                suitability=suitability,
            )
        )
    return rules


DEFAULT_RULES: tuple[SuitabilityRule, ...] = (
    SuitabilityRule(10, "bicycle_forbidden", _bicycle_forbidden, Suitability.FORBIDDEN),
    SuitabilityRule(20, "bicycle_dismount", _bicycle_dismount, Suitability.QUIET),
    SuitabilityRule(30, "bicycle_allowed", _bicycle_allowed, Suitability.DEDICATED),
    SuitabilityRule(40, "cycleway_present", _has_cycleway, Suitability.DEDICATED),
    *_highway_rules(50),
    SuitabilityRule(70, "sidewalk_fallback", _has_sidewalk, Suitability.QUIET),
    SuitabilityRule(80, "highway_barred", _highway_in(BICYCLE_BARRED_HIGHWAYS), Suitability.FORBIDDEN),
)


class SuitabilityScorer:
    def __init__(
        self,
        rules: Iterable[SuitabilityRule] = DEFAULT_RULES,
        *,
        default: Suitability = DEFAULT_SUITABILITY,
    ) -> None:
        self.rules: tuple[SuitabilityRule, ...] = tuple(sorted(rules, key=lambda rule: rule.priority))
        self.default = default

    def matching_rule(self, tags: Mapping[str, str]) -> SuitabilityRule | None:
        for rule in self.rules:
            if rule.predicate(tags):
                return rule
        return None

    def score(self, tags: Mapping[str, str]) -> Suitability:
        rule = self.matching_rule(tags)
        return self.default if rule is None else rule.suitability


def score_tags(tags: Mapping[str, str]) -> Suitability:
    return _DEFAULT_SCORER.score(tags)


_DEFAULT_SCORER = SuitabilityScorer()
