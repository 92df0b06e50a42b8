"""
Field Resolver.

Responsibilities:
- Merge every source's claim about one movie field into a single value.
- Report which source won, how many claims competed and how well the
  competing sources agree.

Non-Responsibilities:
- No database access (works on a snapshot of raw values).
- No scoring.
- No writes of resolved values.

Invariant:
Each field resolves to at most one winning source per pass, chosen by
(priority desc, base_confidence desc, observed_at desc, source_id asc).
Given the same snapshot and registry the winner is always the same.
Agreement never changes the winner; it only measures it.
"""

import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .sources import FIELD_CATEGORY, SourceRegistry

SINGLE_SOURCE_FACTOR = 0.75
UNANIMOUS_BOOST = 1.1
UNANIMOUS_CAP = 0.98
MAJORITY_CAP = 0.90
PAIR_FACTOR = 0.9
PAIR_CAP = 0.75
CONFLICT_AGREEMENT = 0.40
SIMILARITY_TOLERANCE = 0.2


@dataclass(frozen=True)
class RawFieldValue:
    entity_id: str
    field_name: str
    source_id: str
    value: Any
    observed_at: datetime


@dataclass(frozen=True)
class Resolution:
    field_name: str
    value: Any
    source_id: Optional[str]
    candidates: int
    agreement: float = 0.0

    @property
    def resolved(self) -> bool:
        return self.source_id is not None


def has_value(value: Any) -> bool:
    """A claim counts only if it carries something."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) > 0
    return True


def normalize_value(value: Any) -> str:
    """Lowercase, trimmed, punctuation stripped. Lists compare by their joined items."""
    if isinstance(value, (list, tuple)):
        value = " ".join(str(v) for v in value)
    return re.sub(r"[^\w\s]", "", str(value).lower().strip())


def values_similar(first: Any, second: Any) -> bool:
    """
    True if two claims name the same thing.

    "K. Raghavendra Rao" and "Raghavendra Rao" match by containment; small
    typos match when at most 20% of the longer value differs position by
    position.
    """
    a = normalize_value(first)
    b = normalize_value(second)
    if a == b:
        return True
    if not a or not b:
        return False
    if a in b or b in a:
        return True

    longer, shorter = (a, b) if len(a) > len(b) else (b, a)
    distance = sum(1 for x, y in zip(shorter, longer) if x != y)
    distance += len(longer) - len(shorter)
    return distance <= int(len(longer) * SIMILARITY_TOLERANCE)


def agreement_score(claims: Sequence[Tuple[Any, float]]) -> float:
    """
    How strongly a set of (value, base_confidence) claims agree.

    - no claims: 0.0
    - one claim: its confidence, discounted
    - every claim alike: the group's mean confidence, boosted
    - three or more alike: the group's mean, capped at 0.90
    - only two alike: the group's mean, discounted and capped at 0.75
    - nobody agrees: 0.40

    Claims are grouped in the order given; groups are ranked by their
    total confidence.
    """
    if not claims:
        return 0.0
    if len(claims) == 1:
        return claims[0][1] * SINGLE_SOURCE_FACTOR

    groups: List[List[Tuple[Any, float]]] = []
    for value, confidence in claims:
        for group in groups:
            if values_similar(group[0][0], value):
                group.append((value, confidence))
                break
        else:
            groups.append([(value, confidence)])

    groups.sort(key=lambda g: sum(c for _, c in g), reverse=True)
    top = groups[0]
    mean = sum(c for _, c in top) / len(top)

    if len(groups) == 1:
        return min(UNANIMOUS_CAP, mean * UNANIMOUS_BOOST)
    if len(top) >= 3:
        return min(MAJORITY_CAP, mean)
    if len(top) == 2:
        return min(PAIR_CAP, mean * PAIR_FACTOR)
    return CONFLICT_AGREEMENT


class RawValueSnapshot:
    """Read-only raw values, grouped by entity, taken once per pass."""

    def __init__(self, values: Iterable[RawFieldValue]):
        grouped: Dict[str, List[RawFieldValue]] = defaultdict(list)
        for v in values:
            grouped[v.entity_id].append(v)
        self._by_entity = {k: tuple(v) for k, v in grouped.items()}

    def raw_values(self, entity_id: str) -> Tuple[RawFieldValue, ...]:
        return self._by_entity.get(entity_id, ())


class FieldResolver:
    """
    Pick one winning value per (entity, field).

    Args:
        registry: Source registry snapshot for the run
        raw_values: Anything with raw_values(entity_id) -> iterable of RawFieldValue
    """

    def __init__(self, registry: SourceRegistry, raw_values):
        self.registry = registry
        self.raw_values = raw_values

    def _candidates(self, field_name: str, entity_id: str) -> List[RawFieldValue]:
        return [
            v for v in self.raw_values.raw_values(entity_id)
            if v.field_name == field_name
            and has_value(v.value)
            and self.registry.accepts(v.source_id, field_name)
        ]

    def _rank(self, candidates: List[RawFieldValue]) -> List[RawFieldValue]:
        # Stable sorts, least significant key first.
        ranked = sorted(candidates, key=lambda v: v.source_id)
        ranked.sort(key=lambda v: v.observed_at, reverse=True)
        ranked.sort(
            key=lambda v: (
                self.registry.get(v.source_id).priority,
                self.registry.get(v.source_id).base_confidence,
            ),
            reverse=True,
        )
        return ranked

    def resolve_field(self, field_name: str, entity_id: str) -> Resolution:
        candidates = self._candidates(field_name, entity_id)
        if not candidates:
            return Resolution(field_name=field_name, value=None, source_id=None, candidates=0)
        ranked = self._rank(candidates)
        winner = ranked[0]
        return Resolution(
            field_name=field_name,
            value=winner.value,
            source_id=winner.source_id,
            candidates=len(candidates),
            agreement=agreement_score(
                [(v.value, self.registry.get(v.source_id).base_confidence) for v in ranked]
            ),
        )

    def resolve(self, field_name: str, entity_id: str) -> Any:
        """Winning value for the field, or None when no source supplied one."""
        return self.resolve_field(field_name, entity_id).value

    def resolve_entity(self, entity_id: str, fields: Optional[Iterable[str]] = None) -> Dict[str, Resolution]:
        """Resolve every resolvable field claimed for the entity (or just `fields`)."""
        if fields is None:
            fields = sorted({
                v.field_name for v in self.raw_values.raw_values(entity_id)
                if v.field_name in FIELD_CATEGORY
            })
        return {name: self.resolve_field(name, entity_id) for name in fields}


def contributing_sources(resolutions: Dict[str, Resolution]) -> List[str]:
    """Distinct winning source ids, in a stable order."""
    return sorted({r.source_id for r in resolutions.values() if r.source_id is not None})


def entity_agreement(resolutions: Dict[str, Resolution]) -> Optional[float]:
    """Mean agreement over resolved fields; None when nothing resolved."""
    scores = [r.agreement for r in resolutions.values() if r.resolved]
    if not scores:
        return None
    return sum(scores) / len(scores)
