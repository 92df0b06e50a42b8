"""
Confidence Scoring (v1).

Responsibilities:
- Turn one movie's derived signals into a composite confidence score,
  five sub-scores, a tier and a set of quality flags.
- Summarize a batch of scores.

Non-Responsibilities:
- No database access.
- No field resolution or column mapping.
- No staleness decisions.

Invariant:
Given identical inputs, this module always returns the same result.
It never raises on missing data: absent signals count as zero/false
and lower the score or raise a flag instead.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

EXCELLENT = "excellent"
HIGH = "high"
GOOD = "good"
MEDIUM = "medium"
LOW = "low"
VERY_LOW = "very_low"

# Highest first; a score gets the first tier whose floor it reaches.
TIER_THRESHOLDS: Tuple[Tuple[str, float], ...] = (
    (EXCELLENT, 0.90),
    (HIGH, 0.80),
    (GOOD, 0.70),
    (MEDIUM, 0.60),
    (LOW, 0.50),
)
TIERS: Tuple[str, ...] = tuple(name for name, _ in TIER_THRESHOLDS) + (VERY_LOW,)

COMPOSITE_WEIGHTS = {
    "cast": 0.25,
    "metadata": 0.20,
    "image": 0.15,
    "review": 0.15,
    "validation": 0.15,
    "sources": 0.05,
    "external_ids": 0.05,
}
EXPECTED_SOURCES = 5
EXPECTED_EXTERNAL_IDS = 3

VERIFIED_BOOST = 0.10
OVERRIDE_PENALTY = 0.05
OVERRIDE_PENALTY_AFTER = 3
HEAVILY_EDITED_AFTER = 5
DEFAULT_POSTER_CONFIDENCE = 0.70


@dataclass(frozen=True)
class ConfidenceInputs:
    """Entity-level signals. Every field may be left at its default."""

    tmdb_id: Any = None
    imdb_id: Any = None
    wikidata_id: Any = None

    data_sources: Tuple[str, ...] = ()

    poster_confidence: Optional[float] = None
    completeness_score: Optional[float] = None
    consensus_score: Optional[float] = None
    data_confidence: Optional[float] = None

    is_verified: bool = False
    is_published: bool = False

    has_poster: bool = False
    has_hero: bool = False
    has_director: bool = False
    has_heroine: bool = False
    has_music_director: bool = False
    has_producer: bool = False
    has_synopsis: bool = False
    has_release_year: bool = False
    has_genres: bool = False
    has_our_rating: bool = False
    has_reviews: bool = False

    supporting_cast_count: int = 0
    crew_fields_count: int = 0
    review_count: int = 0
    validation_source_count: int = 0
    manual_overrides: int = 0


@dataclass(frozen=True)
class ConfidenceBreakdown:
    cast_confidence: float
    metadata_confidence: float
    image_confidence: float
    review_confidence: float
    validation_confidence: float
    sources: Tuple[str, ...]
    source_count: int
    external_ids: int
    manual_overrides: int
    completeness: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cast_confidence": self.cast_confidence,
            "metadata_confidence": self.metadata_confidence,
            "image_confidence": self.image_confidence,
            "review_confidence": self.review_confidence,
            "validation_confidence": self.validation_confidence,
            "sources": list(self.sources),
            "source_count": self.source_count,
            "external_ids": self.external_ids,
            "manual_overrides": self.manual_overrides,
            "completeness": self.completeness,
        }


@dataclass(frozen=True)
class ConfidenceResult:
    confidence_score: float
    breakdown: ConfidenceBreakdown
    tier: str
    flags: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def source_count(self) -> int:
        return self.breakdown.source_count

    @property
    def external_ids(self) -> int:
        return self.breakdown.external_ids

    @property
    def manual_overrides(self) -> int:
        return self.breakdown.manual_overrides

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence_score": self.confidence_score,
            "confidence_breakdown": self.breakdown.to_dict(),
            "tier": self.tier,
            "flags": list(self.flags),
        }


def _unit(value: Any) -> float:
    """Coerce a score-like input into [0, 1]; junk becomes 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return min(max(number, 0.0), 1.0)


def _count(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(number, 0)


def _present(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def round2(value: float) -> float:
    """Round half up to 2 decimals."""
    return math.floor(value * 100 + 0.5) / 100


def _ratio(criteria: Sequence[Tuple[bool, float, float]]) -> float:
    """
    Normalize (applicable, earned, weight) triples.

    Only applicable criteria enter the denominator, so a category the
    record cannot speak to never drags the score down.
    """
    earned = sum(e for applicable, e, _ in criteria if applicable)
    possible = sum(w for applicable, _, w in criteria if applicable)
    if possible <= 0:
        return 0.0
    return min(earned / possible, 1.0)


def cast_confidence(inputs: ConfidenceInputs) -> float:
    supporting = _count(inputs.supporting_cast_count) >= 3
    return _ratio([
        (bool(inputs.has_hero), 0.30, 0.30),
        (bool(inputs.has_director), 0.30, 0.30),
        (bool(inputs.has_heroine), 0.20, 0.20),
        (bool(inputs.has_music_director), 0.10, 0.10),
        (bool(inputs.has_producer), 0.05, 0.05),
        (supporting, 0.05, 0.05),
    ])


def metadata_confidence(inputs: ConfidenceInputs) -> float:
    """
    Release year, genres and synopsis, blended with completeness_score.

    Completeness can lift the sub-score but never lower it: a low
    completeness on an otherwise well-described record scores the same
    as no completeness at all.
    """
    criteria = [
        (bool(inputs.has_release_year), 0.30, 0.30),
        (bool(inputs.has_genres), 0.25, 0.25),
        (bool(inputs.has_synopsis), 0.20, 0.20),
    ]
    completeness = _unit(inputs.completeness_score)
    blended = _ratio(criteria + [(True, completeness * 0.25, 0.25)])
    return max(_ratio(criteria), blended)


def image_confidence(inputs: ConfidenceInputs) -> float:
    explicit = _unit(inputs.poster_confidence)
    if explicit > 0:
        return explicit
    return DEFAULT_POSTER_CONFIDENCE if inputs.has_poster else 0.0


def review_confidence(inputs: ConfidenceInputs) -> float:
    score = 0.0
    if inputs.has_our_rating:
        score += 0.50
    if inputs.has_reviews:
        score += 0.30
    if _count(inputs.review_count) >= 2:
        score += 0.20
    return min(score, 1.0)


def validation_confidence(inputs: ConfidenceInputs) -> float:
    score = 0.0
    sources = _count(inputs.validation_source_count)
    if sources >= 3:
        score += 0.40
    elif sources >= 2:
        score += 0.25
    elif sources >= 1:
        score += 0.10
    score += _unit(inputs.consensus_score) * 0.60
    return min(score, 1.0)


def count_external_ids(inputs: ConfidenceInputs) -> int:
    return sum(1 for v in (inputs.tmdb_id, inputs.imdb_id, inputs.wikidata_id) if _present(v))


def confidence_tier(score: float) -> str:
    for name, floor in TIER_THRESHOLDS:
        if score >= floor:
            return name
    return VERY_LOW


def generate_flags(score: float, inputs: ConfidenceInputs) -> Tuple[str, ...]:
    """Quality flags from the unrounded score and raw inputs, never from tier."""
    flags: List[str] = []

    if score >= 0.90:
        flags.append("high_quality")
    if score >= 0.85 and inputs.is_verified:
        flags.append("verified")
    if score < 0.60:
        flags.append("low_confidence")
    if score < 0.50:
        flags.append("needs_review")

    if not inputs.has_hero and not inputs.has_director:
        flags.append("missing_core_cast")
    if not inputs.has_synopsis:
        flags.append("missing_synopsis")
    if not inputs.has_poster:
        flags.append("missing_poster")
    if not inputs.has_release_year:
        flags.append("missing_release_year")

    if not _present(inputs.tmdb_id) and not _present(inputs.imdb_id):
        flags.append("no_external_ids")
    if not inputs.data_sources:
        flags.append("single_source")

    if _count(inputs.manual_overrides) > HEAVILY_EDITED_AFTER:
        flags.append("heavily_edited")
    if _count(inputs.validation_source_count) < 2:
        flags.append("low_validation")

    return tuple(flags)


def calculate_confidence(inputs: ConfidenceInputs, legacy_ratchet: bool = True) -> ConfidenceResult:
    """
    Score one movie.

    Args:
        inputs: Derived signals for the movie
        legacy_ratchet: Let a higher stored data_confidence replace the
            computed score

    Returns:
        ConfidenceResult with 2-decimal output values
    """
    cast = cast_confidence(inputs)
    metadata = metadata_confidence(inputs)
    image = image_confidence(inputs)
    review = review_confidence(inputs)
    validation = validation_confidence(inputs)

    sources = tuple(str(s) for s in (inputs.data_sources or ()))
    source_count = len(sources)
    external_ids = count_external_ids(inputs)
    overrides = _count(inputs.manual_overrides)

    w = COMPOSITE_WEIGHTS
    score = (
        cast * w["cast"]
        + metadata * w["metadata"]
        + image * w["image"]
        + review * w["review"]
        + validation * w["validation"]
        + min(source_count / EXPECTED_SOURCES, 1.0) * w["sources"]
        + min(external_ids / EXPECTED_EXTERNAL_IDS, 1.0) * w["external_ids"]
    )

    if inputs.is_verified:
        score = min(score + VERIFIED_BOOST, 1.0)
    if overrides > OVERRIDE_PENALTY_AFTER:
        score = max(score - OVERRIDE_PENALTY, 0.0)
    if legacy_ratchet:
        legacy = _unit(inputs.data_confidence)
        if legacy > score:
            score = legacy

    score = min(max(score, 0.0), 1.0)

    breakdown = ConfidenceBreakdown(
        cast_confidence=round2(cast),
        metadata_confidence=round2(metadata),
        image_confidence=round2(image),
        review_confidence=round2(review),
        validation_confidence=round2(validation),
        sources=sources,
        source_count=source_count,
        external_ids=external_ids,
        manual_overrides=overrides,
        completeness=_unit(inputs.completeness_score),
    )
    return ConfidenceResult(
        confidence_score=round2(score),
        breakdown=breakdown,
        tier=confidence_tier(score),
        flags=generate_flags(score, inputs),
    )


def calculate_batch_confidence(movies: Sequence[ConfidenceInputs], legacy_ratchet: bool = True) -> List[ConfidenceResult]:
    return [calculate_confidence(m, legacy_ratchet=legacy_ratchet) for m in movies]


def confidence_statistics(scores: Sequence[float]) -> Dict[str, Any]:
    """
    Summary statistics over composite scores.

    Median is the upper-middle element for even counts.
    """
    tier_counts = {tier: 0 for tier in TIERS}
    if not scores:
        return {"count": 0, "mean": 0.0, "median": 0.0, "min": 0.0, "max": 0.0, "tiers": tier_counts}

    ordered = sorted(scores)
    for s in ordered:
        tier_counts[confidence_tier(s)] += 1

    return {
        "count": len(ordered),
        "mean": round2(sum(ordered) / len(ordered)),
        "median": round2(ordered[len(ordered) // 2]),
        "min": ordered[0],
        "max": ordered[-1],
        "tiers": tier_counts,
    }
