"""
Movie row to ConfidenceInputs mapping.

Responsibilities:
- Translate persisted movie columns (plus resolved source values) into
  the signals the calculator understands.

Non-Responsibilities:
- No database access.
- No scoring.

Invariant:
Storage column names stop here. The calculator never sees a row.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

from .resolver import Resolution, contributing_sources, entity_agreement, has_value
from .scoring import ConfidenceInputs, DEFAULT_POSTER_CONFIDENCE
from .sources import FIELD_CATEGORY

CREW_FIELDS = ("cinematographer", "editor", "writer", "choreographer", "lyricist")


def count_crew_fields(crew: Any) -> int:
    if not isinstance(crew, dict):
        return 0
    return sum(1 for name in CREW_FIELDS if has_value(crew.get(name)))


def _list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _dedupe(items: Iterable[Any]) -> List[str]:
    seen = []
    for item in items:
        item = str(item)
        if item not in seen:
            seen.append(item)
    return seen


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class MovieRowMapper:
    """Maps a `movies` row (as a dict of columns) to ConfidenceInputs."""

    def merge(self, row: Mapping[str, Any], resolved: Optional[Dict[str, Resolution]] = None) -> Dict[str, Any]:
        """Row columns overlaid with resolved values; resolved values win."""
        merged = dict(row)
        for name, resolution in (resolved or {}).items():
            if resolution.resolved and name in FIELD_CATEGORY:
                merged[name] = resolution.value
        return merged

    def to_inputs(self, row: Mapping[str, Any], resolved: Optional[Dict[str, Resolution]] = None) -> ConfidenceInputs:
        movie = self.merge(row, resolved)

        data_sources = _dedupe(_list(movie.get("data_sources")))
        if not data_sources and resolved:
            data_sources = contributing_sources(resolved)

        external = [movie.get("tmdb_id"), movie.get("imdb_id"), movie.get("wikidata_id")]
        validation_sources = len(data_sources) or sum(1 for v in external if has_value(v))

        poster_url = movie.get("poster_url")
        poster_confidence = _number(movie.get("poster_confidence"))
        if not poster_confidence:
            poster_confidence = DEFAULT_POSTER_CONFIDENCE if has_value(poster_url) else 0.0

        total_reviews = _int(movie.get("total_reviews"))

        consensus = _number(movie.get("consensus_score"))
        if consensus is None and resolved:
            consensus = entity_agreement(resolved)

        return ConfidenceInputs(
            tmdb_id=movie.get("tmdb_id") if has_value(movie.get("tmdb_id")) else None,
            imdb_id=movie.get("imdb_id") if has_value(movie.get("imdb_id")) else None,
            wikidata_id=movie.get("wikidata_id") if has_value(movie.get("wikidata_id")) else None,
            data_sources=tuple(data_sources),
            poster_confidence=poster_confidence,
            completeness_score=_number(movie.get("completeness_score")),
            consensus_score=consensus,
            data_confidence=_number(movie.get("data_confidence")),
            is_verified=bool(movie.get("is_verified")),
            is_published=bool(movie.get("is_published")),
            has_poster=has_value(poster_url),
            has_hero=has_value(movie.get("hero")),
            has_director=has_value(movie.get("director")),
            has_heroine=has_value(movie.get("heroine")),
            has_music_director=has_value(movie.get("music_director")),
            has_producer=has_value(movie.get("producer")),
            has_synopsis=has_value(movie.get("synopsis")),
            has_release_year=has_value(movie.get("release_year")),
            has_genres=len(_list(movie.get("genres"))) > 0,
            has_our_rating=has_value(movie.get("our_rating")) and movie.get("our_rating") != 0,
            has_reviews=total_reviews > 0,
            supporting_cast_count=len(_list(movie.get("supporting_cast"))),
            crew_fields_count=count_crew_fields(movie.get("crew")),
            review_count=total_reviews,
            validation_source_count=validation_sources,
            manual_overrides=_int(movie.get("manual_overrides")),
        )
