"""
Source Registry.

Responsibilities:
- Describe every upstream provider (priority, base reliability, coverage).
- Load the table once, from the built-in defaults or a JSON file.

Non-Responsibilities:
- No fetching from any provider.
- No field resolution.

Invariant:
A registry never changes after construction. It is built at process
start and passed to whoever needs it.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional

from .schema import validate_source_entry

CAST = "cast"
METADATA = "metadata"
IMAGE = "image"
REVIEW = "review"
EXTERNAL_IDS = "external_ids"

FIELD_CATEGORIES = frozenset({CAST, METADATA, IMAGE, REVIEW, EXTERNAL_IDS})

# Which category each resolvable movie field belongs to.
FIELD_CATEGORY: Dict[str, str] = {
    "hero": CAST,
    "heroine": CAST,
    "director": CAST,
    "music_director": CAST,
    "producer": CAST,
    "supporting_cast": CAST,
    "crew": CAST,
    "release_year": METADATA,
    "genres": METADATA,
    "synopsis": METADATA,
    "runtime_minutes": METADATA,
    "poster_url": IMAGE,
    "our_rating": REVIEW,
    "total_reviews": REVIEW,
    "tmdb_id": EXTERNAL_IDS,
    "imdb_id": EXTERNAL_IDS,
    "wikidata_id": EXTERNAL_IDS,
}


@dataclass(frozen=True)
class Source:
    id: str
    name: str
    priority: int
    base_confidence: float
    enabled: bool = True
    field_coverage: FrozenSet[str] = field(default_factory=frozenset)

    def covers(self, category: Optional[str]) -> bool:
        """A field with no known category is covered by nobody."""
        return category is not None and category in self.field_coverage

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Source":
        errors = validate_source_entry(data)
        if errors:
            raise ValueError(f"Invalid source entry {data.get('id')!r}: {'; '.join(errors)}")
        return cls(
            id=data["id"],
            name=data.get("name") or data["id"],
            priority=int(data["priority"]),
            base_confidence=float(data["base_confidence"]),
            enabled=bool(data.get("enabled", True)),
            field_coverage=frozenset(data.get("field_coverage", FIELD_CATEGORIES)),
        )


class SourceRegistry:
    """Read-only table of sources keyed by id."""

    def __init__(self, sources: Iterable[Source]):
        table: Dict[str, Source] = {}
        for source in sources:
            if source.id in table:
                raise ValueError(f"Duplicate source id: {source.id}")
            table[source.id] = source
        self._sources = MappingProxyType(table)

    def __iter__(self) -> Iterator[Source]:
        return iter(self._sources.values())

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._sources

    def get(self, source_id: str) -> Optional[Source]:
        return self._sources.get(source_id)

    def enabled(self) -> List[Source]:
        """Enabled sources, highest priority first."""
        active = [s for s in self._sources.values() if s.enabled]
        return sorted(active, key=lambda s: (-s.priority, -s.base_confidence, s.id))

    def accepts(self, source_id: str, field_name: str) -> bool:
        """
        True if the source is registered, enabled and covers the field.

        Only FIELD_CATEGORY fields are resolvable. Engine-owned columns
        (is_verified, data_confidence, consensus_score, ...) never are.
        """
        source = self._sources.get(source_id)
        if source is None or not source.enabled:
            return False
        return source.covers(FIELD_CATEGORY.get(field_name))


_ALL = FIELD_CATEGORIES
_REVIEW_SITE = frozenset({CAST, METADATA, REVIEW})

# (id, name, priority, base_confidence, enabled, coverage)
DEFAULT_SOURCES = [
    ("tmdb", "TMDB", 21, 0.95, True, _ALL),
    ("letterboxd", "Letterboxd", 20, 0.92, True, _REVIEW_SITE | {IMAGE}),
    ("rottentomatoes", "Rotten Tomatoes", 19, 0.90, True, _REVIEW_SITE),
    ("imdb", "IMDb", 18, 0.90, True, _ALL),
    ("idlebrain", "IdleBrain", 17, 0.88, True, _REVIEW_SITE),
    ("bookmyshow", "BookMyShow", 16, 0.88, True, _REVIEW_SITE | {IMAGE}),
    ("eenadu", "Eenadu", 15, 0.86, True, _REVIEW_SITE),
    ("sakshi", "Sakshi", 14, 0.84, True, _REVIEW_SITE),
    ("tupaki", "Tupaki", 13, 0.83, True, _REVIEW_SITE),
    ("gulte", "Gulte", 12, 0.82, True, _REVIEW_SITE),
    ("123telugu", "123Telugu", 11, 0.81, True, _REVIEW_SITE),
    ("telugu360", "Telugu360", 10, 0.80, True, _REVIEW_SITE),
    ("telugucinema", "TeluguCinema", 9, 0.79, True, _REVIEW_SITE),
    ("filmibeat", "FilmiBeat", 8, 0.77, True, _REVIEW_SITE),
    ("m9news", "M9News", 7, 0.75, True, _REVIEW_SITE),
    ("wikipedia", "Wikipedia", 4, 0.85, True, frozenset({CAST, METADATA, IMAGE, EXTERNAL_IDS})),
    ("greatandhra", "GreatAndhra", 3, 0.85, True, _REVIEW_SITE),
    ("cinejosh", "CineJosh", 2, 0.82, True, _REVIEW_SITE),
    ("wikidata", "Wikidata", 1, 0.80, True, frozenset({CAST, METADATA, EXTERNAL_IDS})),
    ("omdb", "OMDb", 0, 0.75, True, frozenset({CAST, METADATA, IMAGE, REVIEW, EXTERNAL_IDS})),
    ("archive_org", "Internet Archive", -1, 0.70, False, frozenset({IMAGE})),
]


def default_registry() -> SourceRegistry:
    return SourceRegistry(
        Source(
            id=sid,
            name=name,
            priority=priority,
            base_confidence=confidence,
            enabled=enabled,
            field_coverage=frozenset(coverage),
        )
        for sid, name, priority, confidence, enabled, coverage in DEFAULT_SOURCES
    )


def load_registry(path: Optional[Path] = None) -> SourceRegistry:
    """
    Load the source registry.

    Args:
        path: JSON file holding a list of source objects, or
            {"sources": [...]}. None means the built-in table.

    Returns:
        SourceRegistry

    Raises:
        ValueError: If the file is not valid JSON or an entry is invalid
    """
    if path is None:
        return default_registry()

    with path.open("r", encoding="utf-8") as f:
        try:
            payload = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Source file {path} is not valid JSON: {e}") from e

    if isinstance(payload, dict):
        payload = payload.get("sources", [])
    if not isinstance(payload, list):
        raise ValueError(f"Source file {path} must hold a list of sources")

    return SourceRegistry(Source.from_dict(entry) for entry in payload)
