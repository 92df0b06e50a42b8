"""
Movie repository: the persistence side of the confidence engine.

Responsibilities:
- Read movie rows, raw per-source values and recalculation state.
- Write confidence results atomically, one movie per transaction.
- Load ingestion fixtures for local runs.

Non-Responsibilities:
- No scoring, resolution or staleness decisions.

Invariant:
Repositories must not encode domain decisions. SQLAlchemy errors are
translated into the engine's error taxonomy here and nowhere else.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import CONFIDENCE_COLUMNS, Movie, RawValue, get_engine
from .errors import (
    EntityNotFoundError,
    PersistenceReadError,
    PersistenceWriteError,
    SystemicConnectivityError,
)
from .resolver import RawFieldValue
from .retry import is_transient_error
from .scoring import ConfidenceResult
from .staleness import RecalcState

INGESTED_COLUMNS = [
    c.name for c in Movie.__table__.columns
    if c.name not in {"id", "created_at", "updated_at", *CONFIDENCE_COLUMNS}
]


def parse_timestamp(ts: Any) -> Optional[datetime]:
    """
    Parse an ISO timestamp. Datetimes pass through, blanks are None.

    Offset-aware values (a trailing "Z" included) become naive local time,
    the same clock confidence writes are stamped with.

    Raises:
        ValueError: If the value is not an ISO timestamp
    """
    if ts is None or (isinstance(ts, str) and not ts.strip()):
        return None
    if isinstance(ts, datetime):
        parsed = ts
    else:
        text = str(ts).strip()
        if text[-1] in "Zz":
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _record_timestamp(record: Dict[str, Any], key: str, default: datetime) -> datetime:
    try:
        return parse_timestamp(record.get(key)) or default
    except ValueError as e:
        owner = record.get("id") or record.get("entity_id")
        raise ValueError(f"Invalid {key} {record.get(key)!r} for {owner}") from e


def diff_dict(old: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    changed = {}
    keys = set(old.keys()) | set(new.keys())
    for k in keys:
        ov = old.get(k)
        nv = new.get(k)
        if ov != nv:
            changed[k] = {"old": ov, "new": nv}
    return changed


def _row_to_dict(movie: Movie) -> Dict[str, Any]:
    return {c.name: getattr(movie, c.name) for c in Movie.__table__.columns}


def _entity_error(error: SQLAlchemyError, error_cls, message: str, entity_id: str) -> Exception:
    """
    Per-entity error for a failed statement.

    An OperationalError that is not a lock or timeout (missing file, missing
    table, corrupt image) means the whole store is gone, not one row.
    """
    if isinstance(error, OperationalError) and not is_transient_error(error):
        return SystemicConnectivityError(f"{message}: {error}")
    return error_cls(f"{message}: {error}", entity_id)


class MovieRepository:
    """SQLite-backed persistence collaborator."""

    def __init__(self, db_path: Path, engine=None):
        self.db_path = db_path
        self.engine = engine if engine is not None else get_engine(db_path)
        self.Session = sessionmaker(bind=self.engine)

    def close(self) -> None:
        self.engine.dispose()

    def ping(self) -> None:
        """Raise SystemicConnectivityError unless the movies table is reachable."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(Movie.id).limit(1)).all()
        except SQLAlchemyError as e:
            raise SystemicConnectivityError(f"Database unreachable at {self.db_path}: {e}") from e

    def recalc_states(self) -> Iterator[RecalcState]:
        """Staleness inputs for every movie, ordered by id."""
        stmt = select(
            Movie.id, Movie.last_confidence_calc, Movie.confidence_score, Movie.updated_at
        ).order_by(Movie.id)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as e:
            raise SystemicConnectivityError(f"Could not list movies: {e}") from e
        for row in rows:
            yield RecalcState(
                entity_id=row.id,
                last_confidence_calc=row.last_confidence_calc,
                confidence_score=row.confidence_score,
                entity_updated_at=row.updated_at,
            )

    def read(self, entity_id: str) -> Dict[str, Any]:
        """Movie columns as a dict."""
        try:
            with self.Session() as session:
                movie = session.get(Movie, entity_id)
                if movie is None:
                    raise EntityNotFoundError(f"Movie not found: {entity_id}", entity_id)
                return _row_to_dict(movie)
        except SQLAlchemyError as e:
            raise _entity_error(e, PersistenceReadError, f"Failed to read movie {entity_id}", entity_id) from e

    def raw_values(self, entity_id: str) -> List[RawFieldValue]:
        stmt = select(RawValue).where(RawValue.entity_id == entity_id).order_by(RawValue.id)
        try:
            with self.Session() as session:
                return [
                    RawFieldValue(
                        entity_id=r.entity_id,
                        field_name=r.field_name,
                        source_id=r.source_id,
                        value=r.value,
                        observed_at=r.observed_at,
                    )
                    for r in session.scalars(stmt)
                ]
        except SQLAlchemyError as e:
            raise _entity_error(e, PersistenceReadError, f"Failed to read raw values for {entity_id}", entity_id) from e

    def write(self, entity_id: str, result: ConfidenceResult, timestamp: datetime) -> None:
        """Persist one result in a single transaction. updated_at is untouched."""
        payload = result.to_dict()
        stmt = (
            update(Movie)
            .where(Movie.id == entity_id)
            .values(
                confidence_score=payload["confidence_score"],
                confidence_breakdown=payload["confidence_breakdown"],
                confidence_tier=payload["tier"],
                confidence_flags=payload["flags"],
                last_confidence_calc=timestamp,
                updated_at=Movie.updated_at,
            )
        )
        try:
            with self.engine.begin() as conn:
                outcome = conn.execute(stmt)
                if outcome.rowcount == 0:
                    raise EntityNotFoundError(f"Movie not found: {entity_id}", entity_id)
        except SQLAlchemyError as e:
            raise _entity_error(e, PersistenceWriteError, f"Failed to write movie {entity_id}", entity_id) from e

    def low_confidence(self, limit: int = 50, threshold: float = 0.60) -> List[Dict[str, Any]]:
        """Scored movies below the threshold, worst first."""
        stmt = (
            select(Movie.id, Movie.title, Movie.release_year, Movie.confidence_score, Movie.confidence_flags)
            .where(Movie.confidence_score.is_not(None))
            .where(Movie.confidence_score < threshold)
            .order_by(Movie.confidence_score, Movie.id)
            .limit(limit)
        )
        try:
            with self.engine.connect() as conn:
                return [dict(r._mapping) for r in conn.execute(stmt)]
        except SQLAlchemyError as e:
            raise SystemicConnectivityError(f"Could not query low-confidence movies: {e}") from e

    def import_records(self, payload: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Load movies and raw values from an ingestion fixture.

        Args:
            payload: {"movies": [{...columns}], "raw_values": [{...}]}
            now: Timestamp for changed rows (default: now)

        Returns:
            Counts by status: new, updated, no-change, raw_values

        Raises:
            ValueError: If a timestamp cannot be parsed. Nothing is imported.
        """
        now = now or datetime.now()
        counts = {"new": 0, "updated": 0, "no-change": 0, "raw_values": 0}
        created = set()
        touched = set()

        with self.Session.begin() as session:
            for record in payload.get("movies", []):
                fields = {k: record[k] for k in INGESTED_COLUMNS if k in record}
                movie = session.get(Movie, record["id"])
                if movie is None:
                    session.add(Movie(
                        id=record["id"],
                        created_at=_record_timestamp(record, "created_at", now),
                        updated_at=_record_timestamp(record, "updated_at", now),
                        **fields,
                    ))
                    created.add(record["id"])
                    counts["new"] += 1
                    continue

                current = {k: getattr(movie, k) for k in fields}
                if diff_dict(current, fields):
                    for k, v in fields.items():
                        setattr(movie, k, v)
                    movie.updated_at = _record_timestamp(record, "updated_at", now)
                    counts["updated"] += 1
                else:
                    counts["no-change"] += 1

            for raw in payload.get("raw_values", []):
                claim = session.scalars(
                    select(RawValue).where(
                        RawValue.entity_id == raw["entity_id"],
                        RawValue.field_name == raw["field_name"],
                        RawValue.source_id == raw["source_id"],
                    )
                ).first()
                observed_at = _record_timestamp(raw, "observed_at", now)
                if claim is None:
                    session.add(RawValue(
                        entity_id=raw["entity_id"],
                        field_name=raw["field_name"],
                        source_id=raw["source_id"],
                        value=raw.get("value"),
                        observed_at=observed_at,
                    ))
                elif claim.value != raw.get("value") or claim.observed_at != observed_at:
                    claim.value = raw.get("value")
                    claim.observed_at = observed_at
                else:
                    continue
                touched.add(raw["entity_id"])
                counts["raw_values"] += 1

            # A changed claim changes the movie, so its score goes stale.
            for entity_id in touched - created:
                movie = session.get(Movie, entity_id)
                if movie is not None:
                    movie.updated_at = now

        return counts
