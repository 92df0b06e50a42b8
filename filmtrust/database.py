"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for movie rows and raw per-source values.
"""

from datetime import datetime
from pathlib import Path
from sqlalchemy import (
    create_engine,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Columns the confidence engine owns; ingestion never writes these.
CONFIDENCE_COLUMNS = (
    "confidence_score",
    "confidence_breakdown",
    "confidence_tier",
    "confidence_flags",
    "last_confidence_calc",
)


class Movie(Base):
    """Movie record as assembled by ingestion."""

    __tablename__ = "movies"

    id = Column(String(64), primary_key=True)
    title = Column(String, nullable=False)
    slug = Column(String)

    hero = Column(String)
    heroine = Column(String)
    director = Column(String)
    music_director = Column(String)
    producer = Column(String)
    supporting_cast = Column(JSON)
    crew = Column(JSON)

    synopsis = Column(Text)
    release_year = Column(Integer)
    genres = Column(JSON)
    poster_url = Column(String)
    poster_confidence = Column(Float)

    tmdb_id = Column(Integer)
    imdb_id = Column(String)
    wikidata_id = Column(String)
    data_sources = Column(JSON)

    completeness_score = Column(Float)
    consensus_score = Column(Float)
    data_confidence = Column(Float)  # legacy score
    manual_overrides = Column(Integer, nullable=False, default=0)

    our_rating = Column(Float)
    total_reviews = Column(Integer, nullable=False, default=0)

    is_verified = Column(Boolean, nullable=False, default=False)
    is_published = Column(Boolean, nullable=False, default=False)

    confidence_score = Column(Float)
    confidence_breakdown = Column(JSON)
    confidence_tier = Column(String)
    confidence_flags = Column(JSON)
    last_confidence_calc = Column(DateTime)

    created_at = Column(DateTime, nullable=False, default=datetime.now)
    # Owned by ingestion. Confidence writes leave it alone.
    updated_at = Column(DateTime, nullable=False, default=datetime.now)


class RawValue(Base):
    """One source's claim about one field of one movie."""

    __tablename__ = "raw_field_values"
    __table_args__ = (
        UniqueConstraint("entity_id", "field_name", "source_id", name="uq_raw_value_claim"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_id = Column(String(64), nullable=False, index=True)
    field_name = Column(String, nullable=False)
    source_id = Column(String, nullable=False)
    value = Column(JSON)
    observed_at = Column(DateTime, nullable=False, default=datetime.now)


def get_engine(db_path: Path):
    """
    Create an engine usable from worker threads.

    Args:
        db_path: Path to SQLite database file
    """
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(db_path)
    Base.metadata.create_all(engine)
    engine.dispose()
