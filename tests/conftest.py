"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Any

from filmtrust.database import init_database
from filmtrust.env import Settings
from filmtrust.logger import StructuredLogger, reset_logger
from filmtrust.sources import default_registry
from filmtrust.storage import MovieRepository

NOW = datetime(2026, 10, 1, 12, 0, 0)


@pytest.fixture(autouse=True)
def _fresh_global_logger(tmp_path, monkeypatch):
    """Keep CLI runs from writing logs into the working directory."""
    monkeypatch.setenv("FILMTRUST_LOG_DIR", str(tmp_path / "logs"))
    reset_logger()
    yield
    reset_logger()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def logger(tmp_path) -> StructuredLogger:
    return StructuredLogger(name="filmtrust-test", log_dir=tmp_path / "logs", enable_console=False)


@pytest.fixture
def fast_settings(tmp_path) -> Settings:
    """Settings with no backoff delay so retry paths run instantly."""
    return Settings(
        db_path=tmp_path / "filmtrust.db",
        concurrency=4,
        max_retries=2,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        breaker_threshold=50,
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def complete_movie() -> Dict[str, Any]:
    """A well-documented movie row."""
    return {
        "id": "mv-001",
        "title": "Mayabazar",
        "hero": "N. T. Rama Rao",
        "heroine": "Savitri",
        "director": "K. V. Reddy",
        "music_director": "Ghantasala",
        "producer": "Nagi Reddi",
        "supporting_cast": ["S. V. Ranga Rao", "Relangi", "Ramana Reddy"],
        "crew": {"cinematographer": "Marcus Bartley", "writer": "Pingali"},
        "synopsis": "Abhimanyu and Sasirekha's wedding is saved by Ghatotkacha.",
        "release_year": 1957,
        "genres": ["Mythological", "Fantasy"],
        "poster_url": "https://img.example.org/mayabazar.jpg",
        "poster_confidence": 0.9,
        "tmdb_id": 69256,
        "imdb_id": "tt0050665",
        "wikidata_id": "Q6797160",
        "data_sources": ["tmdb", "wikipedia", "imdb"],
        "completeness_score": 0.9,
        "consensus_score": 0.8,
        "our_rating": 9.5,
        "total_reviews": 4,
        "is_verified": True,
        "is_published": True,
    }


@pytest.fixture
def sparse_movie() -> Dict[str, Any]:
    """A movie that ingestion barely knows anything about."""
    return {
        "id": "mv-002",
        "title": "Untitled Project",
    }


@pytest.fixture
def partial_movie() -> Dict[str, Any]:
    return {
        "id": "mv-003",
        "title": "Sankarabharanam",
        "director": "K. Viswanath",
        "release_year": 1980,
        "tmdb_id": 66150,
        "data_sources": ["tmdb"],
    }


@pytest.fixture
def raw_values() -> list:
    base = NOW - timedelta(days=3)
    return [
        {"entity_id": "mv-003", "field_name": "hero", "source_id": "wikipedia",
         "value": "J. V. Somayajulu", "observed_at": base.isoformat()},
        {"entity_id": "mv-003", "field_name": "hero", "source_id": "tmdb",
         "value": "Somayajulu", "observed_at": base.isoformat()},
        {"entity_id": "mv-003", "field_name": "synopsis", "source_id": "wikipedia",
         "value": "A classical singer and a dancer find art and dignity.",
         "observed_at": base.isoformat()},
        {"entity_id": "mv-003", "field_name": "poster_url", "source_id": "archive_org",
         "value": "https://archive.example.org/poster.jpg", "observed_at": base.isoformat()},
    ]


@pytest.fixture
def db_path(tmp_path) -> Path:
    path = tmp_path / "filmtrust.db"
    init_database(path)
    return path


@pytest.fixture
def repository(db_path, complete_movie, sparse_movie, partial_movie, raw_values, now):
    """Repository over a database holding three movies and some raw claims."""
    repo = MovieRepository(db_path)
    repo.import_records(
        {"movies": [complete_movie, sparse_movie, partial_movie], "raw_values": raw_values},
        now=now - timedelta(days=1),
    )
    yield repo
    repo.close()
