"""
Error taxonomy for the confidence engine.

Only persistence and input-shape problems are errors. Missing or poor
movie data is never raised: it shows up in the score and the flags.
"""

from typing import Optional


class FilmTrustError(Exception):
    """Base class for all engine errors."""
    pass


class ValidationInputError(FilmTrustError):
    """Raised for a malformed or missing entity id. Skipped and counted."""

    def __init__(self, message: str, entity_id: Optional[object] = None):
        super().__init__(message)
        self.entity_id = entity_id


class PersistenceError(FilmTrustError):
    """Base class for per-entity storage failures."""

    def __init__(self, message: str, entity_id: Optional[str] = None):
        super().__init__(message)
        self.entity_id = entity_id


class PersistenceReadError(PersistenceError):
    """Reading an entity row or its raw values failed."""
    pass


class PersistenceWriteError(PersistenceError):
    """Writing an entity's confidence result failed."""
    pass


class EntityNotFoundError(PersistenceError):
    """The movie row is gone (deleted since listing). Failed, never retried."""
    pass


class SystemicConnectivityError(FilmTrustError):
    """Persistence is unreachable as a whole. Aborts the batch."""
    pass
