"""
Recalculation Policy.

Responsibilities:
- Decide whether a stored confidence score is outdated.

Non-Responsibilities:
- No I/O.
- No scoring.

Invariant:
A score is recomputed when it was never computed, when the movie changed
after it was computed, or when it is older than the TTL.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

DEFAULT_TTL = timedelta(days=7)


@dataclass(frozen=True)
class RecalcState:
    entity_id: str
    last_confidence_calc: Optional[datetime]
    confidence_score: Optional[float]
    entity_updated_at: Optional[datetime]


def needs_recalc(state: RecalcState, now: Optional[datetime] = None, ttl: timedelta = DEFAULT_TTL) -> bool:
    if state.last_confidence_calc is None or state.confidence_score is None:
        return True

    if state.entity_updated_at is not None and state.entity_updated_at > state.last_confidence_calc:
        return True

    if now is None:
        now = datetime.now()
    return state.last_confidence_calc < now - ttl
