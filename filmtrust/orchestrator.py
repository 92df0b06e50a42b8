"""
Batch Orchestrator.

Responsibilities:
- Select candidate movies for a run (mode + staleness policy + limit).
- Compute confidence for each one on a bounded worker pool.
- Retry per-entity reads and writes, isolate per-entity failures.
- Report a Summary, including on partial failure or abort.

Non-Responsibilities:
- No scoring rules (scoring.py), no column mapping (mapping.py).
- No SQL (storage.py).

Invariant:
Re-running with unchanged inputs reproduces identical results and only
refreshes last_confidence_calc. A dry run computes and reports exactly
like a live run and writes nothing.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from .env import Settings
from .errors import (
    PersistenceError,
    PersistenceReadError,
    PersistenceWriteError,
    SystemicConnectivityError,
    ValidationInputError,
)
from .logger import StructuredLogger, get_logger
from .mapping import MovieRowMapper
from .resolver import FieldResolver, RawValueSnapshot, Resolution
from .retry import CircuitBreaker, CircuitOpenError, RetryError, exponential_backoff, is_transient_error
from .schema import validate_entity_id
from .scoring import (
    ConfidenceInputs,
    ConfidenceResult,
    TIERS,
    calculate_confidence,
    confidence_statistics,
)
from .sources import SourceRegistry
from .staleness import RecalcState, needs_recalc

MODE_STALE = "stale"
MODE_ALL = "all"
MODE_LOW_ONLY = "low-only"
MODE_RECALCULATE = "recalculate"
MODES = (MODE_STALE, MODE_ALL, MODE_LOW_ONLY, MODE_RECALCULATE)

LOW_CONFIDENCE_THRESHOLD = 0.60

OK = "ok"
SKIPPED = "skipped"
FAILED = "failed"
CANCELLED = "cancelled"
SYSTEMIC = "systemic"


def select_candidates(
    states: Iterable[RecalcState],
    mode: str = MODE_STALE,
    now: Optional[datetime] = None,
    ttl: timedelta = timedelta(days=7),
    limit: Optional[int] = None,
) -> List[RecalcState]:
    """
    Pick the movies a run should process.

    Modes:
        stale: staleness policy decides
        all: every movie
        low-only: stored score below 0.60
        recalculate: every movie already scored, ignoring staleness
    """
    if mode not in MODES:
        raise ValueError(f"Unknown mode {mode!r}; expected one of {', '.join(MODES)}")
    if limit is not None and limit < 0:
        raise ValueError("limit must be >= 0")

    now = now or datetime.now()
    selected: List[RecalcState] = []
    for state in states:
        if limit is not None and len(selected) >= limit:
            break
        if mode == MODE_ALL:
            keep = True
        elif mode == MODE_LOW_ONLY:
            keep = state.confidence_score is not None and state.confidence_score < LOW_CONFIDENCE_THRESHOLD
        elif mode == MODE_RECALCULATE:
            keep = state.confidence_score is not None
        else:
            keep = needs_recalc(state, now=now, ttl=ttl)
        if keep:
            selected.append(state)
    return selected


@dataclass
class EntityFailure:
    entity_id: Any
    error_type: str
    message: str


@dataclass
class _Outcome:
    entity_id: Any
    status: str
    result: Optional[ConfidenceResult] = None
    error: Optional[BaseException] = None


def _is_connectivity_failure(error: BaseException) -> bool:
    """Only exhausted retries on locks, timeouts or dropped connections speak for the store."""
    return is_transient_error(error.__cause__ or error)


def _error_type(error: BaseException) -> str:
    # Report the underlying persistence error, not the retry wrapper.
    if isinstance(error, RetryError) and error.__cause__ is not None:
        return type(error.__cause__).__name__
    return type(error).__name__


@dataclass
class Summary:
    mode: str
    dry_run: bool
    candidates: int = 0
    processed: int = 0
    written: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: int = 0
    tier_counts: Dict[str, int] = field(default_factory=lambda: {t: 0 for t in TIERS})
    mean: float = 0.0
    median: float = 0.0
    min: float = 0.0
    max: float = 0.0
    aborted: bool = False
    abort_reason: Optional[str] = None
    failures: List[EntityFailure] = field(default_factory=list)
    results: Dict[str, ConfidenceResult] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def error_count(self) -> int:
        return self.failed + self.skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "dry_run": self.dry_run,
            "candidates": self.candidates,
            "processed": self.processed,
            "written": self.written,
            "skipped": self.skipped,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "errors": self.error_count,
            "tiers": dict(self.tier_counts),
            "mean": self.mean,
            "median": self.median,
            "min": self.min,
            "max": self.max,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "failures": [f.__dict__ for f in self.failures],
            "duration_seconds": round(self.duration_seconds, 3),
        }


class BatchOrchestrator:
    """
    Runs confidence recalculation over the catalogue.

    Args:
        repository: Persistence collaborator (ping, recalc_states, read,
            raw_values, write)
        registry: Source registry snapshot for the whole run
        settings: Runtime settings (concurrency, retries, TTL, ratchet)
        logger: Structured logger (default: global logger)
        mapper: Row mapper (default: MovieRowMapper)
        clock: Callable returning "now"
    """

    def __init__(
        self,
        repository,
        registry: SourceRegistry,
        settings: Optional[Settings] = None,
        logger: Optional[StructuredLogger] = None,
        mapper: Optional[MovieRowMapper] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.repository = repository
        self.registry = registry
        self.settings = settings or Settings()
        self.logger = logger or get_logger()
        self.mapper = mapper or MovieRowMapper()
        self.clock = clock

        self._cancel = threading.Event()
        self.breaker = CircuitBreaker(
            failure_threshold=self.settings.breaker_threshold,
            recovery_timeout=60,
            expected_exception=RetryError,
            counts=_is_connectivity_failure,
        )

        retry = dict(
            max_retries=self.settings.max_retries,
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
            on_retry=self._on_retry,
        )
        self._read_row = exponential_backoff(exceptions=(PersistenceReadError,), **retry)(repository.read)
        self._read_raw = exponential_backoff(exceptions=(PersistenceReadError,), **retry)(repository.raw_values)
        self._write = exponential_backoff(exceptions=(PersistenceWriteError,), **retry)(repository.write)

    def _on_retry(self, attempt: int, error: Exception, delay: float) -> None:
        self.logger.record_retry()
        self.logger.warning(
            "Retrying persistence call",
            attempt=attempt,
            delay=delay,
            error=str(error),
            entity_id=getattr(error, "entity_id", None),
        )

    def cancel(self) -> None:
        """Stop picking up new entities; in-flight ones finish."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # Pure part of a unit of work

    def resolve(self, entity_id: str, raw_values) -> Dict[str, Resolution]:
        resolver = FieldResolver(self.registry, RawValueSnapshot(raw_values))
        return resolver.resolve_entity(entity_id)

    def compute(self, entity_id: str, row: Dict[str, Any], raw_values) -> ConfidenceResult:
        inputs = self.mapper.to_inputs(row, self.resolve(entity_id, raw_values))
        return calculate_confidence(inputs, legacy_ratchet=self.settings.legacy_ratchet)

    def explain(self, entity_id: str) -> Dict[str, Any]:
        """Compute one movie's result without writing it."""
        validate_entity_id(entity_id)
        row = self.repository.read(entity_id)
        raw = self.repository.raw_values(entity_id)
        resolved = self.resolve(entity_id, raw)
        inputs: ConfidenceInputs = self.mapper.to_inputs(row, resolved)
        return {
            "entity_id": entity_id,
            "title": row.get("title"),
            "resolved": {name: r.source_id for name, r in resolved.items() if r.resolved},
            "agreement": {name: r.agreement for name, r in resolved.items() if r.resolved},
            "inputs": inputs,
            "result": calculate_confidence(inputs, legacy_ratchet=self.settings.legacy_ratchet),
        }

    # I/O part of a unit of work

    def _process(self, entity_id: Any, dry_run: bool) -> _Outcome:
        if self._cancel.is_set():
            return _Outcome(entity_id, CANCELLED)

        self.logger.record_attempt()
        try:
            validate_entity_id(entity_id)
            row = self.breaker.call(self._read_row, entity_id)
            raw = self.breaker.call(self._read_raw, entity_id)
            result = self.compute(entity_id, row, raw)
            if not dry_run:
                self.breaker.call(self._write, entity_id, result, self.clock())
        except ValidationInputError as e:
            return _Outcome(entity_id, SKIPPED, error=e)
        except (CircuitOpenError, SystemicConnectivityError) as e:
            return _Outcome(entity_id, SYSTEMIC, error=e)
        except (RetryError, PersistenceError) as e:
            return _Outcome(entity_id, FAILED, error=e)
        except Exception as e:
            self.logger.error("Unexpected error processing movie", entity_id=str(entity_id), error=repr(e))
            return _Outcome(entity_id, FAILED, error=e)

        return _Outcome(entity_id, OK, result=result)

    def _record(self, summary: Summary, outcome: _Outcome, dry_run: bool) -> None:
        if outcome.status == OK:
            summary.processed += 1
            summary.results[outcome.entity_id] = outcome.result
            summary.tier_counts[outcome.result.tier] += 1
            if not dry_run:
                summary.written += 1
            self.logger.record_success(outcome.result.tier, written=not dry_run)
            self.logger.debug(
                "Scored movie",
                entity_id=outcome.entity_id,
                score=outcome.result.confidence_score,
                tier=outcome.result.tier,
            )
            return

        if outcome.status == CANCELLED:
            summary.cancelled += 1
            return

        error_type = _error_type(outcome.error)
        summary.failures.append(EntityFailure(outcome.entity_id, error_type, str(outcome.error)))
        if outcome.status == SKIPPED:
            summary.skipped += 1
            self.logger.record_skip(error_type)
            self.logger.warning("Skipped movie with invalid id", entity_id=repr(outcome.entity_id))
        else:
            summary.failed += 1
            self.logger.record_failure(error_type)
            self.logger.warning(
                "Movie failed",
                entity_id=str(outcome.entity_id),
                error_type=error_type,
                error=str(outcome.error),
            )

    def _abort(self, summary: Summary, reason: str) -> None:
        self._cancel.set()
        if not summary.aborted:
            summary.aborted = True
            summary.abort_reason = reason
            self.logger.critical("Aborting confidence run", reason=reason)

    def _finish(self, summary: Summary, started: float) -> Summary:
        stats = confidence_statistics([r.confidence_score for r in summary.results.values()])
        summary.mean = stats["mean"]
        summary.median = stats["median"]
        summary.min = stats["min"]
        summary.max = stats["max"]
        summary.duration_seconds = time.monotonic() - started
        self.logger.info("Confidence run finished", **{k: v for k, v in summary.to_dict().items() if k != "failures"})
        self.logger.log_metrics_summary()
        return summary

    def run(
        self,
        mode: str = MODE_STALE,
        limit: Optional[int] = None,
        concurrency: Optional[int] = None,
        dry_run: bool = False,
    ) -> Summary:
        """
        Recalculate confidence for the selected movies.

        Args:
            mode: stale (default), all, low-only or recalculate
            limit: Maximum number of movies to process
            concurrency: Worker count (default: settings.concurrency)
            dry_run: Compute and report without writing

        Returns:
            Summary. Systemic failures set summary.aborted instead of raising.

        Raises:
            ValueError: For an unknown mode or a non-positive concurrency
        """
        if mode not in MODES:
            raise ValueError(f"Unknown mode {mode!r}; expected one of {', '.join(MODES)}")
        workers = concurrency if concurrency is not None else self.settings.concurrency
        if workers < 1:
            raise ValueError("concurrency must be >= 1")

        started = time.monotonic()
        summary = Summary(mode=mode, dry_run=dry_run)
        self._cancel.clear()
        self.breaker.reset()
        self.logger.reset_metrics()

        ttl = timedelta(days=self.settings.staleness_ttl_days)
        try:
            self.repository.ping()
            candidates = select_candidates(
                self.repository.recalc_states(), mode=mode, now=self.clock(), ttl=ttl, limit=limit
            )
        except SystemicConnectivityError as e:
            self._abort(summary, str(e))
            return self._finish(summary, started)

        summary.candidates = len(candidates)
        self.logger.info(
            "Starting confidence run",
            mode=mode,
            candidates=len(candidates),
            concurrency=workers,
            dry_run=dry_run,
        )

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="confidence") as executor:
            futures = [executor.submit(self._process, s.entity_id, dry_run) for s in candidates]
            for future in as_completed(futures):
                if future.cancelled():
                    summary.cancelled += 1
                    continue
                outcome = future.result()
                if outcome.status == SYSTEMIC:
                    self._record(summary, outcome, dry_run)
                    self._abort(summary, f"Persistence unavailable: {outcome.error}")
                    for pending in futures:
                        pending.cancel()
                    continue
                self._record(summary, outcome, dry_run)

        return self._finish(summary, started)
