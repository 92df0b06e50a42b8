import argparse
import json
import signal
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from . import __version__
from .database import init_database
from .env import Settings, load_env
from .errors import FilmTrustError, SystemicConnectivityError
from .logger import get_logger
from .orchestrator import BatchOrchestrator, MODES, MODE_STALE, Summary
from .sources import load_registry
from .storage import MovieRepository


def format_summary(summary: Summary) -> List[str]:
    lines = []
    label = "DRY RUN " if summary.dry_run else ""
    lines.append(f"{label}Confidence run ({summary.mode})")
    lines.append(
        f"  candidates={summary.candidates} processed={summary.processed} "
        f"written={summary.written} skipped={summary.skipped} failed={summary.failed} "
        f"cancelled={summary.cancelled}"
    )
    lines.append(
        f"  score mean={summary.mean:.2f} median={summary.median:.2f} "
        f"min={summary.min:.2f} max={summary.max:.2f}"
    )
    lines.append("  tiers: " + " ".join(f"{tier}={count}" for tier, count in summary.tier_counts.items()))
    lines.append(f"  errors={summary.error_count}")
    for failure in summary.failures[:10]:
        lines.append(f"   - {failure.entity_id!r}: {failure.error_type}: {failure.message}")
    if len(summary.failures) > 10:
        lines.append(f"   ... and {len(summary.failures) - 10} more")
    if summary.aborted:
        lines.append(f"  ABORTED: {summary.abort_reason}")
    return lines


def _settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    if getattr(args, "db", None):
        settings = replace(settings, db_path=Path(args.db))
    return settings


def _orchestrator(settings: Settings) -> BatchOrchestrator:
    logger = get_logger(level=settings.log_level, log_dir=settings.log_dir)
    registry = load_registry(settings.sources_file)
    repository = MovieRepository(settings.db_path)
    return BatchOrchestrator(repository, registry, settings=settings, logger=logger)


def cmd_init_db(args: argparse.Namespace) -> int:
    settings = _settings(args)
    init_database(settings.db_path)
    print(f"Initialized {settings.db_path}")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    settings = _settings(args)
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        payload = json.load(f)

    init_database(settings.db_path)
    repository = MovieRepository(settings.db_path)
    try:
        counts = repository.import_records(payload)
    except ValueError as e:
        raise SystemExit(f"Invalid input: {e}")
    finally:
        repository.close()
    print(
        f"Done. new={counts['new']} updated={counts['updated']} "
        f"no-change={counts['no-change']} raw_values={counts['raw_values']}"
    )
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    settings = _settings(args)
    orchestrator = _orchestrator(settings)

    def _stop(signum, frame):
        orchestrator.cancel()

    previous = {sig: signal.signal(sig, _stop) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        summary = orchestrator.run(
            mode=args.mode,
            limit=args.limit,
            concurrency=args.concurrency,
            dry_run=args.dry_run,
        )
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        orchestrator.repository.close()

    if args.json:
        print(json.dumps(summary.to_dict(), indent=2))
    else:
        for line in format_summary(summary):
            print(line)
    return 1 if summary.aborted else 0


def cmd_explain(args: argparse.Namespace) -> int:
    settings = _settings(args)
    orchestrator = _orchestrator(settings)
    try:
        report = orchestrator.explain(args.id)
    except SystemicConnectivityError as e:
        print(f"[error] {e}")
        return 1
    except FilmTrustError as e:
        print(f"[error] {e}")
        return 2
    finally:
        orchestrator.repository.close()

    result = report["result"]
    print(f"Movie: {report['entity_id']} ({report['title']})")
    print(f"Score: {result.confidence_score:.2f} [{result.tier}]")
    for name, value in result.breakdown.to_dict().items():
        print(f"  {name}: {value}")
    print(f"Flags: {', '.join(result.flags) or '-'}")
    if report["resolved"]:
        print("Resolved from:")
        for field_name, source_id in sorted(report["resolved"].items()):
            print(f"  {field_name} <- {source_id} (agreement {report['agreement'][field_name]:.2f})")
    return 0


def cmd_low(args: argparse.Namespace) -> int:
    settings = _settings(args)
    repository = MovieRepository(settings.db_path)
    try:
        movies = repository.low_confidence(limit=args.limit)
    except SystemicConnectivityError as e:
        print(f"[error] {e}")
        return 1
    finally:
        repository.close()
    if not movies:
        print("No low-confidence movies.")
        return 0
    print(f"{len(movies)} movies with confidence < 0.60:\n")
    for m in movies:
        print(f"{m['id']}: {m['title']} ({m['release_year'] or '?'}) {m['confidence_score']:.2f}")
    return 0


def cmd_sources(args: argparse.Namespace) -> int:
    settings = _settings(args)
    registry = load_registry(settings.sources_file)
    for source in sorted(registry, key=lambda s: (-s.priority, s.id)):
        state = "on " if source.enabled else "off"
        coverage = ",".join(sorted(source.field_coverage))
        print(f"[{state}] {source.id:<15} priority={source.priority:>3} base={source.base_confidence:.2f} {coverage}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="filmtrust", description="Movie data confidence engine")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")

    ini = subparsers.add_parser("init-db", help="Create the database tables")
    ini.add_argument("--db", help="Path to SQLite database (default: FILMTRUST_DB_PATH)")
    ini.set_defaults(func=cmd_init_db)

    imp = subparsers.add_parser("import", help="Load movies and raw source values from a JSON fixture")
    imp.add_argument("--input", required=True, help="Path to JSON with 'movies' and 'raw_values'")
    imp.add_argument("--db", help="Path to SQLite database (default: FILMTRUST_DB_PATH)")
    imp.set_defaults(func=cmd_import)

    run = subparsers.add_parser("run", help="Recalculate confidence scores")
    run.add_argument("--mode", choices=MODES, default=MODE_STALE, help="Candidate filter (default: stale)")
    run.add_argument("--limit", type=int, help="Maximum movies to process")
    run.add_argument("--concurrency", type=int, help="Worker count (default: FILMTRUST_CONCURRENCY or 50)")
    run.add_argument("--dry-run", action="store_true", help="Compute and report without writing")
    run.add_argument("--json", action="store_true", help="Print the summary as JSON")
    run.add_argument("--db", help="Path to SQLite database (default: FILMTRUST_DB_PATH)")
    run.set_defaults(func=cmd_run)

    exp = subparsers.add_parser("explain", help="Show one movie's confidence breakdown without writing")
    exp.add_argument("--id", required=True, help="Movie id")
    exp.add_argument("--db", help="Path to SQLite database (default: FILMTRUST_DB_PATH)")
    exp.set_defaults(func=cmd_explain)

    low = subparsers.add_parser("low", help="List low-confidence movies")
    low.add_argument("--limit", type=int, default=50, help="Maximum rows (default 50)")
    low.add_argument("--db", help="Path to SQLite database (default: FILMTRUST_DB_PATH)")
    low.set_defaults(func=cmd_low)

    src = subparsers.add_parser("sources", help="Print the source registry")
    src.set_defaults(func=cmd_sources)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    # Load .env if present (FILMTRUST_DB_PATH, FILMTRUST_CONCURRENCY, etc.)
    load_env()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return 0

    if hasattr(args, "func"):
        try:
            return args.func(args)
        except ValueError as e:
            raise SystemExit(f"Configuration error: {e}")

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
