"""
Structured logging system for FilmTrust.

Provides centralized logging with console and file outputs, plus run
metrics for monitoring confidence recalculation batches.
"""

import logging
import sys
import threading
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


def _empty_metrics() -> dict:
    return {
        "entities_attempted": 0,
        "entities_succeeded": 0,
        "entities_failed": 0,
        "entities_skipped": 0,
        "writes": 0,
        "retries": 0,
        "errors_by_type": {},
        "tier_counts": {},
    }


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring batch health. Metric updates are
    guarded by a lock since workers report from several threads.
    """

    def __init__(
        self,
        name: str = "filmtrust",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()
        self.logger.propagate = False

        self._lock = threading.Lock()
        self.metrics = _empty_metrics()

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"filmtrust_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(threadName)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str, sort_keys=True)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_attempt(self):
        """Record that an entity was picked up by a worker."""
        with self._lock:
            self.metrics["entities_attempted"] += 1

    def record_success(self, tier: str, written: bool):
        """Record a computed entity and its tier."""
        with self._lock:
            self.metrics["entities_succeeded"] += 1
            if written:
                self.metrics["writes"] += 1
            tiers = self.metrics["tier_counts"]
            tiers[tier] = tiers.get(tier, 0) + 1

    def record_skip(self, error_type: str):
        """Record an entity skipped for bad input."""
        with self._lock:
            self.metrics["entities_skipped"] += 1
            errors = self.metrics["errors_by_type"]
            errors[error_type] = errors.get(error_type, 0) + 1

    def record_failure(self, error_type: str):
        """Record an entity that failed after retries."""
        with self._lock:
            self.metrics["entities_failed"] += 1
            errors = self.metrics["errors_by_type"]
            errors[error_type] = errors.get(error_type, 0) + 1

    def record_retry(self):
        """Increment retry counter."""
        with self._lock:
            self.metrics["retries"] += 1

    def reset_metrics(self):
        """Clear metrics before a new run."""
        with self._lock:
            self.metrics = _empty_metrics()

    def get_metrics(self) -> dict:
        """Return a snapshot of current metrics."""
        with self._lock:
            metrics_copy = json.loads(json.dumps(self.metrics))

        attempted = metrics_copy["entities_attempted"]
        if attempted > 0:
            metrics_copy["success_rate"] = round(
                metrics_copy["entities_succeeded"] / attempted, 3
            )
        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        attempted = metrics["entities_attempted"]
        succeeded = metrics["entities_succeeded"]
        overall_rate = 0
        if attempted > 0:
            overall_rate = round(succeeded / attempted * 100, 1)

        self.info("=== Confidence Run Metrics ===")
        self.info(f"Entities: {succeeded}/{attempted} ({overall_rate}% success)")
        self.info(f"Writes: {metrics['writes']}  Retries: {metrics['retries']}")

        if metrics["tier_counts"]:
            self.info("Tiers:")
            for tier, count in sorted(metrics["tier_counts"].items()):
                self.info(f"  {tier}: {count}")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "filmtrust",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
