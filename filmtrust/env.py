import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def load_env() -> None:
    """Load .env from project root if present."""
    env_path = Path.cwd() / ".env"
    if not env_path.exists():
        return
    load_dotenv(dotenv_path=env_path)


def _int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {value}")
    return value


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}")
    if value < 0:
        raise ValueError(f"{key} must be >= 0, got {value}")
    return value


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    lowered = raw.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"{key} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read once at process start."""

    db_path: Path = Path("data/filmtrust.db")
    sources_file: Optional[Path] = None
    concurrency: int = 50
    staleness_ttl_days: int = 7
    max_retries: int = 3
    retry_base_delay: float = 0.5
    retry_max_delay: float = 10.0
    breaker_threshold: int = 10
    legacy_ratchet: bool = True
    log_level: str = "INFO"
    log_dir: Path = Path("logs")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from (default: os.environ)

        Raises:
            ValueError: If a variable is present but malformed
        """
        if env is None:
            env = os.environ

        sources_file = env.get("FILMTRUST_SOURCES_FILE") or None
        log_level = (env.get("FILMTRUST_LOG_LEVEL") or "INFO").upper()
        if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"FILMTRUST_LOG_LEVEL is not a log level: {log_level!r}")

        return cls(
            db_path=Path(env.get("FILMTRUST_DB_PATH") or "data/filmtrust.db"),
            sources_file=Path(sources_file) if sources_file else None,
            concurrency=_int(env, "FILMTRUST_CONCURRENCY", 50, minimum=1),
            staleness_ttl_days=_int(env, "FILMTRUST_STALENESS_TTL_DAYS", 7, minimum=1),
            max_retries=_int(env, "FILMTRUST_MAX_RETRIES", 3),
            retry_base_delay=_float(env, "FILMTRUST_RETRY_BASE_DELAY", 0.5),
            retry_max_delay=_float(env, "FILMTRUST_RETRY_MAX_DELAY", 10.0),
            breaker_threshold=_int(env, "FILMTRUST_BREAKER_THRESHOLD", 10, minimum=1),
            legacy_ratchet=_bool(env, "FILMTRUST_LEGACY_RATCHET", True),
            log_level=log_level,
            log_dir=Path(env.get("FILMTRUST_LOG_DIR") or "logs"),
        )
