import logging
import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

_MAX_CARDIO_LIMIT = 10


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using %d", name, raw, default)
        return default
    return max(value, minimum)


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid number for %s=%r, using %s", name, raw, default)
        return default
    return max(value, minimum)


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_log_level(name: str, default: str = "INFO") -> str:
    raw = (os.environ.get(name) or "").strip().upper()
    if not raw:
        return default
    if raw not in logging.getLevelNamesMapping():
        logger.warning("Unknown log level %s=%r, using %s", name, raw, default)
        return default
    return raw


def _env_timezone(name: str, default: str = "UTC") -> str:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %s=%r, using %s", name, raw, default)
        return default
    return raw


@dataclass(frozen=True)
class Config:
    database_url: str | None = None
    recovery_url: str | None = None
    recovery_api_key: str | None = None
    log_format: str = "json"
    log_level: str = "INFO"
    fetch_timeout_seconds: float = 5.0
    workout_fetch_limit: int = 50
    mining_window: int = 25
    cardio_limit: int = 5
    max_payload_chars: int = 12_000
    hourly_limit: int = 20
    daily_limit: int = 100
    overage_multiplier: int = 2
    fold_exercise_names: bool = False
    timezone: str = "UTC"

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            database_url=os.environ.get("DATABASE_URL") or None,
            recovery_url=os.environ.get("COACH_CTX_RECOVERY_URL") or None,
            recovery_api_key=os.environ.get("COACH_CTX_RECOVERY_API_KEY") or None,
            log_format=os.environ.get("COACH_CTX_LOG_FORMAT", "json"),
            log_level=_env_log_level("COACH_CTX_LOG_LEVEL"),
            fetch_timeout_seconds=_env_float("COACH_CTX_FETCH_TIMEOUT", 5.0, minimum=0.1),
            workout_fetch_limit=_env_int("COACH_CTX_WORKOUT_FETCH_LIMIT", 50, minimum=1),
            mining_window=_env_int("COACH_CTX_MINING_WINDOW", 25, minimum=1),
            cardio_limit=min(_env_int("COACH_CTX_CARDIO_LIMIT", 5, minimum=1), _MAX_CARDIO_LIMIT),
            max_payload_chars=_env_int("COACH_CTX_MAX_PAYLOAD_CHARS", 12_000, minimum=1),
            hourly_limit=_env_int("COACH_CTX_HOURLY_LIMIT", 20, minimum=1),
            daily_limit=_env_int("COACH_CTX_DAILY_LIMIT", 100, minimum=1),
            overage_multiplier=_env_int("COACH_CTX_OVERAGE_MULTIPLIER", 2, minimum=1),
            fold_exercise_names=_env_flag("COACH_CTX_FOLD_EXERCISE_NAMES"),
            timezone=_env_timezone("COACH_CTX_TIMEZONE"),
        )
