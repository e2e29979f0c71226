from __future__ import annotations

import pytest

from coach_context.config import Config

_ENV_VARS = (
    "DATABASE_URL",
    "COACH_CTX_RECOVERY_URL",
    "COACH_CTX_RECOVERY_API_KEY",
    "COACH_CTX_LOG_FORMAT",
    "COACH_CTX_LOG_LEVEL",
    "COACH_CTX_FETCH_TIMEOUT",
    "COACH_CTX_WORKOUT_FETCH_LIMIT",
    "COACH_CTX_MINING_WINDOW",
    "COACH_CTX_CARDIO_LIMIT",
    "COACH_CTX_MAX_PAYLOAD_CHARS",
    "COACH_CTX_HOURLY_LIMIT",
    "COACH_CTX_DAILY_LIMIT",
    "COACH_CTX_OVERAGE_MULTIPLIER",
    "COACH_CTX_FOLD_EXERCISE_NAMES",
    "COACH_CTX_TIMEZONE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_config_from_env_defaults() -> None:
    cfg = Config.from_env()
    assert cfg == Config()
    assert cfg.database_url is None
    assert cfg.mining_window == 25
    assert cfg.cardio_limit == 5
    assert cfg.fold_exercise_names is False


def test_config_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://app@db/coach")
    monkeypatch.setenv("COACH_CTX_RECOVERY_URL", "https://recovery.internal")
    monkeypatch.setenv("COACH_CTX_LOG_FORMAT", "text")
    monkeypatch.setenv("COACH_CTX_FETCH_TIMEOUT", "2.5")
    monkeypatch.setenv("COACH_CTX_HOURLY_LIMIT", "10")
    monkeypatch.setenv("COACH_CTX_FOLD_EXERCISE_NAMES", "true")
    monkeypatch.setenv("COACH_CTX_TIMEZONE", "Europe/Berlin")

    cfg = Config.from_env()
    assert cfg.database_url == "postgresql://app@db/coach"
    assert cfg.recovery_url == "https://recovery.internal"
    assert cfg.log_format == "text"
    assert cfg.fetch_timeout_seconds == 2.5
    assert cfg.hourly_limit == 10
    assert cfg.fold_exercise_names is True
    assert cfg.timezone == "Europe/Berlin"


def test_config_cardio_limit_is_clamped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COACH_CTX_CARDIO_LIMIT", "50")
    assert Config.from_env().cardio_limit == 10

    monkeypatch.setenv("COACH_CTX_CARDIO_LIMIT", "0")
    assert Config.from_env().cardio_limit == 1


def test_config_invalid_values_fall_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COACH_CTX_MINING_WINDOW", "many")
    monkeypatch.setenv("COACH_CTX_FETCH_TIMEOUT", "soon")
    monkeypatch.setenv("COACH_CTX_TIMEZONE", "Mars/Olympus_Mons")

    cfg = Config.from_env()
    assert cfg.mining_window == 25
    assert cfg.fetch_timeout_seconds == 5.0
    assert cfg.timezone == "UTC"


def test_config_log_level(monkeypatch: pytest.MonkeyPatch) -> None:
    assert Config.from_env().log_level == "INFO"

    monkeypatch.setenv("COACH_CTX_LOG_LEVEL", " warning ")
    assert Config.from_env().log_level == "WARNING"

    monkeypatch.setenv("COACH_CTX_LOG_LEVEL", "chatty")
    assert Config.from_env().log_level == "INFO"
