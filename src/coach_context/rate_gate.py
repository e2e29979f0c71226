"""Client-local rate/credit gate for AI-backed requests.

Two rolling counters (hourly, daily) live in an injected key-value store.
Windows reset lazily on the next read once ``now > reset_time``; nothing runs
in the background. Hitting a limit never blocks: it switches the request cost
to the overage multiplier. Real spend is enforced server-side by the credit
ledger, so every storage problem fails open.
"""

import json
import logging
import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from .config import Config
from .dates import parse_timestamp
from .metrics import record_gate_overage

logger = logging.getLogger(__name__)

HOUR_SECONDS = 3600
DAY_SECONDS = 86400

COUNTER_KEY = "coach_context.rate_limit"
RESET_MARKER_KEY = "coach_context.rate_limit.last_reset_signal"

# Base credit cost per feature; mirrors the server-side ledger table.
CREDIT_COSTS: dict[str, int] = {
    "ask-assistant": 1,
    "generate-workout": 5,
    "generate-group-workout": 5,
    "generate-program": 10,
    "form-check": 15,
    "suggest-goals": 1,
    "swap-exercise": 1,
    "analyze-progress": 3,
    "autofill-workout": 2,
}


class GateStatus(str, Enum):
    OK = "ok"
    OVERAGE = "overage"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKeyValueStore:
    """Single JSON object on disk; writes go through a temp file + rename."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return data

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, sort_keys=True)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


@dataclass
class RateLimitCounter:
    count: int = 0
    reset_time: float = 0.0
    daily_count: int = 0
    daily_reset_time: float = 0.0

    @classmethod
    def from_json(cls, raw: str | None) -> "RateLimitCounter":
        if not raw:
            return cls()
        data = json.loads(raw)
        return cls(
            count=int(data.get("count", 0)),
            reset_time=float(data.get("resetTime", 0)),
            daily_count=int(data.get("dailyCount", 0)),
            daily_reset_time=float(data.get("dailyResetTime", 0)),
        )

    def to_json(self) -> str:
        return json.dumps({
            "count": self.count,
            "resetTime": self.reset_time,
            "dailyCount": self.daily_count,
            "dailyResetTime": self.daily_reset_time,
        })


def _signal_epoch(signal: Any) -> float | None:
    parsed = parse_timestamp(signal)
    if parsed is None:
        return None
    if isinstance(parsed, datetime):
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    if isinstance(parsed, date):
        return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc).timestamp()
    return None


class RateGate:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        hourly_limit: int = 20,
        daily_limit: int = 100,
        overage_multiplier: int = 2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if hourly_limit < 1 or daily_limit < 1:
            raise ValueError("rate limits must be positive")
        if overage_multiplier < 1:
            raise ValueError("overage_multiplier must be >= 1")
        self.store = store
        self.hourly_limit = hourly_limit
        self.daily_limit = daily_limit
        self.overage_multiplier = overage_multiplier
        self._clock = clock

    @classmethod
    def from_config(cls, store: KeyValueStore, config: Config) -> "RateGate":
        return cls(
            store,
            hourly_limit=config.hourly_limit,
            daily_limit=config.daily_limit,
            overage_multiplier=config.overage_multiplier,
        )

    def _load_counter(self) -> tuple[RateLimitCounter, bool]:
        """Stored counter, or a fresh one after discarding an unreadable entry."""
        raw = self.store.get(COUNTER_KEY)
        try:
            return RateLimitCounter.from_json(raw), False
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning("Discarding corrupted rate gate counter: %s", exc)
            self.store.remove(COUNTER_KEY)
            return RateLimitCounter(), True

    def _refreshed(self, now: float) -> tuple[RateLimitCounter, bool]:
        counter, changed = self._load_counter()
        if now > counter.reset_time:
            counter.count = 0
            counter.reset_time = now + HOUR_SECONDS
            changed = True
        if now > counter.daily_reset_time:
            counter.daily_count = 0
            counter.daily_reset_time = now + DAY_SECONDS
            changed = True
        return counter, changed

    def snapshot(self) -> RateLimitCounter | None:
        """Current counters after lazy reset, or None when storage is unreadable."""
        try:
            counter, _ = self._refreshed(self._clock())
        except Exception as exc:
            logger.warning("Rate gate storage unreadable: %s", exc)
            return None
        return counter

    def check(self) -> GateStatus:
        """OK or OVERAGE; never blocks and never raises."""
        try:
            counter, changed = self._refreshed(self._clock())
            if changed:
                self.store.set(COUNTER_KEY, counter.to_json())
        except Exception as exc:
            logger.warning("Rate gate check failed open: %s", exc)
            return GateStatus.OK

        if counter.count >= self.hourly_limit or counter.daily_count >= self.daily_limit:
            return GateStatus.OVERAGE
        return GateStatus.OK

    def increment(self) -> None:
        """Count one successful AI request in both windows."""
        try:
            counter, _ = self._refreshed(self._clock())
            counter.count += 1
            counter.daily_count += 1
            self.store.set(COUNTER_KEY, counter.to_json())
        except Exception as exc:
            logger.warning("Rate gate increment dropped: %s", exc)

    def current_cost(self) -> int:
        """Cost multiplier for one priced request; overages are counted here."""
        if self.check() is GateStatus.OVERAGE:
            record_gate_overage()
            return self.overage_multiplier
        return 1

    def cost_for(self, feature: str) -> int:
        return CREDIT_COSTS.get(feature, 1) * self.current_cost()

    def apply_reset_signal(self, signal: Any) -> bool:
        """Zero both counters for an admin reset newer than the last one applied.

        ``signal`` is the reset timestamp from the user's profile (datetime,
        ISO string or epoch). Returns True when a reset was applied.
        """
        signal_at = _signal_epoch(signal)
        if signal_at is None:
            return False
        try:
            marker_raw = self.store.get(RESET_MARKER_KEY)
            last_applied = float(marker_raw) if marker_raw else None
            if last_applied is not None and signal_at <= last_applied:
                return False
            now = self._clock()
            fresh = RateLimitCounter(
                reset_time=now + HOUR_SECONDS,
                daily_reset_time=now + DAY_SECONDS,
            )
            self.store.set(COUNTER_KEY, fresh.to_json())
            self.store.set(RESET_MARKER_KEY, repr(signal_at))
        except Exception as exc:
            logger.warning("Rate gate reset signal not applied: %s", exc)
            return False

        logger.info("Rate gate counters reset by admin signal", extra={"ctx_reset_signal": signal_at})
        return True
