"""Calendar-date coercion for heterogeneous workout date representations.

Workout documents carry dates as datetimes, ISO strings, bare YYYY-MM-DD
keys, epoch seconds/milliseconds or Firestore-style ``{"seconds": ...}``
mappings. Everything is reduced to a ``YYYY-MM-DD`` key.
"""

import re
from collections.abc import Mapping
from datetime import date, datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

EPOCH_DATE_KEY = "1970-01-01"

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EPOCH_MS_THRESHOLD = 1_000_000_000_000


def _from_epoch(value: float) -> datetime | None:
    try:
        epoch = float(value)
        if epoch > _EPOCH_MS_THRESHOLD:
            epoch /= 1000.0
        return datetime.fromtimestamp(epoch, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value: Any) -> datetime | date | None:
    """Best-effort parse of a stored date value. Returns None when unusable."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    if isinstance(value, Mapping):
        for key in ("seconds", "_seconds"):
            seconds = value.get(key)
            if isinstance(seconds, (int, float)) and not isinstance(seconds, bool):
                return _from_epoch(seconds)
        return None
    for hook in ("to_datetime", "ToDatetime"):
        converter = getattr(value, hook, None)
        if callable(converter):
            try:
                converted = converter()
            except (TypeError, ValueError):
                return None
            return converted if isinstance(converted, datetime) else None
    if not isinstance(value, str):
        return None

    raw = value.strip()
    if not raw:
        return None
    if _DATE_KEY_RE.match(raw):
        try:
            return date.fromisoformat(raw)
        except ValueError:
            return None

    numeric = raw.replace(".", "", 1)
    if numeric.isdecimal():
        return _from_epoch(float(raw))

    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def to_date_key(value: Any, *, timezone_name: str = "UTC") -> str | None:
    """Coerce a stored date value to ``YYYY-MM-DD``; None when unparseable.

    Aware timestamps at exactly midnight UTC were stored as plain dates and
    keep their UTC day. Other aware timestamps are projected into
    ``timezone_name``. Naive timestamps keep their own calendar day.
    """
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    if not isinstance(parsed, datetime):
        return parsed.isoformat()
    if parsed.tzinfo is None:
        return parsed.date().isoformat()

    try:
        utc = parsed.astimezone(timezone.utc)
        if utc.hour == 0 and utc.minute == 0:
            return utc.date().isoformat()
        return parsed.astimezone(ZoneInfo(timezone_name)).date().isoformat()
    except (OverflowError, ValueError):
        return None


def days_since(date_key: str, today: date) -> int | None:
    """Whole days between a date key and ``today`` (negative for future dates)."""
    try:
        then = date.fromisoformat(date_key)
    except (TypeError, ValueError):
        return None
    return (today - then).days


def today_in(timezone_name: str = "UTC") -> date:
    return datetime.now(ZoneInfo(timezone_name)).date()
