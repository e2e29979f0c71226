"""Structured logging for coach_context.

Modules attach request details as ``extra={"ctx_<field>": ...}``. Both
formatters collect those fields under their bare names: the JSON formatter
nests them in a ``context`` object and the text formatter appends them as
``key=value`` pairs. Format and level come from ``COACH_CTX_LOG_FORMAT`` and
``COACH_CTX_LOG_LEVEL``.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

CONTEXT_PREFIX = "ctx_"

# Chatty transport loggers under the recovery client.
_QUIET_LOGGERS = ("httpx", "httpcore")


def context_fields(record: logging.LogRecord) -> dict[str, Any]:
    """``ctx_*`` extras of a record, keyed without the prefix, in sorted order."""
    return {
        key[len(CONTEXT_PREFIX):]: value
        for key, value in sorted(record.__dict__.items())
        if key.startswith(CONTEXT_PREFIX)
    }


def _scalar(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value) or "-"
    return str(value)


class JSONFormatter(logging.Formatter):
    """One JSON object per line; request details go under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = context_fields(record)
        if fields:
            entry["context"] = fields
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = context_fields(record)
        if not fields:
            return line
        pairs = " ".join(f"{key}={_scalar(value)}" for key, value in fields.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{pairs}]{sep}{tail}"


def resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    mapping = logging.getLevelNamesMapping()
    try:
        return mapping[level.strip().upper()]
    except KeyError:
        raise ValueError(f"unknown log level {level!r}") from None


def setup_logging(log_format: str = "json", level: int | str = logging.INFO) -> None:
    """Replace the root handlers with one stderr handler in the chosen format."""
    resolved = resolve_level(level)
    root = logging.getLogger()
    root.setLevel(resolved)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))
