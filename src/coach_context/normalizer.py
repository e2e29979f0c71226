"""Workout normalizer: merge personal and group history into one timeline.

Only completed sessions survive. Dates are coerced to YYYY-MM-DD; a missing
or unparseable date falls back to the epoch and is flagged ``date_known=False``
so downstream recency math ignores it. Malformed documents are skipped.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from .dates import EPOCH_DATE_KEY, to_date_key
from .models import WorkoutRecord

logger = logging.getLogger(__name__)


def normalize_workout(
    raw: Any,
    *,
    is_group: bool = False,
    timezone_name: str = "UTC",
) -> WorkoutRecord | None:
    """Validate one stored workout document. Returns None when unusable."""
    if not isinstance(raw, Mapping):
        logger.debug("Skipping non-mapping workout document: %r", type(raw).__name__)
        return None

    date_key = to_date_key(raw.get("date"), timezone_name=timezone_name)
    document = {
        **raw,
        "date": date_key or EPOCH_DATE_KEY,
        "dateKnown": date_key is not None,
        "isGroup": is_group or bool(raw.get("isGroup") or raw.get("_isGroup")),
    }
    document.pop("date_known", None)
    document.pop("is_group", None)

    try:
        return WorkoutRecord.model_validate(document)
    except ValidationError as exc:
        logger.debug(
            "Skipping malformed workout %s: %s",
            raw.get("id"),
            exc.errors(include_url=False),
        )
        return None


def merge_workouts(
    personal: Iterable[Any],
    group: Iterable[Any],
    *,
    timezone_name: str = "UTC",
    limit: int | None = None,
) -> list[WorkoutRecord]:
    """Completed workouts from both sources, most recent first.

    The sort is stable, so same-day sessions keep personal-before-group
    source order. Sources are assumed disjoint; nothing is deduplicated.
    """
    merged: list[WorkoutRecord] = []
    for documents, from_group in ((personal, False), (group, True)):
        for raw in documents or ():
            record = normalize_workout(raw, is_group=from_group, timezone_name=timezone_name)
            if record is None or not record.is_completed:
                continue
            merged.append(record)

    merged.sort(key=lambda record: record.date, reverse=True)
    if limit is not None:
        merged = merged[:limit]
    return merged
