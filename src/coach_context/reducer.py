"""Set reducer: one pass over recent sets, three rolling aggregates per exercise.

- Best estimated 1RM (Epley, reps 1..12 only, strictly-greater replacement)
- Pain flags (count, max, recency)
- Mean RPE

Only the most recent ``window`` workouts are mined. Older sessions still
appear in summaries but never contribute maxes; recent performance is what
a coach should program from.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable

from .dates import days_since
from .models import MaxLiftRecord, PainRecord, TimeSet, WorkoutRecord

DEFAULT_MINING_WINDOW = 25
E1RM_MAX_REPS = 12
PAIN_RECENT_DAYS = 30

_FLOAT_PREFIX_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_INT_PREFIX_RE = re.compile(r"^\s*([+-]?\d+)")
# Integers past float precision are treated as unparseable.
_MAX_SAFE_INT = 2**53 - 1


def parse_float(value: Any) -> float | None:
    """Leading-numeric parse ("135lbs" -> 135.0). None when nothing parses."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            parsed = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        match = _FLOAT_PREFIX_RE.match(value)
        if match is None:
            return None
        parsed = float(match.group(1))
    else:
        return None
    return parsed if math.isfinite(parsed) else None


def parse_int(value: Any) -> int | None:
    """Leading-integer parse ("8.5" -> 8). None when nothing parses."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float):
        value = int(value) if math.isfinite(value) else None
    elif isinstance(value, str):
        match = _INT_PREFIX_RE.match(value)
        value = int(match.group(1)) if match else None
    elif not isinstance(value, int):
        return None
    if value is None or abs(value) > _MAX_SAFE_INT:
        return None
    return value


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves toward +inf (262.5 -> 263), unlike Python's banker's round()."""
    scale = 10**digits
    return math.floor(value * scale + 0.5) / scale


def estimate_1rm(weight: float, reps: int) -> int | None:
    """Epley estimate rounded to the nearest integer.

    Returns None outside the reliable range (reps 1..12, weight > 0).
    """
    if weight <= 0 or reps < 1 or reps > E1RM_MAX_REPS:
        return None
    estimate = weight * (1 + reps / 30)
    if not math.isfinite(estimate):
        return None
    return int(round_half_up(estimate))


def exercise_key(name: str, *, fold: bool = False) -> str:
    return name.strip().casefold() if fold else name


@dataclass
class _PainTally:
    count: int = 0
    max_pain: int = 0
    last_days_ago: int | None = None
    recent_count: int = 0


@dataclass
class SetAggregates:
    max_lifts: dict[str, MaxLiftRecord] = field(default_factory=dict)
    pain_history: dict[str, PainRecord] = field(default_factory=dict)
    rpe_averages: dict[str, float] = field(default_factory=dict)
    rpe_samples: dict[str, int] = field(default_factory=dict)
    exercise_frequency: dict[str, int] = field(default_factory=dict)
    total_sets: int = 0
    total_volume: float = 0.0


def _effective(actual: str, prescribed: str, parse) -> Any:
    return parse(actual) or parse(prescribed) or 0


def reduce_sets(
    workouts: Iterable[WorkoutRecord],
    *,
    today: date,
    window: int | None = DEFAULT_MINING_WINDOW,
    fold_names: bool = False,
) -> SetAggregates:
    """Aggregate max lifts, pain and RPE over the newest ``window`` workouts.

    ``workouts`` must be ordered most-recent-first. Pure function: no state
    survives between calls and the input records are never mutated.
    """
    records = list(workouts)
    if window is not None:
        records = records[:window]

    max_lifts: dict[str, MaxLiftRecord] = {}
    pain: dict[str, _PainTally] = {}
    rpe_totals: dict[str, list[int]] = {}
    frequency: dict[str, int] = {}
    total_sets = 0
    total_volume = 0.0

    for workout in records:
        elapsed = days_since(workout.date, today) if workout.date_known else None
        for exercise in workout.exercises:
            if not exercise.name:
                continue
            key = exercise_key(exercise.name, fold=fold_names)
            frequency[key] = frequency.get(key, 0) + 1

            for entry in exercise.sets:
                if entry.is_planned_only:
                    continue

                if isinstance(entry, TimeSet):
                    weight, reps = 0.0, 0
                else:
                    weight = float(_effective(entry.actual_weight, entry.prescribed_weight, parse_float))
                    reps = int(_effective(entry.actual_reps, entry.prescribed_reps, parse_int))
                rpe = parse_int(entry.rpe) or 0
                pain_level = parse_int(entry.pain_level) or 0

                total_sets += 1
                total_volume += weight * reps

                e1rm = estimate_1rm(weight, reps)
                if e1rm is not None:
                    best = max_lifts.get(key)
                    if best is None or e1rm > best.e1rm:
                        max_lifts[key] = MaxLiftRecord(
                            weight=weight, reps=reps, e1rm=e1rm, date=workout.date
                        )

                if pain_level > 0:
                    tally = pain.setdefault(key, _PainTally())
                    tally.count += 1
                    tally.max_pain = max(tally.max_pain, pain_level)
                    if elapsed is not None:
                        if tally.last_days_ago is None or elapsed < tally.last_days_ago:
                            tally.last_days_ago = elapsed
                        if elapsed <= PAIN_RECENT_DAYS:
                            tally.recent_count += 1

                if rpe > 0:
                    totals = rpe_totals.setdefault(key, [0, 0])
                    totals[0] += rpe
                    totals[1] += 1

    return SetAggregates(
        max_lifts=max_lifts,
        pain_history={
            name: PainRecord(
                count=tally.count,
                max_pain=tally.max_pain,
                last_days_ago=tally.last_days_ago,
                recent_count=tally.recent_count,
            )
            for name, tally in pain.items()
        },
        rpe_averages={
            name: round_half_up(total / count, 1)
            for name, (total, count) in rpe_totals.items()
        },
        rpe_samples={name: count for name, (_, count) in rpe_totals.items()},
        exercise_frequency=frequency,
        total_sets=total_sets,
        total_volume=total_volume,
    )
