"""Context assembler: normalized history + auxiliary data -> TrainingContext.

``build_training_context`` is the pure entry point (already-fetched documents
in, context out). ``load_training_context`` fetches everything for one user
concurrently, tolerating partial failure, and then calls it.

Resolution tiers over the strength timeline:
- slots 1-3: full set-by-set detail
- slots 4-8: name/date/exercise-count summaries
Cardio sessions are summarized separately.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from pydantic import ValidationError

from .config import Config
from .dates import to_date_key, today_in
from .gather import DEFAULT_FETCH_TIMEOUT_SECONDS, FallbackTask, gather_with_fallback
from .metrics import record_assembly_failure, record_context_assembled
from .models import (
    CardioSummary,
    ContextStats,
    ExerciseFrequency,
    ExerciseSetCount,
    FormCheckSummary,
    FullWorkout,
    GoalSummary,
    InjuryRisk,
    MaxLiftRecord,
    ProfileSnippet,
    RecoveryScores,
    ScheduleSummary,
    TrainingContext,
    WorkoutRecord,
    WorkoutSummary,
)
from .normalizer import merge_workouts
from .reducer import DEFAULT_MINING_WINDOW, SetAggregates, exercise_key, reduce_sets, round_half_up
from .sources import DocumentSource, RecoveryScoreProvider

logger = logging.getLogger(__name__)

FULL_DETAIL_COUNT = 3
SUMMARY_COUNT = 5
SUMMARY_EXERCISE_COUNT = 4
FORM_CHECK_LIMIT = 5
TOP_EXERCISE_COUNT = 10
DEFAULT_MAX_PAYLOAD_CHARS = 12_000

# Sections shortened, in order, when the serialized context exceeds the cap.
# Full-detail workouts and the max-lift/pain/RPE maps are never truncated.
TRUNCATION_ORDER: tuple[str, ...] = (
    "recent_workouts",
    "cardio_workouts",
    "form_checks",
    "schedules",
)


@dataclass(frozen=True)
class AssemblySettings:
    mining_window: int | None = DEFAULT_MINING_WINDOW
    cardio_limit: int = 5
    max_payload_chars: int | None = DEFAULT_MAX_PAYLOAD_CHARS
    fold_exercise_names: bool = False
    timezone: str = "UTC"

    @classmethod
    def from_config(cls, config: Config) -> "AssemblySettings":
        return cls(
            mining_window=config.mining_window,
            cardio_limit=config.cardio_limit,
            max_payload_chars=config.max_payload_chars,
            fold_exercise_names=config.fold_exercise_names,
            timezone=config.timezone,
        )


@dataclass
class RawSources:
    """Already-fetched documents for one user."""

    personal_workouts: list[Any] = field(default_factory=list)
    group_workouts: list[Any] = field(default_factory=list)
    goals: list[Any] = field(default_factory=list)
    schedules: list[Any] = field(default_factory=list)
    form_checks: list[Any] = field(default_factory=list)
    profile: Mapping[str, Any] | None = None
    recovery: RecoveryScores | None = None


# ---------------------------------------------------------------------------
# Section builders
# ---------------------------------------------------------------------------


def _first_populated(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _full_workout(workout: WorkoutRecord) -> FullWorkout:
    day_of_week = None
    if workout.date_known:
        day_of_week = date.fromisoformat(workout.date).strftime("%A")
    return FullWorkout(
        id=workout.id,
        name=workout.name or "Workout",
        date=workout.date,
        day_of_week=day_of_week,
        is_group=workout.is_group,
        exercises=workout.exercises,
    )


def _workout_summary(workout: WorkoutRecord) -> WorkoutSummary:
    return WorkoutSummary(
        name=workout.name or "Workout",
        date=workout.date,
        exercise_count=len(workout.exercises),
        exercises=[
            ExerciseSetCount(name=exercise.name, sets=len(exercise.sets))
            for exercise in workout.exercises[:SUMMARY_EXERCISE_COUNT]
        ],
    )


def _cardio_summary(workout: WorkoutRecord) -> CardioSummary:
    return CardioSummary(
        name=workout.name or workout.cardio_type or "Cardio",
        date=workout.date,
        duration=workout.duration,
        cardio_type=workout.cardio_type,
        distance=workout.distance,
        calories=workout.calories,
    )


def summarize_goals(goals: list[Any]) -> list[GoalSummary]:
    """Active goals only; supports both current/target naming schemes."""
    summaries: list[GoalSummary] = []
    for goal in goals:
        if not isinstance(goal, Mapping) or goal.get("status") != "active":
            continue
        target_date = goal.get("targetDate")
        try:
            summaries.append(GoalSummary(
                lift=_first_populated(goal.get("lift"), goal.get("metricType")),
                current_value=_first_populated(goal.get("currentWeight"), goal.get("currentValue")),
                target_value=_first_populated(goal.get("targetWeight"), goal.get("targetValue")),
                target_date=to_date_key(target_date) if target_date else None,
            ))
        except ValidationError:
            logger.debug("Skipping malformed goal %s", goal.get("id"))
    return summaries


def summarize_schedules(schedules: list[Any]) -> list[ScheduleSummary]:
    summaries: list[ScheduleSummary] = []
    for schedule in schedules:
        if not isinstance(schedule, Mapping) or not schedule.get("name"):
            continue
        try:
            summaries.append(ScheduleSummary(
                name=str(schedule["name"]),
                days=schedule.get("days") or None,
                duration=schedule.get("duration") or None,
            ))
        except ValidationError:
            logger.debug("Skipping malformed schedule %s", schedule.get("id"))
    return summaries


def summarize_form_checks(jobs: list[Any], *, limit: int = FORM_CHECK_LIMIT) -> list[FormCheckSummary]:
    """Completed form-check analyses; low-severity risks are dropped."""
    summaries: list[FormCheckSummary] = []
    for job in jobs:
        if not isinstance(job, Mapping):
            continue
        analysis = job.get("analysis") if isinstance(job.get("analysis"), Mapping) else {}
        focus = analysis.get("focusDrill") if isinstance(analysis.get("focusDrill"), Mapping) else {}
        risks = [
            InjuryRisk(area=str(risk.get("area", "")), severity=str(risk["severity"]))
            for risk in _as_list(analysis.get("injuryRisks"))
            if isinstance(risk, Mapping) and risk.get("severity") and risk.get("severity") != "low"
        ]
        try:
            summaries.append(FormCheckSummary(
                exercise=analysis.get("exercise") or "Unknown",
                score=analysis.get("overallScore") or 0,
                date=to_date_key(job.get("createdAt")),
                focus_cue=focus.get("cue") or None,
                injury_risks=risks,
            ))
        except ValidationError:
            logger.debug("Skipping malformed form check %s", job.get("id"))
        if len(summaries) >= limit:
            break
    return summaries


def profile_snippet(profile: Mapping[str, Any] | None) -> ProfileSnippet | None:
    if not profile:
        return None
    try:
        snippet = ProfileSnippet.model_validate(dict(profile))
    except ValidationError:
        return None
    if not any(value is not None for value in snippet.model_dump().values()):
        return None
    return snippet


def apply_overrides(
    max_lifts: dict[str, MaxLiftRecord],
    overrides: Any,
    *,
    fold: bool = False,
) -> dict[str, MaxLiftRecord]:
    """Merge coach-entered max-lift corrections and drop excluded exercises.

    Override and exclude names are keyed the same way as ``max_lifts`` so a
    folded history and a verbatim override land on one entry.
    """
    if not isinstance(overrides, Mapping):
        return max_lifts

    effective = dict(max_lifts)
    lift_overrides = overrides.get("maxLifts")
    if isinstance(lift_overrides, Mapping):
        for raw_name, values in lift_overrides.items():
            if not isinstance(raw_name, str) or not isinstance(values, Mapping):
                continue
            name = exercise_key(raw_name, fold=fold)
            base = effective[name].model_dump() if name in effective else {}
            try:
                effective[name] = MaxLiftRecord.model_validate({**base, **values})
            except ValidationError:
                logger.warning("Ignoring invalid max-lift override for %s", name)

    for name in _as_list(overrides.get("excludeExercises")):
        if isinstance(name, str):
            effective.pop(exercise_key(name, fold=fold), None)
    return effective


def compute_stats(aggregates: SetAggregates, workouts: list[WorkoutRecord]) -> ContextStats:
    unique_days = len({workout.date for workout in workouts})
    day_range = 1
    if len(workouts) > 1:
        newest = date.fromisoformat(workouts[0].date)
        oldest = date.fromisoformat(workouts[-1].date)
        day_range = max(1, (newest - oldest).days)
    top = sorted(aggregates.exercise_frequency.items(), key=lambda item: item[1], reverse=True)
    return ContextStats(
        total_sets=aggregates.total_sets,
        total_volume=aggregates.total_volume,
        workouts_per_week=round_half_up(unique_days / day_range * 7, 1) if workouts else 0,
        top_exercises=[
            ExerciseFrequency(name=name, count=count)
            for name, count in top[:TOP_EXERCISE_COUNT]
        ],
    )


def enforce_size_budget(context: TrainingContext, max_chars: int | None) -> TrainingContext:
    """Shrink low-priority sections until the compact JSON fits ``max_chars``."""
    if max_chars is None or len(context.to_json()) <= max_chars:
        return context

    truncated: list[str] = list(context.truncated)
    current = context
    for section in TRUNCATION_ORDER:
        items = list(getattr(current, section))
        while items and len(current.to_json()) > max_chars:
            items.pop()
            if section not in truncated:
                truncated.append(section)
            current = current.model_copy(update={section: list(items), "truncated": list(truncated)})
        if len(current.to_json()) <= max_chars:
            break

    if len(current.to_json()) > max_chars:
        logger.warning(
            "Training context still exceeds %d chars after truncation",
            max_chars,
            extra={"ctx_payload_chars": len(current.to_json())},
        )
    return current


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def build_training_context(
    sources: RawSources,
    *,
    today: date | None = None,
    settings: AssemblySettings | None = None,
) -> TrainingContext:
    """Run normalizer -> set reducer -> assembly over already-fetched documents."""
    settings = settings or AssemblySettings()
    today = today or today_in(settings.timezone)

    workouts = merge_workouts(
        sources.personal_workouts,
        sources.group_workouts,
        timezone_name=settings.timezone,
    )
    aggregates = reduce_sets(
        workouts,
        today=today,
        window=settings.mining_window,
        fold_names=settings.fold_exercise_names,
    )
    mined = workouts if settings.mining_window is None else workouts[: settings.mining_window]

    strength = [workout for workout in workouts if workout.workout_type == "strength"]
    cardio = [workout for workout in workouts if workout.workout_type == "cardio"]

    profile = sources.profile or {}
    admin_notes = profile.get("adminNotes")

    context = TrainingContext(
        profile=profile_snippet(profile),
        max_lifts=apply_overrides(
            aggregates.max_lifts,
            profile.get("aiContextOverrides"),
            fold=settings.fold_exercise_names,
        ),
        pain_history=aggregates.pain_history,
        rpe_averages=aggregates.rpe_averages,
        recent_workouts_full=[_full_workout(w) for w in strength[:FULL_DETAIL_COUNT]],
        recent_workouts=[
            _workout_summary(w)
            for w in strength[FULL_DETAIL_COUNT:FULL_DETAIL_COUNT + SUMMARY_COUNT]
        ],
        cardio_workouts=[_cardio_summary(w) for w in cardio[: settings.cardio_limit]],
        goals=summarize_goals(_as_list(sources.goals)),
        schedules=summarize_schedules(_as_list(sources.schedules)),
        oura_data=sources.recovery,
        form_checks=summarize_form_checks(_as_list(sources.form_checks)),
        admin_notes=admin_notes.strip() or None if isinstance(admin_notes, str) else None,
        stats=compute_stats(aggregates, mined),
    )
    return enforce_size_budget(context, settings.max_payload_chars)


async def load_training_context(
    user_id: str,
    source: DocumentSource,
    recovery: RecoveryScoreProvider | None = None,
    *,
    config: Config | None = None,
    today: date | None = None,
) -> TrainingContext:
    """Fetch one user's history concurrently and assemble the context.

    Individual source failures and timeouts degrade to empty defaults. Any
    other failure yields ``TrainingContext.empty()`` so callers can still
    serve a generic response; this coroutine never raises except on
    cancellation.
    """
    config = config or Config()
    try:
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValueError("user_id must be a non-empty string")

        limit = config.workout_fetch_limit
        tasks = {
            "workouts": FallbackTask(lambda: source.fetch_workouts(user_id, limit=limit), []),
            "group_workouts": FallbackTask(lambda: source.fetch_group_workouts(user_id, limit=limit), []),
            "goals": FallbackTask(lambda: source.fetch_goals(user_id), []),
            "schedules": FallbackTask(lambda: source.fetch_schedules(user_id), []),
            "form_checks": FallbackTask(
                lambda: source.fetch_form_checks(user_id, limit=FORM_CHECK_LIMIT * 2), []
            ),
            "profile": FallbackTask(lambda: source.fetch_profile(user_id), None),
        }
        if recovery is not None:
            tasks["recovery"] = FallbackTask(lambda: recovery.latest_scores(user_id), None)

        results = await gather_with_fallback(
            tasks,
            timeout=config.fetch_timeout_seconds or DEFAULT_FETCH_TIMEOUT_SECONDS,
        )

        profile = results["profile"]
        recovery_scores = results.get("recovery")
        context = build_training_context(
            RawSources(
                personal_workouts=_as_list(results["workouts"]),
                group_workouts=_as_list(results["group_workouts"]),
                goals=_as_list(results["goals"]),
                schedules=_as_list(results["schedules"]),
                form_checks=_as_list(results["form_checks"]),
                profile=profile if isinstance(profile, Mapping) else None,
                recovery=recovery_scores if isinstance(recovery_scores, RecoveryScores) else None,
            ),
            today=today,
            settings=AssemblySettings.from_config(config),
        )
    except Exception:
        record_assembly_failure()
        logger.exception(
            "Training context assembly failed, returning empty context",
            extra={"ctx_user_id": user_id},
        )
        return TrainingContext.empty()

    record_context_assembled()
    logger.info(
        "Assembled training context for %s",
        user_id,
        extra={
            "ctx_user_id": user_id,
            "ctx_full_workouts": len(context.recent_workouts_full),
            "ctx_max_lifts": len(context.max_lifts),
            "ctx_truncated": context.truncated,
        },
    )
    return context
