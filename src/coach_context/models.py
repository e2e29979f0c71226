"""Data contracts for workout history and the assembled training context.

Source documents use camelCase keys; every model accepts either the camelCase
alias or the snake_case attribute name and serializes back to camelCase.

Set entries are a tagged union discriminated by ``kind`` (``weight``,
``bodyweight``, ``time``). The kind is taken from the owning exercise's
``type`` at ingestion, so a time-based set never exposes load fields.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .dates import EPOCH_DATE_KEY

EXERCISE_TYPES: tuple[str, ...] = ("weight", "bodyweight", "time")
WORKOUT_TYPES: tuple[str, ...] = ("strength", "cardio")


def _as_text(value: Any) -> str:
    """Stored set values arrive as strings, numbers or null; keep them as text."""
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float, str)):
        return str(value).strip()
    return ""


def _as_optional_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class ContextModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Source records
# ---------------------------------------------------------------------------


class _LoadSet(ContextModel):
    prescribed_weight: str = ""
    prescribed_reps: str = ""
    actual_weight: str = ""
    actual_reps: str = ""
    rpe: str = ""
    pain_level: str = ""
    completed: bool | None = None

    @field_validator(
        "prescribed_weight",
        "prescribed_reps",
        "actual_weight",
        "actual_reps",
        "rpe",
        "pain_level",
        mode="before",
    )
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("completed", mode="before")
    @classmethod
    def coerce_completed(cls, value: Any) -> bool | None:
        return value if isinstance(value, bool) else None

    @property
    def is_planned_only(self) -> bool:
        """Only the plan was filled in; nothing was performed."""
        return not self.actual_weight and not self.actual_reps and bool(self.prescribed_weight)


class WeightSet(_LoadSet):
    kind: Literal["weight"] = "weight"


class BodyweightSet(_LoadSet):
    """Reps-driven set; weight fields hold optional added load."""

    kind: Literal["bodyweight"] = "bodyweight"


class TimeSet(ContextModel):
    kind: Literal["time"] = "time"
    prescribed_time: str = ""
    actual_time: str = ""
    rpe: str = ""
    pain_level: str = ""
    completed: bool | None = None

    @field_validator("prescribed_time", "actual_time", "rpe", "pain_level", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("completed", mode="before")
    @classmethod
    def coerce_completed(cls, value: Any) -> bool | None:
        return value if isinstance(value, bool) else None

    @property
    def is_planned_only(self) -> bool:
        return False


SetEntry = Annotated[WeightSet | BodyweightSet | TimeSet, Field(discriminator="kind")]


class ExerciseEntry(ContextModel):
    name: str = ""
    type: Literal["weight", "bodyweight", "time"] = "weight"
    notes: str | None = None
    sets: list[SetEntry] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def tag_sets(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        raw_type = data.get("type")
        exercise_type = raw_type.strip().lower() if isinstance(raw_type, str) else ""
        if exercise_type not in EXERCISE_TYPES:
            exercise_type = "weight"
        raw_sets = data.get("sets")
        sets = []
        if isinstance(raw_sets, list):
            for raw_set in raw_sets:
                if isinstance(raw_set, dict):
                    sets.append({**raw_set, "kind": exercise_type})
                elif isinstance(raw_set, (WeightSet, BodyweightSet, TimeSet)):
                    sets.append(raw_set)
        return {**data, "type": exercise_type, "sets": sets}

    @field_validator("name", mode="before")
    @classmethod
    def coerce_name(cls, value: Any) -> str:
        # Names are aggregation keys and stay verbatim.
        return value if isinstance(value, str) else ""

    @field_validator("notes", mode="before")
    @classmethod
    def coerce_notes(cls, value: Any) -> str | None:
        return value if isinstance(value, str) and value.strip() else None


class WorkoutRecord(ContextModel):
    """One logged training session with its date normalized to YYYY-MM-DD."""

    id: str = ""
    name: str = ""
    date: str = EPOCH_DATE_KEY
    date_known: bool = True
    status: str = "scheduled"
    workout_type: Literal["strength", "cardio"] = "strength"
    is_group: bool = False
    exercises: list[ExerciseEntry] = Field(default_factory=list)
    duration: float | None = None
    cardio_type: str | None = None
    distance: float | None = None
    calories: float | None = None

    @field_validator("id", "name", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value: Any) -> str:
        return value.strip().lower() if isinstance(value, str) else "scheduled"

    @field_validator("workout_type", mode="before")
    @classmethod
    def coerce_workout_type(cls, value: Any) -> str:
        normalized = value.strip().lower() if isinstance(value, str) else ""
        return normalized if normalized in WORKOUT_TYPES else "strength"

    @field_validator("exercises", mode="before")
    @classmethod
    def coerce_exercises(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [entry for entry in value if isinstance(entry, (dict, ExerciseEntry))]

    @field_validator("duration", "distance", "calories", mode="before")
    @classmethod
    def coerce_number(cls, value: Any) -> float | None:
        return _as_optional_number(value)

    @field_validator("cardio_type", mode="before")
    @classmethod
    def coerce_cardio_type(cls, value: Any) -> str | None:
        return value if isinstance(value, str) and value else None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


# ---------------------------------------------------------------------------
# Derived aggregates
# ---------------------------------------------------------------------------


class MaxLiftRecord(ContextModel):
    weight: float
    reps: int
    # to_camel would yield "e1Rm"
    e1rm: int = Field(alias="e1rm")
    date: str | None = None


class PainRecord(ContextModel):
    count: int = 0
    max_pain: int = 0
    last_days_ago: int | None = None
    recent_count: int = 0


# ---------------------------------------------------------------------------
# Assembled context
# ---------------------------------------------------------------------------


class ProfileSnippet(ContextModel):
    display_name: str | None = None
    weight: str | int | float | None = None
    height: str | int | float | None = None
    age: str | int | float | None = None
    activity_level: str | None = None


class FullWorkout(ContextModel):
    id: str
    name: str
    date: str
    day_of_week: str | None = None
    is_group: bool = False
    exercises: list[ExerciseEntry] = Field(default_factory=list)


class ExerciseSetCount(ContextModel):
    name: str
    sets: int


class WorkoutSummary(ContextModel):
    name: str
    date: str
    exercise_count: int
    exercises: list[ExerciseSetCount] = Field(default_factory=list)


class CardioSummary(ContextModel):
    name: str
    date: str
    duration: float | None = None
    cardio_type: str | None = None
    distance: float | None = None
    calories: float | None = None


class GoalSummary(ContextModel):
    lift: str | None = None
    current_value: str | int | float | None = None
    target_value: str | int | float | None = None
    target_date: str | None = None


class ScheduleSummary(ContextModel):
    name: str
    days: list[str] | str | None = None
    duration: float | None = None


class InjuryRisk(ContextModel):
    area: str
    severity: str


class FormCheckSummary(ContextModel):
    exercise: str
    score: float = 0
    date: str | None = None
    focus_cue: str | None = None
    injury_risks: list[InjuryRisk] = Field(default_factory=list)


class RecoveryLatest(ContextModel):
    sleep: dict[str, Any] | None = None
    readiness: dict[str, Any] | None = None
    activity: dict[str, Any] | None = None


class RecoveryAverages(ContextModel):
    sleep_score: int | None = None
    readiness_score: int | None = None


class RecoveryScores(ContextModel):
    latest: RecoveryLatest = Field(default_factory=RecoveryLatest)
    averages: RecoveryAverages = Field(default_factory=RecoveryAverages)


class ExerciseFrequency(ContextModel):
    name: str
    count: int


class ContextStats(ContextModel):
    total_sets: int = 0
    total_volume: float = 0
    workouts_per_week: float = 0
    top_exercises: list[ExerciseFrequency] = Field(default_factory=list)


class TrainingContext(ContextModel):
    """Request-scoped payload for an LLM prompt or an admin summary."""

    profile: ProfileSnippet | None = None
    max_lifts: dict[str, MaxLiftRecord] = Field(default_factory=dict)
    pain_history: dict[str, PainRecord] = Field(default_factory=dict)
    rpe_averages: dict[str, float] = Field(default_factory=dict)
    recent_workouts_full: list[FullWorkout] = Field(default_factory=list)
    recent_workouts: list[WorkoutSummary] = Field(default_factory=list)
    cardio_workouts: list[CardioSummary] = Field(default_factory=list)
    goals: list[GoalSummary] = Field(default_factory=list)
    schedules: list[ScheduleSummary] = Field(default_factory=list)
    oura_data: RecoveryScores | None = None
    form_checks: list[FormCheckSummary] = Field(default_factory=list)
    admin_notes: str | None = None
    stats: ContextStats = Field(default_factory=ContextStats)
    truncated: list[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> TrainingContext:
        """Minimal context for a degraded, non-personalized response."""
        return cls()

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
