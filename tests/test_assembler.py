"""Tests for context assembly: tiers, auxiliary sections, partial failure and size cap."""

from __future__ import annotations

import json
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from coach_context.assembler import (
    TRUNCATION_ORDER,
    AssemblySettings,
    RawSources,
    apply_overrides,
    build_training_context,
    load_training_context,
    summarize_form_checks,
    summarize_goals,
)
from coach_context.config import Config
from coach_context.metrics import get_metrics
from coach_context.models import MaxLiftRecord, RecoveryLatest, RecoveryScores, TrainingContext
from coach_context.sources import InMemoryDocumentSource

TODAY = date(2024, 6, 30)
USER = "user-1"


def _days_ago(days: int) -> str:
    return (TODAY - timedelta(days=days)).isoformat()


def _strength(workout_id: str, days: int, *, weight: str = "100", reps: str = "5", **extra) -> dict:
    return {
        "id": workout_id,
        "name": f"Lift {workout_id}",
        "status": "completed",
        "date": _days_ago(days),
        "exercises": [
            {"name": "Bench", "type": "weight", "sets": [{"actualWeight": weight, "actualReps": reps}]},
            {"name": "Row", "type": "weight", "sets": [{"actualWeight": "80", "actualReps": "8"}] * 2},
        ],
        **extra,
    }


def _cardio(workout_id: str, days: int, **extra) -> dict:
    return {
        "id": workout_id,
        "status": "completed",
        "date": _days_ago(days),
        "workoutType": "cardio",
        "duration": 30,
        **extra,
    }


def _collections(**overrides) -> dict:
    collections = {
        "workouts": {USER: [_strength(f"s{i}", i) for i in range(1, 11)]},
        "groupWorkouts": {USER: [_strength("group", 2, weight="150")]},
        "goals": {USER: [
            {"id": "g1", "status": "active", "lift": "Bench", "currentWeight": 185, "targetWeight": 225,
             "targetDate": "2024-09-01"},
            {"id": "g2", "status": "active", "metricType": "Squat", "currentValue": 200, "targetValue": 250},
            {"id": "g3", "status": "completed", "lift": "Deadlift", "currentWeight": 300, "targetWeight": 315},
        ]},
        "schedules": {USER: [{"name": "Yoga", "days": ["Mon", "Wed"], "duration": 45}, {"days": ["Fri"]}]},
        "formCheckJobs": {USER: [
            {
                "id": "f1",
                "status": "complete",
                "createdAt": "2024-06-20T10:00:00Z",
                "analysis": {
                    "exercise": "Squat",
                    "overallScore": 7,
                    "focusDrill": {"cue": "Knees out"},
                    "injuryRisks": [
                        {"area": "lower back", "severity": "medium"},
                        {"area": "knees", "severity": "low"},
                    ],
                },
            },
            {"id": "f2", "status": "processing", "analysis": {"exercise": "Bench"}},
        ]},
        "users": {USER: {"displayName": "Sam", "weight": 180, "adminNotes": "  Watch left shoulder.  "}},
    }
    collections.update(overrides)
    return collections


class TestBuildTrainingContext:
    def _build(self, **sources) -> TrainingContext:
        return build_training_context(
            RawSources(**sources),
            today=TODAY,
            settings=AssemblySettings(max_payload_chars=None),
        )

    def test_resolution_tiers(self):
        context = self._build(personal_workouts=[_strength(f"s{i}", i) for i in range(1, 11)])

        assert [w.id for w in context.recent_workouts_full] == ["s1", "s2", "s3"]
        assert context.recent_workouts_full[0].day_of_week == "Saturday"
        assert [w.name for w in context.recent_workouts] == [f"Lift s{i}" for i in range(4, 9)]
        summary = context.recent_workouts[0]
        assert summary.exercise_count == 2
        assert [(ex.name, ex.sets) for ex in summary.exercises] == [("Bench", 1), ("Row", 2)]

    def test_summaries_cap_exercises(self):
        workout = _strength("big", 10)
        workout["exercises"] = [
            {"name": f"Ex{i}", "sets": [{"actualReps": "5"}]} for i in range(6)
        ]
        context = self._build(personal_workouts=[_strength(f"s{i}", i) for i in range(1, 4)] + [workout])
        assert context.recent_workouts[0].exercise_count == 6
        assert len(context.recent_workouts[0].exercises) == 4

    def test_cardio_is_summarized_separately(self):
        personal = [
            _strength("s1", 1),
            _cardio("c1", 2, cardioType="run", distance="3.1"),
            _cardio("c2", 3, name="Evening ride", calories=400),
        ]
        context = self._build(personal_workouts=personal)

        assert [w.id for w in context.recent_workouts_full] == ["s1"]
        first, second = context.cardio_workouts
        assert (first.name, first.distance, first.duration) == ("run", 3.1, 30)
        assert (second.name, second.calories) == ("Evening ride", 400)

    def test_cardio_limit_setting(self):
        cardio = [_cardio(f"c{i}", i) for i in range(1, 12)]
        default = self._build(personal_workouts=cardio)
        wider = build_training_context(
            RawSources(personal_workouts=cardio),
            today=TODAY,
            settings=AssemblySettings(cardio_limit=10, max_payload_chars=None),
        )
        assert len(default.cardio_workouts) == 5
        assert len(wider.cardio_workouts) == 10

    def test_goals_accept_both_naming_schemes(self):
        goals = summarize_goals(_collections()["goals"][USER])

        assert [(g.lift, g.current_value, g.target_value, g.target_date) for g in goals] == [
            ("Bench", 185, 225, "2024-09-01"),
            ("Squat", 200, 250, None),
        ]

    def test_form_checks_drop_low_risks(self):
        jobs = _collections()["formCheckJobs"][USER][:1]
        (check,) = summarize_form_checks(jobs)

        assert check.exercise == "Squat"
        assert check.score == 7
        assert check.date == "2024-06-20"
        assert check.focus_cue == "Knees out"
        assert [(r.area, r.severity) for r in check.injury_risks] == [("lower back", "medium")]

    def test_form_checks_limit(self):
        jobs = [{"analysis": {"exercise": f"Ex{i}", "overallScore": 5}} for i in range(8)]
        assert len(summarize_form_checks(jobs)) == 5

    def test_profile_notes_and_stats(self):
        profile = _collections()["users"][USER]
        context = self._build(
            personal_workouts=[_strength("s1", 1), _strength("s2", 8)],
            profile=profile,
        )

        assert context.profile.display_name == "Sam"
        assert context.profile.weight == 180
        assert context.admin_notes == "Watch left shoulder."
        assert context.stats.total_sets == 6
        assert context.stats.workouts_per_week == 2.0
        assert context.stats.top_exercises[0].name == "Bench"

    def test_admin_overrides(self):
        profile = {
            "aiContextOverrides": {
                "maxLifts": {
                    "Bench": {"weight": 200, "reps": 1, "e1rm": 207},
                    "Curl": {"weight": 50},
                },
                "excludeExercises": ["Row"],
            },
        }
        context = self._build(personal_workouts=[_strength("s1", 1)], profile=profile)

        assert context.max_lifts["Bench"].e1rm == 207
        assert context.max_lifts["Bench"].date == _days_ago(1)
        assert "Row" not in context.max_lifts
        assert "Curl" not in context.max_lifts

    def test_apply_overrides_ignores_non_mapping(self):
        lifts = {"Bench": MaxLiftRecord(weight=100, reps=5, e1rm=117)}
        assert apply_overrides(lifts, None) is lifts
        assert apply_overrides(lifts, "nope") is lifts

    def test_overrides_follow_folded_exercise_names(self):
        workout = _strength("s1", 1)
        workout["exercises"][0]["name"] = "Bench Press"
        profile = {
            "aiContextOverrides": {
                "maxLifts": {"Bench Press": {"weight": 200, "reps": 1, "e1rm": 207}},
                "excludeExercises": [" ROW "],
            },
        }
        context = build_training_context(
            RawSources(personal_workouts=[workout], profile=profile),
            today=TODAY,
            settings=AssemblySettings(max_payload_chars=None, fold_exercise_names=True),
        )

        assert list(context.max_lifts) == ["bench press"]
        assert context.max_lifts["bench press"].e1rm == 207
        assert context.max_lifts["bench press"].date == _days_ago(1)

    def test_overrides_keep_names_verbatim_without_folding(self):
        lifts = {"Bench Press": MaxLiftRecord(weight=100, reps=5, e1rm=117)}
        result = apply_overrides(lifts, {"excludeExercises": ["bench press"]})
        assert list(result) == ["Bench Press"]

    def test_max_lift_record_serializes_e1rm_key(self):
        context = TrainingContext(max_lifts={"Bench": MaxLiftRecord(weight=185, reps=5, e1rm=216)})
        payload = json.loads(context.to_json())
        assert payload["maxLifts"]["Bench"] == {"weight": 185.0, "reps": 5, "e1rm": 216, "date": None}
        assert MaxLiftRecord.model_validate({"weight": 1, "reps": 1, "e1rm": 2}).e1rm == 2

    def test_empty_sources_produce_empty_sections(self):
        context = self._build()
        assert context.recent_workouts_full == []
        assert context.max_lifts == {}
        assert context.profile is None
        assert context.oura_data is None
        assert context.stats.workouts_per_week == 0

    def test_serializes_with_camel_case_keys(self):
        payload = json.loads(self._build(personal_workouts=[_strength("s1", 1)]).to_json())
        assert "recentWorkoutsFull" in payload
        assert "maxLifts" in payload
        assert payload["recentWorkoutsFull"][0]["exercises"][0]["sets"][0]["actualWeight"] == "100"


class TestSizeBudget:
    def _sources(self) -> RawSources:
        collections = _collections()
        return RawSources(
            personal_workouts=[_strength(f"s{i}", i) for i in range(1, 11)]
            + [_cardio(f"c{i}", i + 20) for i in range(5)],
            schedules=collections["schedules"][USER],
            form_checks=collections["formCheckJobs"][USER],
        )

    def test_under_cap_is_untouched(self):
        context = build_training_context(self._sources(), today=TODAY)
        assert context.truncated == []
        assert len(context.recent_workouts) == 5

    def test_summaries_are_dropped_first(self):
        uncapped = build_training_context(
            self._sources(), today=TODAY, settings=AssemblySettings(max_payload_chars=None)
        )
        cap = len(uncapped.to_json()) - 10

        context = build_training_context(
            self._sources(), today=TODAY, settings=AssemblySettings(max_payload_chars=cap)
        )

        assert len(context.to_json()) <= cap
        assert context.truncated == ["recent_workouts"]
        assert len(context.recent_workouts) == 4
        assert len(context.cardio_workouts) == 5

    def test_truncation_order_and_protected_sections(self):
        context = build_training_context(
            self._sources(), today=TODAY, settings=AssemblySettings(max_payload_chars=1)
        )

        assert context.truncated == list(TRUNCATION_ORDER)
        assert context.recent_workouts == []
        assert context.cardio_workouts == []
        assert context.form_checks == []
        assert context.schedules == []
        assert len(context.recent_workouts_full) == 3
        assert "Bench" in context.max_lifts


class TestLoadTrainingContext:
    @pytest.mark.asyncio
    async def test_recovery_failure_leaves_other_sections(self):
        source = InMemoryDocumentSource(_collections())
        recovery = MagicMock()
        recovery.latest_scores = AsyncMock(side_effect=RuntimeError("integration offline"))

        context = await load_training_context(USER, source, recovery, config=Config(), today=TODAY)

        assert context.oura_data is None
        assert len(context.recent_workouts_full) == 3
        assert context.max_lifts["Bench"].weight == 150
        assert [g.lift for g in context.goals] == ["Bench", "Squat"]
        assert [s.name for s in context.schedules] == ["Yoga"]
        assert [f.exercise for f in context.form_checks] == ["Squat"]
        assert context.admin_notes == "Watch left shoulder."
        recovery.latest_scores.assert_awaited_once_with(USER)

    @pytest.mark.asyncio
    async def test_recovery_scores_included(self):
        scores = RecoveryScores(latest=RecoveryLatest(readiness={"score": 82}))
        recovery = MagicMock()
        recovery.latest_scores = AsyncMock(return_value=scores)

        context = await load_training_context(
            USER, InMemoryDocumentSource(_collections()), recovery, today=TODAY
        )

        assert context.oura_data == scores

    @pytest.mark.asyncio
    async def test_group_fetch_failure_keeps_personal_history(self):
        source = InMemoryDocumentSource(_collections())
        source.fetch_group_workouts = AsyncMock(side_effect=TimeoutError("slow"))

        context = await load_training_context(USER, source, today=TODAY)

        assert context.max_lifts["Bench"].weight == 100
        assert not any(w.is_group for w in context.recent_workouts_full)

    @pytest.mark.asyncio
    async def test_fetch_limits_forwarded(self):
        source = MagicMock()
        source.fetch_workouts = AsyncMock(return_value=[])
        source.fetch_group_workouts = AsyncMock(return_value=[])
        source.fetch_goals = AsyncMock(return_value=[])
        source.fetch_schedules = AsyncMock(return_value=[])
        source.fetch_form_checks = AsyncMock(return_value=[])
        source.fetch_profile = AsyncMock(return_value=None)

        await load_training_context(USER, source, config=Config(workout_fetch_limit=7), today=TODAY)

        source.fetch_workouts.assert_awaited_once_with(USER, limit=7)
        source.fetch_group_workouts.assert_awaited_once_with(USER, limit=7)
        source.fetch_form_checks.assert_awaited_once_with(USER, limit=10)

    @pytest.mark.asyncio
    async def test_invalid_user_returns_empty_context(self):
        before = get_metrics()["assembly_failures"]

        context = await load_training_context("", InMemoryDocumentSource(_collections()), today=TODAY)

        assert context == TrainingContext.empty()
        assert context.recent_workouts == []
        assert context.goals == []
        assert get_metrics()["assembly_failures"] == before + 1

    @pytest.mark.asyncio
    async def test_unknown_user_gets_empty_sections(self):
        context = await load_training_context("nobody", InMemoryDocumentSource(_collections()), today=TODAY)
        assert context.recent_workouts_full == []
        assert context.profile is None
