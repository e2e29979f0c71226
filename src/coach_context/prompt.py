"""Render a TrainingContext into the "User data" block of a coaching prompt."""

from typing import Any

from .models import (
    FullWorkout,
    RecoveryScores,
    TimeSet,
    TrainingContext,
)

TOP_LIFTS = 8
TOP_RPE = 8


def _num(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _score(entry: dict[str, Any] | None) -> Any:
    return entry.get("score") if entry else None


def _render_full_workout(workout: FullWorkout) -> str:
    lines = [f"--- {workout.name} ({workout.date}) ---"]
    for exercise in workout.exercises:
        lines.append(f"  {exercise.name} [{exercise.type}]:")
        for index, entry in enumerate(exercise.sets, start=1):
            parts: list[str] = []
            if isinstance(entry, TimeSet):
                if entry.prescribed_time:
                    parts.append(f"target: {entry.prescribed_time}s")
                if entry.actual_time:
                    parts.append(f"actual: {entry.actual_time}s")
            else:
                if entry.prescribed_weight:
                    parts.append(f"target: {entry.prescribed_weight}lbs x {entry.prescribed_reps or '?'}")
                if entry.actual_weight:
                    parts.append(f"actual: {entry.actual_weight}lbs x {entry.actual_reps or '?'}")
                elif entry.actual_reps:
                    parts.append(f"actual: {entry.actual_reps} reps")
            if entry.rpe:
                parts.append(f"RPE {entry.rpe}")
            if entry.pain_level and entry.pain_level not in {"0", "0.0"}:
                parts.append(f"pain {entry.pain_level}/10")
            lines.append(f"    Set {index}: {' | '.join(parts)}")
    return "\n".join(lines)


def _render_recovery(scores: RecoveryScores) -> list[str]:
    info: list[str] = []
    if readiness := _score(scores.latest.readiness):
        info.append(f"Today readiness: {readiness}/100")
    if sleep := _score(scores.latest.sleep):
        info.append(f"Last sleep: {sleep}/100")
    if activity := _score(scores.latest.activity):
        info.append(f"Activity score: {activity}/100")
    if scores.averages.readiness_score:
        info.append(f"7-day avg readiness: {scores.averages.readiness_score}")
    return info


def render_context(context: TrainingContext) -> str:
    """Text block appended to the system prompt; empty when nothing is known."""
    sections: list[str] = []

    if context.profile is not None:
        p = context.profile
        bits = []
        if p.display_name:
            bits.append(f"Name: {p.display_name}")
        if p.weight:
            bits.append(f"Weight: {_num(p.weight)}lbs")
        if p.height:
            bits.append(f"Height: {p.height}")
        if p.age:
            bits.append(f"Age: {_num(p.age)}")
        if p.activity_level:
            bits.append(f"Activity level: {p.activity_level}")
        if bits:
            sections.append(" | ".join(bits))

    if context.max_lifts:
        lifts = sorted(context.max_lifts.items(), key=lambda item: item[1].e1rm, reverse=True)
        rendered = [
            f"{name}: {lift.e1rm}lb e1RM ({_num(lift.weight)}x{lift.reps})"
            for name, lift in lifts[:TOP_LIFTS]
        ]
        sections.append("MAX LIFTS:\n" + "\n".join(rendered))

    if context.pain_history:
        rendered = []
        for name, pain in context.pain_history.items():
            line = f"{name}: {pain.max_pain}/10 pain ({pain.count}x"
            if pain.last_days_ago is not None:
                line += f", last {pain.last_days_ago}d ago"
            if pain.recent_count:
                line += f", {pain.recent_count}x in 30d"
            rendered.append(line + ")")
        sections.append("PAIN HISTORY:\n" + "\n".join(rendered))

    if context.rpe_averages:
        averages = sorted(context.rpe_averages.items(), key=lambda item: item[1], reverse=True)
        rendered = [f"{name}: avg RPE {avg}" for name, avg in averages[:TOP_RPE]]
        sections.append("RPE AVERAGES:\n" + "\n".join(rendered))

    if context.recent_workouts_full:
        details = "\n\n".join(_render_full_workout(w) for w in context.recent_workouts_full)
        sections.append(f"RECENT WORKOUTS (FULL DETAIL):\n{details}")

    if context.recent_workouts:
        rendered = []
        for summary in context.recent_workouts:
            names = ", ".join(f"{ex.name} x{ex.sets}" for ex in summary.exercises)
            rendered.append(f"{summary.date}: {summary.name}" + (f" [{names}]" if names else ""))
        sections.append("OLDER WORKOUTS (SUMMARY):\n" + "\n".join(rendered))

    if context.cardio_workouts:
        rendered = []
        for cardio in context.cardio_workouts:
            extras = []
            if cardio.duration is not None:
                extras.append(f"{_num(cardio.duration)}min")
            if cardio.distance:
                extras.append(f"{_num(cardio.distance)}mi")
            if cardio.calories:
                extras.append(f"{_num(cardio.calories)}cal")
            rendered.append(f"{cardio.date}: {cardio.name}" + (f" ({', '.join(extras)})" if extras else ""))
        sections.append("RECENT CARDIO:\n" + "\n".join(rendered))

    if context.goals:
        rendered = []
        for goal in context.goals:
            current = goal.current_value if goal.current_value is not None else "?"
            target = goal.target_value if goal.target_value is not None else "?"
            line = f"{goal.lift or 'Goal'}: {_num(current)} -> {_num(target)}"
            if goal.target_date:
                line += f" by {goal.target_date}"
            rendered.append(line)
        sections.append("ACTIVE GOALS:\n" + "\n".join(rendered))

    if context.oura_data is not None:
        info = _render_recovery(context.oura_data)
        if info:
            sections.append("OURA RING:\n" + "\n".join(info))

    if context.schedules:
        rendered = []
        for schedule in context.schedules:
            line = schedule.name
            if schedule.days:
                days = schedule.days if isinstance(schedule.days, str) else ", ".join(schedule.days)
                line += f" ({days})"
            if schedule.duration:
                line += f" {_num(schedule.duration)}min"
            rendered.append(line)
        sections.append("SCHEDULED ACTIVITIES: " + ", ".join(rendered))

    if context.form_checks:
        rendered = []
        for check in context.form_checks:
            line = f"{check.exercise}: {_num(check.score)}/10 ({check.date or 'unknown date'})"
            if check.focus_cue:
                line += f' - Focus: "{check.focus_cue}"'
            if check.injury_risks:
                risks = ", ".join(f"{risk.area} ({risk.severity})" for risk in check.injury_risks)
                line += f" - Risks: {risks}"
            rendered.append(line)
        sections.append("FORM CHECK HISTORY:\n" + "\n".join(rendered))

    if context.admin_notes:
        sections.append(f"TRAINER NOTES:\n{context.admin_notes}")

    if not sections:
        return ""
    return "\n\nUser data:\n" + "\n\n".join(sections)
