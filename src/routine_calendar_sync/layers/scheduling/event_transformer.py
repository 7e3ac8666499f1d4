"""
イベント変換 - ワークアウト1件をカレンダーイベントに変換する純粋関数群
プロバイダーには一切触れない
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ...core.exceptions import ValidationError
from ...core.models import CalendarEvent, EventDateTime, EventReminder, Exercise, Workout

DEFAULT_START_TIME = "09:00"
DEFAULT_TIME_ZONE = "Asia/Seoul"
MINUTES_PER_EXERCISE = 5
WARMUP_MINUTES = 10
MIN_WORKOUT_DURATION = 30
DEFAULT_REMINDER_MINUTES = 30


@dataclass
class TransformOptions:
    """変換オプション"""
    routine_name: str
    event_date: date
    start_time: Optional[str] = None        # HH:MM
    duration_minutes: Optional[int] = None
    time_zone: Optional[str] = None
    color_id: Optional[str] = None
    reminder_minutes: Optional[int] = DEFAULT_REMINDER_MINUTES


def workout_to_calendar_event(workout: Workout, options: TransformOptions) -> CalendarEvent:
    """ワークアウトをカレンダーイベントに変換

    入力・出力の双方を検証し、不正な場合は ValidationError を送出する。
    """
    workout_errors = validate_workout_data(workout)
    if workout_errors:
        raise ValidationError(f"Invalid workout {workout.id or '(no id)'}", workout_errors)

    time_zone = options.time_zone or DEFAULT_TIME_ZONE
    tz = _load_zone(time_zone)
    start_clock = _parse_start_time(options.start_time or DEFAULT_START_TIME)

    duration = calculate_workout_duration(len(workout.exercises), options.duration_minutes)

    event_date = options.event_date.date() if isinstance(options.event_date, datetime) else options.event_date
    start = datetime.combine(event_date, start_clock, tzinfo=tz)
    end = start + timedelta(minutes=duration)

    reminders = []
    if options.reminder_minutes is not None:
        reminders.append(EventReminder(method="popup", minutes=options.reminder_minutes))

    event = CalendarEvent(
        summary=format_event_summary(workout.name, options.routine_name),
        description=format_event_description(workout.exercises, duration, options.routine_name),
        start=EventDateTime(date_time=start, time_zone=time_zone),
        end=EventDateTime(date_time=end, time_zone=time_zone),
        color_id=options.color_id,
        reminders=reminders
    )

    event_errors = validate_calendar_event(event)
    if event_errors:
        raise ValidationError(f"Invalid calendar event for workout {workout.id}", event_errors)

    return event


def validate_workout_data(workout: Workout) -> List[str]:
    """変換前のワークアウト検証"""
    errors = []

    if not workout.id:
        errors.append("workout.id is required")

    if not workout.name or not workout.name.strip():
        errors.append("workout.name is required")

    if not workout.exercises:
        errors.append("workout.exercises must not be empty")
        return errors

    for idx, exercise in enumerate(workout.exercises):
        if not exercise.name or not exercise.name.strip():
            errors.append(f"exercise[{idx}].name is required")
        if isinstance(exercise.sets, bool) or not isinstance(exercise.sets, int) or exercise.sets < 1:
            errors.append(f"exercise[{idx}].sets must be a positive integer")
        if not exercise.reps or not str(exercise.reps).strip():
            errors.append(f"exercise[{idx}].reps is required")

    return errors


def validate_calendar_event(event: CalendarEvent) -> List[str]:
    """イベントの必須項目検証"""
    errors = []

    if not event.summary or not event.summary.strip():
        errors.append("summary is required")

    if not event.description or not event.description.strip():
        errors.append("description is required")

    for label, moment in (("start", event.start), ("end", event.end)):
        if moment is None or moment.date_time is None:
            errors.append(f"{label}.dateTime is required")
            continue
        if not moment.time_zone:
            errors.append(f"{label}.timeZone is required")
        if moment.date_time.tzinfo is None:
            errors.append(f"{label}.dateTime must be timezone-aware")

    if not errors and event.end.date_time <= event.start.date_time:
        errors.append("end.dateTime must be after start.dateTime")

    return errors


def calculate_workout_duration(exercise_count: int, override_minutes: Optional[int] = None) -> int:
    """所要時間（分）: 明示指定があればそれを使い、なければ 5分 × 種目数 + ウォームアップ10分（最低30分）"""
    if override_minutes and override_minutes > 0:
        return override_minutes

    return max(MIN_WORKOUT_DURATION, exercise_count * MINUTES_PER_EXERCISE + WARMUP_MINUTES)


def format_exercise_list(exercises: Sequence[Exercise]) -> str:
    return "\n".join(
        f"{idx}. {exercise.name} - {exercise.sets} sets x {exercise.reps}"
        for idx, exercise in enumerate(exercises, start=1)
    )


def format_event_summary(workout_name: str, routine_name: str) -> str:
    return f"🏋️ {workout_name} ({routine_name})"


def format_event_description(exercises: Sequence[Exercise], duration_minutes: int, routine_name: str) -> str:
    return (f"📋 Exercises:\n{format_exercise_list(exercises)}\n\n"
            f"⏱️ Estimated duration: {format_duration(duration_minutes)}\n\n"
            f"🎯 Routine: {routine_name}")


def get_exercise_summary(exercises: Sequence[Exercise]) -> str:
    """表示用の種目サマリー"""
    if not exercises:
        return "No exercises"
    names = [exercise.name for exercise in exercises]
    if len(names) <= 3:
        return ", ".join(names)
    return f"{', '.join(names[:3])} and {len(names) - 3} more"


def format_duration(minutes: int) -> str:
    """表示用の所要時間"""
    if minutes < 60:
        return f"{minutes} min"
    hours, remaining = divmod(minutes, 60)
    if remaining == 0:
        return f"{hours}h"
    return f"{hours}h {remaining}m"


def _load_zone(time_zone: str) -> ZoneInfo:
    try:
        return ZoneInfo(time_zone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown time zone: {time_zone}") from e


def _parse_start_time(value: str) -> time:
    try:
        hours, minutes = value.split(':')
        return time(int(hours), int(minutes))
    except (ValueError, TypeError) as e:
        raise ValidationError(f"start_time must be HH:MM, got {value!r}") from e
