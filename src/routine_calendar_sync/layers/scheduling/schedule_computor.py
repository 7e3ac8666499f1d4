"""
スケジュール計算 - ルーティン設定と開始日からワークアウト日程を決定する
"""

from datetime import date, datetime, timedelta
from typing import List, Sequence

from ...core.models import Occurrence, RoutineSettings, Workout, Routine

MONDAY = 0
WEEKEND_DAYS = (5, 6)  # 土・日
DEFAULT_DURATION_WEEKS = 4


def compute_schedule(settings: RoutineSettings,
                     workouts: Sequence[Workout],
                     start_date: date,
                     week_start: int = MONDAY) -> List[Occurrence]:
    """開始日から duration_weeks * 7 日間を走査し、平日にワークアウトを順番に割り当てる

    - 週の開始曜日に到達するたびに週内カウンターをリセット
    - 週内カウンターが workouts_per_week 未満の平日のみ割り当て（平日は最大5枠）
    - ワークアウトは workouts[index % len(workouts)] で循環
    - 同じ入力には常に同じ結果を返す
    """
    if not workouts:
        return []

    if isinstance(start_date, datetime):
        start_date = start_date.date()

    duration_weeks = settings.duration_weeks or DEFAULT_DURATION_WEEKS
    workouts_per_week = settings.workouts_per_week or len(workouts)

    occurrences: List[Occurrence] = []
    workout_index = 0
    week_count = 0

    for offset in range(duration_weeks * 7):
        current = start_date + timedelta(days=offset)

        if offset > 0 and current.weekday() == week_start:
            week_count = 0

        if current.weekday() in WEEKEND_DAYS:
            continue

        if week_count < workouts_per_week:
            workout = workouts[workout_index % len(workouts)]
            occurrences.append(Occurrence(workout=workout, date=current))
            workout_index += 1
            week_count += 1

    return occurrences


def compute_routine_schedule(routine: Routine, start_date: date) -> List[Occurrence]:
    return compute_schedule(routine.settings, routine.workouts, start_date)
