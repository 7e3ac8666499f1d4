"""
スケジュール層 - ワークアウト日程の計算とカレンダーイベントへの変換
"""

from .schedule_computor import compute_schedule, compute_routine_schedule
from .event_transformer import (
    TransformOptions, workout_to_calendar_event, validate_calendar_event,
    validate_workout_data, calculate_workout_duration
)

__all__ = [
    'compute_schedule', 'compute_routine_schedule',
    'TransformOptions', 'workout_to_calendar_event', 'validate_calendar_event',
    'validate_workout_data', 'calculate_workout_duration'
]
