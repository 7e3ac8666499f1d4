"""データモデル定義"""

from datetime import datetime, date
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from .exceptions import PartialSyncError


@dataclass
class Exercise:
    """運動モデル"""
    id: str
    name: str
    sets: int
    reps: str
    muscle_group: str = ""
    description: Optional[str] = None


@dataclass
class Workout:
    """ワークアウト（1日分の運動セット）"""
    id: str
    day_number: int
    name: str
    exercises: List[Exercise] = field(default_factory=list)


@dataclass
class RoutineSettings:
    """ルーティン設定"""
    duration_weeks: int = 4
    workouts_per_week: int = 3
    split_type: str = "full_body"


@dataclass
class Routine:
    """ルーティンモデル（ルーティン提供側が所有、本エンジンでは読み取り専用）"""
    id: str
    user_id: str
    name: str
    is_active: bool
    settings: RoutineSettings = field(default_factory=RoutineSettings)
    workouts: List[Workout] = field(default_factory=list)


@dataclass
class Occurrence:
    """スケジュール計算結果の1件（ワークアウト × 日付）"""
    workout: Workout
    date: date

    @property
    def workout_id(self) -> str:
        return self.workout.id


@dataclass
class EventDateTime:
    """カレンダーイベントの日時（タイムゾーン必須）"""
    date_time: datetime
    time_zone: str

    def to_dict(self) -> Dict[str, str]:
        # ローカル時刻 + timeZone の組で送る
        return {
            'dateTime': self.date_time.replace(tzinfo=None).isoformat(),
            'timeZone': self.time_zone
        }


@dataclass
class EventReminder:
    """リマインダー設定"""
    method: str = "popup"
    minutes: int = 30


@dataclass
class CalendarEvent:
    """外部カレンダーイベント（固定形状のレコード）"""
    summary: str
    description: str
    start: EventDateTime
    end: EventDateTime
    color_id: Optional[str] = None
    reminders: List[EventReminder] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def duration_minutes(self) -> int:
        return int((self.end.date_time - self.start.date_time).total_seconds() // 60)

    def to_dict(self) -> Dict[str, Any]:
        """Calendar API形式に変換"""
        event_dict: Dict[str, Any] = {
            'summary': self.summary,
            'description': self.description,
            'start': self.start.to_dict(),
            'end': self.end.to_dict(),
        }

        if self.color_id is not None:
            event_dict['colorId'] = self.color_id

        if self.reminders:
            event_dict['reminders'] = {
                'useDefault': False,
                'overrides': [
                    {'method': r.method, 'minutes': r.minutes} for r in self.reminders
                ]
            }

        return event_dict


@dataclass
class EventMapping:
    """ローカルのオカレンスと外部イベントIDの対応付け"""
    user_id: str
    routine_id: str
    workout_id: str
    event_date: date
    external_event_id: str
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class WorkoutLog:
    """ワークアウト記録（ワークアウトログ側が所有）"""
    user_id: str
    routine_id: str
    workout_id: str
    date: date
    is_completed: bool = False
    completed_exercise_ids: List[str] = field(default_factory=list)
    updated_at: Optional[datetime] = None


@dataclass
class SyncResult:
    """ルーティン1件分の同期結果"""
    routine_id: str
    created_count: int = 0
    deleted_count: int = 0
    errors: List[str] = field(default_factory=list)
    sync_time: datetime = field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return not self.errors

    def raise_for_errors(self):
        """エラーがあれば PartialSyncError を送出"""
        if self.errors:
            raise PartialSyncError(self.routine_id, self.errors, self.created_count)

    def summary(self) -> str:
        status = "success" if self.success else "partial"
        return (f"Sync {status} [{self.routine_id}]: "
                f"{self.created_count} created, "
                f"{self.deleted_count} deleted, "
                f"{len(self.errors)} errors")


@dataclass
class AggregateSyncResult:
    """ユーザーの全ルーティン同期結果"""
    user_id: str
    routine_results: List[SyncResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def routine_count(self) -> int:
        return len(self.routine_results)

    @property
    def created_count(self) -> int:
        return sum(r.created_count for r in self.routine_results)

    @property
    def deleted_count(self) -> int:
        return sum(r.deleted_count for r in self.routine_results)

    @property
    def success(self) -> bool:
        return not self.errors and all(r.success for r in self.routine_results)

    def all_errors(self) -> List[str]:
        collected = list(self.errors)
        for result in self.routine_results:
            collected.extend(f"Routine {result.routine_id}: {e}" for e in result.errors)
        return collected

    def summary(self) -> str:
        return (f"Sync all [{self.user_id}]: "
                f"{self.routine_count} routines, "
                f"{self.created_count} created, "
                f"{self.deleted_count} deleted, "
                f"{len(self.all_errors())} errors")


@dataclass
class CompletionStatusResult:
    """完了状態更新結果"""
    success: bool
    event_id: str
    summary: Optional[str] = None
    color_id: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class ToggleResult:
    """完了トグル結果（ローカル記録 + カレンダー反映）"""
    workout_log: WorkoutLog
    calendar_synced: bool
    event_id: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class SyncStatusRecord:
    """ユーザー単位の同期ステータス"""
    user_id: str
    sync_status: str = "idle"  # idle, syncing, error
    last_sync_at: Optional[datetime] = None
    error_message: Optional[str] = None
    updated_at: Optional[datetime] = None
