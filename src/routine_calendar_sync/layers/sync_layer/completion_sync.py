"""
完了状態同期 - ワークアウトの完了/未完了をカレンダーイベントの表示に反映する
ローカルの記録は常に先に保存し、カレンダー側の失敗は結果として返す
"""

from datetime import date
from typing import Optional
import logging

from ...config.enhanced_config import CalendarConfig
from ...core.exceptions import CalendarSyncError
from ...core.models import CompletionStatusResult, ToggleResult, WorkoutLog
from ..data_acquisition.retry_policy import RetryPolicy
from .calendar_provider import CalendarProvider
from .mapping_storage import MappingStorage, SyncAction, SyncLogStatus
from .workout_log_store import WorkoutLogStore

logger = logging.getLogger(__name__)

COMPLETION_MARKER = "✅ "
COMPLETED_COLOR_ID = "10"


def has_completion_marker(summary: str, marker: str = COMPLETION_MARKER) -> bool:
    return summary.startswith(marker)


def add_completion_marker(summary: str, marker: str = COMPLETION_MARKER) -> str:
    """完了マーカーを付与（付与済みならそのまま）"""
    if has_completion_marker(summary, marker):
        return summary
    return f"{marker}{summary}"


def remove_completion_marker(summary: str, marker: str = COMPLETION_MARKER) -> str:
    """完了マーカーを除去（なければそのまま）"""
    if has_completion_marker(summary, marker):
        return summary[len(marker):]
    return summary


class CompletionStatusSynchronizer:
    """完了状態のカレンダー反映"""

    def __init__(self,
                 provider: CalendarProvider,
                 mapping_storage: MappingStorage,
                 log_store: WorkoutLogStore,
                 config: Optional[CalendarConfig] = None,
                 retry_policy: Optional[RetryPolicy] = None):
        self.provider = provider
        self.mapping_storage = mapping_storage
        self.log_store = log_store
        self.config = config or CalendarConfig()
        self.retry_policy = retry_policy or RetryPolicy()

        self.marker = self.config.completion_marker or COMPLETION_MARKER
        self.completed_color_id = self.config.completed_color_id or COMPLETED_COLOR_ID
        self.default_color_id = self.config.scheduled_color_id

    async def mark_completed(self, event_id: str) -> CompletionStatusResult:
        """イベントを完了表示にする（冪等）"""
        return await self._apply_status(event_id, completed=True)

    async def mark_incomplete(self, event_id: str) -> CompletionStatusResult:
        """イベントを未完了表示に戻す（冪等）"""
        return await self._apply_status(event_id, completed=False)

    async def _apply_status(self, event_id: str, completed: bool) -> CompletionStatusResult:
        label = "completed" if completed else "incomplete"

        try:
            event = await self.retry_policy.call(self.provider.get_event, event_id)
            if event is None:
                logger.warning(f"Cannot mark {label}: event not found: {event_id}")
                return CompletionStatusResult(
                    success=False, event_id=event_id,
                    error_message=f"Event not found: {event_id}"
                )

            if completed:
                summary = add_completion_marker(event.summary, self.marker)
                color_id = self.completed_color_id
            else:
                summary = remove_completion_marker(event.summary, self.marker)
                color_id = self.default_color_id

            await self.retry_policy.call(
                self.provider.update_event, event_id, {'summary': summary, 'colorId': color_id}
            )

            logger.debug(f"Event {event_id} marked {label}")
            return CompletionStatusResult(success=True, event_id=event_id, summary=summary, color_id=color_id)

        except CalendarSyncError as e:
            logger.error(f"Failed to mark event {event_id} {label}: {e}")
            return CompletionStatusResult(success=False, event_id=event_id, error_message=str(e))

    async def toggle_workout_completion(self, user_id: str, routine_id: str, workout_id: str,
                                        workout_date: date, is_completed: bool) -> ToggleResult:
        """ワークアウト記録を更新し、マッピングがあればカレンダーにも反映"""
        log = await self.log_store.set_completed(user_id, routine_id, workout_id, workout_date, is_completed)
        return await self._sync_calendar(log)

    async def toggle_exercise_completion(self, user_id: str, routine_id: str, workout_id: str,
                                         workout_date: date, exercise_id: str,
                                         total_exercises: Optional[int] = None) -> ToggleResult:
        """種目1件の完了を反転し、導出したワークアウト完了状態をカレンダーに反映"""
        log = await self.log_store.toggle_exercise(
            user_id, routine_id, workout_id, workout_date, exercise_id, total_exercises
        )
        return await self._sync_calendar(log)

    async def _sync_calendar(self, log: WorkoutLog) -> ToggleResult:
        mapping = await self.mapping_storage.get_mapping(log.user_id, log.routine_id, log.workout_id, log.date)
        if mapping is None:
            logger.debug(f"No calendar event mapped for {log.workout_id}@{log.date}, skipping calendar update")
            return ToggleResult(workout_log=log, calendar_synced=False)

        if log.is_completed:
            result = await self.mark_completed(mapping.external_event_id)
        else:
            result = await self.mark_incomplete(mapping.external_event_id)

        await self.mapping_storage.log_sync_action(
            log.user_id,
            SyncAction.COMPLETE if log.is_completed else SyncAction.INCOMPLETE,
            SyncLogStatus.SUCCESS if result.success else SyncLogStatus.FAILED,
            routine_id=log.routine_id,
            event_id=mapping.external_event_id,
            error_message=result.error_message
        )

        return ToggleResult(
            workout_log=log,
            calendar_synced=result.success,
            event_id=mapping.external_event_id,
            error_message=result.error_message
        )
