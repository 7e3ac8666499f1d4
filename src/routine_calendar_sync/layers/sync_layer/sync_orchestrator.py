"""
同期オーケストレーター - ルーティンのワークアウト日程を外部カレンダーに反映する

同期は「既存イベントを全削除してから再作成」の方式で行う:
1. 既存マッピングのイベントを削除（失敗しても続行）しマッピングを破棄
2. 非アクティブなルーティンはここで終了
3. スケジュールを計算し、オカレンスごとにイベント作成とマッピング保存
"""

import asyncio
from datetime import date, datetime
from typing import List, Optional

import aiosqlite

from ...config.enhanced_config import SyncEngineConfig
from ...core.exceptions import CalendarSyncError, NotFoundError
from ...core.models import (
    AggregateSyncResult, EventMapping, Occurrence, Routine, SyncResult, SyncStatusRecord, Workout
)
from ...utils.enhanced_logger import EnhancedLogger, get_logger
from ..data_acquisition.error_handler import ErrorHandler
from ..data_acquisition.retry_policy import RetryPolicy
from ..data_acquisition.routine_provider import RoutineProvider
from ..scheduling.event_transformer import TransformOptions, workout_to_calendar_event
from ..scheduling.schedule_computor import compute_routine_schedule
from .calendar_provider import CalendarProvider
from .mapping_storage import MappingStorage, SyncAction, SyncLogStatus, UserSyncState


class SyncOrchestrator:
    """ルーティン ↔ カレンダー同期の統括"""

    def __init__(self,
                 provider: CalendarProvider,
                 mapping_storage: MappingStorage,
                 routine_provider: Optional[RoutineProvider] = None,
                 config: Optional[SyncEngineConfig] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 logger: Optional[EnhancedLogger] = None):
        self.provider = provider
        self.mapping_storage = mapping_storage
        self.routine_provider = routine_provider
        self.config = config or SyncEngineConfig()
        self.error_handler = error_handler or ErrorHandler()
        self.retry_policy = retry_policy or RetryPolicy.from_config(
            self.config.sync.retry_policy, is_retryable=self.error_handler.is_retryable
        )
        self.logger = logger or get_logger()

    async def sync_routine(self, routine: Routine, start_date: date) -> SyncResult:
        """ルーティン1件を同期（同期ステータスも更新）"""
        await self.mapping_storage.set_sync_status(routine.user_id, UserSyncState.SYNCING)

        try:
            result = await self._sync_routine(routine, start_date)
        except Exception as e:
            await self.mapping_storage.set_sync_status(routine.user_id, UserSyncState.ERROR, errors=[str(e)])
            raise

        await self._finish_sync_status(routine.user_id, result.errors)
        return result

    async def teardown_routine(self, user_id: str, routine_id: str) -> SyncResult:
        """ルーティンのイベントをすべて削除（非アクティブ化・削除時）"""
        op_context = self.logger.log_operation_start(
            "teardown_routine", user_id=user_id, routine_id=routine_id
        )

        deleted_count = await self._teardown(user_id, routine_id)
        result = SyncResult(routine_id=routine_id, deleted_count=deleted_count)

        self.logger.log_operation_end(op_context, success=True, deleted_count=deleted_count)
        return result

    async def sync_routine_by_id(self, user_id: str, routine_id: str, start_date: date) -> SyncResult:
        """ルーティンIDを指定して同期"""
        routine = await self._require_routine_provider().require_routine(user_id, routine_id)
        return await self.sync_routine(routine, start_date)

    async def sync_all_routines(self, user_id: str, start_date: date) -> AggregateSyncResult:
        """ユーザーのアクティブなルーティンをすべて同期

        ルーティン間は並行実行（同時実行数は設定値で制限）。
        1件の失敗が他のルーティンの同期を妨げることはない。
        """
        routines = await self._require_routine_provider().list_routines(user_id, active_only=True)
        aggregate = AggregateSyncResult(user_id=user_id)

        op_context = self.logger.log_operation_start(
            "sync_all_routines", user_id=user_id, routine_count=len(routines)
        )
        await self.mapping_storage.set_sync_status(user_id, UserSyncState.SYNCING)

        semaphore = asyncio.Semaphore(max(1, self.config.sync.max_concurrent_routines))

        async def run(routine: Routine) -> SyncResult:
            async with semaphore:
                return await self._sync_routine(routine, start_date)

        outcomes = await asyncio.gather(*(run(routine) for routine in routines), return_exceptions=True)

        for routine, outcome in zip(routines, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                self.error_handler.record_error(outcome, {'routine_id': routine.id})
                aggregate.routine_results.append(
                    SyncResult(routine_id=routine.id, errors=[f"Routine sync failed: {outcome}"])
                )
            else:
                aggregate.routine_results.append(outcome)

        await self._finish_sync_status(user_id, aggregate.all_errors())

        self.logger.log_operation_end(
            op_context, success=aggregate.success,
            created_count=aggregate.created_count,
            deleted_count=aggregate.deleted_count,
            error_count=len(aggregate.all_errors())
        )
        return aggregate

    async def update_workout_event(self, user_id: str, event_id: str, workout: Workout,
                                   routine_name: str, event_date: date) -> bool:
        """マッピング済みイベント1件を再変換して更新し、マッピングの日付を移動する"""
        mapping = await self.mapping_storage.get_mapping_by_event_id(user_id, event_id)
        if mapping is None:
            raise NotFoundError(f"No mapping for event: {event_id}", event_id=event_id)

        # 移動先の日付に同じワークアウトのマッピングがあればリモートを変更しない
        if mapping.event_date != event_date:
            existing = await self.mapping_storage.get_mapping(
                user_id, mapping.routine_id, mapping.workout_id, event_date
            )
            if existing is not None:
                await self._log_update_failure(
                    mapping, f"{mapping.workout_id} is already scheduled on {event_date.isoformat()}"
                )
                return False

        event = workout_to_calendar_event(workout, self._transform_options(routine_name, event_date))

        try:
            await self.retry_policy.call(self.provider.update_event, event_id, event.to_dict())
        except CalendarSyncError as e:
            self.error_handler.record_error(e, {'event_id': event_id})
            self.logger.error(f"Failed to update event {event_id}", error=e, operation="update_workout_event")
            await self._log_update_failure(mapping, str(e))
            return False

        if mapping.event_date != event_date:
            try:
                await self.mapping_storage.update_mapping_date(mapping.id, event_date)
            except aiosqlite.IntegrityError as e:
                self.logger.error(f"Failed to move mapping for event {event_id}", error=e,
                                  operation="update_workout_event")
                await self._log_update_failure(mapping, str(e))
                return False

        await self.mapping_storage.log_sync_action(
            user_id, SyncAction.UPDATE, SyncLogStatus.SUCCESS,
            routine_id=mapping.routine_id, event_id=event_id
        )
        return True

    async def get_event_mapping(self, user_id: str, routine_id: str, workout_id: str,
                                event_date: date) -> Optional[EventMapping]:
        return await self.mapping_storage.get_mapping(user_id, routine_id, workout_id, event_date)

    async def get_sync_status(self, user_id: str) -> SyncStatusRecord:
        return await self.mapping_storage.get_sync_status(user_id)

    async def _sync_routine(self, routine: Routine, start_date: date) -> SyncResult:
        op_context = self.logger.log_operation_start(
            "sync_routine", user_id=routine.user_id, routine_id=routine.id,
            start_date=start_date.isoformat(), is_active=routine.is_active
        )

        result = SyncResult(routine_id=routine.id)

        # 1. 既存イベントの削除
        result.deleted_count = await self._teardown(routine.user_id, routine.id)

        # 2. 非アクティブならここで終了
        if not routine.is_active:
            self.logger.log_operation_end(op_context, success=True, deleted_count=result.deleted_count)
            return result

        # 3. 再作成
        occurrences = compute_routine_schedule(routine, start_date)
        for occurrence in occurrences:
            try:
                await self._create_occurrence(routine, occurrence)
                result.created_count += 1
            except CalendarSyncError as e:
                self.error_handler.record_error(e, {'routine_id': routine.id, 'workout_id': occurrence.workout_id})
                result.errors.append(f"{occurrence.workout.name} on {occurrence.date.isoformat()}: {e}")

        self.logger.log_operation_end(
            op_context, success=result.success,
            occurrence_count=len(occurrences),
            created_count=result.created_count,
            deleted_count=result.deleted_count,
            error_count=len(result.errors)
        )
        return result

    async def _teardown(self, user_id: str, routine_id: str) -> int:
        """既存マッピングのイベント削除（ベストエフォート）とマッピング破棄"""
        mappings = await self.mapping_storage.get_mappings(user_id, routine_id)

        for mapping in mappings:
            try:
                await self.retry_policy.call(self.provider.delete_event, mapping.external_event_id)
                status, error_message = SyncLogStatus.SUCCESS, None
            except CalendarSyncError as e:
                self.logger.warning(
                    f"Failed to delete event {mapping.external_event_id}, dropping mapping anyway",
                    routine_id=routine_id, error_message=str(e)
                )
                status, error_message = SyncLogStatus.FAILED, str(e)

            await self.mapping_storage.delete_mapping(mapping.id)
            await self.mapping_storage.log_sync_action(
                user_id, SyncAction.DELETE, status,
                routine_id=routine_id, event_id=mapping.external_event_id, error_message=error_message
            )

        return len(mappings)

    async def _create_occurrence(self, routine: Routine, occurrence: Occurrence):
        """オカレンス1件: イベント作成 + マッピング保存"""
        event = workout_to_calendar_event(
            occurrence.workout, self._transform_options(routine.name, occurrence.date)
        )
        event_id = await self.retry_policy.call(self.provider.create_event, event)

        try:
            await self.mapping_storage.add_mapping(EventMapping(
                user_id=routine.user_id,
                routine_id=routine.id,
                workout_id=occurrence.workout_id,
                event_date=occurrence.date,
                external_event_id=event_id
            ))
        except aiosqlite.Error as e:
            # マッピングを残せないイベントは削除しておく
            try:
                await self.provider.delete_event(event_id)
            except CalendarSyncError as cleanup_error:
                self.logger.warning(f"Failed to remove unmapped event {event_id}",
                                    error_message=str(cleanup_error))
            raise CalendarSyncError(f"Failed to store mapping for event {event_id}: {e}") from e

        await self.mapping_storage.log_sync_action(
            routine.user_id, SyncAction.CREATE, SyncLogStatus.SUCCESS,
            routine_id=routine.id, event_id=event_id
        )

    async def _log_update_failure(self, mapping: EventMapping, error_message: str):
        await self.mapping_storage.log_sync_action(
            mapping.user_id, SyncAction.UPDATE, SyncLogStatus.FAILED,
            routine_id=mapping.routine_id, event_id=mapping.external_event_id, error_message=error_message
        )

    def _transform_options(self, routine_name: str, event_date: date) -> TransformOptions:
        calendar = self.config.calendar
        return TransformOptions(
            routine_name=routine_name,
            event_date=event_date,
            start_time=calendar.default_start_time,
            duration_minutes=calendar.default_duration_minutes,
            time_zone=calendar.time_zone,
            color_id=calendar.scheduled_color_id,
            reminder_minutes=calendar.reminder_minutes
        )

    async def _finish_sync_status(self, user_id: str, errors: List[str]):
        if errors:
            await self.mapping_storage.set_sync_status(
                user_id, UserSyncState.ERROR, errors=errors, last_sync_at=datetime.now()
            )
        else:
            await self.mapping_storage.set_sync_status(
                user_id, UserSyncState.IDLE, last_sync_at=datetime.now()
            )

    def _require_routine_provider(self) -> RoutineProvider:
        if self.routine_provider is None:
            raise CalendarSyncError("Routine provider is not configured")
        return self.routine_provider
