"""
同期層 - ルーティンのワークアウト日程を外部カレンダーに反映・完了状態を同期
"""

from .calendar_provider import CalendarProvider, GoogleCalendarProvider, InMemoryCalendarProvider
from .mapping_storage import MappingStorage, SyncAction, SyncLogStatus, UserSyncState
from .workout_log_store import WorkoutLogStore
from .completion_sync import CompletionStatusSynchronizer
from .sync_orchestrator import SyncOrchestrator

__all__ = [
    'CalendarProvider', 'GoogleCalendarProvider', 'InMemoryCalendarProvider',
    'MappingStorage', 'SyncAction', 'SyncLogStatus', 'UserSyncState',
    'WorkoutLogStore',
    'CompletionStatusSynchronizer',
    'SyncOrchestrator'
]
