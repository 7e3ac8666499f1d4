"""
テスト共通フィクスチャ
"""

import pytest
from unittest.mock import AsyncMock

from routine_calendar_sync.config.enhanced_config import SyncEngineConfig
from routine_calendar_sync.core.models import Exercise, Routine, RoutineSettings, Workout
from routine_calendar_sync.layers.data_acquisition.retry_policy import RetryPolicy
from routine_calendar_sync.layers.data_acquisition.routine_provider import InMemoryRoutineProvider
from routine_calendar_sync.layers.sync_layer.calendar_provider import InMemoryCalendarProvider
from routine_calendar_sync.layers.sync_layer.completion_sync import CompletionStatusSynchronizer
from routine_calendar_sync.layers.sync_layer.mapping_storage import MappingStorage
from routine_calendar_sync.layers.sync_layer.sync_orchestrator import SyncOrchestrator
from routine_calendar_sync.layers.sync_layer.workout_log_store import WorkoutLogStore
from routine_calendar_sync.utils.enhanced_logger import EnhancedLogger, LogLevel


def make_exercises(count: int, prefix: str = "ex"):
    return [
        Exercise(id=f"{prefix}{i}", name=f"Exercise {i}", sets=3, reps="10", muscle_group="chest")
        for i in range(1, count + 1)
    ]


def make_workout(workout_id: str, name: str, exercise_count: int = 3, day_number: int = 1) -> Workout:
    return Workout(id=workout_id, day_number=day_number, name=name,
                   exercises=make_exercises(exercise_count, prefix=f"{workout_id}_e"))


def make_routine(routine_id: str = "r1", user_id: str = "u1", is_active: bool = True,
                 workout_count: int = 2, duration_weeks: int = 1, workouts_per_week: int = 2,
                 name: str = "Test Routine") -> Routine:
    return Routine(
        id=routine_id,
        user_id=user_id,
        name=name,
        is_active=is_active,
        settings=RoutineSettings(duration_weeks=duration_weeks, workouts_per_week=workouts_per_week),
        workouts=[
            make_workout(f"{routine_id}_w{i}", f"Day {i}", day_number=i)
            for i in range(1, workout_count + 1)
        ]
    )


@pytest.fixture
def no_sleep_retry_policy():
    """待機なしのリトライポリシー"""
    return RetryPolicy(max_retries=3, base_delay=1.0, max_delay=10.0, sleep=AsyncMock())


@pytest.fixture
def sync_logger():
    return EnhancedLogger(name="routine_calendar_sync_test", log_level=LogLevel.DEBUG, structured=False)


@pytest.fixture
def calendar_provider():
    return InMemoryCalendarProvider()


@pytest.fixture
async def mapping_storage(tmp_path):
    storage = MappingStorage(tmp_path / "test.db")
    assert await storage.initialize()
    return storage


@pytest.fixture
async def log_store(tmp_path):
    store = WorkoutLogStore(tmp_path / "test.db")
    assert await store.initialize()
    return store


@pytest.fixture
def routine_provider():
    return InMemoryRoutineProvider()


@pytest.fixture
def orchestrator(calendar_provider, mapping_storage, routine_provider, no_sleep_retry_policy, sync_logger):
    return SyncOrchestrator(
        calendar_provider, mapping_storage, routine_provider,
        config=SyncEngineConfig(),
        retry_policy=no_sleep_retry_policy,
        logger=sync_logger
    )


@pytest.fixture
def synchronizer(calendar_provider, mapping_storage, log_store, no_sleep_retry_policy):
    return CompletionStatusSynchronizer(
        calendar_provider, mapping_storage, log_store, retry_policy=no_sleep_retry_policy
    )


@pytest.fixture
def routine_factory():
    return make_routine


@pytest.fixture
def workout_factory():
    return make_workout
