"""
マッピングストレージ・ワークアウト記録ストアの統合テスト
"""

from datetime import date, datetime

import aiosqlite
import pytest

from routine_calendar_sync.core.models import EventMapping, WorkoutLog
from routine_calendar_sync.layers.sync_layer.mapping_storage import (
    SyncAction, SyncLogStatus, UserSyncState
)


def _mapping(workout_id="w1", event_date=date(2025, 1, 6), event_id="evt_1", routine_id="r1"):
    return EventMapping(user_id="u1", routine_id=routine_id, workout_id=workout_id,
                        event_date=event_date, external_event_id=event_id)


class TestMappingStorage:
    """マッピングストレージのテスト"""

    async def test_initialization(self, mapping_storage):
        assert await mapping_storage.get_mappings("u1", "r1") == []
        assert await mapping_storage.get_sync_logs() == []

    async def test_add_and_get_mapping(self, mapping_storage):
        stored = await mapping_storage.add_mapping(_mapping())

        assert stored.id is not None
        assert stored.created_at is not None
        fetched = await mapping_storage.get_mapping("u1", "r1", "w1", date(2025, 1, 6))
        assert fetched.external_event_id == "evt_1"
        assert (await mapping_storage.get_mapping_by_event_id("u1", "evt_1")).id == stored.id
        assert await mapping_storage.get_mapping("u1", "r1", "w1", date(2025, 1, 7)) is None

    async def test_same_key_replaces_event_id(self, mapping_storage):
        await mapping_storage.add_mapping(_mapping(event_id="evt_1"))
        await mapping_storage.add_mapping(_mapping(event_id="evt_2"))

        mappings = await mapping_storage.get_mappings("u1", "r1")
        assert [m.external_event_id for m in mappings] == ["evt_2"]

    async def test_get_mappings_ordered_and_scoped(self, mapping_storage):
        await mapping_storage.add_mapping(_mapping("w2", date(2025, 1, 7), "evt_2"))
        await mapping_storage.add_mapping(_mapping("w1", date(2025, 1, 6), "evt_1"))
        await mapping_storage.add_mapping(_mapping("w1", date(2025, 1, 6), "evt_3", routine_id="r2"))

        mappings = await mapping_storage.get_mappings("u1", "r1")

        assert [m.external_event_id for m in mappings] == ["evt_1", "evt_2"]

    async def test_delete_mappings(self, mapping_storage):
        first = await mapping_storage.add_mapping(_mapping("w1", date(2025, 1, 6), "evt_1"))
        await mapping_storage.add_mapping(_mapping("w2", date(2025, 1, 7), "evt_2"))
        await mapping_storage.add_mapping(_mapping("w3", date(2025, 1, 8), "evt_3"))

        assert await mapping_storage.delete_mapping(first.id) is True
        assert await mapping_storage.delete_mapping(first.id) is False
        assert [m.workout_id for m in await mapping_storage.get_mappings("u1", "r1")] == ["w2", "w3"]

    async def test_update_mapping_date(self, mapping_storage):
        stored = await mapping_storage.add_mapping(_mapping())

        assert await mapping_storage.update_mapping_date(stored.id, date(2025, 1, 9))

        assert await mapping_storage.get_mapping("u1", "r1", "w1", date(2025, 1, 6)) is None
        assert (await mapping_storage.get_mapping("u1", "r1", "w1", date(2025, 1, 9))).id == stored.id

    async def test_update_mapping_date_conflict(self, mapping_storage):
        stored = await mapping_storage.add_mapping(_mapping("w1", date(2025, 1, 6), "evt_1"))
        await mapping_storage.add_mapping(_mapping("w1", date(2025, 1, 9), "evt_2"))

        with pytest.raises(aiosqlite.IntegrityError):
            await mapping_storage.update_mapping_date(stored.id, date(2025, 1, 9))

    async def test_sync_logs(self, mapping_storage):
        await mapping_storage.log_sync_action("u1", SyncAction.CREATE, SyncLogStatus.SUCCESS,
                                              routine_id="r1", event_id="evt_1")
        await mapping_storage.log_sync_action("u1", SyncAction.DELETE, SyncLogStatus.FAILED,
                                              routine_id="r1", event_id="evt_1", error_message="boom")
        await mapping_storage.log_sync_action("u2", SyncAction.CREATE, SyncLogStatus.SUCCESS)

        logs = await mapping_storage.get_sync_logs("u1")

        assert [log.action for log in logs] == [SyncAction.DELETE, SyncAction.CREATE]
        assert logs[0].status == SyncLogStatus.FAILED
        assert logs[0].to_dict()['error_message'] == "boom"
        assert len(await mapping_storage.get_sync_logs()) == 3

    async def test_sync_status(self, mapping_storage):
        initial = await mapping_storage.get_sync_status("u1")
        assert initial.sync_status == "idle"
        assert initial.last_sync_at is None

        finished = datetime(2025, 1, 6, 10, 0)
        await mapping_storage.set_sync_status("u1", UserSyncState.SYNCING)
        await mapping_storage.set_sync_status("u1", UserSyncState.IDLE, last_sync_at=finished)
        await mapping_storage.set_sync_status("u1", UserSyncState.ERROR,
                                              errors=[f"error {i}" for i in range(8)])

        status = await mapping_storage.get_sync_status("u1")
        assert status.sync_status == "error"
        assert status.last_sync_at == finished
        assert status.error_message == "; ".join(f"error {i}" for i in range(5))


class TestWorkoutLogStore:
    """ワークアウト記録ストアのテスト"""

    async def test_set_completed_creates_and_updates(self, log_store):
        log = await log_store.set_completed("u1", "r1", "w1", date(2025, 1, 6), True)
        assert log.is_completed is True

        await log_store.set_completed("u1", "r1", "w1", date(2025, 1, 6), False)
        stored = await log_store.get_log("u1", "r1", "w1", date(2025, 1, 6))
        assert stored.is_completed is False
        assert stored.updated_at is not None
        assert len(await log_store.get_logs("u1")) == 1

    async def test_toggle_exercise_with_known_total(self, log_store):
        day = date(2025, 1, 6)

        log = await log_store.toggle_exercise("u1", "r1", "w1", day, "e1", total_exercises=2)
        assert log.completed_exercise_ids == ["e1"]
        assert log.is_completed is False

        log = await log_store.toggle_exercise("u1", "r1", "w1", day, "e2", total_exercises=2)
        assert log.is_completed is True

        log = await log_store.toggle_exercise("u1", "r1", "w1", day, "e1", total_exercises=2)
        assert log.completed_exercise_ids == ["e2"]
        assert log.is_completed is False

    async def test_toggle_exercise_without_total(self, log_store):
        day = date(2025, 1, 6)

        log = await log_store.toggle_exercise("u1", "r1", "w1", day, "e1")
        assert log.is_completed is True

        log = await log_store.toggle_exercise("u1", "r1", "w1", day, "e1")
        assert log.is_completed is False
        assert log.completed_exercise_ids == []

    async def test_upsert_log_round_trip(self, log_store):
        await log_store.upsert_log(WorkoutLog(user_id="u1", routine_id="r1", workout_id="w1",
                                              date=date(2025, 1, 6), completed_exercise_ids=["a", "b"]))

        stored = await log_store.get_log("u1", "r1", "w1", date(2025, 1, 6))
        assert stored.completed_exercise_ids == ["a", "b"]
        assert await log_store.get_logs("u1", routine_id="other") == []
