"""
完了状態同期の統合テスト
"""

from datetime import date

from routine_calendar_sync.config.enhanced_config import CalendarConfig
from routine_calendar_sync.core.exceptions import RetryableProviderError
from routine_calendar_sync.layers.sync_layer.completion_sync import CompletionStatusSynchronizer
from routine_calendar_sync.layers.sync_layer.mapping_storage import SyncAction, SyncLogStatus

MONDAY = date(2025, 1, 6)


async def _synced_event_id(orchestrator, routine_factory, workout_id="r1_w1", event_date=MONDAY):
    await orchestrator.sync_routine(routine_factory(), MONDAY)
    mapping = await orchestrator.get_event_mapping("u1", "r1", workout_id, event_date)
    return mapping.external_event_id


class TestMarkCompletion:
    """mark_completed / mark_incomplete のテスト"""

    async def test_complete_then_incomplete_restores_summary(self, orchestrator, synchronizer,
                                                             calendar_provider, routine_factory):
        event_id = await _synced_event_id(orchestrator, routine_factory)
        original = (await calendar_provider.get_event(event_id)).summary

        completed = await synchronizer.mark_completed(event_id)
        assert completed.success
        assert completed.summary == f"✅ {original}"
        assert completed.color_id == "10"
        event = await calendar_provider.get_event(event_id)
        assert event.summary == f"✅ {original}"
        assert event.color_id == "10"

        restored = await synchronizer.mark_incomplete(event_id)
        assert restored.success
        event = await calendar_provider.get_event(event_id)
        assert event.summary == original
        assert event.color_id is None

    async def test_mark_completed_is_idempotent(self, orchestrator, synchronizer,
                                                calendar_provider, routine_factory):
        event_id = await _synced_event_id(orchestrator, routine_factory)

        await synchronizer.mark_completed(event_id)
        await synchronizer.mark_completed(event_id)

        summary = (await calendar_provider.get_event(event_id)).summary
        assert summary.count("✅") == 1

    async def test_mark_incomplete_is_idempotent(self, orchestrator, synchronizer,
                                                 calendar_provider, routine_factory):
        event_id = await _synced_event_id(orchestrator, routine_factory)
        original = (await calendar_provider.get_event(event_id)).summary

        result = await synchronizer.mark_incomplete(event_id)

        assert result.success
        assert (await calendar_provider.get_event(event_id)).summary == original

    async def test_repeated_cycles(self, orchestrator, synchronizer, calendar_provider, routine_factory):
        event_id = await _synced_event_id(orchestrator, routine_factory)
        original = (await calendar_provider.get_event(event_id)).summary

        for _ in range(3):
            await synchronizer.mark_completed(event_id)
            await synchronizer.mark_incomplete(event_id)

        assert (await calendar_provider.get_event(event_id)).summary == original

    async def test_missing_event_returns_failure(self, synchronizer, calendar_provider):
        result = await synchronizer.mark_completed("does_not_exist")

        assert result.success is False
        assert "not found" in result.error_message
        assert calendar_provider.call_count("update_event") == 0

    async def test_provider_error_returns_failure(self, orchestrator, synchronizer,
                                                  calendar_provider, routine_factory):
        event_id = await _synced_event_id(orchestrator, routine_factory)
        calendar_provider.fail_next("update_event", RetryableProviderError("busy", status=503), times=None)

        result = await synchronizer.mark_completed(event_id)

        assert result.success is False
        assert calendar_provider.call_count("update_event") == 4

    async def test_scheduled_color_is_restored(self, orchestrator, calendar_provider, mapping_storage,
                                               log_store, no_sleep_retry_policy, routine_factory):
        event_id = await _synced_event_id(orchestrator, routine_factory)
        synchronizer = CompletionStatusSynchronizer(
            calendar_provider, mapping_storage, log_store,
            config=CalendarConfig(scheduled_color_id="9"), retry_policy=no_sleep_retry_policy
        )

        await synchronizer.mark_completed(event_id)
        result = await synchronizer.mark_incomplete(event_id)

        assert result.color_id == "9"
        assert (await calendar_provider.get_event(event_id)).color_id == "9"


class TestToggleCompletion:
    """toggle_workout_completion / toggle_exercise_completion のテスト"""

    async def test_toggle_with_mapping(self, orchestrator, synchronizer, calendar_provider,
                                       mapping_storage, log_store, routine_factory):
        event_id = await _synced_event_id(orchestrator, routine_factory)

        result = await synchronizer.toggle_workout_completion("u1", "r1", "r1_w1", MONDAY, True)

        assert result.calendar_synced is True
        assert result.event_id == event_id
        assert result.workout_log.is_completed is True
        assert (await calendar_provider.get_event(event_id)).summary.startswith("✅ ")
        assert (await log_store.get_log("u1", "r1", "r1_w1", MONDAY)).is_completed is True
        logs = await mapping_storage.get_sync_logs("u1", limit=1)
        assert logs[0].action == SyncAction.COMPLETE
        assert logs[0].status == SyncLogStatus.SUCCESS

        result = await synchronizer.toggle_workout_completion("u1", "r1", "r1_w1", MONDAY, False)
        assert result.calendar_synced is True
        assert not (await calendar_provider.get_event(event_id)).summary.startswith("✅ ")

    async def test_toggle_without_mapping_makes_no_provider_call(self, synchronizer, calendar_provider, log_store):
        result = await synchronizer.toggle_workout_completion("u1", "r1", "w1", MONDAY, True)

        assert result.calendar_synced is False
        assert result.error_message is None
        assert result.workout_log.is_completed is True
        assert calendar_provider.call_count() == 0
        assert (await log_store.get_log("u1", "r1", "w1", MONDAY)).is_completed is True

    async def test_log_is_saved_when_calendar_fails(self, orchestrator, synchronizer, calendar_provider,
                                                    mapping_storage, log_store, routine_factory):
        await _synced_event_id(orchestrator, routine_factory)
        calendar_provider.fail_next("get_event", RetryableProviderError("down", status=503), times=None)

        result = await synchronizer.toggle_workout_completion("u1", "r1", "r1_w1", MONDAY, True)

        assert result.calendar_synced is False
        assert result.error_message
        assert (await log_store.get_log("u1", "r1", "r1_w1", MONDAY)).is_completed is True
        logs = await mapping_storage.get_sync_logs("u1", limit=1)
        assert logs[0].status == SyncLogStatus.FAILED

    async def test_deleted_event_reports_not_synced(self, orchestrator, synchronizer,
                                                    calendar_provider, routine_factory):
        event_id = await _synced_event_id(orchestrator, routine_factory)
        calendar_provider.events.pop(event_id)

        result = await synchronizer.toggle_workout_completion("u1", "r1", "r1_w1", MONDAY, True)

        assert result.calendar_synced is False
        assert result.workout_log.is_completed is True

    async def test_toggle_exercise_completion(self, orchestrator, synchronizer,
                                              calendar_provider, routine_factory):
        event_id = await _synced_event_id(orchestrator, routine_factory)

        partial = await synchronizer.toggle_exercise_completion(
            "u1", "r1", "r1_w1", MONDAY, "e1", total_exercises=2
        )
        assert partial.workout_log.is_completed is False
        assert not (await calendar_provider.get_event(event_id)).summary.startswith("✅ ")

        done = await synchronizer.toggle_exercise_completion(
            "u1", "r1", "r1_w1", MONDAY, "e2", total_exercises=2
        )
        assert done.workout_log.is_completed is True
        assert done.calendar_synced is True
        assert (await calendar_provider.get_event(event_id)).summary.startswith("✅ ")
