import argparse
import asyncio
import sys
import tempfile
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Optional

from .config.enhanced_config import ConfigManager, SyncEngineConfig
from .core.exceptions import CalendarSyncError
from .layers.data_acquisition.retry_policy import RetryPolicy
from .layers.data_acquisition.routine_provider import YamlRoutineProvider
from .layers.scheduling.event_transformer import format_duration, get_exercise_summary
from .layers.sync_layer.calendar_provider import (
    CalendarProvider, GoogleCalendarProvider, InMemoryCalendarProvider
)
from .layers.sync_layer.completion_sync import CompletionStatusSynchronizer
from .layers.sync_layer.mapping_storage import MappingStorage
from .layers.sync_layer.sync_orchestrator import SyncOrchestrator
from .layers.sync_layer.workout_log_store import WorkoutLogStore
from .utils.enhanced_logger import setup_logging


def parse_date(value: Optional[str]) -> date:
    if not value:
        return date.today()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise SystemExit("日付は YYYY-MM-DD 形式で指定してください")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="routine-calendar-sync",
        description="Sync workout routines to an external calendar"
    )
    parser.add_argument("--config-dir", default="config", help="設定ディレクトリ")
    parser.add_argument("--routines", default="routines.yaml", help="ルーティン定義YAMLのパス")
    parser.add_argument("--dry-run", action="store_true",
                        help="Google Calendar に接続せずインメモリのカレンダーで実行")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="ルーティン1件を同期")
    sync.add_argument("--user", required=True)
    sync.add_argument("--routine", required=True)
    sync.add_argument("--start", help="開始日 (YYYY-MM-DD、既定は今日)")

    sync_all = subparsers.add_parser("sync-all", help="アクティブなルーティンをすべて同期")
    sync_all.add_argument("--user", required=True)
    sync_all.add_argument("--start", help="開始日 (YYYY-MM-DD、既定は今日)")

    deactivate = subparsers.add_parser("deactivate", help="ルーティンのイベントをすべて削除")
    deactivate.add_argument("--user", required=True)
    deactivate.add_argument("--routine", required=True)

    for name, help_text in (("complete", "ワークアウトを完了にする"), ("incomplete", "ワークアウトを未完了に戻す")):
        toggle = subparsers.add_parser(name, help=help_text)
        toggle.add_argument("--user", required=True)
        toggle.add_argument("--routine", required=True)
        toggle.add_argument("--workout", required=True)
        toggle.add_argument("--date", required=True, help="ワークアウト日 (YYYY-MM-DD)")

    status = subparsers.add_parser("status", help="同期ステータスを表示")
    status.add_argument("--user", required=True)

    subparsers.add_parser("template", help="設定テンプレートを作成")

    return parser


async def create_provider(config: SyncEngineConfig, dry_run: bool) -> CalendarProvider:
    if dry_run:
        return InMemoryCalendarProvider()

    provider = GoogleCalendarProvider(config.calendar)
    if not await provider.initialize():
        raise SystemExit("Google Calendar の認証に失敗しました。認証情報を確認してください。")
    return provider


async def run(args: argparse.Namespace, config: SyncEngineConfig) -> int:
    provider = await create_provider(config, args.dry_run)

    with tempfile.TemporaryDirectory() as temp_dir:
        database_path = Path(temp_dir) / "dry_run.db" if args.dry_run else Path(config.sync.database_path)

        mapping_storage = MappingStorage(database_path)
        log_store = WorkoutLogStore(database_path)
        if not await mapping_storage.initialize() or not await log_store.initialize():
            raise SystemExit(f"データベースを初期化できません: {database_path}")

        retry_policy = RetryPolicy.from_config(config.sync.retry_policy)

        if args.command == "status":
            record = await mapping_storage.get_sync_status(args.user)
            print(f"status: {record.sync_status}")
            print(f"last sync: {record.last_sync_at.isoformat() if record.last_sync_at else '-'}")
            if record.error_message:
                print(f"errors: {record.error_message}")
            return 0

        if args.command in ("complete", "incomplete"):
            synchronizer = CompletionStatusSynchronizer(
                provider, mapping_storage, log_store, config=config.calendar, retry_policy=retry_policy
            )
            result = await synchronizer.toggle_workout_completion(
                args.user, args.routine, args.workout, parse_date(args.date),
                is_completed=args.command == "complete"
            )
            state = "completed" if result.workout_log.is_completed else "incomplete"
            print(f"{args.workout} on {args.date}: {state} (calendar synced: {result.calendar_synced})")
            if result.error_message:
                print(f"  error: {result.error_message}")
            return 0

        routines = YamlRoutineProvider(args.routines)
        orchestrator = SyncOrchestrator(
            provider, mapping_storage, routines, config=config, retry_policy=retry_policy
        )

        if args.command == "deactivate":
            result = await orchestrator.teardown_routine(args.user, args.routine)
            print(result.summary())
            return 0

        start_date = parse_date(args.start)

        if args.command == "sync":
            routine = await routines.require_routine(args.user, args.routine)
            result = await orchestrator.sync_routine(routine, start_date)
            print(result.summary())
            for workout in routine.workouts:
                print(f"  {workout.name}: {get_exercise_summary(workout.exercises)}")
            errors = result.errors
        else:
            aggregate = await orchestrator.sync_all_routines(args.user, start_date)
            print(aggregate.summary())
            errors = aggregate.all_errors()

        for error in errors:
            print(f"  error: {error}")

        if isinstance(provider, InMemoryCalendarProvider):
            for event in sorted(provider.events.values(), key=lambda e: e['start']['dateTime']):
                start = datetime.fromisoformat(event['start']['dateTime'])
                end = datetime.fromisoformat(event['end']['dateTime'])
                minutes = int((end - start).total_seconds() // 60)
                print(f"  {start:%Y-%m-%d %H:%M} {event['summary']} ({format_duration(minutes)})")

        return 1 if errors else 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    manager = ConfigManager(args.config_dir)

    if args.command == "template":
        created = manager.save_config_template()
        print(f"Created: {', '.join(created) if created else '(already exists)'}")
        return 0

    config = manager.load_config()
    setup_logging({
        'level': config.logging.level,
        'file_path': config.logging.file_path,
        'structured': config.logging.structured,
        'metrics_enabled': config.logging.metrics_enabled
    })

    try:
        return asyncio.run(run(args, config))
    except CalendarSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
