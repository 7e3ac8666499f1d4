"""
ワークアウト記録ストア - 完了状態をローカルに保存する（カレンダーの結果に依存しない）
"""

import json
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional, Union
import logging

import aiosqlite

from ...core.models import WorkoutLog

logger = logging.getLogger(__name__)


class WorkoutLogStore:
    """WorkoutLog の SQLite 永続化"""

    def __init__(self, database_path: Union[str, Path] = "data/routine_sync.db"):
        self.database_path = Path(database_path)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self) -> bool:
        try:
            async with aiosqlite.connect(self.database_path) as db:
                await db.execute("""
                CREATE TABLE IF NOT EXISTS workout_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    routine_id TEXT NOT NULL,
                    workout_id TEXT NOT NULL,
                    date TEXT NOT NULL,
                    is_completed BOOLEAN NOT NULL DEFAULT FALSE,
                    completed_exercise_ids TEXT NOT NULL DEFAULT '[]',
                    updated_at TIMESTAMP NOT NULL,
                    UNIQUE (user_id, routine_id, workout_id, date)
                )
                """)
                await db.commit()

            logger.info(f"Workout log store initialized: {self.database_path}")
            return True

        except aiosqlite.Error as e:
            logger.error(f"Failed to initialize workout log store: {e}")
            return False

    async def upsert_log(self, log: WorkoutLog) -> WorkoutLog:
        """記録の保存（同一キーは上書き）"""
        log.updated_at = datetime.now()

        sql = """
        INSERT INTO workout_logs (user_id, routine_id, workout_id, date, is_completed, completed_exercise_ids, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (user_id, routine_id, workout_id, date) DO UPDATE SET
            is_completed = excluded.is_completed,
            completed_exercise_ids = excluded.completed_exercise_ids,
            updated_at = excluded.updated_at
        """

        async with aiosqlite.connect(self.database_path) as db:
            await db.execute(sql, (
                log.user_id, log.routine_id, log.workout_id, log.date.isoformat(),
                log.is_completed, json.dumps(log.completed_exercise_ids),
                log.updated_at.isoformat()
            ))
            await db.commit()

        logger.debug(f"Workout log saved: {log.workout_id}@{log.date} completed={log.is_completed}")
        return log

    async def get_log(self, user_id: str, routine_id: str, workout_id: str,
                      log_date: date) -> Optional[WorkoutLog]:
        sql = """
        SELECT * FROM workout_logs
        WHERE user_id = ? AND routine_id = ? AND workout_id = ? AND date = ?
        """

        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, (user_id, routine_id, workout_id, log_date.isoformat()))
            row = await cursor.fetchone()

        return self._row_to_log(row) if row else None

    async def get_logs(self, user_id: str, routine_id: Optional[str] = None) -> List[WorkoutLog]:
        if routine_id:
            sql = "SELECT * FROM workout_logs WHERE user_id = ? AND routine_id = ? ORDER BY date ASC"
            params = (user_id, routine_id)
        else:
            sql = "SELECT * FROM workout_logs WHERE user_id = ? ORDER BY date ASC"
            params = (user_id,)

        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()

        return [self._row_to_log(row) for row in rows]

    async def set_completed(self, user_id: str, routine_id: str, workout_id: str,
                            log_date: date, is_completed: bool) -> WorkoutLog:
        """ワークアウト全体の完了状態を設定"""
        log = await self.get_log(user_id, routine_id, workout_id, log_date) or WorkoutLog(
            user_id=user_id, routine_id=routine_id, workout_id=workout_id, date=log_date
        )
        log.is_completed = is_completed
        return await self.upsert_log(log)

    async def toggle_exercise(self, user_id: str, routine_id: str, workout_id: str, log_date: date,
                              exercise_id: str, total_exercises: Optional[int] = None) -> WorkoutLog:
        """種目1件の完了を反転し、ワークアウトの完了状態を導出する

        種目総数が分かる場合は全種目完了で完了、不明な場合は1件でも完了があれば完了。
        """
        log = await self.get_log(user_id, routine_id, workout_id, log_date) or WorkoutLog(
            user_id=user_id, routine_id=routine_id, workout_id=workout_id, date=log_date
        )

        if exercise_id in log.completed_exercise_ids:
            log.completed_exercise_ids = [e for e in log.completed_exercise_ids if e != exercise_id]
        else:
            log.completed_exercise_ids = log.completed_exercise_ids + [exercise_id]

        if total_exercises:
            log.is_completed = len(log.completed_exercise_ids) >= total_exercises
        else:
            log.is_completed = bool(log.completed_exercise_ids)

        return await self.upsert_log(log)

    def _row_to_log(self, row: aiosqlite.Row) -> WorkoutLog:
        return WorkoutLog(
            user_id=row['user_id'],
            routine_id=row['routine_id'],
            workout_id=row['workout_id'],
            date=date.fromisoformat(row['date']),
            is_completed=bool(row['is_completed']),
            completed_exercise_ids=json.loads(row['completed_exercise_ids'] or '[]'),
            updated_at=datetime.fromisoformat(row['updated_at'])
        )
