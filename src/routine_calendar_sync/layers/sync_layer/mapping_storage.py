"""
マッピングストレージ - オカレンスと外部イベントIDの対応付けを SQLite に永続化
同期ログ・ユーザー単位の同期ステータスも同じデータベースで管理する
"""

from datetime import date, datetime
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

import aiosqlite

from ...core.models import EventMapping, SyncStatusRecord

logger = logging.getLogger(__name__)

MAX_STORED_ERRORS = 5


class SyncAction(Enum):
    """同期アクション"""
    CREATE = "CREATE"
    DELETE = "DELETE"
    UPDATE = "UPDATE"
    COMPLETE = "COMPLETE"
    INCOMPLETE = "INCOMPLETE"


class SyncLogStatus(Enum):
    """同期ログのステータス"""
    SUCCESS = "success"
    FAILED = "failed"


class UserSyncState(Enum):
    """ユーザー単位の同期状態"""
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass
class SyncLogEntry:
    """同期ログ"""
    id: Optional[int]
    user_id: str
    action: SyncAction
    status: SyncLogStatus
    routine_id: Optional[str]
    event_id: Optional[str]
    error_message: Optional[str]
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['action'] = self.action.value
        data['status'] = self.status.value
        data['timestamp'] = self.timestamp.isoformat()
        return data


class MappingStorage:
    """イベントマッピングの永続化"""

    def __init__(self, database_path: Union[str, Path] = "data/routine_sync.db"):
        self.database_path = Path(database_path)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self) -> bool:
        """データベース初期化"""
        try:
            await self._create_tables()
            logger.info(f"Mapping storage initialized: {self.database_path}")
            return True

        except aiosqlite.Error as e:
            logger.error(f"Failed to initialize mapping storage: {e}")
            return False

    async def _create_tables(self):
        """テーブル・インデックス作成"""

        # マッピングテーブル（オカレンス1件につき1行）
        mappings_table_sql = """
        CREATE TABLE IF NOT EXISTS event_mappings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            routine_id TEXT NOT NULL,
            workout_id TEXT NOT NULL,
            event_date TEXT NOT NULL,
            external_event_id TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (user_id, routine_id, workout_id, event_date)
        )
        """

        # 同期ログテーブル
        sync_logs_table_sql = """
        CREATE TABLE IF NOT EXISTS sync_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            action TEXT NOT NULL,
            status TEXT NOT NULL,
            routine_id TEXT,
            event_id TEXT,
            error_message TEXT,
            timestamp TIMESTAMP NOT NULL
        )
        """

        # 同期ステータステーブル
        sync_status_table_sql = """
        CREATE TABLE IF NOT EXISTS calendar_sync_status (
            user_id TEXT PRIMARY KEY,
            sync_status TEXT NOT NULL DEFAULT 'idle',
            last_sync_at TIMESTAMP,
            error_message TEXT,
            updated_at TIMESTAMP NOT NULL
        )
        """

        indexes_sql = [
            "CREATE INDEX IF NOT EXISTS idx_event_mappings_routine ON event_mappings(user_id, routine_id)",
            "CREATE INDEX IF NOT EXISTS idx_event_mappings_event_id ON event_mappings(external_event_id)",
            "CREATE INDEX IF NOT EXISTS idx_sync_logs_user ON sync_logs(user_id, timestamp)"
        ]

        async with aiosqlite.connect(self.database_path) as db:
            await db.execute(mappings_table_sql)
            await db.execute(sync_logs_table_sql)
            await db.execute(sync_status_table_sql)
            for index_sql in indexes_sql:
                await db.execute(index_sql)
            await db.commit()

    async def add_mapping(self, mapping: EventMapping) -> EventMapping:
        """マッピング保存（同一キーが既にあれば外部イベントIDを置き換える）"""
        sql = """
        INSERT INTO event_mappings (user_id, routine_id, workout_id, event_date, external_event_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT (user_id, routine_id, workout_id, event_date)
        DO UPDATE SET external_event_id = excluded.external_event_id
        """
        created_at = mapping.created_at or datetime.now()

        async with aiosqlite.connect(self.database_path) as db:
            await db.execute(sql, (
                mapping.user_id, mapping.routine_id, mapping.workout_id,
                mapping.event_date.isoformat(), mapping.external_event_id,
                created_at.isoformat()
            ))
            await db.commit()

            stored = await self._fetch_one(
                db,
                "SELECT * FROM event_mappings WHERE user_id = ? AND routine_id = ? "
                "AND workout_id = ? AND event_date = ?",
                (mapping.user_id, mapping.routine_id, mapping.workout_id, mapping.event_date.isoformat())
            )

        logger.debug(f"Mapping stored: {mapping.workout_id}@{mapping.event_date} -> {mapping.external_event_id}")
        return stored

    async def get_mappings(self, user_id: str, routine_id: str) -> List[EventMapping]:
        """ルーティンの全マッピング取得（日付順）"""
        sql = """
        SELECT * FROM event_mappings
        WHERE user_id = ? AND routine_id = ?
        ORDER BY event_date ASC, id ASC
        """

        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, (user_id, routine_id))
            rows = await cursor.fetchall()

        return [self._row_to_mapping(row) for row in rows]

    async def get_mapping(self, user_id: str, routine_id: str, workout_id: str,
                          event_date: date) -> Optional[EventMapping]:
        """キー指定でマッピング取得"""
        sql = """
        SELECT * FROM event_mappings
        WHERE user_id = ? AND routine_id = ? AND workout_id = ? AND event_date = ?
        """

        async with aiosqlite.connect(self.database_path) as db:
            return await self._fetch_one(db, sql, (user_id, routine_id, workout_id, event_date.isoformat()))

    async def get_mapping_by_event_id(self, user_id: str, external_event_id: str) -> Optional[EventMapping]:
        sql = "SELECT * FROM event_mappings WHERE user_id = ? AND external_event_id = ?"

        async with aiosqlite.connect(self.database_path) as db:
            return await self._fetch_one(db, sql, (user_id, external_event_id))

    async def delete_mapping(self, mapping_id: int) -> bool:
        async with aiosqlite.connect(self.database_path) as db:
            cursor = await db.execute("DELETE FROM event_mappings WHERE id = ?", (mapping_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def update_mapping_date(self, mapping_id: int, new_date: date) -> bool:
        """マッピングの日付を移動"""
        async with aiosqlite.connect(self.database_path) as db:
            cursor = await db.execute(
                "UPDATE event_mappings SET event_date = ? WHERE id = ?",
                (new_date.isoformat(), mapping_id)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def log_sync_action(self, user_id: str, action: SyncAction, status: SyncLogStatus,
                              routine_id: Optional[str] = None, event_id: Optional[str] = None,
                              error_message: Optional[str] = None):
        """同期アクション記録"""
        sql = """
        INSERT INTO sync_logs (user_id, action, status, routine_id, event_id, error_message, timestamp)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """

        async with aiosqlite.connect(self.database_path) as db:
            await db.execute(sql, (
                user_id, action.value, status.value, routine_id, event_id,
                error_message, datetime.now().isoformat()
            ))
            await db.commit()

    async def get_sync_logs(self, user_id: Optional[str] = None, limit: int = 100) -> List[SyncLogEntry]:
        """同期ログ取得（新しい順）"""
        if user_id:
            sql = "SELECT * FROM sync_logs WHERE user_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?"
            params = (user_id, limit)
        else:
            sql = "SELECT * FROM sync_logs ORDER BY timestamp DESC, id DESC LIMIT ?"
            params = (limit,)

        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()

        return [
            SyncLogEntry(
                id=row['id'],
                user_id=row['user_id'],
                action=SyncAction(row['action']),
                status=SyncLogStatus(row['status']),
                routine_id=row['routine_id'],
                event_id=row['event_id'],
                error_message=row['error_message'],
                timestamp=datetime.fromisoformat(row['timestamp'])
            )
            for row in rows
        ]

    async def set_sync_status(self, user_id: str, state: UserSyncState,
                              errors: Optional[List[str]] = None,
                              last_sync_at: Optional[datetime] = None):
        """同期ステータス更新（エラーは先頭の数件のみ保存）"""
        error_message = "; ".join(errors[:MAX_STORED_ERRORS]) if errors else None
        now = datetime.now()

        sql = """
        INSERT INTO calendar_sync_status (user_id, sync_status, last_sync_at, error_message, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (user_id) DO UPDATE SET
            sync_status = excluded.sync_status,
            last_sync_at = COALESCE(excluded.last_sync_at, calendar_sync_status.last_sync_at),
            error_message = excluded.error_message,
            updated_at = excluded.updated_at
        """

        async with aiosqlite.connect(self.database_path) as db:
            await db.execute(sql, (
                user_id, state.value,
                last_sync_at.isoformat() if last_sync_at else None,
                error_message, now.isoformat()
            ))
            await db.commit()

    async def get_sync_status(self, user_id: str) -> SyncStatusRecord:
        """同期ステータス取得（未登録なら idle）"""
        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM calendar_sync_status WHERE user_id = ?", (user_id,))
            row = await cursor.fetchone()

        if row is None:
            return SyncStatusRecord(user_id=user_id)

        return SyncStatusRecord(
            user_id=row['user_id'],
            sync_status=row['sync_status'],
            last_sync_at=datetime.fromisoformat(row['last_sync_at']) if row['last_sync_at'] else None,
            error_message=row['error_message'],
            updated_at=datetime.fromisoformat(row['updated_at'])
        )

    async def _fetch_one(self, db: aiosqlite.Connection, sql: str, params: tuple) -> Optional[EventMapping]:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(sql, params)
        row = await cursor.fetchone()
        return self._row_to_mapping(row) if row else None

    def _row_to_mapping(self, row: aiosqlite.Row) -> EventMapping:
        """データベース行をEventMappingに変換"""
        return EventMapping(
            id=row['id'],
            user_id=row['user_id'],
            routine_id=row['routine_id'],
            workout_id=row['workout_id'],
            event_date=date.fromisoformat(row['event_date']),
            external_event_id=row['external_event_id'],
            created_at=datetime.fromisoformat(row['created_at']) if row['created_at'] else None
        )
