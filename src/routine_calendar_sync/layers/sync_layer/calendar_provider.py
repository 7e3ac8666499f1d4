"""
カレンダープロバイダー - Google Calendar API とテスト用インメモリ実装
同期エンジンは create / update / delete / get の4操作のみに依存する
"""

import asyncio
import copy
import itertools
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ...config.enhanced_config import CalendarConfig
from ...core.exceptions import FatalProviderError, NotFoundError
from ...core.models import CalendarEvent, EventDateTime, EventReminder
from ..data_acquisition.error_handler import ErrorHandler

logger = logging.getLogger(__name__)

# Google Calendar API スコープ
SCOPES = [
    'https://www.googleapis.com/auth/calendar.events'
]


class CalendarProvider(ABC):
    """カレンダープロバイダー抽象基底クラス"""

    @abstractmethod
    async def create_event(self, event: CalendarEvent) -> str:
        """イベント作成、外部イベントIDを返す"""

    @abstractmethod
    async def update_event(self, event_id: str, partial: Dict[str, Any]) -> None:
        """イベントの部分更新（API形式のキー: summary, colorId など）"""

    @abstractmethod
    async def delete_event(self, event_id: str) -> bool:
        """イベント削除（既に存在しない場合も True）"""

    @abstractmethod
    async def get_event(self, event_id: str) -> Optional[CalendarEvent]:
        """イベント取得（存在しなければ None）"""


class GoogleCalendarProvider(CalendarProvider):
    """Google Calendar API プロバイダー"""

    def __init__(self, config: Optional[CalendarConfig] = None,
                 service=None, error_handler: Optional[ErrorHandler] = None):
        self.config = config or CalendarConfig()
        self.calendar_id = self.config.calendar_id
        self.credentials_path = self.config.credentials_path
        self.token_path = self.config.token_path
        self.error_handler = error_handler or ErrorHandler()

        self.credentials: Optional[Credentials] = None
        self.service = service

    async def initialize(self) -> bool:
        """認証とサービス構築"""
        if self.service is not None:
            return True

        try:
            await asyncio.to_thread(self._authenticate)
            self.service = build('calendar', 'v3', credentials=self.credentials, cache_discovery=False)
            logger.info("Google Calendar provider initialized successfully")
            return True

        except (OSError, ValueError, GoogleAuthError) as e:
            logger.error(f"Failed to initialize Google Calendar provider: {e}")
            return False

    def _authenticate(self):
        """Google認証処理"""
        creds = None

        if Path(self.token_path).exists():
            try:
                creds = Credentials.from_authorized_user_file(self.token_path, SCOPES)
            except ValueError as e:
                logger.warning(f"Failed to load existing credentials: {e}")

        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
                logger.info("Google credentials refreshed")
            else:
                if not Path(self.credentials_path).exists():
                    raise FileNotFoundError(f"Google credentials file not found: {self.credentials_path}")

                flow = InstalledAppFlow.from_client_secrets_file(self.credentials_path, SCOPES)
                creds = flow.run_local_server(port=0)
                logger.info("New Google credentials obtained")

            Path(self.token_path).parent.mkdir(parents=True, exist_ok=True)
            with open(self.token_path, 'w') as token:
                token.write(creds.to_json())
            logger.info(f"Credentials saved to {self.token_path}")

        self.credentials = creds

    def _events(self):
        if self.service is None:
            raise FatalProviderError("Google Calendar service not initialized")
        return self.service.events()

    async def _execute(self, request, operation: str):
        """APIリクエスト実行（HTTP・認証・通信エラーをエラー分類に従って変換）

        トークン失効などの認証エラーはリトライ不可、httplib2 の通信エラーはリトライ可となる。
        """
        try:
            return await asyncio.to_thread(request.execute)
        except (HttpError, GoogleAuthError, httplib2.HttpLib2Error) as e:
            raise self.error_handler.to_provider_error(e, operation) from e
        except (ConnectionError, TimeoutError, OSError) as e:
            raise self.error_handler.to_provider_error(e, operation) from e

    async def create_event(self, event: CalendarEvent) -> str:
        request = self._events().insert(calendarId=self.calendar_id, body=event.to_dict())
        created = await self._execute(request, "create_event")
        logger.debug(f"Created Google Calendar event: {event.summary}")
        return created['id']

    async def update_event(self, event_id: str, partial: Dict[str, Any]) -> None:
        request = self._events().patch(calendarId=self.calendar_id, eventId=event_id, body=partial)
        try:
            await self._execute(request, "update_event")
        except FatalProviderError as e:
            if e.status in (404, 410):
                raise NotFoundError(f"Event not found: {event_id}", event_id=event_id) from e
            raise

    async def delete_event(self, event_id: str) -> bool:
        request = self._events().delete(calendarId=self.calendar_id, eventId=event_id)
        try:
            await self._execute(request, "delete_event")
        except FatalProviderError as e:
            # 既に削除済みなら成功扱い
            if e.status in (404, 410):
                logger.debug(f"Event already deleted: {event_id}")
                return True
            raise
        return True

    async def get_event(self, event_id: str) -> Optional[CalendarEvent]:
        request = self._events().get(calendarId=self.calendar_id, eventId=event_id)
        try:
            data = await self._execute(request, "get_event")
        except FatalProviderError as e:
            if e.status in (404, 410):
                return None
            raise
        if data.get('status') == 'cancelled':
            return None
        return event_from_dict(data)


class InMemoryCalendarProvider(CalendarProvider):
    """インメモリのカレンダープロバイダー（テスト・ドライラン用）"""

    def __init__(self):
        self.events: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Any]] = []
        self._ids = itertools.count(1)
        self._failures: Dict[str, List[list]] = {}

    def fail_next(self, operation: str, error: Exception, times: Optional[int] = 1,
                  when: Optional[Callable[[Any], bool]] = None):
        """指定操作の次回以降の呼び出しを失敗させる（times=None で常に失敗）"""
        self._failures.setdefault(operation, []).append([error, times, when])

    def call_count(self, operation: Optional[str] = None) -> int:
        return sum(1 for name, _ in self.calls if operation is None or name == operation)

    def _maybe_fail(self, operation: str, argument: Any):
        for rule in self._failures.get(operation, []):
            error, remaining, when = rule
            if remaining is not None and remaining <= 0:
                continue
            if when is not None and not when(argument):
                continue
            if remaining is not None:
                rule[1] = remaining - 1
            raise error

    async def create_event(self, event: CalendarEvent) -> str:
        self.calls.append(("create_event", event))
        self._maybe_fail("create_event", event)

        event_id = f"evt_{next(self._ids)}"
        body = event.to_dict()
        body['id'] = event_id
        self.events[event_id] = body
        return event_id

    async def update_event(self, event_id: str, partial: Dict[str, Any]) -> None:
        self.calls.append(("update_event", event_id))
        self._maybe_fail("update_event", event_id)

        if event_id not in self.events:
            raise NotFoundError(f"Event not found: {event_id}", event_id=event_id)

        body = self.events[event_id]
        for key, value in copy.deepcopy(partial).items():
            if value is None:
                body.pop(key, None)
            else:
                body[key] = value

    async def delete_event(self, event_id: str) -> bool:
        self.calls.append(("delete_event", event_id))
        self._maybe_fail("delete_event", event_id)

        self.events.pop(event_id, None)
        return True

    async def get_event(self, event_id: str) -> Optional[CalendarEvent]:
        self.calls.append(("get_event", event_id))
        self._maybe_fail("get_event", event_id)

        body = self.events.get(event_id)
        return event_from_dict(body) if body else None


def event_from_dict(data: Dict[str, Any]) -> CalendarEvent:
    """Calendar API形式のイベントを CalendarEvent に変換"""
    reminders = [
        EventReminder(method=item.get('method', 'popup'), minutes=int(item.get('minutes', 0)))
        for item in (data.get('reminders') or {}).get('overrides', [])
    ]

    return CalendarEvent(
        id=data.get('id'),
        summary=data.get('summary', ''),
        description=data.get('description', ''),
        start=_parse_event_time(data.get('start') or {}),
        end=_parse_event_time(data.get('end') or {}),
        color_id=data.get('colorId'),
        reminders=reminders
    )


def _parse_event_time(value: Dict[str, Any]) -> EventDateTime:
    time_zone = value.get('timeZone') or 'UTC'
    try:
        tz = ZoneInfo(time_zone)
    except (ZoneInfoNotFoundError, ValueError):
        tz = timezone.utc

    raw = value.get('dateTime') or value.get('date')
    if not raw:
        return EventDateTime(date_time=None, time_zone=time_zone)

    parsed = datetime.fromisoformat(raw.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    else:
        parsed = parsed.astimezone(tz)

    return EventDateTime(date_time=parsed, time_zone=time_zone)
