"""例外定義"""

from typing import List, Optional


class CalendarSyncError(Exception):
    """同期エンジンの基底例外"""


class ValidationError(CalendarSyncError):
    """ワークアウト・イベントデータの不正（プロバイダー呼び出し前に検出）"""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or [message]
        super().__init__(message if not errors else f"{message}: {'; '.join(errors)}")


class ProviderError(CalendarSyncError):
    """カレンダープロバイダーのエラー"""

    retryable = False

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class RetryableProviderError(ProviderError):
    """レート制限・5xx・ネットワークエラー（バックオフ付きでリトライ）"""

    retryable = True

    def __init__(self, message: str, status: Optional[int] = None,
                 retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message, status)


class FatalProviderError(ProviderError):
    """認証・権限・不正リクエスト（リトライしない）"""


class NotFoundError(CalendarSyncError):
    """イベントまたはマッピングが存在しない"""

    def __init__(self, message: str, event_id: Optional[str] = None):
        self.event_id = event_id
        super().__init__(message)


class PartialSyncError(CalendarSyncError):
    """一部のオカレンスの同期に失敗"""

    def __init__(self, routine_id: str, errors: List[str], created_count: int = 0):
        self.routine_id = routine_id
        self.errors = list(errors)
        self.created_count = created_count
        super().__init__(
            f"Routine {routine_id}: {len(self.errors)} occurrence(s) failed, "
            f"{created_count} created"
        )
