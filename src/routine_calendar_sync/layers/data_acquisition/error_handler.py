"""
エラーハンドリングシステム
プロバイダーエラーを分類し、リトライ可否と対応戦略を決定する
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import httplib2
from google.auth.exceptions import GoogleAuthError, TransportError

from ...core.exceptions import (
    FatalProviderError, NotFoundError, ProviderError, RetryableProviderError, ValidationError
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
AUTH_STATUS_CODES = {401, 403}


class ErrorType(Enum):
    """エラータイプ分類"""
    NETWORK_ERROR = "network_error"
    RATE_LIMIT_ERROR = "rate_limit_error"
    SERVER_ERROR = "server_error"
    AUTHENTICATION_ERROR = "authentication_error"
    INVALID_REQUEST_ERROR = "invalid_request_error"
    NOT_FOUND_ERROR = "not_found_error"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_ERROR = "unknown_error"


@dataclass
class ErrorStrategy:
    """エラー対応戦略設定"""
    retryable: bool
    backoff_multiplier: float = 2.0
    alert_threshold: int = 1


class ErrorHandler:
    """エラー分類・集計"""

    # エラータイプ別の対応戦略
    STRATEGIES: Dict[ErrorType, ErrorStrategy] = {
        ErrorType.NETWORK_ERROR: ErrorStrategy(retryable=True, backoff_multiplier=2.0, alert_threshold=3),
        ErrorType.RATE_LIMIT_ERROR: ErrorStrategy(retryable=True, backoff_multiplier=4.0, alert_threshold=10),
        ErrorType.SERVER_ERROR: ErrorStrategy(retryable=True, backoff_multiplier=2.0, alert_threshold=3),
        ErrorType.AUTHENTICATION_ERROR: ErrorStrategy(retryable=False, alert_threshold=1),
        ErrorType.INVALID_REQUEST_ERROR: ErrorStrategy(retryable=False, alert_threshold=5),
        ErrorType.NOT_FOUND_ERROR: ErrorStrategy(retryable=False, alert_threshold=10),
        ErrorType.VALIDATION_ERROR: ErrorStrategy(retryable=False, alert_threshold=5),
        ErrorType.UNKNOWN_ERROR: ErrorStrategy(retryable=False, alert_threshold=1),
    }

    def __init__(self):
        self.error_counts: Dict[ErrorType, int] = {}

    def classify_error(self, error: Exception) -> ErrorType:
        """エラーを分類してタイプを返す"""
        if isinstance(error, ValidationError):
            return ErrorType.VALIDATION_ERROR

        if isinstance(error, NotFoundError):
            return ErrorType.NOT_FOUND_ERROR

        status = _status_of(error)
        if status is not None:
            if status == 429:
                return ErrorType.RATE_LIMIT_ERROR
            if status >= 500:
                return ErrorType.SERVER_ERROR
            if status in AUTH_STATUS_CODES:
                return ErrorType.AUTHENTICATION_ERROR
            if status in (404, 410):
                return ErrorType.NOT_FOUND_ERROR
            if 400 <= status < 500:
                return ErrorType.INVALID_REQUEST_ERROR

        if isinstance(error, (ConnectionError, TimeoutError, httplib2.HttpLib2Error, TransportError)):
            return ErrorType.NETWORK_ERROR

        # トークン失効・取り消し（RefreshError など）
        if isinstance(error, GoogleAuthError):
            return ErrorType.AUTHENTICATION_ERROR

        if isinstance(error, RetryableProviderError):
            return ErrorType.SERVER_ERROR

        if isinstance(error, FatalProviderError):
            return ErrorType.AUTHENTICATION_ERROR

        error_message = str(error).lower()

        if any(keyword in error_message for keyword in ['rate limit', 'too many requests', 'quota']):
            return ErrorType.RATE_LIMIT_ERROR

        if any(keyword in error_message for keyword in ['connection', 'timeout', 'network']):
            return ErrorType.NETWORK_ERROR

        if any(keyword in error_message for keyword in ['unauthorized', 'authentication', 'forbidden', 'invalid_grant']):
            return ErrorType.AUTHENTICATION_ERROR

        return ErrorType.UNKNOWN_ERROR

    def is_retryable(self, error: Exception) -> bool:
        """リトライ可能なエラーか"""
        if isinstance(error, ProviderError):
            return error.retryable
        return self.STRATEGIES[self.classify_error(error)].retryable

    def record_error(self, error: Exception, context: Optional[dict] = None) -> ErrorType:
        """エラーの記録と閾値チェック"""
        error_type = self.classify_error(error)
        strategy = self.STRATEGIES[error_type]

        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1
        count = self.error_counts[error_type]

        logger.debug(f"Error classified as {error_type.value} ({count}): {error}")

        if count >= strategy.alert_threshold:
            logger.warning(
                f"Error threshold reached for {error_type.value}: {count} occurrences "
                f"(latest: {error}, context: {context or {}})"
            )

        return error_type

    def to_provider_error(self, error: Exception, operation: str) -> ProviderError:
        """任意の例外をプロバイダーエラーに正規化"""
        if isinstance(error, ProviderError):
            return error

        error_type = self.classify_error(error)
        message = f"{operation} failed ({error_type.value}): {error}"
        status = _status_of(error)

        if self.STRATEGIES[error_type].retryable:
            return RetryableProviderError(message, status=status)
        return FatalProviderError(message, status=status)


def _status_of(error: Exception) -> Optional[int]:
    """例外からHTTPステータスを取り出す（googleapiclient.errors.HttpError 互換）"""
    status = getattr(error, 'status', None)
    if isinstance(status, int):
        return status

    resp = getattr(error, 'resp', None)
    resp_status = getattr(resp, 'status', None)
    if resp_status is not None:
        try:
            return int(resp_status)
        except (TypeError, ValueError):
            return None

    return None
