"""
データ取得層 - ルーティン参照・エラー分類・リトライポリシー
"""

from .error_handler import ErrorHandler, ErrorType
from .retry_policy import RetryPolicy
from .routine_provider import RoutineProvider, InMemoryRoutineProvider, YamlRoutineProvider

__all__ = [
    'ErrorHandler', 'ErrorType',
    'RetryPolicy',
    'RoutineProvider', 'InMemoryRoutineProvider', 'YamlRoutineProvider'
]
