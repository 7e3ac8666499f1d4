"""
リトライポリシー - 外部API呼び出し共通の指数バックオフ
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from .error_handler import ErrorHandler

logger = logging.getLogger(__name__)


def _default_is_retryable(error: Exception) -> bool:
    return ErrorHandler().is_retryable(error)


@dataclass
class RetryPolicy:
    """指数バックオフ付きリトライ"""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    is_retryable: Callable[[Exception], bool] = field(default=_default_is_retryable)
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_config(cls, config, **kwargs) -> "RetryPolicy":
        """RetryPolicyConfig から生成"""
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            backoff_multiplier=config.backoff_multiplier,
            **kwargs
        )

    def delay_for(self, attempt: int, error: Optional[Exception] = None) -> float:
        """attempt回目（0始まり）の待機秒数"""
        retry_after = getattr(error, 'retry_after', None)
        if retry_after:
            return min(float(retry_after), self.max_delay)
        return min(self.base_delay * (self.backoff_multiplier ** attempt), self.max_delay)

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """リトライ付きで非同期関数を実行"""
        attempt = 0
        while True:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if attempt >= self.max_retries or not self.is_retryable(e):
                    raise

                delay = self.delay_for(attempt, e)
                attempt += 1
                logger.warning(
                    f"{getattr(func, '__name__', 'call')} failed, retrying in {delay:.1f}s "
                    f"({attempt}/{self.max_retries}): {e}"
                )
                await self.sleep(delay)

