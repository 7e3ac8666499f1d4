"""
強化ログシステム - 構造化ログ（structlog）と標準ログの併用
同期処理の開始・終了と成否をメトリクスとして記録する
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from enum import Enum
import structlog
from collections import defaultdict


class LogLevel(Enum):
    """ログレベル定義"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class MetricsCollector:
    """同期処理メトリクス収集"""

    def __init__(self):
        self.counters = defaultdict(int)
        self.durations = defaultdict(list)
        self.start_time = datetime.now()

    def record_success(self, operation: str, duration: float):
        """成功メトリクス記録"""
        self.counters[f"{operation}_success"] += 1
        self.durations[operation].append(duration)

    def record_error(self, operation: str, error_type: str):
        """エラーメトリクス記録"""
        self.counters[f"{operation}_error_{error_type}"] += 1

    def record_event(self, event_name: str, count: int = 1):
        """イベント記録"""
        self.counters[event_name] += count

    def get_health_summary(self) -> dict:
        """健全性サマリー"""
        uptime = (datetime.now() - self.start_time).total_seconds()

        successes = sum(c for k, c in self.counters.items() if k.endswith('_success'))
        errors = sum(c for k, c in self.counters.items() if '_error_' in k)
        total = successes + errors
        success_rate = (successes / total * 100) if total > 0 else 100.0

        avg_durations = {
            operation: sum(values) / len(values)
            for operation, values in self.durations.items() if values
        }

        return {
            'uptime_seconds': uptime,
            'success_rate_percent': success_rate,
            'total_operations': total,
            'avg_durations': avg_durations,
            'counters': dict(self.counters)
        }


class EnhancedLogger:
    """強化ログシステム"""

    def __init__(self,
                 name: str = "routine_calendar_sync",
                 log_level: LogLevel = LogLevel.INFO,
                 log_file: Optional[Path] = None,
                 metrics_enabled: bool = True,
                 structured: bool = True):

        self.name = name
        self.log_level = log_level
        self.log_file = log_file
        self.structured = structured

        self.metrics = MetricsCollector() if metrics_enabled else None

        self._setup_structured_logging()
        self._setup_standard_logging()

    def _setup_structured_logging(self):
        """構造化ログの設定"""
        def add_context(logger, method_name, event_dict):
            event_dict['timestamp'] = datetime.now().isoformat()
            event_dict['system'] = self.name
            return event_dict

        structlog.configure(
            processors=[
                add_context,
                structlog.processors.add_log_level,
                structlog.processors.JSONRenderer(ensure_ascii=False, default=str),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(
                getattr(logging, self.log_level.value)
            ),
            logger_factory=structlog.WriteLoggerFactory(),
            cache_logger_on_first_use=False,
        )

        self.structured_logger = structlog.get_logger(self.name)

    def _setup_standard_logging(self):
        """標準ログの設定"""
        self.logger = logging.getLogger(self.name)
        self.logger.setLevel(getattr(logging, self.log_level.value))

        # 再設定時のハンドラー重複を防ぐ
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.log_file, encoding='utf-8')
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

    def info(self, message: str, **kwargs):
        """情報ログ"""
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        """警告ログ"""
        self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, error: Optional[Exception] = None, **kwargs):
        """エラーログ"""
        if error:
            kwargs['error_type'] = error.__class__.__name__
            kwargs['error_message'] = str(error)
        self._log(LogLevel.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        """クリティカルログ"""
        self._log(LogLevel.CRITICAL, message, **kwargs)

    def debug(self, message: str, **kwargs):
        """デバッグログ"""
        self._log(LogLevel.DEBUG, message, **kwargs)

    def _log(self, level: LogLevel, message: str, **kwargs):
        """内部ログ処理"""
        if self.metrics and level in [LogLevel.ERROR, LogLevel.CRITICAL]:
            operation = kwargs.get('operation', 'unknown')
            error_type = kwargs.get('error_type', 'unknown')
            self.metrics.record_error(operation, error_type)

        if self.structured:
            log_method = getattr(self.structured_logger, level.value.lower())
            log_method(message, **kwargs)

        std_method = getattr(self.logger, level.value.lower())
        if kwargs:
            message_with_context = f"{message} | Context: {json.dumps(kwargs, default=str, ensure_ascii=False)}"
        else:
            message_with_context = message
        std_method(message_with_context)

    def log_operation_start(self, operation: str, **context) -> dict:
        """操作開始ログ"""
        start_time = datetime.now()
        self.info(f"Operation started: {operation}",
                  operation=operation, status='started', **context)
        return {'start_time': start_time, 'operation': operation, **context}

    def log_operation_end(self, operation_context: dict, success: bool = True, **additional_context):
        """操作終了ログ"""
        start_time = operation_context.get('start_time')
        operation = operation_context.get('operation', 'unknown')
        duration = (datetime.now() - start_time).total_seconds() if start_time else 0.0

        context = {k: v for k, v in operation_context.items() if k not in ('start_time', 'operation')}
        context.update(additional_context)

        if success:
            if self.metrics:
                self.metrics.record_success(operation, duration)
            self.info(f"Operation completed: {operation} ({duration:.2f}s)",
                      operation=operation, status='success',
                      duration_seconds=duration, **context)
        else:
            context.setdefault('error_type', 'partial_failure')
            self.error(f"Operation failed: {operation} ({duration:.2f}s)",
                       operation=operation, status='failed',
                       duration_seconds=duration, **context)

    def get_health_status(self) -> dict:
        """健全性ステータス取得"""
        if not self.metrics:
            return {"status": "metrics_disabled"}

        health_summary = self.metrics.get_health_summary()

        success_rate = health_summary.get('success_rate_percent', 100.0)
        if success_rate >= 98.0:
            status = "healthy"
        elif success_rate >= 90.0:
            status = "warning"
        elif success_rate >= 70.0:
            status = "degraded"
        else:
            status = "critical"

        return {
            "overall_status": status,
            "timestamp": datetime.now().isoformat(),
            **health_summary
        }


# グローバルインスタンス
_global_logger: Optional[EnhancedLogger] = None


def get_logger(name: str = "routine_calendar_sync",
               log_level: LogLevel = LogLevel.INFO,
               log_file: Optional[Path] = None) -> EnhancedLogger:
    """グローバルロガー取得"""
    global _global_logger

    if _global_logger is None:
        _global_logger = EnhancedLogger(name, log_level, log_file)

    return _global_logger


def setup_logging(config: Optional[Dict[str, Any]] = None) -> EnhancedLogger:
    """ログ設定の初期化"""
    config = config or {}

    log_level = LogLevel(str(config.get('level', 'INFO')).upper())
    log_file_path = config.get('file_path')
    log_file = Path(log_file_path) if log_file_path else None

    global _global_logger
    _global_logger = EnhancedLogger(
        name=config.get('name', 'routine_calendar_sync'),
        log_level=log_level,
        log_file=log_file,
        metrics_enabled=config.get('metrics_enabled', True),
        structured=config.get('structured', True)
    )

    return _global_logger
