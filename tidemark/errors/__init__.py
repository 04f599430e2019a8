"""tidemark Error Handling Framework.

同期パスで発生するエラーの分類とログ記録を提供。

Example:
    >>> from tidemark.errors import (
    ...     TidemarkError, ConfigurationError, SourceCommunicationError,
    ...     ErrorHandler
    ... )
    >>>
    >>> # カスタム例外
    >>> raise SourceCommunicationError("HTTP 503", url="https://example.org/api")
"""

from __future__ import annotations

import asyncio
import logging
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

__all__ = [
    # Base exceptions
    "TidemarkError",
    "ConfigurationError",
    "MalformedRecordError",
    "SourceCommunicationError",
    "SyncCancelledError",
    "IndexStoreError",
    # Error context
    "ErrorContext",
    "ErrorSeverity",
    # Error handler
    "ErrorHandlerConfig",
    "ErrorHandler",
    "create_error_handler",
    "get_error_handler",
    "is_operational",
]


# ============================================================
# Error Severity
# ============================================================


class ErrorSeverity(str, Enum):
    """エラー重要度"""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_logging_level(self) -> int:
        """ロギングレベルに変換"""
        mapping = {
            ErrorSeverity.DEBUG: logging.DEBUG,
            ErrorSeverity.INFO: logging.INFO,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.CRITICAL: logging.CRITICAL,
        }
        return mapping[self]


# ============================================================
# Error Context
# ============================================================


@dataclass
class ErrorContext:
    """エラーコンテキスト情報

    Attributes:
        error_id: ユニークなエラーID
        timestamp: エラー発生時刻
        component: エラー発生コンポーネント
        operation: 実行中の操作
        details: 追加の詳細情報
        stack_trace: スタックトレース
    """

    error_id: str = field(default_factory=lambda: f"err_{int(time.time() * 1000)}")
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    component: str | None = None
    operation: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    stack_trace: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "error_id": self.error_id,
            "timestamp": self.timestamp.isoformat(),
            "component": self.component,
            "operation": self.operation,
            "details": self.details,
            "stack_trace": self.stack_trace,
        }


# ============================================================
# Base Exception Classes
# ============================================================


class TidemarkError(Exception):
    """tidemark基底例外クラス

    すべてのtidemark例外の基底クラス。

    Attributes:
        message: エラーメッセージ
        code: エラーコード
        severity: エラー重要度
        context: エラーコンテキスト
        cause: 原因となった例外

    Example:
        >>> raise TidemarkError(
        ...     "Operation failed",
        ...     code="ERR001",
        ...     severity=ErrorSeverity.ERROR,
        ...     space_key="DOC",
        ... )
    """

    default_code: str = "TIDEMARK_ERROR"
    default_severity: ErrorSeverity = ErrorSeverity.ERROR
    # 運用上想定内の失敗はスタックトレースなしでログ出力
    log_stack_trace: bool = True

    def __init__(
        self,
        message: str,
        code: str | None = None,
        severity: ErrorSeverity | None = None,
        cause: BaseException | None = None,
        component: str | None = None,
        operation: str | None = None,
        **details: Any,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.severity = severity or self.default_severity
        self.cause = cause

        self.context = ErrorContext(
            component=component,
            operation=operation,
            details=details,
            stack_trace=(
                "".join(traceback.format_exception(cause)) if cause else None
            ),
        )

    def __str__(self) -> str:
        parts = [f"[{self.code}] {self.message}"]
        if self.context.component:
            parts.append(f"(component: {self.context.component})")
        if self.context.operation:
            parts.append(f"(operation: {self.context.operation})")
        if self.cause:
            parts.append(f"caused by: {self.cause}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"severity={self.severity.value!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "severity": self.severity.value,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }

    def with_context(self, **kwargs: Any) -> "TidemarkError":
        """追加のコンテキストを設定"""
        self.context.details.update(kwargs)
        return self

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        message: str | None = None,
        **kwargs: Any,
    ) -> "TidemarkError":
        """既存の例外からTidemarkErrorを作成"""
        return cls(
            message=message or str(exc) or exc.__class__.__name__,
            cause=exc,
            **kwargs,
        )


# ============================================================
# Specific Exception Classes
# ============================================================


class ConfigurationError(TidemarkError):
    """設定エラー

    必須設定の欠落、不正な値、不正な呼び出し順序の場合。
    """

    default_code = "CONFIG_ERROR"
    default_severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        key: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        if key:
            self.context.details["key"] = key


class MalformedRecordError(TidemarkError):
    """不正レコードエラー

    リモートから取得したドキュメントにIDや更新日時が無い場合。
    """

    default_code = "MALFORMED_RECORD"
    default_severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        document_id: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        if document_id:
            self.context.details["document_id"] = document_id


class SourceCommunicationError(TidemarkError):
    """リモートソース通信エラー

    リモートシステムへのリクエストが失敗した場合。
    運用上の失敗なのでスタックトレースは出力しない。
    """

    default_code = "SOURCE_ERROR"
    default_severity = ErrorSeverity.ERROR
    log_stack_trace = False

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if url:
            self.context.details["url"] = url
        if status_code is not None:
            self.context.details["status_code"] = status_code


class SyncCancelledError(TidemarkError):
    """同期キャンセル

    外部からキャンセルが要求された場合。
    """

    default_code = "CANCELLED"
    default_severity = ErrorSeverity.WARNING
    log_stack_trace = False


class IndexStoreError(TidemarkError):
    """インデックスストアエラー

    バルク実行、リフレッシュ、スクロール検索に失敗した場合。
    """

    default_code = "INDEX_STORE_ERROR"
    default_severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        index_name: str | None = None,
        failed_keys: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.failed_keys = failed_keys or []
        if index_name:
            self.context.details["index_name"] = index_name
        if failed_keys:
            self.context.details["failed_keys"] = failed_keys


def is_operational(error: BaseException) -> bool:
    """スタックトレース不要な運用上の失敗か判定"""
    if isinstance(error, TidemarkError):
        return not error.log_stack_trace
    return isinstance(error, (OSError, asyncio.CancelledError))


# ============================================================
# Error Handler
# ============================================================


@dataclass
class ErrorHandlerConfig:
    """エラーハンドラ設定"""

    log_errors: bool = True
    include_stack_trace: bool = True


class ErrorHandler:
    """統合エラーハンドラ

    エラーのログ記録、変換、集約を管理。
    運用上の失敗（通信エラー、キャンセル、I/Oエラー）はスタックトレースなしで記録する。

    Example:
        >>> handler = ErrorHandler()
        >>>
        >>> try:
        ...     await indexer.run()
        ... except Exception as e:
        ...     handler.handle(e, component="sync", operation="run", reraise=False)
    """

    def __init__(
        self,
        config: ErrorHandlerConfig | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config or ErrorHandlerConfig()
        self.logger = logger or logging.getLogger("tidemark.errors")

        self._error_counts: dict[str, int] = {}
        self._recent_errors: list[TidemarkError] = []
        self._max_recent_errors = 100

    def handle(
        self,
        error: BaseException,
        component: str | None = None,
        operation: str | None = None,
        reraise: bool = True,
        **context: Any,
    ) -> TidemarkError:
        """エラーを処理

        Args:
            error: 処理するエラー
            component: コンポーネント名
            operation: 操作名
            reraise: エラーを再送出するか
            **context: 追加のコンテキスト

        Returns:
            変換されたTidemarkError

        Raises:
            TidemarkError: reraise=Trueの場合
        """
        if isinstance(error, TidemarkError):
            tidemark_error = error
            if component:
                tidemark_error.context.component = component
            if operation:
                tidemark_error.context.operation = operation
            tidemark_error.context.details.update(context)
        else:
            tidemark_error = TidemarkError.from_exception(
                error,
                component=component,
                operation=operation,
                **context,
            )
            if is_operational(error):
                tidemark_error.log_stack_trace = False

        if self.config.log_errors:
            self._log_error(tidemark_error)

        self._update_stats(tidemark_error)

        if reraise:
            raise tidemark_error

        return tidemark_error

    def _log_error(self, error: TidemarkError) -> None:
        """エラーをログ記録"""
        level = error.severity.to_logging_level()

        message = str(error)
        if (
            self.config.include_stack_trace
            and error.log_stack_trace
            and error.context.stack_trace
        ):
            message += f"\n{error.context.stack_trace}"

        self.logger.log(level, message, extra={"error": error.to_dict()})

    def _update_stats(self, error: TidemarkError) -> None:
        """統計を更新"""
        error_type = error.__class__.__name__
        self._error_counts[error_type] = self._error_counts.get(error_type, 0) + 1

        self._recent_errors.append(error)
        if len(self._recent_errors) > self._max_recent_errors:
            self._recent_errors.pop(0)

    def get_stats(self) -> dict[str, Any]:
        """エラー統計を取得"""
        return {
            "error_counts": dict(self._error_counts),
            "total_errors": sum(self._error_counts.values()),
            "recent_error_count": len(self._recent_errors),
        }

    def get_recent_errors(self, limit: int = 10) -> list[dict[str, Any]]:
        """最近のエラーを取得"""
        return [e.to_dict() for e in self._recent_errors[-limit:]]

    def clear_stats(self) -> None:
        """統計をクリア"""
        self._error_counts.clear()
        self._recent_errors.clear()


_default_handler: ErrorHandler | None = None


def create_error_handler(
    config: ErrorHandlerConfig | None = None,
    logger: logging.Logger | None = None,
) -> ErrorHandler:
    """エラーハンドラを作成"""
    global _default_handler
    _default_handler = ErrorHandler(config=config, logger=logger)
    return _default_handler


def get_error_handler() -> ErrorHandler:
    """グローバルエラーハンドラを取得"""
    global _default_handler
    if _default_handler is None:
        _default_handler = ErrorHandler()
    return _default_handler
