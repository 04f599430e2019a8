# tidemark Observability Module
"""
tidemark.observability - ロギング、トレーシング、メトリクス

同期パスごとのスパンとカウンタを収集する軽量なObservabilityフレームワーク。
ローカル実行ではコンソール出力、テストではインメモリに保存する。
"""

from __future__ import annotations

import logging
import sys
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generator

__all__ = [
    "LogLevel",
    "MetricType",
    "SpanStatus",
    "SpanContext",
    "Span",
    "MetricValue",
    "ObservabilityConfig",
    "TelemetryExporterProtocol",
    "ConsoleExporter",
    "InMemoryExporter",
    "Tracer",
    "MetricsCollector",
    "Observability",
    "setup_logging",
    "configure_observability",
    "get_observability",
]


# ============================================================
# Enums
# ============================================================


class LogLevel(Enum):
    """ログレベル"""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_logging_level(self) -> int:
        """Python logging レベルに変換"""
        mapping = {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARNING: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
            LogLevel.CRITICAL: logging.CRITICAL,
        }
        return mapping[self]


class MetricType(Enum):
    """メトリクスタイプ"""

    COUNTER = "counter"         # 累積カウンタ
    TIMER = "timer"             # 時間計測


class SpanStatus(Enum):
    """スパンステータス"""

    OK = "ok"
    ERROR = "error"
    UNSET = "unset"


# ============================================================
# Data Classes
# ============================================================


@dataclass
class SpanContext:
    """スパンコンテキスト（トレーシング用）"""

    trace_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    span_id: str = field(default_factory=lambda: str(uuid.uuid4())[:16])
    parent_span_id: str | None = None

    def child(self) -> "SpanContext":
        """子スパンコンテキストを生成"""
        return SpanContext(
            trace_id=self.trace_id,
            parent_span_id=self.span_id,
        )


@dataclass
class Span:
    """トレーシングスパン"""

    name: str
    context: SpanContext
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None
    status: SpanStatus = SpanStatus.UNSET
    attributes: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def duration_ms(self) -> float:
        """スパンの持続時間(ms)"""
        end = self.end_time or time.time()
        return (end - self.start_time) * 1000

    @property
    def is_finished(self) -> bool:
        return self.end_time is not None

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def set_status(self, status: SpanStatus, error: str | None = None) -> None:
        self.status = status
        if error:
            self.error = error

    def finish(self, status: SpanStatus | None = None) -> None:
        """スパンを終了"""
        self.end_time = time.time()
        if status:
            self.status = status
        elif self.status == SpanStatus.UNSET:
            self.status = SpanStatus.OK

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "name": self.name,
            "trace_id": self.context.trace_id,
            "span_id": self.context.span_id,
            "parent_span_id": self.context.parent_span_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "status": self.status.value,
            "attributes": self.attributes,
            "error": self.error,
        }


@dataclass
class MetricValue:
    """メトリクス値"""

    name: str
    value: float
    metric_type: MetricType
    timestamp: float = field(default_factory=time.time)
    tags: dict[str, str] = field(default_factory=dict)
    unit: str = ""

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "name": self.name,
            "value": self.value,
            "type": self.metric_type.value,
            "timestamp": self.timestamp,
            "tags": self.tags,
            "unit": self.unit,
        }


@dataclass
class ObservabilityConfig:
    """Observability設定"""

    # ログ設定
    log_level: LogLevel = LogLevel.INFO
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_to_console: bool = True
    log_to_file: str | None = None

    # メトリクス設定
    metrics_enabled: bool = True
    metrics_prefix: str = "tidemark"

    # トレーシング設定
    tracing_enabled: bool = True

    # エクスポート設定
    batch_size: int = 100

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "log_level": self.log_level.value,
            "log_to_console": self.log_to_console,
            "log_to_file": self.log_to_file,
            "metrics_enabled": self.metrics_enabled,
            "metrics_prefix": self.metrics_prefix,
            "tracing_enabled": self.tracing_enabled,
        }


# ============================================================
# Exporter Protocol
# ============================================================


class TelemetryExporterProtocol(ABC):
    """テレメトリエクスポーターのプロトコル"""

    @abstractmethod
    def export_spans(self, spans: list[Span]) -> None:
        ...

    @abstractmethod
    def export_metrics(self, metrics: list[MetricValue]) -> None:
        ...

    @abstractmethod
    def flush(self) -> None:
        ...


class ConsoleExporter(TelemetryExporterProtocol):
    """コンソールエクスポーター（開発用）"""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def export_spans(self, spans: list[Span]) -> None:
        """スパンをコンソールに出力"""
        if not self.verbose:
            return
        for span in spans:
            status_icon = "✅" if span.status == SpanStatus.OK else "❌"
            print(f"[SPAN] {status_icon} {span.name} ({span.duration_ms:.2f}ms)")

    def export_metrics(self, metrics: list[MetricValue]) -> None:
        """メトリクスをコンソールに出力"""
        if not self.verbose:
            return
        for metric in metrics:
            tags = " ".join(f"{k}={v}" for k, v in metric.tags.items())
            print(f"[METRIC] {metric.name}={metric.value} {tags}")

    def flush(self) -> None:
        pass


class InMemoryExporter(TelemetryExporterProtocol):
    """インメモリエクスポーター（テスト用）"""

    def __init__(self):
        self.spans: list[Span] = []
        self.metrics: list[MetricValue] = []

    def export_spans(self, spans: list[Span]) -> None:
        self.spans.extend(spans)

    def export_metrics(self, metrics: list[MetricValue]) -> None:
        self.metrics.extend(metrics)

    def flush(self) -> None:
        pass

    def span_names(self) -> list[str]:
        """エクスポート済みスパン名の一覧"""
        return [span.name for span in self.spans]

    def clear(self) -> None:
        """データをクリア"""
        self.spans.clear()
        self.metrics.clear()


# ============================================================
# Tracer
# ============================================================


class Tracer:
    """トレーサー

    同期パス単位のスパン管理。

    Example:
        tracer = Tracer()

        with tracer.start_span("sync.pass") as span:
            span.set_attribute("space_key", space_key)
            # do sync...
    """

    def __init__(
        self,
        service_name: str = "tidemark",
        exporter: TelemetryExporterProtocol | None = None,
        config: ObservabilityConfig | None = None,
    ):
        self.service_name = service_name
        self.exporter = exporter or ConsoleExporter()
        self.config = config or ObservabilityConfig()

        self._current_span: Span | None = None
        self._span_stack: list[Span] = []
        self._pending_spans: list[Span] = []

    @property
    def current_span(self) -> Span | None:
        """現在のスパン"""
        return self._current_span

    @contextmanager
    def start_span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[Span, None, None]:
        """スパンを開始（コンテキストマネージャ）

        Args:
            name: スパン名
            attributes: 初期属性

        Yields:
            Span
        """
        if not self.config.tracing_enabled:
            yield Span(name=name, context=SpanContext())
            return

        if self._current_span:
            context = self._current_span.context.child()
        else:
            context = SpanContext()

        span = Span(name=name, context=context)
        span.set_attribute("service.name", self.service_name)
        for k, v in (attributes or {}).items():
            span.set_attribute(k, v)

        if self._current_span:
            self._span_stack.append(self._current_span)
        self._current_span = span

        try:
            yield span
            span.finish(SpanStatus.OK)
        except BaseException as e:
            # キャンセルもエラーとして記録
            span.set_status(SpanStatus.ERROR, str(e) or e.__class__.__name__)
            span.finish()
            raise
        finally:
            self._pending_spans.append(span)
            self._current_span = self._span_stack.pop() if self._span_stack else None

            if len(self._pending_spans) >= self.config.batch_size:
                self._export_spans()

    def _export_spans(self) -> None:
        """保留中のスパンをエクスポート"""
        if self._pending_spans:
            self.exporter.export_spans(self._pending_spans)
            self._pending_spans.clear()

    def flush(self) -> None:
        """すべての保留中スパンをエクスポート"""
        self._export_spans()
        self.exporter.flush()


# ============================================================
# Metrics
# ============================================================


class MetricsCollector:
    """メトリクスコレクター

    Example:
        metrics = MetricsCollector()

        metrics.increment("sync.documents_updated", 10, tags={"space_key": "DOC"})
        metrics.timer("sync.pass_duration_ms", 1500.5)
    """

    def __init__(
        self,
        exporter: TelemetryExporterProtocol | None = None,
        config: ObservabilityConfig | None = None,
    ):
        self.exporter = exporter or ConsoleExporter()
        self.config = config or ObservabilityConfig()

        self._counters: dict[str, float] = {}
        self._pending_metrics: list[MetricValue] = []

    def _metric_name(self, name: str) -> str:
        """プレフィックス付きメトリクス名"""
        return f"{self.config.metrics_prefix}.{name}"

    def _record(
        self,
        name: str,
        value: float,
        metric_type: MetricType,
        tags: dict[str, str] | None,
        unit: str = "",
    ) -> None:
        self._pending_metrics.append(
            MetricValue(
                name=name,
                value=value,
                metric_type=metric_type,
                tags=tags or {},
                unit=unit,
            )
        )

    def increment(
        self,
        name: str,
        value: float = 1.0,
        tags: dict[str, str] | None = None,
    ) -> None:
        """カウンタをインクリメント"""
        if not self.config.metrics_enabled:
            return

        full_name = self._metric_name(name)
        self._counters[full_name] = self._counters.get(full_name, 0) + value
        self._record(full_name, value, MetricType.COUNTER, tags)

    def timer(
        self,
        name: str,
        value_ms: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """タイマー値を記録"""
        if not self.config.metrics_enabled:
            return

        self._record(self._metric_name(name), value_ms, MetricType.TIMER, tags, "ms")

    def get_counter(self, name: str) -> float:
        """カウンタ値を取得"""
        return self._counters.get(self._metric_name(name), 0.0)

    def flush(self) -> None:
        """保留中のメトリクスをエクスポート"""
        if self._pending_metrics:
            self.exporter.export_metrics(self._pending_metrics)
            self._pending_metrics.clear()
        self.exporter.flush()

    def get_status(self) -> dict[str, Any]:
        """現在の状態を取得"""
        return {
            "counters": dict(self._counters),
        }


# ============================================================
# Logging setup
# ============================================================


def setup_logging(
    config: ObservabilityConfig | None = None,
    name: str = "tidemark",
) -> logging.Logger:
    """Python標準ロガーをセットアップ

    ハンドラが未設定の場合のみ追加する。
    """
    config = config or ObservabilityConfig()
    python_logger = logging.getLogger(name)
    python_logger.setLevel(config.log_level.to_logging_level())

    if not python_logger.handlers:
        if config.log_to_console:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(config.log_format))
            python_logger.addHandler(handler)

        if config.log_to_file:
            file_handler = logging.FileHandler(config.log_to_file)
            file_handler.setFormatter(logging.Formatter(config.log_format))
            python_logger.addHandler(file_handler)

    return python_logger


# ============================================================
# Observability Manager (統合クラス)
# ============================================================


class Observability:
    """Observability統合マネージャー

    トレーサーとメトリクスを統合管理。

    Example:
        obs = Observability.create()

        with obs.tracer.start_span("sync.pass") as span:
            span.set_attribute("space_key", "DOC")
            obs.metrics.increment("sync.documents_updated")

        obs.flush()
    """

    def __init__(
        self,
        config: ObservabilityConfig | None = None,
        exporter: TelemetryExporterProtocol | None = None,
    ):
        self.config = config or ObservabilityConfig()
        self.exporter = exporter or ConsoleExporter()

        self.tracer = Tracer(exporter=self.exporter, config=self.config)
        self.metrics = MetricsCollector(exporter=self.exporter, config=self.config)

    @classmethod
    def create(
        cls,
        config: ObservabilityConfig | dict[str, Any] | None = None,
        exporter: TelemetryExporterProtocol | None = None,
    ) -> "Observability":
        """Observabilityインスタンスを作成"""
        if isinstance(config, dict):
            config = dict(config)
            if "log_level" in config and isinstance(config["log_level"], str):
                config["log_level"] = LogLevel(config["log_level"].lower())
            config = ObservabilityConfig(**config)

        return cls(config=config, exporter=exporter)

    @classmethod
    def create_for_testing(cls) -> tuple["Observability", InMemoryExporter]:
        """テスト用Observabilityを作成"""
        exporter = InMemoryExporter()
        obs = cls(exporter=exporter)
        return obs, exporter

    def flush(self) -> None:
        """すべてのテレメトリをフラッシュ"""
        self.tracer.flush()
        self.metrics.flush()

    def get_status(self) -> dict[str, Any]:
        """ステータスを取得"""
        return {
            "config": self.config.to_dict(),
            "metrics": self.metrics.get_status(),
        }


# ============================================================
# Global Instance
# ============================================================

_default_observability: Observability | None = None


def get_observability() -> Observability:
    """デフォルトのObservabilityインスタンスを取得"""
    global _default_observability
    if _default_observability is None:
        _default_observability = Observability.create()
    return _default_observability


def configure_observability(
    config: ObservabilityConfig | dict[str, Any] | None = None,
    exporter: TelemetryExporterProtocol | None = None,
) -> Observability:
    """グローバルObservabilityを設定し、ロギングをセットアップ"""
    global _default_observability
    _default_observability = Observability.create(config, exporter)
    setup_logging(_default_observability.config)
    return _default_observability
