# Observability Unit Tests
"""
トレーシング、メトリクス、ロギング設定のテスト
"""

import logging

import pytest

from tidemark.observability import (
    InMemoryExporter,
    LogLevel,
    MetricsCollector,
    MetricType,
    Observability,
    ObservabilityConfig,
    SpanStatus,
    Tracer,
    configure_observability,
    get_observability,
    setup_logging,
)


class TestTracer:
    """Tracer のテスト"""

    def test_span_lifecycle(self):
        exporter = InMemoryExporter()
        tracer = Tracer(exporter=exporter)

        with tracer.start_span("sync.pass", {"space_key": "DOC"}) as span:
            assert tracer.current_span is span
        tracer.flush()

        assert exporter.span_names() == ["sync.pass"]
        exported = exporter.spans[0]
        assert exported.status == SpanStatus.OK
        assert exported.attributes["space_key"] == "DOC"
        assert exported.attributes["service.name"] == "tidemark"
        assert exported.is_finished
        assert tracer.current_span is None

    def test_nested_spans_share_trace(self):
        exporter = InMemoryExporter()
        tracer = Tracer(exporter=exporter)

        with tracer.start_span("sync.pass") as parent:
            with tracer.start_span("sync.update") as child:
                pass
            assert tracer.current_span is parent
        tracer.flush()

        assert child.context.trace_id == parent.context.trace_id
        assert child.context.parent_span_id == parent.context.span_id
        assert exporter.span_names() == ["sync.update", "sync.pass"]

    def test_error_recorded(self):
        exporter = InMemoryExporter()
        tracer = Tracer(exporter=exporter)

        with pytest.raises(RuntimeError):
            with tracer.start_span("sync.pass"):
                raise RuntimeError("boom")
        tracer.flush()

        assert exporter.spans[0].status == SpanStatus.ERROR
        assert exporter.spans[0].error == "boom"

    def test_tracing_disabled(self):
        exporter = InMemoryExporter()
        tracer = Tracer(exporter=exporter, config=ObservabilityConfig(tracing_enabled=False))

        with tracer.start_span("sync.pass"):
            pass
        tracer.flush()

        assert exporter.spans == []

    def test_batch_export(self):
        exporter = InMemoryExporter()
        tracer = Tracer(exporter=exporter, config=ObservabilityConfig(batch_size=2))

        for _ in range(2):
            with tracer.start_span("sync.update"):
                pass

        assert len(exporter.spans) == 2


class TestMetricsCollector:
    """MetricsCollector のテスト"""

    def test_counters(self):
        exporter = InMemoryExporter()
        metrics = MetricsCollector(exporter=exporter)

        metrics.increment("sync.documents_updated", 3)
        metrics.increment("sync.documents_updated")
        metrics.increment("sync.documents_deleted", 0, tags={"space_key": "DOC"})
        metrics.flush()

        assert metrics.get_counter("sync.documents_updated") == 4
        assert metrics.get_counter("sync.documents_deleted") == 0
        assert [m.name for m in exporter.metrics] == [
            "tidemark.sync.documents_updated",
            "tidemark.sync.documents_updated",
            "tidemark.sync.documents_deleted",
        ]
        assert exporter.metrics[2].tags == {"space_key": "DOC"}

    def test_timer(self):
        exporter = InMemoryExporter()
        metrics = MetricsCollector(exporter=exporter)

        metrics.timer("sync.pass_duration_ms", 1500.5)
        metrics.flush()

        timer = exporter.metrics[0]
        assert timer.metric_type == MetricType.TIMER
        assert timer.unit == "ms"
        assert timer.value == 1500.5

    def test_metrics_disabled(self):
        exporter = InMemoryExporter()
        metrics = MetricsCollector(
            exporter=exporter, config=ObservabilityConfig(metrics_enabled=False)
        )

        metrics.increment("sync.documents_updated")
        metrics.flush()

        assert metrics.get_counter("sync.documents_updated") == 0.0
        assert exporter.metrics == []


class TestObservability:
    """Observability 統合クラスのテスト"""

    def test_create_from_dict(self):
        obs = Observability.create({"log_level": "DEBUG", "metrics_enabled": False})

        assert obs.config.log_level == LogLevel.DEBUG
        assert obs.config.metrics_enabled is False

    def test_create_for_testing(self):
        obs, exporter = Observability.create_for_testing()

        with obs.tracer.start_span("sync.pass"):
            obs.metrics.increment("sync.passes")
        obs.flush()

        assert exporter.span_names() == ["sync.pass"]
        assert obs.get_status()["metrics"]["counters"] == {"tidemark.sync.passes": 1}

    def test_configure_global(self):
        package_logger = logging.getLogger("tidemark")
        try:
            obs = configure_observability({"log_level": "warning", "log_to_console": False})

            assert get_observability() is obs
            assert package_logger.level == logging.WARNING
        finally:
            package_logger.setLevel(logging.NOTSET)


class TestSetupLogging:
    """setup_logging のテスト"""

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "tidemark.log"
        config = ObservabilityConfig(log_to_console=False, log_to_file=str(log_file))

        logger = setup_logging(config, name="tidemark.test_file_handler")
        logger.info("pass finished")
        for handler in logger.handlers:
            handler.flush()

        assert "pass finished" in log_file.read_text()
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
