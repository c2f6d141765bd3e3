"""
Test suite for observability helpers

Tests the metrics collector, telemetry initialization switches, tracing
helpers without an SDK provider and the trace context log filter.
"""

import logging

import pytest

from portwarden.observability import (
    MetricsCollector,
    TelemetryConfig,
    get_metrics,
    initialize_observability,
    is_observability_initialized,
    shutdown_observability,
    trace_async,
    trace_operation,
)
from portwarden.observability.config import MetricsConfig, TracingConfig
from portwarden.observability.init import TraceContextFilter


@pytest.fixture
def collector():
    return MetricsCollector(TelemetryConfig(environment="test"))


class TestMetricsCollector:
    """Test MetricsCollector recording"""

    def test_records_generation_and_validation(self, collector):
        collector.record_generation_request("playbook", "ok")
        collector.record_generation_duration("playbook", 0.3)
        collector.record_validation("EDI", 83, True)

        sample = collector.registry.get_sample_value
        assert sample(
            "portwarden_generation_requests_total", {"intent": "playbook", "status": "ok"}
        ) == 1
        assert sample(
            "portwarden_validation_results_total", {"module": "EDI", "passed": "true"}
        ) == 1
        assert sample("portwarden_validation_score_bucket", {"module": "EDI", "le": "90.0"}) == 1
        assert sample("portwarden_validation_score_bucket", {"module": "EDI", "le": "80.0"}) == 0
        assert sample("portwarden_generation_duration_seconds_count", {"intent": "playbook"}) == 1

    def test_zero_tokens_not_recorded(self, collector):
        collector.record_llm_tokens("mock", "m", "default", 0)

        assert "portwarden_llm_tokens_total{" not in collector.get_metrics_text()

    def test_default_labels(self):
        config = TelemetryConfig(metrics=MetricsConfig(default_labels={"site": "sg"}))
        collector = MetricsCollector(config)

        collector.record_article_access("playbook_generation")

        assert (
            collector.registry.get_sample_value(
                "portwarden_kb_article_access_total",
                {"context": "playbook_generation", "site": "sg"},
            )
            == 1
        )

    def test_active_operation_gauge(self, collector):
        def active():
            return collector.registry.get_sample_value(
                "portwarden_active_operations", {"operation_type": "generation"}
            )

        with collector.track_active_operation("generation"):
            assert active() == 1
        assert active() == 0

    def test_collectors_do_not_share_registries(self):
        first = MetricsCollector(TelemetryConfig())
        second = MetricsCollector(TelemetryConfig())

        first.record_store_write("kb-metrics", "ok")

        assert "kb-metrics" not in second.get_metrics_text()


class TestInitialization:
    """Test initialize_observability switches"""

    def teardown_method(self):
        shutdown_observability()

    def test_disabled_by_default(self):
        initialize_observability(TelemetryConfig())

        assert is_observability_initialized()
        assert get_metrics() is None

    def test_enabled_metrics_without_tracing(self):
        config = TelemetryConfig(enabled=True, tracing=TracingConfig(enabled=False))

        initialize_observability(config)

        assert isinstance(get_metrics(), MetricsCollector)

    def test_shutdown_resets_metrics(self):
        initialize_observability(
            TelemetryConfig(enabled=True, tracing=TracingConfig(enabled=False))
        )

        shutdown_observability()

        assert get_metrics() is None
        assert not is_observability_initialized()

    def test_metrics_server_is_opt_in(self):
        config = TelemetryConfig(enabled=True)
        assert not config.should_start_metrics_server()

        config.metrics.serve = True
        assert config.should_start_metrics_server()

    def test_trace_export_needs_endpoint(self):
        config = TelemetryConfig(enabled=True)
        assert not config.should_export_traces()

        config.tracing.otlp_endpoint = "http://localhost:4317"
        assert config.should_export_traces()


class TestTracingHelpers:
    """Test tracing helpers against the no-op tracer"""

    def test_trace_operation_reraises(self):
        with pytest.raises(ValueError):
            with trace_operation("test.op", {"key": "value"}):
                raise ValueError("boom")

    @pytest.mark.asyncio
    async def test_trace_async_preserves_result(self):
        @trace_async("test.async")
        async def add(a, b):
            return a + b

        assert await add(1, 2) == 3
        assert add.__name__ == "add"

    def test_header_parsing(self):
        assert TracingConfig._parse_headers("api-key=abc, tenant = x ,bad") == {
            "api-key": "abc",
            "tenant": "x",
        }


def test_trace_context_filter_without_span():
    record = logging.LogRecord("portwarden", logging.INFO, __file__, 1, "msg", None, None)

    assert TraceContextFilter().filter(record) is True
    assert record.trace_id == ""
    assert record.span_id == ""
