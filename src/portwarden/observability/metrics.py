"""
Prometheus metrics collection for portwarden

Counters and histograms for generation requests, sanitizer outcomes,
validation scores, LLM usage and state-store writes.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    start_http_server,
)

from .config import TelemetryConfig

logger = logging.getLogger(__name__)

SCORE_BUCKETS = [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]


@dataclass
class MetricsCollector:
    """
    Central metrics collector for portwarden operations

    Every collector owns its registry, so several collectors (one per test,
    for instance) never collide on metric names.
    """

    config: TelemetryConfig
    registry: CollectorRegistry = field(default_factory=CollectorRegistry)

    # Generation pipeline
    generation_requests_total: Counter = field(init=False)
    generation_duration: Histogram = field(init=False)
    sanitize_failures_total: Counter = field(init=False)

    # Validation
    validation_score: Histogram = field(init=False)
    validation_results_total: Counter = field(init=False)

    # LLM
    llm_requests_total: Counter = field(init=False)
    llm_duration: Histogram = field(init=False)
    llm_tokens_total: Counter = field(init=False)
    llm_errors_total: Counter = field(init=False)

    # Knowledge base usage and persistence
    kb_article_access_total: Counter = field(init=False)
    store_writes_total: Counter = field(init=False)

    active_operations: Gauge = field(init=False)
    system_info: Info = field(init=False)

    def __post_init__(self):
        self._initialize_metrics()

        if self.config.should_start_metrics_server():
            self._start_metrics_server()

    def _initialize_metrics(self):
        labels = list(self.config.metrics.default_labels.keys())
        buckets = self.config.metrics.duration_buckets

        self.generation_requests_total = Counter(
            "portwarden_generation_requests_total",
            "Total number of generation requests",
            labelnames=["intent", "status"] + labels,
            registry=self.registry,
        )

        self.generation_duration = Histogram(
            "portwarden_generation_duration_seconds",
            "Duration of generation requests",
            labelnames=["intent"] + labels,
            buckets=buckets,
            registry=self.registry,
        )

        self.sanitize_failures_total = Counter(
            "portwarden_sanitize_failures_total",
            "Total number of rejected LLM outputs",
            labelnames=["intent", "reason"] + labels,
            registry=self.registry,
        )

        self.validation_score = Histogram(
            "portwarden_validation_score",
            "Overall validation score of AI responses",
            labelnames=["module"] + labels,
            buckets=SCORE_BUCKETS,
            registry=self.registry,
        )

        self.validation_results_total = Counter(
            "portwarden_validation_results_total",
            "Total number of scored AI responses",
            labelnames=["module", "passed"] + labels,
            registry=self.registry,
        )

        self.llm_requests_total = Counter(
            "portwarden_llm_requests_total",
            "Total number of LLM requests",
            labelnames=["provider", "model", "router", "template_type"] + labels,
            registry=self.registry,
        )

        self.llm_duration = Histogram(
            "portwarden_llm_duration_seconds",
            "Duration of LLM requests",
            labelnames=["provider", "model", "router"] + labels,
            buckets=buckets,
            registry=self.registry,
        )

        self.llm_tokens_total = Counter(
            "portwarden_llm_tokens_total",
            "Total number of LLM tokens used",
            labelnames=["provider", "model", "router"] + labels,
            registry=self.registry,
        )

        self.llm_errors_total = Counter(
            "portwarden_llm_errors_total",
            "Total number of LLM errors",
            labelnames=["provider", "model", "router", "error_type"] + labels,
            registry=self.registry,
        )

        self.kb_article_access_total = Counter(
            "portwarden_kb_article_access_total",
            "Total number of knowledge base article accesses",
            labelnames=["context"] + labels,
            registry=self.registry,
        )

        self.store_writes_total = Counter(
            "portwarden_store_writes_total",
            "Total number of state store writes",
            labelnames=["store", "status"] + labels,
            registry=self.registry,
        )

        self.active_operations = Gauge(
            "portwarden_active_operations",
            "Number of currently active operations",
            labelnames=["operation_type"] + labels,
            registry=self.registry,
        )

        self.system_info = Info("portwarden_system", "System information", registry=self.registry)
        self.system_info.info(
            {
                "version": self.config.tracing.service_version,
                "environment": self.config.environment,
            }
        )

        logger.info("Prometheus metrics initialized")

    def _start_metrics_server(self):
        try:
            start_http_server(port=self.config.metrics.port, registry=self.registry)
            logger.info(f"Metrics server started on port {self.config.metrics.port}")
        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")

    def _labels(self, **labels: str) -> dict[str, str]:
        return {**self.config.metrics.default_labels, **labels}

    @contextmanager
    def time_operation(self, metric: Histogram, labels: dict[str, str]):
        """Context manager to time operations"""
        start_time = time.time()
        try:
            yield
        finally:
            metric.labels(**self._labels(**labels)).observe(time.time() - start_time)

    @contextmanager
    def track_active_operation(self, operation_type: str):
        """Context manager to track active operations"""
        labels = self._labels(operation_type=operation_type)
        self.active_operations.labels(**labels).inc()
        try:
            yield
        finally:
            self.active_operations.labels(**labels).dec()

    def record_generation_request(self, intent: str, status: str):
        self.generation_requests_total.labels(**self._labels(intent=intent, status=status)).inc()

    def record_generation_duration(self, intent: str, seconds: float):
        self.generation_duration.labels(**self._labels(intent=intent)).observe(seconds)

    def record_sanitize_failure(self, intent: str, reason: str):
        self.sanitize_failures_total.labels(**self._labels(intent=intent, reason=reason)).inc()

    def record_validation(self, module: str, score: int, passed: bool):
        self.validation_score.labels(**self._labels(module=module)).observe(score)
        self.validation_results_total.labels(
            **self._labels(module=module, passed=str(passed).lower())
        ).inc()

    def record_llm_request(
        self, provider: str, model: str, router: str, template_type: str = ""
    ):
        self.llm_requests_total.labels(
            **self._labels(
                provider=provider, model=model, router=router, template_type=template_type
            )
        ).inc()

    def record_llm_tokens(self, provider: str, model: str, router: str, tokens: int):
        if tokens > 0:
            self.llm_tokens_total.labels(
                **self._labels(provider=provider, model=model, router=router)
            ).inc(tokens)

    def record_llm_error(self, provider: str, model: str, router: str, error_type: str):
        self.llm_errors_total.labels(
            **self._labels(provider=provider, model=model, router=router, error_type=error_type)
        ).inc()

    def record_article_access(self, context: str):
        self.kb_article_access_total.labels(**self._labels(context=context)).inc()

    def record_store_write(self, store: str, status: str):
        self.store_writes_total.labels(**self._labels(store=store, status=status)).inc()

    def get_metrics_text(self) -> str:
        """Get metrics in Prometheus text format"""
        return generate_latest(self.registry).decode("utf-8")


_metrics: Optional[MetricsCollector] = None


def initialize_metrics(config: TelemetryConfig) -> MetricsCollector:
    """Initialize the global metrics collector"""
    global _metrics
    _metrics = MetricsCollector(config)
    return _metrics


def get_metrics() -> Optional[MetricsCollector]:
    """Get the global metrics collector, or None when metrics are off"""
    return _metrics


def reset_metrics() -> None:
    global _metrics
    _metrics = None
