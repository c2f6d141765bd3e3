"""
Observability initialization

One entry point that wires tracing, metrics and structured logging from a
TelemetryConfig.
"""

import logging
import logging.config
from typing import Optional

from opentelemetry import trace

from .config import TelemetryConfig
from .metrics import initialize_metrics, reset_metrics
from .tracer import initialize_tracing, reset_tracing

logger = logging.getLogger(__name__)

_initialized = False
_config: Optional[TelemetryConfig] = None


class TraceContextFilter(logging.Filter):
    """Adds trace_id/span_id of the current span to every log record"""

    def filter(self, record: logging.LogRecord) -> bool:
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")
            record.span_id = format(span_context.span_id, "016x")
        else:
            record.trace_id = ""
            record.span_id = ""
        return True


def configure_logging(config: TelemetryConfig) -> None:
    """Configure stderr logging, JSON formatted by default"""
    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"trace_context": {"()": TraceContextFilter}},
        "formatters": {
            "json": {
                "class": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s %(trace_id)s %(span_id)s",
            },
            "text": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": config.logging.level,
                "formatter": config.logging.format,
                "filters": ["trace_context"] if config.logging.include_trace_id else [],
                "stream": "ext://sys.stderr",
            }
        },
        "root": {"level": config.logging.level, "handlers": ["console"]},
        "loggers": {"portwarden": {"level": config.logging.level, "propagate": True}},
    }

    logging.config.dictConfig(log_config)


def initialize_observability(config: TelemetryConfig) -> None:
    """
    Initialize all observability features

    Safe to call more than once; later calls are ignored until
    `shutdown_observability` runs.
    """
    global _initialized, _config

    if _initialized:
        logger.warning("Observability already initialized, skipping")
        return

    _config = config

    if config.logging.enabled:
        configure_logging(config)

    if not config.enabled:
        logger.debug("Telemetry is disabled")
        _initialized = True
        return

    logger.info(f"Initializing observability for environment: {config.environment}")

    if config.tracing.enabled:
        initialize_tracing(config)

    if config.metrics.enabled:
        initialize_metrics(config)

    _initialized = True


def get_observability_config() -> Optional[TelemetryConfig]:
    return _config


def is_observability_initialized() -> bool:
    return _initialized


def shutdown_observability() -> None:
    """Flush pending spans and forget the global tracer and metrics"""
    global _initialized, _config

    if not _initialized:
        return

    from opentelemetry.sdk.trace import TracerProvider

    provider = trace.get_tracer_provider()
    if isinstance(provider, TracerProvider):
        provider.shutdown()

    reset_tracing()
    reset_metrics()
    _initialized = False
    _config = None
    logger.info("Observability shutdown complete")
