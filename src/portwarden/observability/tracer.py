"""
OpenTelemetry tracing

Spans around generation, LLM calls and sanitization. Until
`initialize_tracing` runs, every helper here works against a no-op tracer.
"""

import functools
import logging
import time
from collections.abc import Awaitable
from contextlib import contextmanager
from typing import Any, Callable, Optional, ParamSpec, TypeVar

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Status, StatusCode

from .config import TelemetryConfig

logger = logging.getLogger(__name__)

_tracer: Optional[trace.Tracer] = None

P = ParamSpec("P")
T = TypeVar("T")


def initialize_tracing(config: TelemetryConfig) -> None:
    """Initialize OpenTelemetry tracing with the given configuration"""
    global _tracer

    if not config.enabled or not config.tracing.enabled:
        logger.info("Tracing is disabled")
        return

    resource = Resource.create(config.get_resource_attributes())
    provider = TracerProvider(
        resource=resource, sampler=TraceIdRatioBased(config.tracing.sample_rate)
    )

    if config.should_export_traces():
        exporter = OTLPSpanExporter(
            endpoint=config.tracing.otlp_endpoint,
            headers=config.tracing.otlp_headers,
            insecure=config.tracing.otlp_insecure,
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info(f"OTLP trace exporter configured for {config.tracing.otlp_endpoint}")

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(
        instrumenting_module_name="portwarden",
        instrumenting_library_version=config.tracing.service_version,
    )

    logger.info(
        f"OpenTelemetry tracing initialized (sample_rate={config.tracing.sample_rate})"
    )


def get_tracer() -> trace.Tracer:
    """Get the configured tracer, or a no-op tracer"""
    if _tracer is None:
        return trace.NoOpTracer()
    return _tracer


@contextmanager
def trace_operation(operation_name: str, attributes: Optional[dict[str, Any]] = None):
    """
    Context manager for tracing operations

    Args:
        operation_name: Name of the operation being traced
        attributes: Additional attributes to add to the span
    """
    with get_tracer().start_as_current_span(operation_name) as span:
        for key, value in (attributes or {}).items():
            span.set_attribute(key, value)

        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


def trace_async(
    operation_name: Optional[str] = None,
    attributes: Optional[dict[str, Any]] = None,
):
    """
    Decorator for tracing async functions

    Args:
        operation_name: Custom operation name (defaults to the qualified name)
        attributes: Static attributes to add to spans
    """

    def decorator(
        func: Callable[P, Awaitable[T]],
    ) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            name = operation_name or f"{func.__module__}.{func.__qualname__}"

            with trace_operation(name, attributes) as span:
                start_time = time.time()
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    span.set_attribute("error.type", type(e).__name__)
                    raise
                finally:
                    span.set_attribute(
                        "operation.duration_ms", (time.time() - start_time) * 1000
                    )

        return wrapper

    return decorator


def add_event(name: str, attributes: Optional[dict[str, Any]] = None) -> None:
    """Add an event to the current span"""
    span = trace.get_current_span()
    if span.is_recording():
        span.add_event(name, attributes or {})


def set_attribute(key: str, value: Any) -> None:
    """Set an attribute on the current span"""
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attribute(key, value)


def get_trace_id() -> str:
    span = trace.get_current_span()
    if span.is_recording():
        return format(span.get_span_context().trace_id, "032x")
    return ""


def reset_tracing() -> None:
    global _tracer
    _tracer = None
