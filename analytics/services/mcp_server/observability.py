"""
Observability configuration for MCP Server

This module configures OpenTelemetry tracing, metrics, and structured logging
for the Nth-Order Retention Analytics MCP server.

Development: console exporters.
Production: OTLP export to Jaeger/Zipkin/cloud providers when an endpoint is set.
"""

import os
import sys
import time
from contextlib import contextmanager

import structlog
from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.trace.sampling import (
    ParentBasedTraceIdRatio,
    TraceIdRatioBased,
)

from analytics.services.mcp_server.instance import VERSION

logger = structlog.get_logger(__name__)

_meter = metrics.get_meter("mcp-nth-order-retention")

TOOL_CALLS = _meter.create_counter(
    "retention_tool_calls",
    unit="1",
    description="MCP tool invocations by tool and outcome",
)
TOOL_DURATION = _meter.create_histogram(
    "retention_tool_duration",
    unit="ms",
    description="MCP tool latency by tool and outcome",
)


def configure_observability(
    service_name: str = "mcp-nth-order-retention",
    environment: str = "development",
    otlp_endpoint: str | None = None,
    sampling_rate: float = 1.0,
):
    """
    Configure OpenTelemetry tracing and metrics.

    Args:
        service_name: Name of the service for telemetry identification
        environment: Deployment environment (development, staging, production)
        otlp_endpoint: OTLP gRPC endpoint (e.g., 'localhost:4317' for Jaeger).
                      If None, uses environment variable OTLP_ENDPOINT or defaults to console
        sampling_rate: Trace sampling rate (0.0-1.0). Default 1.0 = sample all traces.

    Returns:
        Tuple of (tracer, meter) for creating spans and metrics
    """
    otlp_endpoint = otlp_endpoint or os.getenv("OTLP_ENDPOINT")
    use_otlp = otlp_endpoint is not None

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": VERSION,
            "deployment.environment": environment,
        }
    )

    trace_provider = TracerProvider(
        resource=resource, sampler=_create_sampler(sampling_rate)
    )

    if use_otlp:
        logger.info(
            "configuring_otlp_telemetry",
            endpoint=otlp_endpoint,
            environment=environment,
            sampling_rate=sampling_rate,
        )
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
            OTLPMetricExporter,
        )
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        # Use insecure connection for localhost (no TLS)
        trace_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        metric_reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True),
            export_interval_millis=60000,
        )
    else:
        logger.info("configuring_console_telemetry", environment=environment)
        span_exporter, metric_exporter = _create_console_exporters()
        trace_provider.add_span_processor(BatchSpanProcessor(span_exporter))
        metric_reader = PeriodicExportingMetricReader(
            metric_exporter, export_interval_millis=5000
        )

    trace.set_tracer_provider(trace_provider)
    metrics.set_meter_provider(
        MeterProvider(resource=resource, metric_readers=[metric_reader])
    )

    # Write logs to stderr to avoid interfering with MCP JSON on stdout
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
    )

    tracer = trace.get_tracer(service_name)
    meter = metrics.get_meter(service_name)

    logger.info(
        "observability_configured",
        service_name=service_name,
        environment=environment,
        otlp_enabled=use_otlp,
        sampling_rate=sampling_rate,
    )

    return tracer, meter


def _create_console_exporters():
    """Console exporters bound to stderr; stdout carries the MCP protocol."""
    return (
        ConsoleSpanExporter(out=sys.stderr),
        ConsoleMetricExporter(out=sys.stderr),
    )


@contextmanager
def track_tool_call(tool_name: str):
    """Record one tool invocation in the call counter and latency histogram."""
    start = time.perf_counter()
    status = "error"
    try:
        yield
        status = "success"
    finally:
        attributes = {"tool": tool_name, "status": status}
        TOOL_CALLS.add(1, attributes)
        TOOL_DURATION.record((time.perf_counter() - start) * 1000, attributes)


def _create_sampler(sampling_rate: float):
    """Create a trace sampler based on sampling rate."""
    if sampling_rate >= 1.0:
        return ParentBasedTraceIdRatio(1.0)
    elif sampling_rate <= 0.0:
        return TraceIdRatioBased(0.0)
    else:
        return ParentBasedTraceIdRatio(sampling_rate)
