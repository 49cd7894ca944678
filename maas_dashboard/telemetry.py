"""
OpenTelemetry configuration for the MaaS gateway dashboard.

Provides tracing and a handful of dashboard counters. When the OpenTelemetry
packages are missing every helper here turns into a no-op.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

# Check if OpenTelemetry is available
OTEL_AVAILABLE = False
tracer = None
meter = None

try:
    from opentelemetry import trace, metrics
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    from opentelemetry.instrumentation.requests import RequestsInstrumentor
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader, ConsoleMetricExporter
    from opentelemetry.sdk.resources import Resource, SERVICE_NAME
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

    OTEL_AVAILABLE = True
except ImportError:
    pass


def setup_telemetry(
    service_name: str = "maas-dashboard",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
) -> bool:
    """
    Set up OpenTelemetry tracing and metrics.

    Args:
        service_name: Name of the service for telemetry
        otlp_endpoint: Optional OTLP endpoint (e.g., "localhost:4317")
        console_export: Whether to export to console

    Returns:
        True if setup succeeded, False otherwise
    """
    global tracer, meter

    if not OTEL_AVAILABLE:
        logger.info("OpenTelemetry not installed; telemetry disabled")
        return False

    resource = Resource.create({
        SERVICE_NAME: service_name,
        "service.version": "0.1.0",
        "deployment.environment": os.getenv("ENVIRONMENT", "development"),
    })

    trace_provider = TracerProvider(resource=resource)

    if console_export:
        trace_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    if otlp_endpoint:
        try:
            otlp_exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
            trace_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        except Exception as e:
            logger.warning("Failed to set up OTLP trace exporter: %s", e)

    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer(__name__)

    metric_readers = []

    if console_export:
        metric_readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=60000,
        ))

    if otlp_endpoint:
        try:
            otlp_metric_exporter = OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True)
            metric_readers.append(PeriodicExportingMetricReader(otlp_metric_exporter))
        except Exception as e:
            logger.warning("Failed to set up OTLP metric exporter: %s", e)

    if metric_readers:
        metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))
        meter = metrics.get_meter(__name__)

    try:
        HTTPXClientInstrumentor().instrument()
    except Exception:
        logger.debug("httpx already instrumented")

    try:
        RequestsInstrumentor().instrument()
    except Exception:
        logger.debug("requests already instrumented")

    return True


def instrument_app(app, excluded_urls: str = "health,docs,openapi.json") -> bool:
    """Trace incoming FastAPI requests."""
    if not OTEL_AVAILABLE:
        return False
    FastAPIInstrumentor.instrument_app(app, excluded_urls=excluded_urls)
    return True


def get_tracer():
    """Get the configured tracer."""
    global tracer
    if tracer is None and OTEL_AVAILABLE:
        tracer = trace.get_tracer(__name__)
    return tracer


def get_meter():
    """Get the configured meter."""
    global meter
    if meter is None and OTEL_AVAILABLE:
        meter = metrics.get_meter(__name__)
    return meter


def create_span(name: str, attributes: Optional[dict] = None):
    """
    Context manager to create a span.

    Usage:
        with create_span("fetch_prometheus", {"query": query}):
            ...
    """
    t = get_tracer()
    if t:
        return t.start_as_current_span(name, attributes=attributes)
    from contextlib import nullcontext
    return nullcontext()


class DashboardMetrics:
    """Counters describing the dashboard's own behaviour."""

    def __init__(self):
        self._meter = get_meter()
        self._counters = {}

        if self._meter:
            self._counters["dashboard_builds"] = self._meter.create_counter(
                "maas_dashboard_builds",
                description="Dashboard summaries built, by data source",
            )
            self._counters["prometheus_failures"] = self._meter.create_counter(
                "maas_dashboard_prometheus_endpoint_failures",
                description="Failed Prometheus endpoint attempts",
            )
            self._counters["simulator_requests"] = self._meter.create_counter(
                "maas_dashboard_simulator_requests",
                description="Chat completions proxied by the simulator",
            )

    def record_dashboard_build(self, source: str):
        if "dashboard_builds" in self._counters:
            self._counters["dashboard_builds"].add(1, {"source": source})

    def record_prometheus_failure(self, endpoint: str):
        if "prometheus_failures" in self._counters:
            self._counters["prometheus_failures"].add(1, {"endpoint": endpoint})

    def record_simulator_request(self, tier: str, status_code: int):
        if "simulator_requests" in self._counters:
            self._counters["simulator_requests"].add(
                1, {"tier": tier, "status_code": str(status_code)}
            )


# Global metrics instance
_metrics: Optional[DashboardMetrics] = None


def get_dashboard_metrics() -> DashboardMetrics:
    """Get the dashboard metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = DashboardMetrics()
    return _metrics
