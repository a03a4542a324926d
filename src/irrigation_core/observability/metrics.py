"""
OpenTelemetry Metrics

Database instruments for the data-access layer. Recording is a no-op until
``init_metrics`` installs a provider, so library code can record
unconditionally.
"""

import logging
from typing import Optional, Dict, Any

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME

logger = logging.getLogger(__name__)

SERVICE = "irrigation-pro-backend"

_meter: Optional[metrics.Meter] = None

_counters: Dict[str, metrics.Counter] = {}
_histograms: Dict[str, metrics.Histogram] = {}


def init_metrics(
    service_name: str = SERVICE,
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    export_interval_ms: int = 60000
) -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Args:
        service_name: Name of the service
        otlp_endpoint: OTLP exporter endpoint
        console_export: Enable console export for debugging
        export_interval_ms: Export interval in milliseconds

    Returns:
        Configured meter
    """
    global _meter

    readers = []

    if otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True)
        readers.append(PeriodicExportingMetricReader(
            otlp_exporter,
            export_interval_millis=export_interval_ms
        ))
        logger.info("OTel metrics: OTLP exporter configured -> %s", otlp_endpoint)

    if console_export:
        readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=export_interval_ms
        ))
        logger.info("OTel metrics: Console exporter enabled")

    resource = Resource.create({SERVICE_NAME: service_name})

    provider = MeterProvider(resource=resource, metric_readers=readers)
    metrics.set_meter_provider(provider)

    _meter = metrics.get_meter(service_name)
    _init_standard_metrics()

    logger.info("OTel metrics initialized: %s", service_name)

    return _meter


def _init_standard_metrics():
    """Create the database instruments on the current meter."""
    meter = get_meter()

    _counters["db_queries_total"] = meter.create_counter(
        "db_queries_total",
        description="Total database statements executed",
        unit="1"
    )

    _counters["db_slow_queries_total"] = meter.create_counter(
        "db_slow_queries_total",
        description="Statements slower than the slow-query threshold",
        unit="1"
    )

    _counters["db_errors_total"] = meter.create_counter(
        "db_errors_total",
        description="Database errors by kind",
        unit="1"
    )

    _counters["db_connections_opened_total"] = meter.create_counter(
        "db_connections_opened_total",
        description="Physical connections opened by the pool",
        unit="1"
    )

    _histograms["db_query_duration_seconds"] = meter.create_histogram(
        "db_query_duration_seconds",
        description="Database query duration",
        unit="s"
    )

    _histograms["db_acquire_duration_seconds"] = meter.create_histogram(
        "db_acquire_duration_seconds",
        description="Time spent waiting for a pooled connection",
        unit="s"
    )


def get_meter() -> metrics.Meter:
    """Get the global meter."""
    global _meter
    if _meter is None:
        _meter = metrics.get_meter(SERVICE)
    return _meter


def record_counter(
    name: str,
    value: int = 1,
    attributes: Dict[str, Any] = None
):
    """Record a counter metric."""
    if name in _counters:
        _counters[name].add(value, attributes or {})


def record_histogram(
    name: str,
    value: float,
    attributes: Dict[str, Any] = None
):
    """Record a histogram metric."""
    if name in _histograms:
        _histograms[name].record(value, attributes or {})
