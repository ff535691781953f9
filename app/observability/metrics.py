"""OpenTelemetry counters for authentication and authorization outcomes."""

from __future__ import annotations
import logging

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from app.config import Settings

logger = logging.getLogger(__name__)

_meter = metrics.get_meter("momoi.auth")

resolutions_total = _meter.create_counter(
    name="auth_resolutions_total",
    description="Role resolutions by outcome",
    unit="1",
)
rejections_total = _meter.create_counter(
    name="auth_rejections_total",
    description="Sign-in rejections by reason",
    unit="1",
)
authz_denials_total = _meter.create_counter(
    name="authz_denials_total",
    description="Requests stopped by an authorization gate",
    unit="1",
)
log_messages_total = _meter.create_counter(
    name="log_messages_total",
    description="Log records emitted by level",
    unit="1",
)
log_errors_total = _meter.create_counter(
    name="log_errors_total",
    description="Error log records by logger",
    unit="1",
)


def configure_metrics(settings: Settings, *, reader: MetricReader | None = None) -> MeterProvider | None:
    """Install a meter provider exporting over OTLP, or with the supplied reader."""
    if reader is None:
        if not settings.otel_exporter_otlp_endpoint:
            logger.info("Metrics export disabled (no OTLP endpoint configured).")
            return None
        exporter = OTLPMetricExporter(
            endpoint=f"{settings.otel_exporter_otlp_endpoint.rstrip('/')}/v1/metrics"
        )
        reader = PeriodicExportingMetricReader(exporter)

    resource = Resource.create({"service.name": settings.otel_service_name})
    provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(provider)
    return provider


def record_resolution(outcome: str) -> None:
    resolutions_total.add(1, {"outcome": outcome})


def record_rejection(reason: str) -> None:
    rejections_total.add(1, {"reason": reason})


def record_denial(gate: str, status: int) -> None:
    authz_denials_total.add(1, {"gate": gate, "status": str(status)})
