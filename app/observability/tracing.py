"""Helpers for configuring OpenTelemetry tracing."""

from __future__ import annotations
import logging
from dataclasses import dataclass

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.util._once import Once

from app.config import Settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _TracingState:
    provider: TracerProvider | None = None
    exporter: SpanExporter | None = None


_STATE = _TracingState()


def configure_tracing(
    settings: Settings,
    *,
    exporter: SpanExporter | None = None,
    force: bool = False,
) -> TracerProvider | None:
    """Configure the global tracer provider once per process.

    An explicit ``exporter`` is wired with a synchronous processor (tests);
    otherwise spans go to ``{endpoint}/v1/traces`` in batches, or nowhere
    when no OTLP endpoint is configured.
    """
    if _STATE.provider is not None and not force:
        return _STATE.provider

    if exporter is not None:
        processor = SimpleSpanProcessor(exporter)
    elif settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(
            endpoint=f"{settings.otel_exporter_otlp_endpoint.rstrip('/')}/v1/traces"
        )
        processor = BatchSpanProcessor(exporter)
    else:
        logger.info("OpenTelemetry tracing disabled (no OTLP endpoint configured).")
        return None

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "deployment.environment": settings.environment,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(processor)
    if hasattr(trace, "_set_tracer_provider"):
        trace._set_tracer_provider(provider, False)  # type: ignore[attr-defined]
    else:  # pragma: no cover - fallback for older SDKs
        trace.set_tracer_provider(provider)

    _STATE.provider = provider
    _STATE.exporter = exporter
    logger.info("OpenTelemetry tracing enabled", extra={"exporter": type(exporter).__name__})
    return provider


def shutdown_tracing() -> None:
    if _STATE.provider is not None:
        _STATE.provider.shutdown()


def reset_tracing() -> None:
    """Reset tracing configuration to a clean state (primarily for testing)."""
    _STATE.provider = None
    _STATE.exporter = None
    if hasattr(trace, "_TRACER_PROVIDER_SET_ONCE"):
        trace._TRACER_PROVIDER_SET_ONCE = Once()  # type: ignore[attr-defined]
    if hasattr(trace, "_TRACER_PROVIDER"):
        trace._TRACER_PROVIDER = None  # type: ignore[attr-defined]


def get_tracer(name: str = "momoi") -> trace.Tracer:
    return trace.get_tracer(name)
