"""OpenTelemetry tracing configuration."""

from __future__ import annotations

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
)

from provisioner import __version__
from provisioner.config import ObservabilitySettings


def setup_tracing(settings: ObservabilitySettings) -> None:
    """Configure OpenTelemetry tracing for a deployment run."""
    if not settings.tracing_enabled:
        return

    resource = Resource.create({
        "service.name": settings.service_name,
        "service.version": __version__,
    })

    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)


def get_tracer(name: str = "provisioner") -> trace.Tracer:
    """Get a tracer instance."""
    return trace.get_tracer(name)
