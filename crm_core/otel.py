from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from crm_core import __version__
from crm_core.context import get_correlation_id, get_tenant_id
from crm_core.core.config import Settings


_exporters_attached = False
_provider: TracerProvider | None = None


def _tracer_provider(service_name: str) -> TracerProvider:
    global _provider

    if _provider is None:
        resource = Resource.create({"service.name": service_name, "service.version": __version__})
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings) -> TracerProvider | None:
    """Install the tracer provider and attach the exporters named in settings once per process."""
    global _exporters_attached

    if not settings.otel_enabled:
        return None

    provider = _tracer_provider(settings.app_name)
    if _exporters_attached:
        return provider

    if settings.otel_exporter_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_attached = True
    return provider


def setup_inmemory_otel(service_name: str = "crm-core") -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _tracer_provider(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


@contextmanager
def entity_span(
    tracer: trace.Tracer,
    name: str,
    *,
    entity_type: str,
    user_id: str,
    correlation_id: str | None = None,
    entity_id: str | None = None,
) -> Iterator[trace.Span]:
    with tracer.start_as_current_span(name) as span:
        span.set_attribute("entity_type", entity_type)
        span.set_attribute("user_id", user_id)
        span.set_attribute("correlation_id", correlation_id or get_correlation_id() or "")
        tenant_id = get_tenant_id()
        if tenant_id:
            span.set_attribute("tenant_id", tenant_id)
        if entity_id is not None:
            span.set_attribute("entity_id", entity_id)
        yield span
