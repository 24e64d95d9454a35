"""
OpenTelemetry tracing for the quota service.

HTTP requests and the ledger's PostgreSQL queries are traced automatically.
Ledger operations (deduct, refund) open their own span so row-lock waits
show up under one parent. Health and metrics scrapes are not traced.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Tracer

from fashionai_quota.config import settings

_UNTRACED_URLS = "health,metrics"


def setup_tracing() -> None:
    """Install a sampled TracerProvider exporting to the OTLP collector."""
    if not settings.tracing_enabled:
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.api_version,
        }
    )
    sampler = ParentBased(root=TraceIdRatioBased(settings.tracing_sample_rate))
    provider = TracerProvider(resource=resource, sampler=sampler)
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any) -> None:
    """Trace every route except health and metrics scrapes."""
    if not settings.tracing_enabled:
        return

    FastAPIInstrumentor.instrument_app(app, excluded_urls=_UNTRACED_URLS)


def instrument_sqlalchemy(engine: Any) -> None:
    """Trace the ledger's queries, including SELECT ... FOR UPDATE waits."""
    if not settings.tracing_enabled:
        return

    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer(name: str) -> Tracer:
    return trace.get_tracer(name)


@contextmanager
def ledger_span(tracer: Tracer, operation: str, **attributes: Any) -> Iterator[Span]:
    """
    Span named credit_ledger.<operation> with quota.* attributes.

    None-valued attributes are skipped.
    """
    with tracer.start_as_current_span(f"credit_ledger.{operation}") as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"quota.{key}", value)
        yield span
