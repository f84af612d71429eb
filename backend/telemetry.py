# telemetry.py — Optional OpenTelemetry tracing for TaskRythm
"""
Exports spans to an OTLP collector when OTEL_EXPORTER_OTLP_ENDPOINT is set.
Without an endpoint, or without the ``telemetry`` extra installed, every function
here does nothing.
"""
import os
import logging
from contextlib import contextmanager

logger = logging.getLogger("taskrythm.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "taskrythm-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
EXPORTER_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")

_provider = None


def setup_telemetry(app=None):
    """Install a tracer provider and instrument the app, the DB engine and httpx.

    Returns the provider, or None when tracing stays off.
    """
    global _provider
    if not EXPORTER_ENDPOINT:
        logger.debug("Tracing off: no OTLP endpoint configured")
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    except ImportError:
        logger.warning("OTEL_EXPORTER_OTLP_ENDPOINT is set but the telemetry extra is not installed; tracing disabled")
        return None

    from database import engine

    provider = TracerProvider(resource=Resource.create({
        RES_SVC_NAME: SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": ENVIRONMENT,
    }))
    exporter = OTLPSpanExporter(endpoint=EXPORTER_ENDPOINT, insecure=True)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    if app is not None:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="health", tracer_provider=provider)
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=provider)
    # Covers the JWKS fetch and the Gemini calls
    HTTPXClientInstrumentor().instrument(tracer_provider=provider)

    _provider = provider
    logger.info(f"Tracing on, exporting spans to {EXPORTER_ENDPOINT}")
    return provider


@contextmanager
def span(name: str, **attributes):
    """Child span around a block when tracing is on; a plain block otherwise."""
    if _provider is None:
        yield None
        return

    from opentelemetry import trace
    tracer = trace.get_tracer("taskrythm", SERVICE_VERSION)
    with tracer.start_as_current_span(name, attributes=attributes) as current:
        yield current
