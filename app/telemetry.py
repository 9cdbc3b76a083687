"""OpenTelemetry tracing for requests, the database, outbound calls and booking steps."""
import os
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.flask import FlaskInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.propagate import set_global_textmap
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from models import db

TRACER_NAME = "ooloo.booking"
EXCLUDED_URLS = "/health,/metrics"

# The global provider can only be set once per process; later apps share it
_provider = None
_memory_exporter = None
_exporting = False


def _get_provider(app) -> TracerProvider:
    global _provider
    if _provider is None:
        resource = Resource.create({
            "service.name": app.config.get("OTEL_SERVICE_NAME", "ooloo-booking"),
            "deployment.environment": os.getenv("APP_ENV", "development"),
        })
        ratio = float(app.config.get("OTEL_TRACES_SAMPLE_RATIO", 1.0))
        _provider = TracerProvider(resource=resource, sampler=ParentBased(TraceIdRatioBased(ratio)))
        trace.set_tracer_provider(_provider)
    return _provider


def init_tracing(app):
    """Initialize OpenTelemetry tracing for the Flask app.

    Testing apps record spans in memory, exposed as
    ``app.extensions["span_exporter"]``; other apps export over OTLP/HTTP.
    """
    global _memory_exporter, _exporting
    provider = _get_provider(app)

    if app.config.get("TESTING"):
        if _memory_exporter is None:
            _memory_exporter = InMemorySpanExporter()
            provider.add_span_processor(SimpleSpanProcessor(_memory_exporter))
        app.extensions["span_exporter"] = _memory_exporter
    elif not _exporting:
        endpoint = app.config.get("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4318/v1/traces")
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        _exporting = True

    set_global_textmap(TraceContextTextMapPropagator())

    FlaskInstrumentor().instrument_app(app, excluded_urls=EXCLUDED_URLS)
    RequestsInstrumentor().instrument()
    with app.app_context():
        SQLAlchemyInstrumentor().instrument(engine=db.engine)


@contextmanager
def booking_span(name: str, **attributes):
    """Span around one booking step. Attributes are prefixed ``ooloo.``; None values are dropped."""
    tracer = trace.get_tracer(TRACER_NAME)
    attrs = {f"ooloo.{key}": value for key, value in attributes.items() if value is not None}
    with tracer.start_as_current_span(name, attributes=attrs) as span:
        yield span
