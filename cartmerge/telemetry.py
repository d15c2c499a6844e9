import logging

from opentelemetry import trace as trace_api
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from cartmerge.config import Settings

logger = logging.getLogger(__name__)


def setup_telemetry(app, settings: Settings) -> TracerProvider:
    resource = Resource(attributes={
        "service.name": "cart-consolidation-api",
    })

    trace_provider = TracerProvider(resource=resource)
    # Export spans to any OTLP/HTTP collector
    exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)

    trace_provider.add_span_processor(BatchSpanProcessor(exporter))
    trace_api.set_tracer_provider(trace_provider)

    # Instrument the FastAPI app
    FastAPIInstrumentor().instrument_app(app)

    logger.info("Tracing enabled, exporting to %s", settings.otlp_endpoint)
    return trace_provider
