import logging
import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from tradesim.core.config import settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO", datefmt: str = "%H:%M:%S"):
    """Configure root logging for scripts and batch runs."""
    logging.basicConfig(level=getattr(logging, level.upper()), format=LOG_FORMAT, datefmt=datefmt)


def build_tracer_provider(service_name: str, endpoint: str) -> TracerProvider:
    """Tracer provider exporting run, batch and trade spans over OTLP/HTTP."""
    resource = Resource(attributes={SERVICE_NAME: service_name, SERVICE_VERSION: settings.VERSION})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{endpoint.rstrip('/')}/v1/traces"))
    )
    return provider


def setup_telemetry(service_name: str = "tradesim", endpoint: str | None = None) -> bool:
    """
    Installs span export for simulation runs.

    Without an endpoint the no-op tracer stays in place and spans cost nothing.
    """
    endpoint = endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("Telemetry: OTLP endpoint not set. Skipping setup.")
        return False

    trace.set_tracer_provider(build_tracer_provider(service_name, endpoint))
    logger.info(f"Telemetry: exporting traces for {service_name} to {endpoint}")
    return True
