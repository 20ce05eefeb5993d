"""OpenTelemetry configuration for the recovery service."""

import os
import sys

from opentelemetry import metrics, trace
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from prometheus_client import start_http_server
from sqlalchemy import Engine

from .logging_config import get_logger

logger = get_logger(__name__)

METRICS_PORT = 8080


def setup_telemetry(app, engine: Engine | None = None) -> bool:
    """Configure tracing and Prometheus metrics when ENABLE_TELEMETRY is set.

    Returns:
        True if instrumentation was installed
    """
    if not os.getenv("ENABLE_TELEMETRY"):
        return False

    if "pytest" in sys.modules or os.getenv("TESTING"):
        logger.info("Skipping OpenTelemetry setup during tests")
        return False

    try:
        prometheus_reader = PrometheusMetricReader()
        metrics.set_meter_provider(MeterProvider(metric_readers=[prometheus_reader]))

        metrics_port = int(os.getenv("METRICS_PORT", METRICS_PORT))
        start_http_server(metrics_port)
        logger.info("Prometheus metrics server started", port=metrics_port)

        tracer_provider = TracerProvider()
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        trace.set_tracer_provider(tracer_provider)

        FastAPIInstrumentor.instrument_app(app)
        if engine is not None:
            SQLAlchemyInstrumentor().instrument(engine=engine)
        else:
            SQLAlchemyInstrumentor().instrument()
    except OSError as e:
        # Metrics port taken; the service runs without telemetry
        logger.error("Failed to setup OpenTelemetry", error=str(e))
        return False

    logger.info("OpenTelemetry tracing and metrics setup completed")
    return True
