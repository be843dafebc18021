"""
Observability Module - OpenTelemetry Integration

USAGE:
------
# At application startup:
from ledger_rag.observability import init_tracing

init_tracing()  # Installs an OTLP exporter if RAG_TRACING_ENABLED=true

# In code that needs tracing:
from ledger_rag.observability import get_tracer

tracer = get_tracer()
with tracer.start_span("rag.search", attributes={"key": "value"}) as span:
    # ... do work ...
    span.set_attribute("result", "success")
"""

from __future__ import annotations

import logging

from ledger_rag.observability.config import (
    TracingConfig,
    get_config,
    reset_config,
)
from ledger_rag.observability.tracer import (
    TracerProtocol,
    SpanProtocol,
    NoOpTracer,
    NoOpSpan,
    get_tracer,
    reset_tracer,
)
from ledger_rag.observability.attributes import (
    ENDUSER_ID,
    RAG_ENDPOINT,
    RAG_SESSION_ID,
    RAG_CANDIDATE_COUNT,
    RAG_REINDEXED,
    RAG_ROW_COUNT,
    RAG_TOKEN_ESTIMATE,
    request_attributes,
    response_attributes,
)

logger = logging.getLogger(__name__)

_tracing_initialized = False


def init_tracing(config: TracingConfig | None = None) -> bool:
    """
    Initialize OpenTelemetry tracing.

    This should be called once at application startup.

    Returns:
        True if tracing was initialized, False if disabled or failed
    """
    global _tracing_initialized
    if _tracing_initialized:
        return True

    config = config or get_config()

    if not config.enabled:
        logger.debug("Tracing disabled")
        return False

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

        if config.collector_endpoint:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
            exporter = OTLPSpanExporter(endpoint=config.collector_endpoint)
            logger.info(f"Exporting traces to: {config.collector_endpoint}")
        else:
            exporter = ConsoleSpanExporter()
            logger.info("No collector endpoint configured, exporting traces to console")

        provider = TracerProvider(resource=Resource.create({"service.name": config.service_name}))
        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)

        from ledger_rag.observability.instrumentation import register_instrumentors
        register_instrumentors()

        reset_tracer()
        _tracing_initialized = True
        return True

    except Exception as e:
        logger.error(f"Failed to initialize tracing: {e}")
        return False


def shutdown_tracing() -> None:
    """Flush spans and release exporter resources."""
    global _tracing_initialized

    if not _tracing_initialized:
        return

    try:
        from opentelemetry import trace
        provider = trace.get_tracer_provider()
        if hasattr(provider, "shutdown"):
            provider.shutdown()
    except Exception as e:
        logger.warning(f"Error shutting down tracing: {e}")

    from ledger_rag.observability.instrumentation import uninstrument
    uninstrument()

    reset_tracer()
    reset_config()
    _tracing_initialized = False


__all__ = [
    "init_tracing",
    "shutdown_tracing",
    "TracingConfig",
    "get_config",
    "reset_config",
    "TracerProtocol",
    "SpanProtocol",
    "NoOpTracer",
    "NoOpSpan",
    "get_tracer",
    "reset_tracer",
    "ENDUSER_ID",
    "RAG_ENDPOINT",
    "RAG_SESSION_ID",
    "RAG_CANDIDATE_COUNT",
    "RAG_REINDEXED",
    "RAG_ROW_COUNT",
    "RAG_TOKEN_ESTIMATE",
    "request_attributes",
    "response_attributes",
]
