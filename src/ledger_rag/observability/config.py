"""
Tracing Configuration

Loads observability settings from environment variables.
"""

import os
from dataclasses import dataclass

_TRUTHY = ("true", "1", "yes")


@dataclass
class TracingConfig:
    """Configuration for OpenTelemetry tracing.

    Environment Variables:
        RAG_TRACING_ENABLED: Enable tracing (default: false)
        RAG_SERVICE_NAME: Service name on exported spans (default: ledger-rag)
        OTEL_EXPORTER_OTLP_ENDPOINT: OTLP/HTTP collector (optional, console export if empty)
        RAG_TRACE_CAPTURE_QUERY: Attach raw query text to spans (default: false)

    PRIVACY WARNING:
        Setting RAG_TRACE_CAPTURE_QUERY=true exports the user's free-text
        questions about their finances to the collector. Only enable in
        controlled environments.
    """

    enabled: bool = False
    service_name: str = "ledger-rag"
    collector_endpoint: str | None = None
    capture_query: bool = False

    @classmethod
    def from_env(cls) -> "TracingConfig":
        """Load config from environment variables."""
        return cls(
            enabled=os.environ.get("RAG_TRACING_ENABLED", "false").lower() in _TRUTHY,
            service_name=os.environ.get("RAG_SERVICE_NAME", "ledger-rag"),
            collector_endpoint=os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
            capture_query=os.environ.get("RAG_TRACE_CAPTURE_QUERY", "false").lower() in _TRUTHY,
        )


# Global config singleton
_config: TracingConfig | None = None


def get_config() -> TracingConfig:
    """Get the global tracing config (lazy-loaded from env)."""
    global _config
    if _config is None:
        _config = TracingConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset config (useful for testing)."""
    global _config
    _config = None
