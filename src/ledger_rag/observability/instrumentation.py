"""
OpenInference Auto-Instrumentation

Traces the OpenAI embeddings client, so remote embedding calls show up as
child spans of rag.search without code changes in the provider.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

_instrumented = False


def register_instrumentors() -> bool:
    """
    Register the OpenAI auto-instrumentor.

    Called by init_tracing once a tracer provider is installed.

    Returns:
        True if the instrumentor is registered, False otherwise
    """
    global _instrumented
    if _instrumented:
        return True

    from openinference.instrumentation.openai import OpenAIInstrumentor

    try:
        OpenAIInstrumentor().instrument()
    except Exception as e:
        logger.warning(f"Failed to instrument OpenAI: {e}")
        return False

    logger.info("Registered instrumentors: openai")
    _instrumented = True
    return True


def uninstrument() -> None:
    """Remove the instrumentor (useful for testing)."""
    global _instrumented

    if not _instrumented:
        return

    from openinference.instrumentation.openai import OpenAIInstrumentor

    try:
        OpenAIInstrumentor().uninstrument()
    except Exception as e:
        logger.warning(f"Failed to uninstrument OpenAI: {e}")

    _instrumented = False
