"""
Error taxonomy for the retrieval service.

Only genuine infrastructure failures and invalid input cross the service
boundary as exceptions. Provider degradation, unresolved candidates and
empty results are handled inside the service.
"""

from __future__ import annotations


class RagError(Exception):
    """Base class for failures surfaced to the caller."""

    kind = "rag_error"
    retryable = False

    def __init__(self, message: str, trace_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.trace_id = trace_id

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            "traceId": self.trace_id,
        }


class InvalidFilterError(RagError):
    """Client input was rejected before any store access."""

    kind = "invalid_filter"


class StoreUnavailableError(RagError):
    """A backing store could not be reached. Safe for the caller to retry."""

    kind = "store_unavailable"
    retryable = True
