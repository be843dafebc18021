"""
Core module - shared protocols for the retrieval engine.

USAGE:
------
from ledger_rag.core import NearestNeighborStore, EmbeddingProvider

class MyStore:
    '''Implements NearestNeighborStore protocol.'''
    ...
"""

from ledger_rag.core.protocols import (
    EmbeddingProvider,
    NearestNeighborStore,
    TransactionStore,
    AuditSink,
)
from ledger_rag.core.errors import (
    RagError,
    InvalidFilterError,
    StoreUnavailableError,
)

__all__ = [
    # Protocols
    "EmbeddingProvider",
    "NearestNeighborStore",
    "TransactionStore",
    "AuditSink",
    # Errors
    "RagError",
    "InvalidFilterError",
    "StoreUnavailableError",
]
