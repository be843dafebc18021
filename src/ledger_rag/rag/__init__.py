"""
RAG module - turns transaction queries into compact, de-duplicated payloads.

USAGE:
------
from ledger_rag.rag import RetrievalOrchestrator, SearchRequest

service = RetrievalOrchestrator(transactions, embedding_store, embedder)
response = service.search(user_id, SearchRequest(q="coffee"), session_id="chat-1")
print(response.rows_csv)
"""

from ledger_rag.core.errors import (
    RagError,
    InvalidFilterError,
    StoreUnavailableError,
)
from ledger_rag.rag.clock import Clock, SystemClock, FakeClock
from ledger_rag.rag.compression import (
    CompactRow,
    Dictionary,
    encode_rows,
    short_category,
    transaction_code,
)
from ledger_rag.rag.masking import mask, mask_deep
from ledger_rag.rag.scoring import RelevanceScorer, ScoringQuery, ScoredCandidate
from ledger_rag.rag.session import (
    SessionCache,
    InMemorySessionCache,
    SessionDiffTracker,
)
from ledger_rag.rag.audit import LoggingAuditSink
from ledger_rag.rag.schemas import (
    SearchRequest,
    SearchResponse,
    Stats,
    AggregateRequest,
    AggregateResponse,
    SummariesResponse,
)
from ledger_rag.rag.service import RetrievalOrchestrator

__all__ = [
    # Errors
    "RagError",
    "InvalidFilterError",
    "StoreUnavailableError",
    # Clocks
    "Clock",
    "SystemClock",
    "FakeClock",
    # Compression
    "CompactRow",
    "Dictionary",
    "encode_rows",
    "short_category",
    "transaction_code",
    "mask",
    "mask_deep",
    # Scoring
    "RelevanceScorer",
    "ScoringQuery",
    "ScoredCandidate",
    # Sessions
    "SessionCache",
    "InMemorySessionCache",
    "SessionDiffTracker",
    # Audit
    "LoggingAuditSink",
    # Contracts
    "SearchRequest",
    "SearchResponse",
    "Stats",
    "AggregateRequest",
    "AggregateResponse",
    "SummariesResponse",
    # Service
    "RetrievalOrchestrator",
]
