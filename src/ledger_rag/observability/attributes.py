"""
Semantic Conventions for Span Attributes

Custom `rag.*` namespace for the retrieval engine, plus the standard
`enduser.id` key.
"""

# ---------------------------------------------------------------------------
# REQUEST
# ---------------------------------------------------------------------------

ENDUSER_ID = "enduser.id"
RAG_ENDPOINT = "rag.endpoint"  # "/rag/search", "/rag/aggregate", "/rag/summaries"
RAG_SESSION_ID = "rag.session.id"
RAG_QUERY_TEXT = "rag.query.text"  # only when RAG_TRACE_CAPTURE_QUERY=true
RAG_QUERY_HAS_TEXT = "rag.query.has_text"
RAG_QUERY_LIMIT = "rag.query.limit"

# ---------------------------------------------------------------------------
# RETRIEVAL
# ---------------------------------------------------------------------------

RAG_CANDIDATE_COUNT = "rag.retrieval.candidate_count"
RAG_REINDEXED = "rag.retrieval.reindexed"  # bool
RAG_REINDEX_COUNT = "rag.retrieval.reindex_count"
RAG_UNRESOLVED_COUNT = "rag.retrieval.unresolved_count"
RAG_DEDUPLICATED_COUNT = "rag.session.deduplicated_count"

# ---------------------------------------------------------------------------
# RESPONSE
# ---------------------------------------------------------------------------

RAG_ROW_COUNT = "rag.response.row_count"
RAG_TOKEN_ESTIMATE = "rag.response.token_estimate"
RAG_ERROR_KIND = "rag.error.kind"


# ---------------------------------------------------------------------------
# HELPER FUNCTIONS
# ---------------------------------------------------------------------------


def request_attributes(
    endpoint: str,
    user_id: str,
    session_id: str | None,
    query_text: str | None = None,
    capture_query: bool = False,
) -> dict:
    """Create attributes dict for a request span."""
    attrs = {
        RAG_ENDPOINT: endpoint,
        ENDUSER_ID: user_id,
        RAG_QUERY_HAS_TEXT: bool(query_text and query_text.strip()),
    }
    if session_id:
        attrs[RAG_SESSION_ID] = session_id
    if capture_query and query_text:
        attrs[RAG_QUERY_TEXT] = query_text
    return attrs


def response_attributes(row_count: int, token_estimate: int) -> dict:
    """Create attributes dict for a finished response."""
    return {
        RAG_ROW_COUNT: row_count,
        RAG_TOKEN_ESTIMATE: token_estimate,
    }
