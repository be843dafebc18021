"""
Retrieval module - transaction and embedding stores.

This module provides:
- TransactionSlice, EmbeddingRecord, EmbeddingMatch: the row models
- StoreConfig: Configuration for the PostgreSQL stores
- PgTransactionStore / InMemoryTransactionStore
- PgVectorEmbeddingStore / InMemoryEmbeddingStore
- TransactionIndexer: embeds transactions into the nearest-neighbor store
- get_transaction_store(), get_embedding_store(): Factory functions

ARCHITECTURE:
-------------
1. Protocols define the contracts (in core.protocols)
2. A PostgreSQL implementation and an in-memory test double for each
3. Factory functions for instantiation
"""

from ledger_rag.retrieval.models import (
    TransactionSlice,
    EmbeddingRecord,
    EmbeddingMatch,
    SearchFilters,
    Granularity,
    AggregateBucket,
    TimelinePoint,
    MonthlySummary,
    period_key,
)

from ledger_rag.retrieval.postgres import StoreConfig

from ledger_rag.retrieval.transaction_store import (
    PgTransactionStore,
    InMemoryTransactionStore,
    get_transaction_store,
)
from ledger_rag.retrieval.embedding_store import (
    PgVectorEmbeddingStore,
    InMemoryEmbeddingStore,
    get_embedding_store,
)
from ledger_rag.retrieval.indexer import TransactionIndexer

from ledger_rag.retrieval.seeds import (
    DEMO_USER_ID,
    get_demo_transactions,
    seed_stores,
)

__all__ = [
    # Models
    "TransactionSlice",
    "EmbeddingRecord",
    "EmbeddingMatch",
    "SearchFilters",
    "Granularity",
    "AggregateBucket",
    "TimelinePoint",
    "MonthlySummary",
    "period_key",
    # Config
    "StoreConfig",
    # Implementations
    "PgTransactionStore",
    "InMemoryTransactionStore",
    "PgVectorEmbeddingStore",
    "InMemoryEmbeddingStore",
    "TransactionIndexer",
    # Factories
    "get_transaction_store",
    "get_embedding_store",
    # Seeds
    "DEMO_USER_ID",
    "get_demo_transactions",
    "seed_stores",
]
