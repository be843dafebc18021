"""
Core protocols defining contracts for the retrieval engine.

All infrastructure components implement these protocols,
enabling dependency injection and easy testing.

PATTERN:
- Protocol defines the contract
- Multiple implementations (PostgreSQL for production, in-memory for tests)
- Factory functions for instantiation
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Protocol, runtime_checkable
from uuid import UUID

import numpy as np

if TYPE_CHECKING:
    from ledger_rag.retrieval.models import (
        AggregateBucket,
        EmbeddingMatch,
        EmbeddingRecord,
        Granularity,
        MonthlySummary,
        SearchFilters,
        TimelinePoint,
        TransactionSlice,
    )


# ---------------------------------------------------------------------------
# EMBEDDING PROVIDER PROTOCOL
# ---------------------------------------------------------------------------


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Contract for embedding generation.

    Implementations:
    - HashEmbeddings (deterministic, always available)
    - OpenAIEmbeddings (remote)
    - FallbackEmbeddings (remote with deterministic fallback)
    """

    def embed(self, text: str) -> np.ndarray:
        """Generate embedding for a single text."""
        ...

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Generate embeddings for multiple texts."""
        ...


# ---------------------------------------------------------------------------
# NEAREST NEIGHBOR STORE PROTOCOL
# ---------------------------------------------------------------------------


@runtime_checkable
class NearestNeighborStore(Protocol):
    """
    Contract for the persisted per-transaction embedding store.

    Implementations:
    - PgVectorEmbeddingStore (production with PostgreSQL)
    - InMemoryEmbeddingStore (testing/development)
    """

    def upsert_batch(self, records: list[EmbeddingRecord]) -> None:
        """Idempotent upsert keyed by transaction id."""
        ...

    def find_nearest(
        self,
        user_id: UUID,
        query_vector: np.ndarray | None,
        filters: SearchFilters,
        limit: int,
    ) -> list[EmbeddingMatch]:
        """Return ranked matches, each with its stored embedding."""
        ...

    def delete_by_user(self, user_id: UUID) -> None:
        """Remove every embedding belonging to a user."""
        ...


# ---------------------------------------------------------------------------
# TRANSACTION STORE PROTOCOL
# ---------------------------------------------------------------------------


@runtime_checkable
class TransactionStore(Protocol):
    """
    Contract for reading transactions.

    Implementations:
    - PgTransactionStore (production with PostgreSQL)
    - InMemoryTransactionStore (testing/development)
    """

    def fetch_by_ids(self, user_id: UUID, ids: list[UUID]) -> list[TransactionSlice]:
        """Resolve slices for the given ids. Missing ids are skipped."""
        ...

    def find_candidates(
        self,
        user_id: UUID,
        filters: SearchFilters,
        limit: int,
    ) -> list[TransactionSlice]:
        """Newest-first transactions matching filters, used for re-indexing."""
        ...

    def aggregate(
        self,
        user_id: UUID,
        date_from: date | None,
        date_to: date | None,
        granularity: Granularity,
    ) -> list[AggregateBucket]:
        """Bucketed count/sum/avg, ordered by sum ascending."""
        ...

    def aggregate_timeline(
        self,
        user_id: UUID,
        date_from: date | None,
        date_to: date | None,
    ) -> list[TimelinePoint]:
        """Monthly count/sum, ordered by month ascending."""
        ...

    def monthly_summary(self, user_id: UUID, month: date) -> MonthlySummary:
        """Totals and breakdowns for the calendar month containing `month`."""
        ...


# ---------------------------------------------------------------------------
# AUDIT SINK PROTOCOL
# ---------------------------------------------------------------------------


@runtime_checkable
class AuditSink(Protocol):
    """Fire-and-forget observability hook for every served request."""

    def record(
        self,
        endpoint: str,
        user_id: UUID,
        session_id: str | None,
        row_count: int,
        token_estimate: int,
    ) -> None:
        ...
