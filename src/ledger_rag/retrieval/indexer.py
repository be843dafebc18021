"""
Embedding indexer.

Turns transactions into EmbeddingRecords and writes them to the
nearest-neighbor store. The search path calls it to repair a partially
indexed user; the CLI calls it for bulk re-indexing.
"""

from __future__ import annotations

import logging
from uuid import UUID

from ledger_rag.core.protocols import EmbeddingProvider, NearestNeighborStore, TransactionStore
from ledger_rag.retrieval.models import EmbeddingRecord, TransactionSlice, period_key

logger = logging.getLogger(__name__)


def normalize_merchant(name: str | None) -> str:
    """Lower-case and collapse runs of whitespace."""
    return " ".join((name or "").lower().split())


def embedding_text(transaction: TransactionSlice) -> str:
    return f"{transaction.merchant_name} {transaction.description}".strip()


class TransactionIndexer:
    def __init__(
        self,
        transactions: TransactionStore,
        embeddings_store: NearestNeighborStore,
        embedder: EmbeddingProvider,
    ):
        self._transactions = transactions
        self._embeddings_store = embeddings_store
        self._embedder = embedder

    def upsert_embeddings(self, user_id: UUID, transaction_ids: list[UUID]) -> int:
        """Embed and upsert the given transactions. Returns the number written."""
        if not transaction_ids:
            return 0

        slices = self._transactions.fetch_by_ids(user_id, list(transaction_ids))
        if not slices:
            return 0

        vectors = self._embedder.embed_batch([embedding_text(tx) for tx in slices])
        records = [
            EmbeddingRecord(
                transaction_id=tx.transaction_id,
                user_id=user_id,
                period_key=period_key(tx.occurred_on),
                category=tx.category,
                amount_cents=tx.amount_cents,
                merchant_id=tx.merchant_id,
                normalized_merchant_name=normalize_merchant(tx.merchant_name),
                embedding=vector,
            )
            for tx, vector in zip(slices, vectors)
        ]
        self._embeddings_store.upsert_batch(records)
        logger.debug(f"Upserted {len(records)} embeddings for user {user_id}")
        return len(records)

    def delete_all(self, user_id: UUID) -> None:
        self._embeddings_store.delete_by_user(user_id)
        logger.info(f"Deleted embeddings for user {user_id}")
