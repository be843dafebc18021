"""
Nearest-neighbor store implementations.

Pattern: Protocol → Production impl → Test double → Factory

1. PgVectorEmbeddingStore - PostgreSQL with pgvector (production)
2. InMemoryEmbeddingStore - In-memory store (testing/development)
3. get_embedding_store() - Factory function

Both stores return an empty embedding for rows that were never indexed,
which is the signal the service uses to trigger a re-index.
"""

from __future__ import annotations

import logging
from uuid import UUID

import numpy as np

from ledger_rag.retrieval.models import EmbeddingMatch, EmbeddingRecord, SearchFilters
from ledger_rag.retrieval.postgres import (
    StoreConfig,
    end_exclusive,
    open_connection,
    start_of_day,
    translate_errors,
)
from ledger_rag.retrieval.transaction_store import InMemoryTransactionStore

logger = logging.getLogger(__name__)

_EMPTY = np.empty(0, dtype=np.float32)


# ---------------------------------------------------------------------------
# PGVECTOR STORE (Production)
# ---------------------------------------------------------------------------


class PgVectorEmbeddingStore:
    """
    Per-transaction embeddings in PostgreSQL using pgvector.

    Similarity ordering uses cosine distance (`<=>`) when a query vector is
    given; filter-only queries return newest transactions first.
    """

    def __init__(self, config: StoreConfig):
        self.config = config
        self._conn = None

    def connect(self) -> None:
        with translate_errors("connect", self.close):
            self._conn = open_connection(self.config, with_vector=True)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _connection(self):
        if not self._conn:
            self.connect()
        return self._conn

    def create_schema(self) -> None:
        """Create the embeddings table and indexes."""
        table = self.config.embeddings_table
        with translate_errors("create_schema", self.close):
            conn = self._connection()
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    tx_id UUID PRIMARY KEY
                        REFERENCES {self.config.transactions_table}(id) ON DELETE CASCADE,
                    user_id UUID NOT NULL,
                    yyyymm TEXT NOT NULL,
                    category TEXT,
                    amount_cents BIGINT NOT NULL,
                    merchant_id UUID,
                    merchant_normalized TEXT,
                    embedding vector({self.config.embedding_dim}),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """
            )
            conn.execute(
                f"""
                CREATE INDEX IF NOT EXISTS {table}_embedding_idx
                ON {table}
                USING hnsw (embedding vector_cosine_ops)
                WITH (m = 16, ef_construction = 64)
            """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {table}_user_idx ON {table} (user_id, yyyymm)"
            )

    def upsert_batch(self, records: list[EmbeddingRecord]) -> None:
        if not records:
            return

        params = [
            {
                "tx_id": r.transaction_id,
                "user_id": r.user_id,
                "yyyymm": r.period_key,
                "category": r.category,
                "amount_cents": r.amount_cents,
                "merchant_id": r.merchant_id,
                "merchant_normalized": r.normalized_merchant_name,
                "embedding": r.embedding if r.embedding is not None and len(r.embedding) else None,
            }
            for r in records
        ]
        with translate_errors("upsert_batch", self.close):
            with self._connection().cursor() as cur:
                cur.executemany(
                    f"""
                    INSERT INTO {self.config.embeddings_table}
                        (tx_id, user_id, yyyymm, category, amount_cents,
                         merchant_id, merchant_normalized, embedding, updated_at)
                    VALUES (%(tx_id)s, %(user_id)s, %(yyyymm)s, %(category)s, %(amount_cents)s,
                            %(merchant_id)s, %(merchant_normalized)s, %(embedding)s, now())
                    ON CONFLICT (tx_id) DO UPDATE SET
                        category = EXCLUDED.category,
                        amount_cents = EXCLUDED.amount_cents,
                        yyyymm = EXCLUDED.yyyymm,
                        merchant_id = EXCLUDED.merchant_id,
                        merchant_normalized = EXCLUDED.merchant_normalized,
                        embedding = EXCLUDED.embedding,
                        updated_at = now()
                    """,
                    params,
                )

    def find_nearest(
        self,
        user_id: UUID,
        query_vector: np.ndarray | None,
        filters: SearchFilters,
        limit: int,
    ) -> list[EmbeddingMatch]:
        clauses = ["e.user_id = %(user_id)s"]
        params: dict = {"user_id": user_id, "limit": limit}

        if filters.date_from is not None:
            clauses.append("t.occurred_at >= %(date_from)s")
            params["date_from"] = start_of_day(filters.date_from)
        if filters.date_to is not None:
            clauses.append("t.occurred_at < %(date_to)s")
            params["date_to"] = end_exclusive(filters.date_to)
        if filters.categories:
            clauses.append("t.category = ANY(%(categories)s)")
            params["categories"] = list(filters.categories)
        if filters.amount_min is not None:
            clauses.append("e.amount_cents >= %(amount_min)s")
            params["amount_min"] = filters.amount_min
        if filters.amount_max is not None:
            clauses.append("e.amount_cents <= %(amount_max)s")
            params["amount_max"] = filters.amount_max

        if query_vector is not None and len(query_vector):
            order_by = "e.embedding <=> %(query)s, t.occurred_at DESC"
            params["query"] = np.asarray(query_vector, dtype=np.float32)
        else:
            order_by = "t.occurred_at DESC, t.amount DESC"

        sql = f"""
            SELECT e.tx_id, e.merchant_id, e.embedding, e.yyyymm, e.amount_cents, e.category
            FROM {self.config.embeddings_table} e
            JOIN {self.config.transactions_table} t ON t.id = e.tx_id
            WHERE {' AND '.join(clauses)}
            ORDER BY {order_by}
            LIMIT %(limit)s
        """
        with translate_errors("find_nearest", self.close):
            rows = self._connection().execute(sql, params).fetchall()

        return [
            EmbeddingMatch(
                transaction_id=row[0],
                merchant_id=row[1],
                embedding=np.asarray(row[2], dtype=np.float32) if row[2] is not None else _EMPTY,
                period_key=row[3],
                amount_cents=int(row[4]),
                category=row[5],
            )
            for row in rows
        ]

    def delete_by_user(self, user_id: UUID) -> None:
        with translate_errors("delete_by_user", self.close):
            self._connection().execute(
                f"DELETE FROM {self.config.embeddings_table} WHERE user_id = %s",
                (user_id,),
            )


# ---------------------------------------------------------------------------
# IN-MEMORY STORE (Testing/Development)
# ---------------------------------------------------------------------------


class InMemoryEmbeddingStore:
    """
    In-memory embedding store for development/testing.

    Joins against an InMemoryTransactionStore for date and category filters,
    the same way the SQL store joins the transactions table.
    """

    def __init__(self, transactions: InMemoryTransactionStore):
        self._transactions = transactions
        self._records: dict[UUID, EmbeddingRecord] = {}

    def connect(self) -> None:
        """No-op for in-memory store."""
        pass

    def close(self) -> None:
        """No-op for in-memory store."""
        pass

    def create_schema(self) -> None:
        """No-op for in-memory store."""
        pass

    def upsert_batch(self, records: list[EmbeddingRecord]) -> None:
        for record in records:
            self._records[record.transaction_id] = record

    def _cosine_similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        """Calculate cosine similarity between two vectors."""
        denom = np.linalg.norm(a) * np.linalg.norm(b)
        if denom == 0:
            return 0.0
        return float(np.dot(a, b) / denom)

    def find_nearest(
        self,
        user_id: UUID,
        query_vector: np.ndarray | None,
        filters: SearchFilters,
        limit: int,
    ) -> list[EmbeddingMatch]:
        candidates = []
        for record in self._records.values():
            if record.user_id != user_id:
                continue
            tx = self._transactions.get(user_id, record.transaction_id)
            if tx is None:
                continue
            if not filters.matches(tx.occurred_on, tx.category, record.amount_cents):
                continue
            candidates.append((record, tx))

        # Newest first, then larger amounts, mirroring the SQL ordering
        candidates.sort(key=lambda pair: (pair[1].occurred_on, pair[1].amount_cents), reverse=True)

        if query_vector is not None and len(query_vector):
            def distance(pair):
                embedding = pair[0].embedding
                if embedding is None or len(embedding) == 0:
                    return float("inf")
                return 1.0 - self._cosine_similarity(query_vector, embedding)

            candidates.sort(key=distance)

        return [
            EmbeddingMatch(
                transaction_id=record.transaction_id,
                merchant_id=record.merchant_id,
                embedding=record.embedding if record.embedding is not None else _EMPTY,
                period_key=record.period_key,
                amount_cents=record.amount_cents,
                category=record.category,
            )
            for record, _ in candidates[:limit]
        ]

    def delete_by_user(self, user_id: UUID) -> None:
        self._records = {
            tx_id: record
            for tx_id, record in self._records.items()
            if record.user_id != user_id
        }

    def __len__(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------------
# FACTORY FUNCTION
# ---------------------------------------------------------------------------


def get_embedding_store(
    use_postgres: bool = False,
    config: StoreConfig | None = None,
    transactions: InMemoryTransactionStore | None = None,
) -> PgVectorEmbeddingStore | InMemoryEmbeddingStore:
    """
    Factory function to get the appropriate embedding store.

    Args:
        use_postgres: Use PostgreSQL store (default: False for dev)
        config: Store configuration (PostgreSQL only)
        transactions: Transaction store to join against (in-memory only)
    """
    if use_postgres:
        return PgVectorEmbeddingStore(config or StoreConfig())
    if transactions is None:
        transactions = InMemoryTransactionStore()
    return InMemoryEmbeddingStore(transactions)
