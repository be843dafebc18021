"""
Relevance scoring for retrieved transactions.

score = 0.6 * similarity + 0.3 * recency + 0.1 * amount_proximity

The result is a ranking key, not a probability.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

import numpy as np

from ledger_rag.retrieval.models import TransactionSlice

SIMILARITY_WEIGHT = 0.6
RECENCY_WEIGHT = 0.3
AMOUNT_WEIGHT = 0.1

# Used when there is no query text, so filter-only searches still order by recency
DEFAULT_SIMILARITY = 0.2


def truncating_div(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero."""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity over the common prefix of two vectors; 0.0 when undefined."""
    length = min(len(a), len(b))
    if length == 0:
        return 0.0
    left = np.asarray(a[:length], dtype=np.float64)
    right = np.asarray(b[:length], dtype=np.float64)
    norm_a = np.linalg.norm(left)
    norm_b = np.linalg.norm(right)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(left, right) / (norm_a * norm_b))


@dataclass
class ScoringQuery:
    today: date
    vector: np.ndarray | None = None
    amount_min: int | None = None
    amount_max: int | None = None

    @property
    def amount_midpoint(self) -> int | None:
        if self.amount_min is None or self.amount_max is None:
            return None
        return truncating_div(self.amount_min + self.amount_max, 2)


@dataclass
class ScoredCandidate:
    slice: TransactionSlice
    score: float


class RelevanceScorer:
    """Combines embedding similarity, recency and amount proximity."""

    def similarity(self, embedding: np.ndarray | None, query: ScoringQuery) -> float:
        if query.vector is None or len(query.vector) == 0:
            return DEFAULT_SIMILARITY
        if embedding is None or len(embedding) == 0:
            return DEFAULT_SIMILARITY
        return cosine_similarity(query.vector, embedding)

    def recency(self, occurred_on: date, today: date) -> float:
        days_ago = (today - occurred_on).days
        return 1.0 / (1 + max(days_ago, 0))

    def amount_proximity(self, amount_cents: int, query: ScoringQuery) -> float:
        midpoint = query.amount_midpoint
        if midpoint is None:
            return 0.0
        return 1.0 / (1 + abs(amount_cents - midpoint))

    def score(
        self,
        embedding: np.ndarray | None,
        candidate: TransactionSlice,
        query: ScoringQuery,
    ) -> float:
        return (
            SIMILARITY_WEIGHT * self.similarity(embedding, query)
            + RECENCY_WEIGHT * self.recency(candidate.occurred_on, query.today)
            + AMOUNT_WEIGHT * self.amount_proximity(candidate.amount_cents, query)
        )

    def rank(
        self,
        candidates: list[tuple[TransactionSlice, np.ndarray | None]],
        query: ScoringQuery,
    ) -> list[ScoredCandidate]:
        """Score and sort descending. Ties keep retrieval order (stable sort)."""
        scored = [
            ScoredCandidate(slice=candidate, score=self.score(embedding, candidate, query))
            for candidate, embedding in candidates
        ]
        return sorted(scored, key=lambda c: c.score, reverse=True)
