"""
Unit Tests for Relevance Scoring

score = 0.6 * similarity + 0.3 * recency + 0.1 * amount_proximity

Covers each component, the no-query default, and stable ranking.
"""

import pytest
from datetime import date
from uuid import uuid4
import numpy as np

from ledger_rag.rag.scoring import (
    DEFAULT_SIMILARITY,
    RelevanceScorer,
    ScoringQuery,
    cosine_similarity,
    truncating_div,
)
from ledger_rag.retrieval.models import TransactionSlice


TODAY = date(2025, 9, 30)


def make_slice(occurred_on=TODAY, amount_cents=-500, category="EatingOut"):
    return TransactionSlice(
        transaction_id=uuid4(),
        occurred_on=occurred_on,
        amount_cents=amount_cents,
        category=category,
        description="",
        merchant_id=uuid4(),
        merchant_name="Cafe",
    )


@pytest.fixture
def scorer():
    return RelevanceScorer()


# ---------------------------------------------------------------------------
# HELPERS
# ---------------------------------------------------------------------------


class TestTruncatingDiv:
    """Integer division must round toward zero, not toward -inf."""

    @pytest.mark.parametrize(
        "numerator,denominator,expected",
        [(7, 2, 3), (-7, 2, -3), (7, -2, -3), (-7, -2, 3), (0, 5, 0), (-1033, 3, -344)],
    )
    def test_rounds_toward_zero(self, numerator, denominator, expected):
        assert truncating_div(numerator, denominator) == expected


class TestCosineSimilarity:
    """Test cosine similarity edge cases."""

    def test_identical_vectors(self):
        v = np.array([0.3, 0.4], dtype=np.float32)
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity(np.array([1.0, 0.0]), np.array([0.0, 1.0])) == pytest.approx(0.0)

    def test_zero_norm_is_zero(self):
        assert cosine_similarity(np.zeros(3), np.array([1.0, 2.0, 3.0])) == 0.0

    def test_empty_is_zero(self):
        assert cosine_similarity(np.array([]), np.array([1.0])) == 0.0

    def test_compares_common_prefix(self):
        assert cosine_similarity(np.array([1.0, 0.0]), np.array([1.0, 0.0, 5.0])) == pytest.approx(1.0)


# ---------------------------------------------------------------------------
# COMPONENTS
# ---------------------------------------------------------------------------


class TestScoreComponents:
    """Test each scoring component in isolation."""

    def test_no_query_uses_default_similarity(self, scorer):
        query = ScoringQuery(today=TODAY)

        assert scorer.similarity(np.array([0.5, 0.5]), query) == DEFAULT_SIMILARITY

    def test_unindexed_candidate_uses_default_similarity(self, scorer):
        query = ScoringQuery(today=TODAY, vector=np.array([0.5, 0.5]))

        assert scorer.similarity(np.array([], dtype=np.float32), query) == DEFAULT_SIMILARITY

    def test_recency_today_is_one(self, scorer):
        assert scorer.recency(TODAY, TODAY) == 1.0

    def test_recency_decays(self, scorer):
        assert scorer.recency(date(2025, 9, 27), TODAY) == pytest.approx(0.25)

    def test_future_dates_clamped(self, scorer):
        assert scorer.recency(date(2025, 10, 5), TODAY) == 1.0

    def test_amount_proximity_zero_without_range(self, scorer):
        assert scorer.amount_proximity(-500, ScoringQuery(today=TODAY)) == 0.0

    def test_amount_proximity_zero_with_half_open_range(self, scorer):
        assert scorer.amount_proximity(-500, ScoringQuery(today=TODAY, amount_min=-1000)) == 0.0

    def test_amount_proximity_at_midpoint(self, scorer):
        query = ScoringQuery(today=TODAY, amount_min=-1000, amount_max=0)

        assert scorer.amount_proximity(-500, query) == 1.0
        assert scorer.amount_proximity(-499, query) == 0.5

    def test_midpoint_truncates_toward_zero(self):
        assert ScoringQuery(today=TODAY, amount_min=-1001, amount_max=0).amount_midpoint == -500

    def test_weighted_sum(self, scorer):
        candidate = make_slice(occurred_on=TODAY, amount_cents=-500)
        query = ScoringQuery(today=TODAY, amount_min=-1000, amount_max=0)

        score = scorer.score(None, candidate, query)

        assert score == pytest.approx(0.6 * 0.2 + 0.3 * 1.0 + 0.1 * 1.0)


# ---------------------------------------------------------------------------
# RANKING
# ---------------------------------------------------------------------------


class TestRanking:
    """Test ordering of ranked candidates."""

    def test_higher_similarity_ranks_first(self, scorer):
        query_vector = np.array([1.0, 0.0, 0.0], dtype=np.float32)
        a = make_slice()
        b = make_slice()
        close = np.array([0.9, 0.1, 0.0], dtype=np.float32)
        far = np.array([0.1, 0.9, 0.0], dtype=np.float32)

        ranked = scorer.rank([(b, far), (a, close)], ScoringQuery(today=TODAY, vector=query_vector))

        assert [c.slice for c in ranked] == [a, b]
        assert ranked[0].score > ranked[1].score

    def test_newer_ranks_first_without_query(self, scorer):
        older = make_slice(occurred_on=date(2025, 9, 1))
        newer = make_slice(occurred_on=date(2025, 9, 29))

        ranked = scorer.rank([(older, None), (newer, None)], ScoringQuery(today=TODAY))

        assert ranked[0].slice is newer

    def test_ties_keep_retrieval_order(self, scorer):
        first = make_slice()
        second = make_slice()
        third = make_slice()

        ranked = scorer.rank(
            [(first, None), (second, None), (third, None)],
            ScoringQuery(today=TODAY),
        )

        assert [c.slice for c in ranked] == [first, second, third]

    def test_empty(self, scorer):
        assert scorer.rank([], ScoringQuery(today=TODAY)) == []
