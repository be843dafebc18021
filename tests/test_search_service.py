"""
Unit Tests for RetrievalOrchestrator.search

Two kinds of tests:
1. Scenario tests against the in-memory stores (real ranking, real dedup)
2. Collaborator tests with MagicMock stores (call counts, error paths)
"""

import json
import pytest
from unittest.mock import MagicMock
from datetime import date, timedelta
from uuid import UUID, uuid4
import numpy as np

from ledger_rag.config import RagConfig
from ledger_rag.core.errors import InvalidFilterError, StoreUnavailableError
from ledger_rag.embeddings import HashEmbeddings
from ledger_rag.observability.tracer import NoOpTracer
from ledger_rag.rag.clock import FakeClock
from ledger_rag.rag.compression import transaction_code
from ledger_rag.rag.schemas import SearchRequest
from ledger_rag.rag.service import RetrievalOrchestrator
from ledger_rag.rag.session import InMemorySessionCache, SessionDiffTracker
from ledger_rag.retrieval import (
    EmbeddingMatch,
    InMemoryEmbeddingStore,
    InMemoryTransactionStore,
    TransactionSlice,
)


USER = UUID("11111111-1111-4111-8111-111111111111")


def make_slice(tx_id=None, occurred_on=date(2025, 9, 15), amount_cents=-460,
               category="EatingOut", merchant_name="Blue Bottle", description=""):
    return TransactionSlice(
        transaction_id=tx_id or uuid4(),
        occurred_on=occurred_on,
        amount_cents=amount_cents,
        category=category,
        description=description,
        merchant_id=uuid4(),
        merchant_name=merchant_name,
    )


def match_for(tx: TransactionSlice, embedding=None) -> EmbeddingMatch:
    return EmbeddingMatch(
        transaction_id=tx.transaction_id,
        merchant_id=tx.merchant_id,
        embedding=np.array([0.1, 0.2], dtype=np.float32) if embedding is None else embedding,
        period_key="2025-09",
        amount_cents=tx.amount_cents,
        category=tx.category,
    )


# ---------------------------------------------------------------------------
# FIXTURES
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return RagConfig(max_rows=20, embed_dimension=32)


@pytest.fixture
def audit():
    return MagicMock()


@pytest.fixture
def transactions():
    return InMemoryTransactionStore()


@pytest.fixture
def service(transactions, config, clock, audit):
    return RetrievalOrchestrator(
        transactions,
        InMemoryEmbeddingStore(transactions),
        HashEmbeddings(dimensions=config.embed_dimension),
        audit=audit,
        config=config,
        clock=clock,
        tracer=NoOpTracer(),
    )


@pytest.fixture
def five_transactions(transactions):
    ledger = [
        make_slice(occurred_on=date(2025, 9, 29 - i), amount_cents=-100 * (i + 1),
                   merchant_name=f"Merchant {name}")
        for i, name in enumerate(["Alpha", "Bravo", "Charlie", "Delta", "Echo"])
    ]
    transactions.add_many(USER, ledger)
    return ledger


@pytest.fixture
def mock_service(config, clock, audit):
    """Service wired to MagicMock stores for call-count assertions."""
    transactions = MagicMock()
    embedding_store = MagicMock()
    embedder = MagicMock()
    embedder.embed.return_value = np.array([0.1, 0.2], dtype=np.float32)
    service = RetrievalOrchestrator(
        transactions,
        embedding_store,
        embedder,
        indexer=MagicMock(),
        audit=audit,
        config=config,
        clock=clock,
        tracer=NoOpTracer(),
    )
    return service, transactions, embedding_store, embedder


# ---------------------------------------------------------------------------
# END-TO-END SCENARIOS
# ---------------------------------------------------------------------------


class TestSearchScenarios:
    """Scenario tests over the in-memory stores."""

    def test_single_row_payload(self, service, transactions, audit):
        tx = make_slice(tx_id=UUID("33333333-0000-4000-8000-000000000000"), amount_cents=460)
        transactions.add(USER, tx)

        response = service.search(USER, SearchRequest(), session_id="chat-1")

        assert response.rows_csv == "t33333333,250915,m1,460,eo"
        assert response.dictionary == {
            "merchants": {"m1": "Blue Bottle"},
            "categories": {"eo": "EatingOut"},
        }
        assert response.stats.count == 1
        assert response.stats.sum == 460
        assert response.stats.avg == 460
        assert response.session_id == "chat-1"
        assert response.trace_id
        audit.record.assert_called_once()
        endpoint, user, session, rows, _ = audit.record.call_args[0]
        assert (endpoint, user, session, rows) == ("/rag/search", USER, "chat-1", 1)

    def test_follow_up_returns_only_unseen_rows(self, service, five_transactions):
        first = service.search(USER, SearchRequest(top_k=2), session_id="chat-C")
        seen_codes = [line.split(",")[0] for line in first.rows_csv.split("\n")]
        seen_merchants = set(first.dictionary["merchants"].values())
        assert len(seen_codes) == 2

        second = service.search(USER, SearchRequest(), session_id="chat-C")

        lines = second.rows_csv.split("\n")
        assert len(lines) <= 3
        assert second.stats.count == len(lines)
        for code in seen_codes:
            assert code not in second.rows_csv
        assert seen_merchants.isdisjoint(second.dictionary["merchants"].values())

    def test_repeat_search_in_same_session_is_empty(self, service, five_transactions, audit):
        service.search(USER, SearchRequest(), session_id="chat-1")

        repeat = service.search(USER, SearchRequest(), session_id="chat-1")

        assert repeat.rows_csv == ""
        assert repeat.dictionary == {"merchants": {}, "categories": {}}
        assert repeat.stats.count == 0
        assert audit.record.call_args[0][3:] == (0, 0)

    def test_other_session_sees_everything(self, service, five_transactions):
        service.search(USER, SearchRequest(), session_id="chat-1")

        other = service.search(USER, SearchRequest(), session_id="chat-2")

        assert other.stats.count == 5

    def test_session_expiry_resends_rows(self, service, five_transactions, clock):
        service.search(USER, SearchRequest(), session_id="chat-1")
        clock.advance(timedelta(hours=4, minutes=1))

        again = service.search(USER, SearchRequest(), session_id="chat-1")

        assert again.stats.count == 5

    def test_transaction_codes_stable_across_calls(self, service, five_transactions):
        first = service.search(USER, SearchRequest(), session_id="chat-1")
        second = service.search(USER, SearchRequest(), session_id="chat-2")

        assert sorted(first.rows_csv.split("\n")) == sorted(second.rows_csv.split("\n"))
        expected = {transaction_code(tx.transaction_id) for tx in five_transactions}
        assert {line.split(",")[0] for line in first.rows_csv.split("\n")} == expected

    def test_filter_only_search_is_newest_first(self, service, five_transactions):
        response = service.search(USER, SearchRequest(), session_id="chat-1")

        first_code = response.rows_csv.split("\n")[0].split(",")[0]
        assert first_code == transaction_code(five_transactions[0].transaction_id)

    def test_query_text_ranks_matching_merchant_first(self, service, five_transactions):
        response = service.search(USER, SearchRequest(q="Merchant Echo"), session_id="chat-1")

        first_code = response.rows_csv.split("\n")[0].split(",")[0]
        assert first_code == transaction_code(five_transactions[4].transaction_id)

    def test_stats_sum_and_truncated_avg(self, service, transactions):
        transactions.add_many(USER, [
            make_slice(amount_cents=-1000),
            make_slice(amount_cents=-1000),
            make_slice(amount_cents=-1),
        ])

        response = service.search(USER, SearchRequest(), session_id="chat-1")

        assert response.stats.count == 3
        assert response.stats.sum == -2001
        assert response.stats.avg == -667

    def test_filters_apply(self, service, five_transactions):
        request = SearchRequest(date_from=date(2025, 9, 27), date_to=date(2025, 9, 29))

        response = service.search(USER, request, session_id="chat-1")

        assert response.stats.count == 3

    def test_shared_merchant_gets_one_code(self, service, transactions):
        merchant_id = uuid4()
        for day in (1, 2):
            transactions.add(USER, TransactionSlice(
                transaction_id=uuid4(),
                occurred_on=date(2025, 9, day),
                amount_cents=-500,
                category="Groceries",
                description="",
                merchant_id=merchant_id,
                merchant_name="Grocer",
            ))

        response = service.search(USER, SearchRequest(), session_id="chat-1")

        assert response.dictionary["merchants"] == {"m1": "Grocer"}
        assert all(line.split(",")[2] == "m1" for line in response.rows_csv.split("\n"))

    def test_dictionary_labels_are_masked(self, service, transactions):
        transactions.add(USER, make_slice(merchant_name="Transfer 1234567890123"))

        response = service.search(USER, SearchRequest(), session_id="chat-1")

        assert "1234567890123" not in json.dumps(response.dictionary)

    def test_token_estimate(self, service, five_transactions, audit):
        response = service.search(USER, SearchRequest(), session_id="chat-1")

        expected = len(response.rows_csv) // 4 + len(json.dumps(response.dictionary)) // 4
        assert audit.record.call_args[0][4] == expected

    def test_rows_truncated_to_max_rows(self, transactions, clock, audit, five_transactions):
        service = RetrievalOrchestrator(
            transactions,
            InMemoryEmbeddingStore(transactions),
            HashEmbeddings(dimensions=8),
            audit=audit,
            config=RagConfig(max_rows=3, embed_dimension=8),
            clock=clock,
            tracer=NoOpTracer(),
        )

        response = service.search(USER, SearchRequest(top_k=50), session_id="chat-1")

        assert response.stats.count == 3

    def test_wire_format(self, service, five_transactions):
        response = service.search(USER, SearchRequest(), session_id="chat-1")

        body = response.model_dump(by_alias=True)

        assert set(body) == {"rowsCsv", "dict", "stats", "traceId", "sessionId"}

    def test_request_parses_wire_names(self):
        request = SearchRequest.model_validate(
            {"q": "coffee", "from": "2025-09-01", "to": "2025-09-30", "amountMin": -500, "topK": 5}
        )

        assert request.date_from == date(2025, 9, 1)
        assert request.amount_min == -500
        assert request.top_k == 5


# ---------------------------------------------------------------------------
# COLLABORATOR CONTRACTS
# ---------------------------------------------------------------------------


class TestSearchCollaborators:
    """Test call patterns against mocked stores."""

    def test_generates_session_id(self, mock_service):
        service, transactions, embedding_store, _ = mock_service
        embedding_store.find_nearest.return_value = []
        transactions.find_candidates.return_value = []

        response = service.search(USER, SearchRequest())

        assert UUID(response.session_id)

    def test_blank_query_skips_embedding(self, mock_service):
        service, transactions, embedding_store, embedder = mock_service
        embedding_store.find_nearest.return_value = []
        transactions.find_candidates.return_value = []

        service.search(USER, SearchRequest(q="   "), session_id="chat-1")

        embedder.embed.assert_not_called()
        assert embedding_store.find_nearest.call_args[0][1] is None

    def test_query_text_is_embedded(self, mock_service):
        service, transactions, embedding_store, embedder = mock_service
        embedding_store.find_nearest.return_value = []
        transactions.find_candidates.return_value = []

        service.search(USER, SearchRequest(q="coffee"), session_id="chat-1")

        embedder.embed.assert_called_once_with("coffee")

    def test_no_reindex_when_fully_indexed(self, mock_service):
        service, transactions, embedding_store, _ = mock_service
        tx = make_slice()
        embedding_store.find_nearest.return_value = [match_for(tx)]
        transactions.fetch_by_ids.return_value = [tx]

        service.search(USER, SearchRequest(), session_id="chat-1")

        transactions.find_candidates.assert_not_called()
        assert embedding_store.find_nearest.call_count == 1

    def test_repairs_at_most_once(self, mock_service):
        service, transactions, embedding_store, _ = mock_service
        tx = make_slice()
        unindexed = match_for(tx, embedding=np.empty(0, dtype=np.float32))
        embedding_store.find_nearest.return_value = [unindexed]
        transactions.find_candidates.return_value = [tx]
        transactions.fetch_by_ids.return_value = [tx]

        response = service.search(USER, SearchRequest(), session_id="chat-1")

        assert embedding_store.find_nearest.call_count == 2
        assert transactions.find_candidates.call_count == 1
        service._indexer.upsert_embeddings.assert_called_once_with(USER, [tx.transaction_id])
        # Still-unindexed rows are accepted and scored with the default similarity
        assert response.stats.count == 1

    def test_repair_batch_size(self, mock_service, config):
        service, transactions, embedding_store, _ = mock_service
        embedding_store.find_nearest.return_value = []
        transactions.find_candidates.return_value = []

        service.search(USER, SearchRequest(top_k=5), session_id="chat-1")

        assert transactions.find_candidates.call_args[0][2] == max(5, config.max_rows * 2)

    def test_no_retry_when_no_candidates(self, mock_service):
        service, transactions, embedding_store, _ = mock_service
        embedding_store.find_nearest.return_value = []
        transactions.find_candidates.return_value = []

        service.search(USER, SearchRequest(), session_id="chat-1")

        assert embedding_store.find_nearest.call_count == 1
        service._indexer.upsert_embeddings.assert_not_called()

    def test_unresolved_ids_dropped(self, mock_service):
        service, transactions, embedding_store, _ = mock_service
        kept, deleted = make_slice(), make_slice()
        embedding_store.find_nearest.return_value = [match_for(kept), match_for(deleted)]
        transactions.fetch_by_ids.return_value = [kept]

        response = service.search(USER, SearchRequest(), session_id="chat-1")

        assert response.stats.count == 1
        assert transaction_code(deleted.transaction_id) not in response.rows_csv

    @pytest.mark.parametrize(
        "max_rows,top_k,expected",
        [(20, None, 20), (20, 5, 5), (20, 500, 20), (150, None, 100), (150, 120, 100)],
    )
    def test_limit_clamp(self, max_rows, top_k, expected):
        service = RetrievalOrchestrator(
            MagicMock(), MagicMock(), MagicMock(),
            config=RagConfig(max_rows=max_rows),
            tracer=NoOpTracer(),
        )

        assert service.clamp_limit(top_k) == expected

    def test_default_audit_counts_session_hits(self, config, clock, caplog):
        transactions = InMemoryTransactionStore()
        transactions.add(USER, make_slice())
        tracker = SessionDiffTracker(InMemorySessionCache(clock=clock), clock=clock)
        service = RetrievalOrchestrator(
            transactions,
            InMemoryEmbeddingStore(transactions),
            HashEmbeddings(dimensions=8),
            tracker=tracker,
            config=config,
            clock=clock,
            tracer=NoOpTracer(),
        )

        with caplog.at_level("INFO"):
            service.search(USER, SearchRequest(), session_id="chat-1")
            service.search(USER, SearchRequest(), session_id="chat-1")

        assert "rag_audit endpoint=/rag/search" in caplog.text
        assert tracker.snapshot("chat-1").hit_count == 2


# ---------------------------------------------------------------------------
# ERRORS
# ---------------------------------------------------------------------------


class TestSearchErrors:
    """Test the error taxonomy at the service boundary."""

    def test_inverted_date_range(self, mock_service):
        service, transactions, embedding_store, _ = mock_service
        request = SearchRequest(date_from=date(2025, 9, 30), date_to=date(2025, 9, 1))

        with pytest.raises(InvalidFilterError) as exc_info:
            service.search(USER, request, session_id="chat-1")

        assert exc_info.value.trace_id
        assert exc_info.value.kind == "invalid_filter"
        embedding_store.find_nearest.assert_not_called()

    def test_inverted_amount_range(self, mock_service):
        service, _, embedding_store, _ = mock_service

        with pytest.raises(InvalidFilterError):
            service.search(USER, SearchRequest(amount_min=100, amount_max=-100), session_id="chat-1")

        embedding_store.find_nearest.assert_not_called()

    def test_store_unavailable_carries_trace_id(self, mock_service, audit):
        service, _, embedding_store, _ = mock_service
        embedding_store.find_nearest.side_effect = StoreUnavailableError("find_nearest failed")

        with pytest.raises(StoreUnavailableError) as exc_info:
            service.search(USER, SearchRequest(), session_id="chat-1")

        assert exc_info.value.retryable is True
        assert exc_info.value.trace_id
        assert exc_info.value.to_dict()["traceId"] == exc_info.value.trace_id
        audit.record.assert_not_called()

    def test_embedding_failure_does_not_propagate(self, mock_service):
        """FallbackEmbeddings absorbs errors; nothing else should leak either."""
        from ledger_rag.embeddings import FallbackEmbeddings

        service, transactions, embedding_store, _ = mock_service
        primary = MagicMock()
        primary.embed.side_effect = RuntimeError("401 unauthorized")
        service._embedder = FallbackEmbeddings(primary, HashEmbeddings(dimensions=8))
        embedding_store.find_nearest.return_value = []
        transactions.find_candidates.return_value = []

        response = service.search(USER, SearchRequest(q="coffee"), session_id="chat-1")

        assert response.rows_csv == ""
        assert embedding_store.find_nearest.call_args[0][1].shape == (8,)

    def test_top_k_must_be_positive(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            SearchRequest(top_k=0)
