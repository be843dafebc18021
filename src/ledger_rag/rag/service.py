"""
Retrieval orchestrator - the request/response cycle behind /rag/*.

search():
    query -> embedding -> nearest-neighbor candidates -> (one repair
    re-index) -> resolve slices -> score/rank -> session de-duplication ->
    compact CSV + dictionary -> audit

aggregate() and summaries() bypass the embedding path and read grouped
totals straight from the transaction store.

Only InvalidFilterError and StoreUnavailableError leave this module. Both
carry the request's trace id so support can correlate the failure.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import date
from uuid import UUID

import numpy as np

from ledger_rag.config import RagConfig, get_config
from ledger_rag.core.errors import InvalidFilterError, RagError
from ledger_rag.core.protocols import (
    AuditSink,
    EmbeddingProvider,
    NearestNeighborStore,
    TransactionStore,
)
from ledger_rag.observability import get_config as get_tracing_config
from ledger_rag.observability import get_tracer
from ledger_rag.observability.attributes import (
    RAG_CANDIDATE_COUNT,
    RAG_DEDUPLICATED_COUNT,
    RAG_ERROR_KIND,
    RAG_QUERY_LIMIT,
    RAG_REINDEX_COUNT,
    RAG_REINDEXED,
    RAG_UNRESOLVED_COUNT,
    request_attributes,
    response_attributes,
)
from ledger_rag.observability.tracer import TracerProtocol
from ledger_rag.rag.audit import LoggingAuditSink
from ledger_rag.rag.clock import Clock, SystemClock
from ledger_rag.rag.compression import (
    CompactRow,
    Dictionary,
    encode_rows,
    short_category,
    transaction_code,
)
from ledger_rag.rag.masking import mask
from ledger_rag.rag.schemas import (
    AggregateBucketOut,
    AggregateRequest,
    AggregateResponse,
    CategoryBreakdown,
    MerchantBreakdown,
    SearchRequest,
    SearchResponse,
    Stats,
    SummariesResponse,
    TimelinePointOut,
    Totals,
)
from ledger_rag.rag.scoring import RelevanceScorer, ScoredCandidate, ScoringQuery, truncating_div
from ledger_rag.rag.session import InMemorySessionCache, SessionDiffTracker
from ledger_rag.retrieval.indexer import TransactionIndexer
from ledger_rag.retrieval.models import EmbeddingMatch, Granularity, SearchFilters, period_key

logger = logging.getLogger(__name__)

SEARCH_ENDPOINT = "/rag/search"
AGGREGATE_ENDPOINT = "/rag/aggregate"
SUMMARIES_ENDPOINT = "/rag/summaries"

# Rough characters-per-token ratio for token estimates
CHARS_PER_TOKEN = 4
TOKENS_PER_BUCKET = 3


def validate_range(date_from: date | None, date_to: date | None) -> None:
    if date_from is not None and date_to is not None and date_from > date_to:
        raise InvalidFilterError(f"'from' ({date_from}) must not be after 'to' ({date_to})")


def to_filters(request: SearchRequest) -> SearchFilters:
    """Validate a search request's filters before any store access."""
    validate_range(request.date_from, request.date_to)
    if (
        request.amount_min is not None
        and request.amount_max is not None
        and request.amount_min > request.amount_max
    ):
        raise InvalidFilterError(
            f"amountMin ({request.amount_min}) must not exceed amountMax ({request.amount_max})"
        )
    return SearchFilters(
        date_from=request.date_from,
        date_to=request.date_to,
        categories=[c.strip() for c in request.categories if c and c.strip()],
        amount_min=request.amount_min,
        amount_max=request.amount_max,
    )


def parse_granularity(value: str) -> Granularity:
    try:
        return Granularity(value)
    except ValueError:
        allowed = ", ".join(g.value for g in Granularity)
        raise InvalidFilterError(f"Unsupported granularity: {value!r} (expected one of {allowed})") from None


def empty_search_response(trace_id: str, session_id: str) -> SearchResponse:
    return SearchResponse(
        rows_csv="",
        dictionary={"merchants": {}, "categories": {}},
        stats=Stats(),
        trace_id=trace_id,
        session_id=session_id,
    )


class RetrievalOrchestrator:
    """
    Composes embedding, retrieval, scoring, de-duplication and compression.

    Every collaborator is injected; defaults build the in-process pieces
    (scorer, session tracker, audit sink) from RagConfig.
    """

    def __init__(
        self,
        transactions: TransactionStore,
        embedding_store: NearestNeighborStore,
        embedder: EmbeddingProvider,
        indexer: TransactionIndexer | None = None,
        tracker: SessionDiffTracker | None = None,
        audit: AuditSink | None = None,
        config: RagConfig | None = None,
        clock: Clock | None = None,
        tracer: TracerProtocol | None = None,
        scorer: RelevanceScorer | None = None,
    ):
        self.config = config or get_config()
        self._clock = clock or SystemClock()
        self._transactions = transactions
        self._embedding_store = embedding_store
        self._embedder = embedder
        self._indexer = indexer or TransactionIndexer(transactions, embedding_store, embedder)
        self._tracker = tracker or SessionDiffTracker(
            InMemorySessionCache(ttl=self.config.session_ttl, clock=self._clock),
            clock=self._clock,
        )
        self._audit = audit or LoggingAuditSink(hit_counter=self._tracker.record_hit)
        self._tracer = tracer or get_tracer()
        self._scorer = scorer or RelevanceScorer()

    # -----------------------------------------------------------------------
    # SEARCH
    # -----------------------------------------------------------------------

    def clamp_limit(self, top_k: int | None) -> int:
        max_rows = self.config.max_rows
        requested = top_k if top_k is not None else max_rows
        return max(1, min(requested, max_rows, self.config.hard_row_ceiling))

    def search(
        self,
        user_id: UUID,
        request: SearchRequest,
        session_id: str | None = None,
    ) -> SearchResponse:
        """
        Return the unseen, best-ranked transactions for a query as compact CSV.

        Raises:
            InvalidFilterError: date or amount range is inverted
            StoreUnavailableError: a backing store could not be reached
        """
        session_id = session_id or str(uuid.uuid4())
        attributes = request_attributes(
            SEARCH_ENDPOINT,
            str(user_id),
            session_id,
            query_text=request.q,
            capture_query=get_tracing_config().capture_query,
        )
        with self._tracer.start_span("rag.search", attributes=attributes) as span:
            try:
                response = self._search(span, user_id, request, session_id)
            except RagError as e:
                e.trace_id = span.trace_id
                span.set_attribute(RAG_ERROR_KIND, e.kind)
                span.set_status("error", e.message)
                raise
            span.set_status("ok")
            return response

    def _search(self, span, user_id: UUID, request: SearchRequest, session_id: str) -> SearchResponse:
        filters = to_filters(request)
        limit = self.clamp_limit(request.top_k)
        span.set_attribute(RAG_QUERY_LIMIT, limit)

        query_vector = self._embedder.embed(request.q) if request.has_query_text else None
        matches = self._find_with_repair(span, user_id, query_vector, filters, limit)
        if not matches:
            return self._finish_empty(span, user_id, session_id)

        ids = [match.transaction_id for match in matches]
        slices = {tx.transaction_id: tx for tx in self._transactions.fetch_by_ids(user_id, ids)}
        resolved = [
            (slices[match.transaction_id], match.embedding)
            for match in matches
            if match.transaction_id in slices
        ]
        span.set_attribute(RAG_UNRESOLVED_COUNT, len(matches) - len(resolved))

        ranked = self._scorer.rank(
            resolved,
            ScoringQuery(
                today=self._clock.today(),
                vector=query_vector,
                amount_min=filters.amount_min,
                amount_max=filters.amount_max,
            ),
        )

        unseen = self._unseen(session_id, ranked)
        span.set_attribute(RAG_DEDUPLICATED_COUNT, len(ranked) - len(unseen))
        selected = unseen[: self.config.max_rows]
        if not selected:
            return self._finish_empty(span, user_id, session_id)

        dictionary = Dictionary()
        rows = []
        for code, candidate in selected:
            tx = candidate.slice
            category_code = short_category(tx.category)
            rows.append(
                CompactRow(
                    tx_code=code,
                    occurred_on=tx.occurred_on,
                    merchant_code=dictionary.merchant_code(tx.merchant_id, tx.merchant_name),
                    amount_cents=tx.amount_cents,
                    category_code=category_code,
                )
            )
            dictionary.register_category(category_code, tx.category)

        csv = encode_rows(rows)
        payload = dictionary.as_payload()
        total = sum(row.amount_cents for row in rows)
        stats = Stats(count=len(rows), sum=total, avg=truncating_div(total, len(rows)))

        tokens = len(csv) // CHARS_PER_TOKEN + len(json.dumps(payload)) // CHARS_PER_TOKEN
        self._audit.record(SEARCH_ENDPOINT, user_id, session_id, len(rows), tokens)
        for key, value in response_attributes(len(rows), tokens).items():
            span.set_attribute(key, value)

        return SearchResponse(
            rows_csv=csv,
            dictionary=payload,
            stats=stats,
            trace_id=span.trace_id,
            session_id=session_id,
        )

    def _find_with_repair(
        self,
        span,
        user_id: UUID,
        query_vector: np.ndarray | None,
        filters: SearchFilters,
        limit: int,
    ) -> list[EmbeddingMatch]:
        """Nearest-neighbor lookup with at most one re-index and retry."""
        matches = self._embedding_store.find_nearest(user_id, query_vector, filters, limit)
        needs_reindex = not matches or any(not match.is_indexed for match in matches)
        span.set_attribute(RAG_REINDEXED, needs_reindex)
        if needs_reindex:
            batch = max(limit, self.config.max_rows * 2)
            candidates = self._transactions.find_candidates(user_id, filters, batch)
            if candidates:
                count = self._indexer.upsert_embeddings(
                    user_id, [tx.transaction_id for tx in candidates]
                )
                logger.info(f"Re-indexed {count} transactions for user {user_id}")
                span.set_attribute(RAG_REINDEX_COUNT, count)
                matches = self._embedding_store.find_nearest(user_id, query_vector, filters, limit)

        span.set_attribute(RAG_CANDIDATE_COUNT, len(matches))
        return matches

    def _unseen(
        self,
        session_id: str,
        ranked: list[ScoredCandidate],
    ) -> list[tuple[str, ScoredCandidate]]:
        """Ranked candidates whose transaction code this session has not been sent."""
        coded = [(transaction_code(c.slice.transaction_id), c) for c in ranked]
        fresh = set(self._tracker.filter_new(session_id, [code for code, _ in coded]))
        unseen = []
        for code, candidate in coded:
            if code in fresh:
                # One row per code, even if two ids share a prefix
                fresh.discard(code)
                unseen.append((code, candidate))
        return unseen

    def _finish_empty(self, span, user_id: UUID, session_id: str) -> SearchResponse:
        self._audit.record(SEARCH_ENDPOINT, user_id, session_id, 0, 0)
        for key, value in response_attributes(0, 0).items():
            span.set_attribute(key, value)
        return empty_search_response(span.trace_id, session_id)

    # -----------------------------------------------------------------------
    # AGGREGATE
    # -----------------------------------------------------------------------

    def aggregate(self, user_id: UUID, request: AggregateRequest) -> AggregateResponse:
        """Grouped counts, sums and averages plus a monthly timeline."""
        attributes = request_attributes(AGGREGATE_ENDPOINT, str(user_id), request.session_id)
        with self._tracer.start_span("rag.aggregate", attributes=attributes) as span:
            try:
                granularity = parse_granularity(request.granularity)
                validate_range(request.date_from, request.date_to)

                buckets = self._transactions.aggregate(
                    user_id, request.date_from, request.date_to, granularity
                )
                timeline = self._transactions.aggregate_timeline(
                    user_id, request.date_from, request.date_to
                )
            except RagError as e:
                e.trace_id = span.trace_id
                span.set_attribute(RAG_ERROR_KIND, e.kind)
                span.set_status("error", e.message)
                raise

            tokens = len(buckets) * TOKENS_PER_BUCKET
            self._audit.record(AGGREGATE_ENDPOINT, user_id, request.session_id, len(buckets), tokens)
            for key, value in response_attributes(len(buckets), tokens).items():
                span.set_attribute(key, value)
            span.set_status("ok")

            return AggregateResponse(
                granularity=granularity.value,
                date_from=request.date_from,
                date_to=request.date_to,
                buckets=[
                    AggregateBucketOut(
                        key=bucket.key,
                        label=mask(bucket.label) or "",
                        count=bucket.count,
                        sum=bucket.sum_cents,
                        avg=bucket.avg_cents,
                    )
                    for bucket in buckets
                ],
                timeline=[
                    TimelinePointOut(bucket=point.bucket, count=point.count, sum=point.sum_cents)
                    for point in timeline
                ],
                trace_id=span.trace_id,
                session_id=request.session_id,
            )

    # -----------------------------------------------------------------------
    # SUMMARIES
    # -----------------------------------------------------------------------

    def summaries(self, user_id: UUID, month: date) -> SummariesResponse:
        """Income/expense totals with category and top-merchant breakdowns for a month."""
        attributes = request_attributes(SUMMARIES_ENDPOINT, str(user_id), None)
        with self._tracer.start_span("rag.summaries", attributes=attributes) as span:
            try:
                summary = self._transactions.monthly_summary(user_id, month)
            except RagError as e:
                e.trace_id = span.trace_id
                span.set_attribute(RAG_ERROR_KIND, e.kind)
                span.set_status("error", e.message)
                raise
            span.set_status("ok")

            month_key = period_key(month)
            if summary.totals.count == 0:
                return SummariesResponse(
                    month=month_key,
                    totals=Totals(),
                    categories=[],
                    merchants=[],
                    trace_id=span.trace_id,
                )

            income = summary.totals.income_cents
            expense = summary.totals.expense_cents
            return SummariesResponse(
                month=month_key,
                totals=Totals(income=income, expense=expense, net=income + expense),
                categories=[
                    CategoryBreakdown(
                        code=short_category(c.category),
                        label=mask(c.category) or "",
                        count=c.count,
                        sum=c.sum_cents,
                        avg=c.avg_cents,
                    )
                    for c in summary.categories
                ],
                merchants=[
                    MerchantBreakdown(
                        merchant_id=str(m.merchant_id),
                        label=mask(m.merchant_name) or "",
                        count=m.count,
                        sum=m.sum_cents,
                    )
                    for m in summary.merchants
                ],
                trace_id=span.trace_id,
            )
