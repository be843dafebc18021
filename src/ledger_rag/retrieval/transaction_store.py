"""
Transaction store implementations.

1. PgTransactionStore - reads transactions/merchants tables (production)
2. InMemoryTransactionStore - dict-backed store (testing/development)
3. get_transaction_store() - Factory function

Amounts are stored as NUMERIC dollars in PostgreSQL and surfaced as signed
integer cents everywhere else. Averages truncate toward zero.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from uuid import UUID

from ledger_rag.retrieval.models import (
    AggregateBucket,
    CategorySummary,
    Granularity,
    MerchantSummary,
    MonthlySummary,
    MonthTotals,
    SearchFilters,
    TimelinePoint,
    TransactionSlice,
    period_key,
)
from ledger_rag.retrieval.postgres import (
    StoreConfig,
    end_exclusive,
    open_connection,
    start_of_day,
    to_cents,
    to_utc_date,
    translate_errors,
)

logger = logging.getLogger(__name__)

TOP_MERCHANTS = 20


def _avg(total: int, count: int) -> int:
    if count == 0:
        return 0
    quotient = abs(total) // count
    return quotient if total >= 0 else -quotient


def _month_bounds(month: date) -> tuple[date, date]:
    first = month.replace(day=1)
    if first.month == 12:
        following = first.replace(year=first.year + 1, month=1)
    else:
        following = first.replace(month=first.month + 1)
    return first, following


# ---------------------------------------------------------------------------
# POSTGRES STORE (Production)
# ---------------------------------------------------------------------------


_SLICE_COLUMNS = """
    t.id,
    t.occurred_at,
    t.amount,
    t.category,
    coalesce(t.description, '') AS description,
    m.id AS merchant_id,
    m.name AS merchant_name
"""

_BUCKET_COLUMNS = {
    Granularity.CATEGORY: "t.category AS bucket_key, t.category AS label",
    Granularity.MERCHANT: "m.id::text AS bucket_key, m.name AS label",
    Granularity.MONTH: (
        "to_char(date_trunc('month', t.occurred_at), 'YYYY-MM') AS bucket_key, "
        "to_char(date_trunc('month', t.occurred_at), 'YYYY-MM') AS label"
    ),
}


class PgTransactionStore:
    """Read-only access to the ledger's transactions and merchants tables."""

    def __init__(self, config: StoreConfig):
        self.config = config
        self._conn = None

    def connect(self) -> None:
        with translate_errors("connect", self.close):
            self._conn = open_connection(self.config)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _connection(self):
        if not self._conn:
            self.connect()
        return self._conn

    def create_schema(self) -> None:
        """Create the merchants and transactions tables the queries below read."""
        merchants = self.config.merchants_table
        transactions = self.config.transactions_table
        with translate_errors("create_schema", self.close):
            conn = self._connection()
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {merchants} (
                    id UUID PRIMARY KEY,
                    name TEXT NOT NULL
                )
            """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {transactions} (
                    id UUID PRIMARY KEY,
                    user_id UUID NOT NULL,
                    merchant_id UUID NOT NULL REFERENCES {merchants}(id),
                    amount NUMERIC(14, 2) NOT NULL,
                    occurred_at TIMESTAMPTZ NOT NULL,
                    category TEXT NOT NULL,
                    description TEXT
                )
            """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {transactions}_user_occurred_idx "
                f"ON {transactions} (user_id, occurred_at DESC)"
            )

    def _query(self, operation: str, sql: str, params: dict) -> list[tuple]:
        with translate_errors(operation, self.close):
            return self._connection().execute(sql, params).fetchall()

    @staticmethod
    def _to_slice(row: tuple) -> TransactionSlice:
        return TransactionSlice(
            transaction_id=row[0],
            occurred_on=to_utc_date(row[1]),
            amount_cents=to_cents(row[2]),
            category=row[3],
            description=row[4],
            merchant_id=row[5],
            merchant_name=row[6],
        )

    def _range_clauses(self, date_from: date | None, date_to: date | None, params: dict) -> list[str]:
        clauses = []
        if date_from is not None:
            clauses.append("t.occurred_at >= %(date_from)s")
            params["date_from"] = start_of_day(date_from)
        if date_to is not None:
            clauses.append("t.occurred_at < %(date_to)s")
            params["date_to"] = end_exclusive(date_to)
        return clauses

    def fetch_by_ids(self, user_id: UUID, ids: list[UUID]) -> list[TransactionSlice]:
        if not ids:
            return []
        sql = f"""
            SELECT {_SLICE_COLUMNS}
            FROM {self.config.transactions_table} t
            JOIN {self.config.merchants_table} m ON t.merchant_id = m.id
            WHERE t.user_id = %(user_id)s
              AND t.id = ANY(%(ids)s)
        """
        rows = self._query("fetch_by_ids", sql, {"user_id": user_id, "ids": list(ids)})
        return [self._to_slice(row) for row in rows]

    def find_candidates(self, user_id: UUID, filters: SearchFilters, limit: int) -> list[TransactionSlice]:
        params: dict = {"user_id": user_id, "limit": limit}
        clauses = ["t.user_id = %(user_id)s"]
        clauses += self._range_clauses(filters.date_from, filters.date_to, params)
        if filters.categories:
            clauses.append("t.category = ANY(%(categories)s)")
            params["categories"] = list(filters.categories)
        if filters.amount_min is not None:
            clauses.append("CAST(t.amount * 100 AS bigint) >= %(amount_min)s")
            params["amount_min"] = filters.amount_min
        if filters.amount_max is not None:
            clauses.append("CAST(t.amount * 100 AS bigint) <= %(amount_max)s")
            params["amount_max"] = filters.amount_max

        sql = f"""
            SELECT {_SLICE_COLUMNS}
            FROM {self.config.transactions_table} t
            JOIN {self.config.merchants_table} m ON t.merchant_id = m.id
            WHERE {' AND '.join(clauses)}
            ORDER BY t.occurred_at DESC, t.amount DESC
            LIMIT %(limit)s
        """
        return [self._to_slice(row) for row in self._query("find_candidates", sql, params)]

    def aggregate(
        self,
        user_id: UUID,
        date_from: date | None,
        date_to: date | None,
        granularity: Granularity,
    ) -> list[AggregateBucket]:
        params: dict = {"user_id": user_id}
        clauses = ["t.user_id = %(user_id)s"] + self._range_clauses(date_from, date_to, params)
        join = ""
        if granularity == Granularity.MERCHANT:
            join = f"JOIN {self.config.merchants_table} m ON t.merchant_id = m.id"

        sql = f"""
            SELECT {_BUCKET_COLUMNS[granularity]},
                   count(*) AS cnt,
                   CAST(sum(t.amount * 100) AS bigint) AS sum_cents,
                   CAST(trunc(avg(t.amount) * 100) AS bigint) AS avg_cents
            FROM {self.config.transactions_table} t
            {join}
            WHERE {' AND '.join(clauses)}
            GROUP BY bucket_key, label
            ORDER BY sum_cents ASC
        """
        return [
            AggregateBucket(key=row[0], label=row[1], count=row[2], sum_cents=row[3], avg_cents=row[4])
            for row in self._query("aggregate", sql, params)
        ]

    def aggregate_timeline(
        self,
        user_id: UUID,
        date_from: date | None,
        date_to: date | None,
    ) -> list[TimelinePoint]:
        params: dict = {"user_id": user_id}
        clauses = ["t.user_id = %(user_id)s"] + self._range_clauses(date_from, date_to, params)
        sql = f"""
            SELECT to_char(date_trunc('month', t.occurred_at), 'YYYY-MM') AS bucket,
                   count(*) AS cnt,
                   CAST(sum(t.amount * 100) AS bigint) AS sum_cents
            FROM {self.config.transactions_table} t
            WHERE {' AND '.join(clauses)}
            GROUP BY bucket
            ORDER BY bucket ASC
        """
        return [
            TimelinePoint(bucket=row[0], count=row[1], sum_cents=row[2])
            for row in self._query("aggregate_timeline", sql, params)
        ]

    def monthly_summary(self, user_id: UUID, month: date) -> MonthlySummary:
        first, following = _month_bounds(month)
        params = {
            "user_id": user_id,
            "date_from": start_of_day(first),
            "date_to": start_of_day(following),
        }
        where = """
            WHERE t.user_id = %(user_id)s
              AND t.occurred_at >= %(date_from)s
              AND t.occurred_at < %(date_to)s
        """
        table = self.config.transactions_table

        totals_row = self._query("monthly_summary", f"""
            SELECT
                CAST(coalesce(sum(CASE WHEN t.amount > 0 THEN t.amount * 100 ELSE 0 END), 0) AS bigint),
                CAST(coalesce(sum(CASE WHEN t.amount < 0 THEN t.amount * 100 ELSE 0 END), 0) AS bigint),
                count(*)
            FROM {table} t
            {where}
        """, params)[0]

        categories = self._query("monthly_summary", f"""
            SELECT t.category,
                   count(*) AS cnt,
                   CAST(sum(t.amount * 100) AS bigint) AS sum_cents,
                   CAST(trunc(avg(t.amount) * 100) AS bigint) AS avg_cents
            FROM {table} t
            {where}
            GROUP BY t.category
            ORDER BY sum_cents ASC
        """, params)

        merchants = self._query("monthly_summary", f"""
            SELECT m.id, m.name,
                   count(*) AS cnt,
                   CAST(sum(t.amount * 100) AS bigint) AS sum_cents
            FROM {table} t
            JOIN {self.config.merchants_table} m ON t.merchant_id = m.id
            {where}
            GROUP BY m.id, m.name
            ORDER BY sum_cents ASC
            LIMIT {TOP_MERCHANTS}
        """, params)

        return MonthlySummary(
            totals=MonthTotals(income_cents=totals_row[0], expense_cents=totals_row[1], count=totals_row[2]),
            categories=[CategorySummary(*row) for row in categories],
            merchants=[MerchantSummary(*row) for row in merchants],
        )


# ---------------------------------------------------------------------------
# IN-MEMORY STORE (Testing/Development)
# ---------------------------------------------------------------------------


class InMemoryTransactionStore:
    """
    In-memory transaction store for development/testing.

    Implements the same interface as PgTransactionStore with the same
    ordering rules, so service tests exercise realistic results.
    """

    def __init__(self):
        self._by_user: dict[UUID, dict[UUID, TransactionSlice]] = defaultdict(dict)

    def connect(self) -> None:
        """No-op for in-memory store."""
        pass

    def close(self) -> None:
        """No-op for in-memory store."""
        pass

    def create_schema(self) -> None:
        """No-op for in-memory store."""
        pass

    def add(self, user_id: UUID, transaction: TransactionSlice) -> None:
        self._by_user[user_id][transaction.transaction_id] = transaction

    def add_many(self, user_id: UUID, transactions: list[TransactionSlice]) -> None:
        for transaction in transactions:
            self.add(user_id, transaction)

    def remove(self, user_id: UUID, transaction_id: UUID) -> None:
        self._by_user[user_id].pop(transaction_id, None)

    def get(self, user_id: UUID, transaction_id: UUID) -> TransactionSlice | None:
        return self._by_user.get(user_id, {}).get(transaction_id)

    def _in_range(self, user_id: UUID, date_from: date | None, date_to: date | None) -> list[TransactionSlice]:
        filters = SearchFilters(date_from=date_from, date_to=date_to)
        return [
            tx for tx in self._by_user.get(user_id, {}).values()
            if filters.matches(tx.occurred_on, tx.category, tx.amount_cents)
        ]

    def fetch_by_ids(self, user_id: UUID, ids: list[UUID]) -> list[TransactionSlice]:
        found = (self.get(user_id, tx_id) for tx_id in ids)
        return [tx for tx in found if tx is not None]

    def find_candidates(self, user_id: UUID, filters: SearchFilters, limit: int) -> list[TransactionSlice]:
        matching = [
            tx for tx in self._by_user.get(user_id, {}).values()
            if filters.matches(tx.occurred_on, tx.category, tx.amount_cents)
        ]
        matching.sort(key=lambda tx: (tx.occurred_on, tx.amount_cents), reverse=True)
        return matching[:limit]

    def aggregate(
        self,
        user_id: UUID,
        date_from: date | None,
        date_to: date | None,
        granularity: Granularity,
    ) -> list[AggregateBucket]:
        groups: dict[tuple[str, str], list[int]] = defaultdict(list)
        for tx in self._in_range(user_id, date_from, date_to):
            if granularity == Granularity.CATEGORY:
                key = (tx.category, tx.category)
            elif granularity == Granularity.MERCHANT:
                key = (str(tx.merchant_id), tx.merchant_name)
            else:
                month = period_key(tx.occurred_on)
                key = (month, month)
            groups[key].append(tx.amount_cents)

        buckets = [
            AggregateBucket(
                key=key,
                label=label,
                count=len(amounts),
                sum_cents=sum(amounts),
                avg_cents=_avg(sum(amounts), len(amounts)),
            )
            for (key, label), amounts in groups.items()
        ]
        return sorted(buckets, key=lambda b: b.sum_cents)

    def aggregate_timeline(
        self,
        user_id: UUID,
        date_from: date | None,
        date_to: date | None,
    ) -> list[TimelinePoint]:
        groups: dict[str, list[int]] = defaultdict(list)
        for tx in self._in_range(user_id, date_from, date_to):
            groups[period_key(tx.occurred_on)].append(tx.amount_cents)
        return [
            TimelinePoint(bucket=bucket, count=len(amounts), sum_cents=sum(amounts))
            for bucket, amounts in sorted(groups.items())
        ]

    def monthly_summary(self, user_id: UUID, month: date) -> MonthlySummary:
        first, following = _month_bounds(month)
        txs = [
            tx for tx in self._by_user.get(user_id, {}).values()
            if first <= tx.occurred_on < following
        ]

        totals = MonthTotals(
            income_cents=sum(tx.amount_cents for tx in txs if tx.amount_cents > 0),
            expense_cents=sum(tx.amount_cents for tx in txs if tx.amount_cents < 0),
            count=len(txs),
        )

        by_category: dict[str, list[int]] = defaultdict(list)
        by_merchant: dict[tuple[UUID, str], list[int]] = defaultdict(list)
        for tx in txs:
            by_category[tx.category].append(tx.amount_cents)
            by_merchant[(tx.merchant_id, tx.merchant_name)].append(tx.amount_cents)

        categories = sorted(
            (
                CategorySummary(category, len(amounts), sum(amounts), _avg(sum(amounts), len(amounts)))
                for category, amounts in by_category.items()
            ),
            key=lambda c: c.sum_cents,
        )
        merchants = sorted(
            (
                MerchantSummary(merchant_id, name, len(amounts), sum(amounts))
                for (merchant_id, name), amounts in by_merchant.items()
            ),
            key=lambda m: m.sum_cents,
        )[:TOP_MERCHANTS]

        return MonthlySummary(totals=totals, categories=categories, merchants=merchants)

    def __len__(self) -> int:
        return sum(len(txs) for txs in self._by_user.values())


# ---------------------------------------------------------------------------
# FACTORY FUNCTION
# ---------------------------------------------------------------------------


def get_transaction_store(
    use_postgres: bool = False,
    config: StoreConfig | None = None,
) -> PgTransactionStore | InMemoryTransactionStore:
    """Factory function to get the appropriate transaction store."""
    if use_postgres:
        return PgTransactionStore(config or StoreConfig())
    return InMemoryTransactionStore()
