"""
Data models for the retrieval system.

Single responsibility: Define the shapes that flow between the
transaction store, the embedding store and the retrieval service.
Stores own these rows; the service only references them for the
lifetime of one request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from uuid import UUID

import numpy as np


def period_key(day: date) -> str:
    """Month bucket for a date, formatted as YYYY-MM."""
    return f"{day.year:04d}-{day.month:02d}"


@dataclass(frozen=True)
class TransactionSlice:
    """
    The subset of a transaction the retrieval engine needs.

    amount_cents is signed: expenses are negative, income positive.
    """
    transaction_id: UUID
    occurred_on: date
    amount_cents: int
    category: str
    description: str
    merchant_id: UUID
    merchant_name: str


@dataclass
class EmbeddingRecord:
    """A row written to the nearest-neighbor store, keyed by transaction_id."""
    transaction_id: UUID
    user_id: UUID
    period_key: str
    category: str
    amount_cents: int
    merchant_id: UUID
    normalized_merchant_name: str
    embedding: np.ndarray


@dataclass
class EmbeddingMatch:
    """
    A candidate returned by the nearest-neighbor store.

    An empty embedding means the transaction has never been indexed.
    """
    transaction_id: UUID
    merchant_id: UUID
    embedding: np.ndarray
    period_key: str
    amount_cents: int
    category: str

    @property
    def is_indexed(self) -> bool:
        return self.embedding is not None and len(self.embedding) > 0


@dataclass
class SearchFilters:
    """Structured filters shared by candidate retrieval and re-indexing."""
    date_from: date | None = None
    date_to: date | None = None
    categories: list[str] = field(default_factory=list)
    amount_min: int | None = None
    amount_max: int | None = None

    def matches(self, occurred_on: date, category: str, amount_cents: int) -> bool:
        """In-process evaluation of the same predicate the SQL stores apply."""
        if self.date_from is not None and occurred_on < self.date_from:
            return False
        if self.date_to is not None and occurred_on > self.date_to:
            return False
        if self.categories and category not in self.categories:
            return False
        if self.amount_min is not None and amount_cents < self.amount_min:
            return False
        if self.amount_max is not None and amount_cents > self.amount_max:
            return False
        return True


# ---------------------------------------------------------------------------
# AGGREGATES
# ---------------------------------------------------------------------------


class Granularity(str, Enum):
    CATEGORY = "category"
    MERCHANT = "merchant"
    MONTH = "month"


@dataclass
class AggregateBucket:
    key: str
    label: str
    count: int
    sum_cents: int
    avg_cents: int


@dataclass
class TimelinePoint:
    bucket: str
    count: int
    sum_cents: int


@dataclass
class MonthTotals:
    income_cents: int
    expense_cents: int
    count: int


@dataclass
class CategorySummary:
    category: str
    count: int
    sum_cents: int
    avg_cents: int


@dataclass
class MerchantSummary:
    merchant_id: UUID
    merchant_name: str
    count: int
    sum_cents: int


@dataclass
class MonthlySummary:
    totals: MonthTotals
    categories: list[CategorySummary]
    merchants: list[MerchantSummary]
