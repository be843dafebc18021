"""
Request/response contracts for the RAG endpoints.

Pydantic models are the boundary surface: the CLI (or any HTTP layer in
front of the service) parses into the request models and serializes the
response models with `model_dump(by_alias=True)`, which yields the
camelCase wire names (`rowsCsv`, `dict`, `traceId`, `sessionId`, ...).
"""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# SEARCH
# ---------------------------------------------------------------------------


class SearchRequest(_WireModel):
    q: str | None = Field(default=None, description="Free-text query")
    date_from: date | None = Field(default=None, alias="from")
    date_to: date | None = Field(default=None, alias="to")
    categories: list[str] = Field(default_factory=list)
    amount_min: int | None = Field(default=None, description="Lower bound in cents")
    amount_max: int | None = Field(default=None, description="Upper bound in cents")
    top_k: int | None = Field(default=None, ge=1)

    @property
    def has_query_text(self) -> bool:
        return bool(self.q and self.q.strip())


class Stats(_WireModel):
    count: int = 0
    sum: int = 0
    avg: int = 0


class SearchResponse(_WireModel):
    rows_csv: str
    dictionary: dict[str, dict[str, str]] = Field(alias="dict")
    stats: Stats
    trace_id: str | None = None
    session_id: str | None = None


# ---------------------------------------------------------------------------
# AGGREGATE
# ---------------------------------------------------------------------------


class AggregateRequest(_WireModel):
    date_from: date | None = Field(default=None, alias="from")
    date_to: date | None = Field(default=None, alias="to")
    # Validated by the service so that the rejection is an InvalidFilterError
    granularity: str = "category"
    session_id: str | None = None


class AggregateBucketOut(_WireModel):
    key: str
    label: str
    count: int
    sum: int
    avg: int


class TimelinePointOut(_WireModel):
    bucket: str
    count: int
    sum: int


class AggregateResponse(_WireModel):
    granularity: str
    date_from: date | None = Field(default=None, alias="from")
    date_to: date | None = Field(default=None, alias="to")
    buckets: list[AggregateBucketOut]
    timeline: list[TimelinePointOut]
    trace_id: str | None = None
    session_id: str | None = None


# ---------------------------------------------------------------------------
# MONTHLY SUMMARIES
# ---------------------------------------------------------------------------


class Totals(_WireModel):
    income: int = 0
    expense: int = 0
    net: int = 0


class CategoryBreakdown(_WireModel):
    code: str
    label: str
    count: int
    sum: int
    avg: int


class MerchantBreakdown(_WireModel):
    merchant_id: str
    label: str
    count: int
    sum: int


class SummariesResponse(_WireModel):
    month: str
    totals: Totals
    categories: list[CategoryBreakdown]
    merchants: list[MerchantBreakdown]
    trace_id: str | None = None
