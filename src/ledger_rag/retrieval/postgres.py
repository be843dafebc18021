"""
Shared PostgreSQL plumbing for the production stores.

Both stores take a StoreConfig, open a psycopg connection lazily with a
server-side statement timeout, and translate connectivity failures into
StoreUnavailableError so the service can report them as retryable.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterator

import psycopg
from pgvector.psycopg import register_vector

from ledger_rag.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class StoreConfig:
    """Configuration for the PostgreSQL stores."""

    connection_string: str = "postgresql://localhost/ledger"
    embedding_dim: int = 1536
    statement_timeout_ms: int = 5000
    embeddings_table: str = "tx_embeddings"
    transactions_table: str = "transactions"
    merchants_table: str = "merchants"

    @classmethod
    def from_rag_config(cls, config) -> "StoreConfig":
        return cls(
            connection_string=config.database_url,
            embedding_dim=config.embed_dimension,
            statement_timeout_ms=config.statement_timeout_ms,
        )


def open_connection(config: StoreConfig, with_vector: bool = False) -> psycopg.Connection:
    """Open an autocommit connection bounded by the configured statement timeout."""
    conn = psycopg.connect(
        config.connection_string,
        autocommit=True,
        options=f"-c statement_timeout={config.statement_timeout_ms}",
    )
    if with_vector:
        conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
        register_vector(conn)
    return conn


@contextmanager
def translate_errors(
    operation: str,
    on_failure: Callable[[], None] | None = None,
) -> Iterator[None]:
    """
    Re-raise connectivity failures and timeouts as StoreUnavailableError.

    on_failure runs before the re-raise; stores pass their close() so the
    next call opens a fresh connection instead of reusing a dead one.
    """
    try:
        yield
    except psycopg.OperationalError as e:
        logger.error(f"Store operation {operation} failed: {e}")
        if on_failure is not None:
            on_failure()
        raise StoreUnavailableError(f"{operation} failed: store unavailable") from e


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def end_exclusive(day: date) -> datetime:
    """Midnight UTC after `day`, for half-open `occurred_at < :to` ranges."""
    return start_of_day(day + timedelta(days=1))


def to_cents(amount: Decimal | int | float) -> int:
    return int(Decimal(str(amount)) * 100)


def to_utc_date(moment: datetime) -> date:
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(timezone.utc).date()
