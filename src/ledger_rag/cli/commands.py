"""
CLI commands - entry points for the retrieval service.

Each command follows a consistent pattern:
1. Parse arguments
2. Load environment
3. Build the service (PostgreSQL, or seeded in-memory stores with --demo)
4. Print the JSON response
5. Return exit code (0 ok, 2 invalid input, 3 store unavailable)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from ledger_rag.config import RagConfig, get_config
from ledger_rag.core.errors import InvalidFilterError, RagError, StoreUnavailableError
from ledger_rag.embeddings import get_embedding_provider
from ledger_rag.observability import init_tracing, shutdown_tracing
from ledger_rag.rag.schemas import AggregateRequest, SearchRequest
from ledger_rag.rag.service import RetrievalOrchestrator
from ledger_rag.retrieval.embedding_store import (
    InMemoryEmbeddingStore,
    PgVectorEmbeddingStore,
    get_embedding_store,
)
from ledger_rag.retrieval.indexer import TransactionIndexer
from ledger_rag.retrieval.models import SearchFilters
from ledger_rag.retrieval.postgres import StoreConfig
from ledger_rag.retrieval.seeds import DEMO_USER_ID, seed_stores
from ledger_rag.retrieval.transaction_store import (
    InMemoryTransactionStore,
    PgTransactionStore,
    get_transaction_store,
)

EXIT_OK = 0
EXIT_INVALID_INPUT = 2
EXIT_STORE_UNAVAILABLE = 3

# Upper bound on transactions re-indexed by one `reindex` run
DEFAULT_REINDEX_LIMIT = 10_000


def _load_env() -> None:
    """Load environment variables from .env file."""
    load_dotenv()


@dataclass
class Runtime:
    """Stores and service wired for one CLI invocation."""
    service: RetrievalOrchestrator
    transactions: PgTransactionStore | InMemoryTransactionStore
    embedding_store: PgVectorEmbeddingStore | InMemoryEmbeddingStore
    indexer: TransactionIndexer

    def close(self) -> None:
        self.transactions.close()
        self.embedding_store.close()


def build_runtime(demo: bool, config: RagConfig | None = None) -> Runtime:
    config = config or get_config()
    store_config = StoreConfig.from_rag_config(config)
    embedder = get_embedding_provider(config)

    transactions = get_transaction_store(use_postgres=not demo, config=store_config)
    embedding_store = get_embedding_store(
        use_postgres=not demo,
        config=store_config,
        transactions=transactions if demo else None,
    )
    indexer = TransactionIndexer(transactions, embedding_store, embedder)
    if demo:
        seed_stores(transactions)

    service = RetrievalOrchestrator(
        transactions,
        embedding_store,
        embedder,
        indexer=indexer,
        config=config,
    )
    return Runtime(service, transactions, embedding_store, indexer)


def _print_model(model: BaseModel) -> None:
    print(json.dumps(model.model_dump(mode="json", by_alias=True), indent=2))


def _print_error(error: RagError) -> None:
    body = error.to_dict()
    body.pop("retryable", None)
    print(json.dumps(body, indent=2), file=sys.stderr)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from None


def _parse_month(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got {value!r}") from None


# ---------------------------------------------------------------------------
# COMMANDS
# ---------------------------------------------------------------------------


def run_search(args: argparse.Namespace, runtime: Runtime) -> int:
    request = SearchRequest(
        q=args.q,
        date_from=args.date_from,
        date_to=args.date_to,
        categories=args.category or [],
        amount_min=args.amount_min,
        amount_max=args.amount_max,
        top_k=args.top_k,
    )
    _print_model(runtime.service.search(args.user, request, session_id=args.session))
    return EXIT_OK


def run_aggregate(args: argparse.Namespace, runtime: Runtime) -> int:
    request = AggregateRequest(
        date_from=args.date_from,
        date_to=args.date_to,
        granularity=args.granularity,
        session_id=args.session,
    )
    _print_model(runtime.service.aggregate(args.user, request))
    return EXIT_OK


def run_summaries(args: argparse.Namespace, runtime: Runtime) -> int:
    _print_model(runtime.service.summaries(args.user, args.month))
    return EXIT_OK


def run_reindex(args: argparse.Namespace, runtime: Runtime) -> int:
    if args.reset:
        runtime.indexer.delete_all(args.user)
    candidates = runtime.transactions.find_candidates(args.user, SearchFilters(), args.limit)
    count = runtime.indexer.upsert_embeddings(args.user, [tx.transaction_id for tx in candidates])
    print(json.dumps({"userId": str(args.user), "indexed": count}))
    return EXIT_OK


def run_schema(args: argparse.Namespace, runtime: Runtime) -> int:
    runtime.transactions.create_schema()
    runtime.embedding_store.create_schema()
    print(json.dumps({"schema": "ok"}))
    return EXIT_OK


COMMANDS = {
    "search": run_search,
    "aggregate": run_aggregate,
    "summaries": run_summaries,
    "reindex": run_reindex,
    "schema": run_schema,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-rag",
        description="Conversational transaction retrieval",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  search      Ranked, de-duplicated transactions as compact CSV
  aggregate   Grouped totals by category, merchant or month
  summaries   Income/expense breakdown for one month
  reindex     Embed a user's transactions into the vector store
  schema      Create the tables used by the stores

Examples:
  ledger-rag --demo search --q "coffee"
  ledger-rag --demo aggregate --granularity merchant --from 2025-08-01
  ledger-rag --user <uuid> summaries --month 2025-09
        """,
    )
    parser.add_argument("--demo", action="store_true", help="Use seeded in-memory stores")
    parser.add_argument("--user", type=UUID, default=None, help="User id (defaults to the demo user)")
    parser.add_argument("--verbose", action="store_true", help="Log at INFO level")

    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Search transactions")
    search.add_argument("--q", default=None, help="Free-text query")
    search.add_argument("--from", dest="date_from", type=_parse_date, default=None)
    search.add_argument("--to", dest="date_to", type=_parse_date, default=None)
    search.add_argument("--category", action="append", help="Repeatable category filter")
    search.add_argument("--amount-min", type=int, default=None, help="Cents")
    search.add_argument("--amount-max", type=int, default=None, help="Cents")
    search.add_argument("--top-k", type=int, default=None)
    search.add_argument("--session", default=None, help="Chat session id")

    aggregate = sub.add_parser("aggregate", help="Aggregate transactions")
    aggregate.add_argument("--from", dest="date_from", type=_parse_date, default=None)
    aggregate.add_argument("--to", dest="date_to", type=_parse_date, default=None)
    aggregate.add_argument("--granularity", default="category", help="category, merchant or month")
    aggregate.add_argument("--session", default=None)

    summaries = sub.add_parser("summaries", help="Monthly summary")
    summaries.add_argument("--month", type=_parse_month, required=True, help="YYYY-MM")

    reindex = sub.add_parser("reindex", help="Re-embed a user's transactions")
    reindex.add_argument("--limit", type=int, default=DEFAULT_REINDEX_LIMIT)
    reindex.add_argument("--reset", action="store_true", help="Delete existing embeddings first")

    sub.add_parser("schema", help="Create tables and indexes")

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Main CLI entry point with subcommands.

    Usage:
        ledger-rag --demo search --q coffee
        ledger-rag aggregate --granularity month
    """
    _load_env()

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.user is None:
        args.user = DEMO_USER_ID

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    init_tracing()
    runtime = None
    try:
        runtime = build_runtime(args.demo)
        return COMMANDS[args.command](args, runtime)
    except ValidationError as e:
        _print_error(InvalidFilterError(str(e)))
        return EXIT_INVALID_INPUT
    except InvalidFilterError as e:
        _print_error(e)
        return EXIT_INVALID_INPUT
    except StoreUnavailableError as e:
        _print_error(e)
        return EXIT_STORE_UNAVAILABLE
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130
    finally:
        if runtime is not None:
            runtime.close()
        shutdown_tracing()


if __name__ == "__main__":
    sys.exit(main())
