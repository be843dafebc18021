"""
Demo ledger seed data.

A small, fixed set of transactions for one demo user, used by the CLI's
--demo mode and by tests that want realistic data without PostgreSQL.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID

from ledger_rag.retrieval.models import TransactionSlice

if TYPE_CHECKING:
    from ledger_rag.retrieval.indexer import TransactionIndexer
    from ledger_rag.retrieval.transaction_store import InMemoryTransactionStore

DEMO_USER_ID = UUID("00000000-0000-4000-8000-000000000001")

_MERCHANTS = {
    "Blue Bottle Coffee": UUID("a1000000-0000-4000-8000-000000000001"),
    "Whole Foods Market": UUID("a1000000-0000-4000-8000-000000000002"),
    "Metro Transit": UUID("a1000000-0000-4000-8000-000000000003"),
    "Acme Payroll": UUID("a1000000-0000-4000-8000-000000000004"),
    "City Power & Light": UUID("a1000000-0000-4000-8000-000000000005"),
    "Alaska Airlines": UUID("a1000000-0000-4000-8000-000000000006"),
}

# (id number, date, cents, category, description, merchant)
_ROWS = [
    (1, date(2025, 9, 28), -575, "EatingOut", "Latte and croissant", "Blue Bottle Coffee"),
    (2, date(2025, 9, 27), -8412, "Groceries", "Weekly groceries", "Whole Foods Market"),
    (3, date(2025, 9, 26), -275, "Transport", "Bus fare", "Metro Transit"),
    (4, date(2025, 9, 15), 420000, "Income", "Salary deposit", "Acme Payroll"),
    (5, date(2025, 9, 12), -460, "EatingOut", "Cold brew", "Blue Bottle Coffee"),
    (6, date(2025, 9, 5), -11230, "Utilities", "Electricity bill", "City Power & Light"),
    (7, date(2025, 8, 30), -6120, "Groceries", "Groceries and household", "Whole Foods Market"),
    (8, date(2025, 8, 22), -38900, "Travel", "Flight SEA to SFO", "Alaska Airlines"),
    (9, date(2025, 8, 15), 420000, "Income", "Salary deposit", "Acme Payroll"),
    (10, date(2025, 8, 3), -525, "EatingOut", "Espresso", "Blue Bottle Coffee"),
]


def get_demo_transactions() -> list[TransactionSlice]:
    """Ten transactions spanning August and September 2025."""
    return [
        TransactionSlice(
            transaction_id=UUID(f"b2{suffix:06x}-0000-4000-8000-000000000000"),
            occurred_on=occurred_on,
            amount_cents=amount_cents,
            category=category,
            description=description,
            merchant_id=_MERCHANTS[merchant],
            merchant_name=merchant,
        )
        for suffix, occurred_on, amount_cents, category, description, merchant in _ROWS
    ]


def seed_stores(
    transactions: InMemoryTransactionStore,
    indexer: TransactionIndexer | None = None,
    user_id: UUID = DEMO_USER_ID,
) -> int:
    """
    Load the demo transactions, optionally indexing them too.

    Leaving indexing to the first search exercises the self-healing path.

    Returns:
        Number of transactions loaded
    """
    demo = get_demo_transactions()
    transactions.add_many(user_id, demo)
    if indexer is not None:
        indexer.upsert_embeddings(user_id, [tx.transaction_id for tx in demo])
    return len(demo)
