"""
Seed data for the retrieval system.

Demo transactions are kept apart from the stores so the CLI and tests can
load a known ledger without a database.
"""

from ledger_rag.retrieval.seeds.demo_ledger import (
    DEMO_USER_ID,
    get_demo_transactions,
    seed_stores,
)

__all__ = ["DEMO_USER_ID", "get_demo_transactions", "seed_stores"]
