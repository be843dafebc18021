"""
CLI module - unified command-line interface.

Provides the `ledger-rag` entry point with search, aggregate, summaries,
reindex and schema subcommands.
"""

from ledger_rag.cli.commands import (
    main,
    build_parser,
    build_runtime,
)

__all__ = [
    "main",
    "build_parser",
    "build_runtime",
]
