"""
ledger-rag - conversational retrieval over a user's financial transactions.

Turns a natural-language or filtered query into a compact, de-duplicated,
PII-masked CSV payload sized for a language-model context window.
"""

__version__ = "0.1.0"
