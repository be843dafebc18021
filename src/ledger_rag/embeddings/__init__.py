"""
Embeddings module - text embedding generation.

1. Protocol (EmbeddingProvider) defines the interface
2. Deterministic implementation (HashEmbeddings), always available
3. Remote implementation (OpenAIEmbeddings)
4. Strategy with fallback (FallbackEmbeddings)
5. Factory function (get_embedding_provider)
"""

from ledger_rag.core.protocols import EmbeddingProvider
from ledger_rag.embeddings.providers import (
    HashEmbeddings,
    OpenAIEmbeddings,
    FallbackEmbeddings,
    fit_to_dimension,
    saturate,
    get_embedding_provider,
)

__all__ = [
    "EmbeddingProvider",
    "HashEmbeddings",
    "OpenAIEmbeddings",
    "FallbackEmbeddings",
    "fit_to_dimension",
    "saturate",
    "get_embedding_provider",
]
