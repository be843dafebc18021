"""
RAG Configuration

Loads retrieval settings from environment variables.
"""

import os
from dataclasses import dataclass
from datetime import timedelta


@dataclass
class RagConfig:
    """Configuration for the transaction retrieval engine.

    Environment Variables:
        RAG_MAX_ROWS: Maximum rows returned per search (default: 20)
        RAG_EMBED_DIMENSION: Embedding vector length (default: 1536)
        RAG_EMBEDDING_PROVIDER: "deterministic" or "openai" (default: deterministic)
        RAG_EMBEDDING_MODEL: Remote embedding model (default: text-embedding-3-small)
        OPENAI_API_KEY: Key for the remote provider (optional)
        RAG_SESSION_TTL_HOURS: Chat session dedup window (default: 4)
        DATABASE_URL: PostgreSQL connection string
        RAG_STATEMENT_TIMEOUT_MS: Per-statement timeout for store queries (default: 5000)
    """

    max_rows: int = 20
    embed_dimension: int = 1536
    embedding_provider: str = "deterministic"
    embedding_model: str = "text-embedding-3-small"
    openai_api_key: str | None = None
    session_ttl_hours: float = 4.0
    database_url: str = "postgresql://localhost/ledger"
    statement_timeout_ms: int = 5000

    # Absolute ceiling on top_k regardless of configuration
    hard_row_ceiling: int = 100

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(hours=self.session_ttl_hours)

    @property
    def use_remote_embeddings(self) -> bool:
        return self.embedding_provider.lower() == "openai" and bool(self.openai_api_key)

    @classmethod
    def from_env(cls) -> "RagConfig":
        """Load config from environment variables."""
        return cls(
            max_rows=int(os.environ.get("RAG_MAX_ROWS", "20")),
            embed_dimension=int(os.environ.get("RAG_EMBED_DIMENSION", "1536")),
            embedding_provider=os.environ.get("RAG_EMBEDDING_PROVIDER", "deterministic"),
            embedding_model=os.environ.get("RAG_EMBEDDING_MODEL", "text-embedding-3-small"),
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            session_ttl_hours=float(os.environ.get("RAG_SESSION_TTL_HOURS", "4")),
            database_url=os.environ.get("DATABASE_URL", "postgresql://localhost/ledger"),
            statement_timeout_ms=int(os.environ.get("RAG_STATEMENT_TIMEOUT_MS", "5000")),
        )


# Global config singleton
_config: RagConfig | None = None


def get_config() -> RagConfig:
    """Get the global RAG config (lazy-loaded from env)."""
    global _config
    if _config is None:
        _config = RagConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset config (useful for testing)."""
    global _config
    _config = None
