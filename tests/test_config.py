"""
Unit Tests for RagConfig

Environment variable handling tested with patch.dict.
"""

from datetime import timedelta
from unittest.mock import patch

from ledger_rag.config import RagConfig, get_config, reset_config


class TestRagConfig:
    """Test configuration loading."""

    def setup_method(self):
        reset_config()

    def teardown_method(self):
        reset_config()

    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            config = RagConfig.from_env()

        assert config.max_rows == 20
        assert config.embed_dimension == 1536
        assert config.embedding_provider == "deterministic"
        assert config.openai_api_key is None
        assert config.session_ttl == timedelta(hours=4)
        assert config.statement_timeout_ms == 5000
        assert config.hard_row_ceiling == 100
        assert config.use_remote_embeddings is False

    def test_from_env(self):
        env = {
            "RAG_MAX_ROWS": "5",
            "RAG_EMBED_DIMENSION": "64",
            "RAG_EMBEDDING_PROVIDER": "OpenAI",
            "OPENAI_API_KEY": "sk-test",
            "RAG_SESSION_TTL_HOURS": "0.5",
            "DATABASE_URL": "postgresql://db/ledger",
            "RAG_STATEMENT_TIMEOUT_MS": "750",
        }
        with patch.dict("os.environ", env, clear=True):
            config = RagConfig.from_env()

        assert config.max_rows == 5
        assert config.embed_dimension == 64
        assert config.use_remote_embeddings is True
        assert config.session_ttl == timedelta(minutes=30)
        assert config.database_url == "postgresql://db/ledger"
        assert config.statement_timeout_ms == 750

    def test_empty_api_key_is_none(self):
        with patch.dict("os.environ", {"OPENAI_API_KEY": ""}, clear=True):
            assert RagConfig.from_env().openai_api_key is None

    def test_singleton_and_reset(self):
        with patch.dict("os.environ", {"RAG_MAX_ROWS": "7"}, clear=True):
            first = get_config()
            assert first is get_config()
            assert first.max_rows == 7

            reset_config()

            assert get_config() is not first
