"""
Embeddings Module - Single Responsibility: Generate text embeddings.

It has ONE job: convert text to bounded, fixed-length vectors.

Every provider here honours the same vector contract:
- length equals the configured dimension (pad with zeros or truncate)
- every element lies strictly inside (-1, 1)

The deterministic provider is always available, so the fallback strategy
never has to tell its caller that embeddings are unavailable.
"""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING

import numpy as np
from openai import OpenAI

from ledger_rag.core.protocols import EmbeddingProvider

if TYPE_CHECKING:
    from ledger_rag.config import RagConfig

logger = logging.getLogger(__name__)

EMPTY_SENTINEL = "empty"

# Largest float32 strictly below 1.0
_OPEN_BOUND = float(np.nextafter(np.float32(1.0), np.float32(0.0)))


def saturate(values: np.ndarray) -> np.ndarray:
    """Squash raw values into (-1, 1) with v / sqrt(1 + v^2)."""
    wide = np.nan_to_num(np.asarray(values, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    with np.errstate(over="ignore", invalid="ignore"):
        squashed = wide / np.sqrt(1.0 + wide * wide)
    # Very large inputs round to exactly +/-1.0
    return np.clip(squashed, -_OPEN_BOUND, _OPEN_BOUND).astype(np.float32)


def fit_to_dimension(vector, dimensions: int) -> np.ndarray:
    """Truncate or zero-pad to `dimensions`, then clamp into the open interval."""
    flat = np.asarray(vector, dtype=np.float64).ravel()
    out = np.zeros(dimensions, dtype=np.float64)
    n = min(len(flat), dimensions)
    out[:n] = flat[:n]
    out = np.where(np.isfinite(out), out, 0.0)
    return np.clip(out, -_OPEN_BOUND, _OPEN_BOUND).astype(np.float32)


class HashEmbeddings:
    """
    Deterministic embedding provider.

    SHA-512 of the normalized text is read as little-endian float32 values,
    cycled to fill the dimension and saturated into (-1, 1). Pure: equal
    normalized text always yields bit-identical vectors, across processes.
    """

    def __init__(self, dimensions: int = 1536):
        if dimensions <= 0:
            raise ValueError(f"dimensions must be positive, got {dimensions}")
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @staticmethod
    def normalize(text: str | None) -> str:
        normalized = (text or "").lower().strip()
        return normalized or EMPTY_SENTINEL

    def embed(self, text: str) -> np.ndarray:
        """Generate deterministic embedding from the text digest."""
        digest = hashlib.sha512(self.normalize(text).encode("utf-8")).digest()
        # Digest bytes can decode to NaN or inf; those lanes become 0
        raw = np.nan_to_num(np.frombuffer(digest, dtype="<f4"), nan=0.0, posinf=0.0, neginf=0.0)
        # np.resize repeats the source cyclically
        return saturate(np.resize(raw, self._dimensions))

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        return [self.embed(text) for text in texts]


class OpenAIEmbeddings:
    """
    OpenAI-based embedding provider.

    Uses text-embedding-3-small by default (1536 dimensions). Errors are
    raised to the caller; wrap in FallbackEmbeddings for graceful degradation.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        timeout: float = 10.0,
    ):
        self.model = model
        self._client = OpenAI(api_key=api_key, timeout=timeout)

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions for the model."""
        model_dims = {
            "text-embedding-3-small": 1536,
            "text-embedding-3-large": 3072,
            "text-embedding-ada-002": 1536,
        }
        return model_dims.get(self.model, 1536)

    @staticmethod
    def _prepare(text: str | None) -> str:
        return (text or "").strip() or EMPTY_SENTINEL

    def embed(self, text: str) -> np.ndarray:
        response = self._client.embeddings.create(
            input=self._prepare(text),
            model=self.model,
        )
        return np.array(response.data[0].embedding, dtype=np.float32)

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        if not texts:
            return []

        response = self._client.embeddings.create(
            input=[self._prepare(t) for t in texts],
            model=self.model,
        )
        return [
            np.array(item.embedding, dtype=np.float32)
            for item in response.data
        ]


class FallbackEmbeddings:
    """
    Remote-first strategy that degrades to the deterministic provider.

    Never raises: timeouts, auth failures and malformed responses are logged
    and answered with the fallback vector. Remote vectors are reshaped to the
    configured dimension.
    """

    def __init__(
        self,
        primary: EmbeddingProvider,
        fallback: HashEmbeddings,
    ):
        self._primary = primary
        self._fallback = fallback

    @property
    def dimensions(self) -> int:
        return self._fallback.dimensions

    def embed(self, text: str) -> np.ndarray:
        try:
            vector = self._primary.embed(text)
        except Exception as e:
            logger.warning(f"Remote embedding failed, using deterministic embedding: {e!r}")
            return self._fallback.embed(text)

        if vector is None or len(vector) == 0:
            logger.warning("Remote embedding returned an empty vector, using deterministic embedding")
            return self._fallback.embed(text)
        return fit_to_dimension(vector, self.dimensions)

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        if not texts:
            return []

        try:
            vectors = self._primary.embed_batch(texts)
        except Exception as e:
            logger.warning(f"Remote batch embedding failed, using deterministic embeddings: {e!r}")
            return self._fallback.embed_batch(texts)

        if len(vectors) != len(texts):
            logger.warning(
                f"Remote batch returned {len(vectors)} vectors for {len(texts)} texts, "
                "using deterministic embeddings"
            )
            return self._fallback.embed_batch(texts)

        return [
            fit_to_dimension(vector, self.dimensions)
            if vector is not None and len(vector) > 0
            else self._fallback.embed(text)
            for text, vector in zip(texts, vectors)
        ]


def get_embedding_provider(config: RagConfig | None = None) -> EmbeddingProvider:
    """
    Factory function to get the appropriate embedding provider.

    Returns the deterministic provider unless the remote provider is selected
    and an API key is configured.
    """
    if config is None:
        from ledger_rag.config import get_config

        config = get_config()

    deterministic = HashEmbeddings(dimensions=config.embed_dimension)
    if not config.use_remote_embeddings:
        return deterministic

    remote = OpenAIEmbeddings(
        model=config.embedding_model,
        api_key=config.openai_api_key,
    )
    return FallbackEmbeddings(primary=remote, fallback=deterministic)
