"""Embedding service backed by a remote OpenAI-compatible embeddings API."""

from __future__ import annotations

import logging

import requests

from services.errors import EmbeddingServiceError
from services.runtime_config import RuntimeConfig, RuntimeConfigProvider

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Turn text into fixed-dimension vectors via ``POST {base_url}/embeddings``.

    The client never retries: a failed call fails the current task attempt and
    the embedding queue decides what happens next.
    """

    def __init__(
        self,
        config_provider: RuntimeConfigProvider | None = None,
        session: requests.Session | None = None,
    ):
        self.config_provider = config_provider or RuntimeConfigProvider()
        self.http = session or requests.Session()

    @property
    def dimension(self) -> int:
        return self.config_provider.get().embedding_dimension

    @property
    def model_name(self) -> str:
        return self.config_provider.get().embedding_model

    def embed_query(self, text: str) -> list[float]:
        """Generate embedding for a single text string."""
        if not text or not text.strip():
            raise EmbeddingServiceError("Cannot embed empty text.")
        config = self.config_provider.get()
        return self._request([text], config)[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts, one vector per input, in order."""
        if not texts:
            return []
        for position, text in enumerate(texts):
            if not text or not text.strip():
                raise EmbeddingServiceError(f"Cannot embed empty text at position {position}.")

        config = self.config_provider.get()
        batch_size = max(1, config.embedding_batch_size)
        vectors: list[list[float]] = []
        for i in range(0, len(texts), batch_size):
            vectors.extend(self._request(texts[i : i + batch_size], config))
        return vectors

    def _request(self, texts: list[str], config: RuntimeConfig) -> list[list[float]]:
        if not config.embedding_api_key:
            raise EmbeddingServiceError("Embedding API key is not configured.")
        if not config.embedding_base_url:
            raise EmbeddingServiceError("Embedding base URL is not configured.")

        url = f"{config.embedding_base_url.rstrip('/')}/embeddings"
        payload = {
            "model": config.embedding_model,
            "input": texts,
            "encoding_format": "float",
            "dimensions": config.embedding_dimension,
        }
        headers = {"Authorization": f"Bearer {config.embedding_api_key}"}

        try:
            resp = self.http.post(
                url, json=payload, headers=headers, timeout=config.embedding_timeout_seconds
            )
        except requests.exceptions.Timeout as e:
            raise EmbeddingServiceError(
                f"Embedding request timed out after {config.embedding_timeout_seconds}s"
            ) from e
        except requests.exceptions.RequestException as e:
            raise EmbeddingServiceError(f"Embedding request failed: {e}") from e

        if resp.status_code >= 400:
            raise EmbeddingServiceError(
                f"Embedding API returned HTTP {resp.status_code}: {resp.text[:200]}"
            )

        try:
            items = resp.json()["data"]
            ordered = sorted(
                enumerate(items), key=lambda pair: pair[1].get("index", pair[0])
            )
            vectors = [[float(v) for v in item["embedding"]] for _, item in ordered]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise EmbeddingServiceError(f"Malformed embedding response: {e}") from e

        if len(vectors) != len(texts):
            raise EmbeddingServiceError(
                f"Embedding API returned {len(vectors)} vectors for {len(texts)} inputs"
            )
        for vector in vectors:
            if len(vector) != config.embedding_dimension:
                raise EmbeddingServiceError(
                    f"Embedding dimension mismatch: expected {config.embedding_dimension}, got {len(vector)}"
                )

        logger.debug(f"Embedded {len(texts)} texts with {config.embedding_model}")
        return vectors
