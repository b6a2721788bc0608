"""Embedding clients and dimension validation.

The reranker transforms are D x D, so every embedding must have exactly
the configured dimension. EmbeddingValidator checks this once, lazily, on
the first call, so constructing an engine never requires network access.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from rmm.config import ConfigurationError

if TYPE_CHECKING:
    from rmm.ai.protocols import Embeddings

logger = logging.getLogger(__name__)


class EmbeddingValidator:
    """Wraps an Embeddings implementation and enforces its output dimension."""

    PROBE_TEXT = "dimension probe"

    def __init__(self, embeddings: Embeddings, expected_dimension: int):
        self.embeddings = embeddings
        self.expected_dimension = expected_dimension
        self._validated = False

    async def validate(self) -> None:
        """Probe the model once and compare its output size.

        Raises:
            ConfigurationError: If the model returns vectors of another dimension
        """
        if self._validated:
            return
        vector = await self.embeddings.embed_query(self.PROBE_TEXT)
        self._check(vector)
        self._validated = True
        logger.debug(f"Embedding dimension validated: {self.expected_dimension}")

    def _check(self, vector: list[float]) -> None:
        if len(vector) != self.expected_dimension:
            raise ConfigurationError(
                f"Embedding dimension mismatch: expected {self.expected_dimension}, "
                f"got {len(vector)}. Set embedding_dimension to match your embeddings model."
            )

    async def embed_query(self, text: str) -> list[float]:
        await self.validate()
        vector = await self.embeddings.embed_query(text)
        self._check(vector)
        return vector

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        await self.validate()
        vectors = await self.embeddings.embed_documents(texts)
        for vector in vectors:
            self._check(vector)
        return vectors


class HTTPEmbeddings:
    """Client for OpenAI-compatible /embeddings endpoints.

    Works with OpenAI, OpenRouter, Voyage and most self-hosted servers that
    accept {"model", "input"} and return {"data": [{"embedding": [...]}]}.
    """

    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    DEFAULT_MODEL = "text-embedding-3-small"

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.base_url = base_url or self.DEFAULT_BASE_URL
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts, preserving input order."""
        if not texts:
            return []
        client = await self._get_client()
        response = await client.post("/embeddings", json={"model": self.model, "input": texts})
        response.raise_for_status()

        data = response.json().get("data", [])
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        return [item["embedding"] for item in ordered]

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single text."""
        vectors = await self.embed_documents([text])
        return vectors[0]
