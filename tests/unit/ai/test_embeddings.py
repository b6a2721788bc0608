"""Tests for embedding clients and dimension validation."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from rmm.ai.embeddings import EmbeddingValidator, HTTPEmbeddings
from rmm.config import ConfigurationError


def _mock_embeddings(dimension: int):
    embeddings = MagicMock()
    embeddings.embed_query = AsyncMock(return_value=[0.1] * dimension)
    embeddings.embed_documents = AsyncMock(side_effect=lambda texts: [[0.1] * dimension for _ in texts])
    return embeddings


class TestEmbeddingValidator:
    """Tests for EmbeddingValidator."""

    @pytest.mark.asyncio
    async def test_matching_dimension(self):
        """Vectors of the configured size pass through."""
        validator = EmbeddingValidator(_mock_embeddings(8), 8)
        assert len(await validator.embed_query("hello")) == 8
        assert len(await validator.embed_documents(["a", "b"])) == 2

    @pytest.mark.asyncio
    async def test_probe_runs_once(self):
        """The dimension probe is only sent on first use."""
        embeddings = _mock_embeddings(8)
        validator = EmbeddingValidator(embeddings, 8)

        await validator.embed_query("one")
        await validator.embed_query("two")

        probes = [c for c in embeddings.embed_query.await_args_list if c.args[0] == validator.PROBE_TEXT]
        assert len(probes) == 1

    @pytest.mark.asyncio
    async def test_mismatch_raises(self):
        """A model returning another size is a configuration error."""
        validator = EmbeddingValidator(_mock_embeddings(4), 8)
        with pytest.raises(ConfigurationError, match="expected 8, got 4"):
            await validator.embed_query("hello")

    @pytest.mark.asyncio
    async def test_mismatch_in_documents(self):
        """Document batches are checked too."""
        embeddings = _mock_embeddings(8)
        embeddings.embed_documents = AsyncMock(return_value=[[0.1] * 8, [0.1] * 3])
        validator = EmbeddingValidator(embeddings, 8)
        with pytest.raises(ConfigurationError):
            await validator.embed_documents(["a", "b"])


class TestHTTPEmbeddings:
    """Tests for the /embeddings HTTP client."""

    @pytest.fixture
    def captured(self):
        return {}

    @pytest.fixture
    def client(self, captured):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            captured["path"] = request.url.path
            captured["body"] = body
            data = [
                {"index": i, "embedding": [float(i), float(len(text))]}
                for i, text in enumerate(body["input"])
            ]
            return httpx.Response(200, json={"data": list(reversed(data))})

        client = HTTPEmbeddings(api_key="test-key", base_url="https://embeddings.test/v1")
        client._client = httpx.AsyncClient(
            base_url=client.base_url, transport=httpx.MockTransport(handler)
        )
        return client

    @pytest.mark.asyncio
    async def test_embed_documents_in_input_order(self, client, captured):
        """Results are ordered by index regardless of response order."""
        vectors = await client.embed_documents(["a", "bbb"])

        assert vectors == [[0.0, 1.0], [1.0, 3.0]]
        assert captured["path"] == "/v1/embeddings"
        assert captured["body"] == {"model": HTTPEmbeddings.DEFAULT_MODEL, "input": ["a", "bbb"]}
        await client.close()

    @pytest.mark.asyncio
    async def test_embed_query(self, client):
        """A single text returns one vector."""
        assert await client.embed_query("hi") == [0.0, 2.0]

    @pytest.mark.asyncio
    async def test_empty_batch_skips_request(self, client, captured):
        """No texts means no HTTP call."""
        assert await client.embed_documents([]) == []
        assert captured == {}

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        """Non-2xx responses propagate as httpx errors."""
        client = HTTPEmbeddings(api_key="test-key")
        client._client = httpx.AsyncClient(
            base_url=client.base_url,
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="down")),
        )
        with pytest.raises(httpx.HTTPStatusError):
            await client.embed_query("hi")
