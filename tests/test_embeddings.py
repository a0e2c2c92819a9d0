"""Tests for mnemo embedding providers and the zero-vector fallback."""
import json

import httpx
import pytest

from mnemo.embeddings import (
    EmbeddingProviderError,
    StubEmbeddingProvider,
    VoyageEmbeddingProvider,
    embed_or_zero,
)


def _voyage(handler, dimensions=3):
    requests = []

    def record(request):
        requests.append(json.loads(request.content))
        return handler(request)

    provider = VoyageEmbeddingProvider(
        api_key="test-key", dimensions=dimensions, transport=httpx.MockTransport(record)
    )
    return provider, requests


def _ok(request):
    return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})


class TestStub:
    @pytest.mark.asyncio
    async def test_zero_vector(self):
        provider = StubEmbeddingProvider(dimensions=8)
        assert await provider.embed("anything") == [0.0] * 8
        assert await provider.embed_query("anything") == [0.0] * 8


class TestVoyage:
    def test_requires_key(self, monkeypatch):
        monkeypatch.delenv("VOYAGE_API_KEY", raising=False)
        with pytest.raises(ValueError):
            VoyageEmbeddingProvider()

    def test_key_from_env(self, monkeypatch):
        monkeypatch.setenv("VOYAGE_API_KEY", "env-key")
        assert VoyageEmbeddingProvider().api_key == "env-key"

    @pytest.mark.asyncio
    async def test_embed_document(self):
        provider, requests = _voyage(_ok)
        assert await provider.embed("hello") == [0.1, 0.2, 0.3]
        assert requests[0]["input"] == ["hello"]
        assert requests[0]["input_type"] == "document"
        assert requests[0]["output_dimension"] == 3

    @pytest.mark.asyncio
    async def test_auth_header(self):
        seen = []

        def handler(request):
            seen.append(request.headers["authorization"])
            return _ok(request)

        provider = VoyageEmbeddingProvider(api_key="secret", transport=httpx.MockTransport(handler))
        await provider.embed("x")
        assert seen == ["Bearer secret"]

    @pytest.mark.asyncio
    async def test_query_embeddings_cached(self):
        provider, requests = _voyage(_ok)
        first = await provider.embed_query("what changed?")
        second = await provider.embed_query("what changed?")
        assert first == second
        assert len(requests) == 1
        assert requests[0]["input_type"] == "query"

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        provider, _ = _voyage(lambda r: httpx.Response(500, text="overloaded"))
        with pytest.raises(EmbeddingProviderError, match="500"):
            await provider.embed("x")

    @pytest.mark.asyncio
    async def test_malformed_body_raises(self):
        provider, _ = _voyage(lambda r: httpx.Response(200, json={"data": []}))
        with pytest.raises(EmbeddingProviderError):
            await provider.embed("x")


class TestEmbedOrZero:
    @pytest.mark.asyncio
    async def test_success_passthrough(self):
        provider, _ = _voyage(_ok)
        assert await embed_or_zero(provider, "x") == [0.1, 0.2, 0.3]

    @pytest.mark.asyncio
    async def test_failure_returns_zero_and_opens_breaker(self):
        provider, requests = _voyage(lambda r: httpx.Response(503, text="down"))
        assert await embed_or_zero(provider, "x") == [0.0, 0.0, 0.0]
        assert await embed_or_zero(provider, "y") == [0.0, 0.0, 0.0]
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_transport_error_recovered(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        provider, _ = _voyage(handler)
        assert await embed_or_zero(provider, "x") == [0.0, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_unexpected_provider_error_recovered(self):
        class Exploding:
            dimensions = 3

            async def embed(self, text):
                raise RuntimeError("upstream exploded")

        assert await embed_or_zero(Exploding(), "x") == [0.0, 0.0, 0.0]
