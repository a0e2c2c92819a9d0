"""
mnemo Embeddings -- pluggable embedding providers.

Provides:
- StubEmbeddingProvider: zero vector of fixed length, no network
- VoyageEmbeddingProvider: Voyage AI REST API via httpx
- embed_or_zero(provider, text): never raises, falls back to a zero vector

Embeddings are stored alongside chunks but nothing in the core ranks by them;
search is lexical + graph only. ``embed_query`` is the query-side half of the
provider API for callers that embed search text themselves.
"""

from collections import OrderedDict
from typing import List, Optional, Protocol
import logging
import os
import time as _time_module

import httpx

__all__ = [
    "EmbeddingProvider",
    "StubEmbeddingProvider",
    "VoyageEmbeddingProvider",
    "EmbeddingProviderError",
    "embed_or_zero",
    "reset_embedding_state",
]

logger = logging.getLogger("mnemo.embeddings")

_VOYAGE_DEFAULT_MODEL = "voyage-4-large"
_VOYAGE_DEFAULT_DIMENSIONS = 1024
_VOYAGE_DEFAULT_BASE_URL = "https://api.voyageai.com/v1"
_EMBEDDING_CACHE_MAX = 512

# Circuit breaker cooldown -- after a failure, skip the API for a while
_CIRCUIT_BREAKER_COOLDOWN_S = 300


class EmbeddingProviderError(RuntimeError):
    """Upstream embedding call failed. Recovered by embed_or_zero."""


class EmbeddingProvider(Protocol):
    dimensions: int

    async def embed(self, text: str) -> List[float]: ...


class StubEmbeddingProvider:
    """Zero-vector provider. Swap in a real provider at construction."""

    def __init__(self, dimensions: int = 384):
        self.dimensions = dimensions

    async def embed(self, text: str) -> List[float]:
        return [0.0] * self.dimensions

    async def embed_query(self, text: str) -> List[float]:
        return [0.0] * self.dimensions


class VoyageEmbeddingProvider:
    """Voyage AI embeddings.

    ``embed`` uses ``input_type="document"`` (indexing), ``embed_query`` uses
    ``input_type="query"`` (search). Query embeddings are LRU-cached.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = _VOYAGE_DEFAULT_MODEL,
        dimensions: int = _VOYAGE_DEFAULT_DIMENSIONS,
        base_url: str = _VOYAGE_DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        key = api_key or os.environ.get("VOYAGE_API_KEY")
        if not key:
            raise ValueError(
                "Voyage API key required: pass api_key or set VOYAGE_API_KEY env var"
            )
        self.api_key = key
        self.model = model
        self.dimensions = dimensions
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._query_cache: "OrderedDict[str, List[float]]" = OrderedDict()

    async def embed(self, text: str) -> List[float]:
        return await self._call_api(text, "document")

    async def embed_query(self, text: str) -> List[float]:
        cached = self._query_cache.get(text)
        if cached is not None:
            self._query_cache.move_to_end(text)
            return cached
        vector = await self._call_api(text, "query")
        self._query_cache[text] = vector
        if len(self._query_cache) > _EMBEDDING_CACHE_MAX:
            self._query_cache.popitem(last=False)
        return vector

    async def _call_api(self, text: str, input_type: str) -> List[float]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/embeddings",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                json={
                    "input": [text],
                    "model": self.model,
                    "input_type": input_type,
                    "output_dimension": self.dimensions,
                },
            )

        if response.status_code != 200:
            body = response.text or response.reason_phrase
            raise EmbeddingProviderError(f"Voyage API error ({response.status_code}): {body}")

        data = response.json() if response.content else {}
        try:
            embedding = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError):
            embedding = None
        if not isinstance(embedding, list):
            raise EmbeddingProviderError(
                "Voyage API returned unexpected response: missing embedding data"
            )
        return [float(x) for x in embedding]


# Provider id -> monotonic time of last failure
_FAILURES: dict = {}


async def embed_or_zero(provider, text: str) -> List[float]:
    """Embed text, returning a zero vector on any provider failure.

    A failing provider is skipped for a cooldown window so one outage does not
    cost a network timeout per chunk.
    """
    key = id(provider)
    failed_at = _FAILURES.get(key)
    if failed_at is not None:
        if _time_module.monotonic() - failed_at < _CIRCUIT_BREAKER_COOLDOWN_S:
            return [0.0] * provider.dimensions
        del _FAILURES[key]
    try:
        return await provider.embed(text)
    except Exception as e:
        _FAILURES[key] = _time_module.monotonic()
        logger.warning("Embedding provider failed, using zero vector: %s", e)
        return [0.0] * provider.dimensions


def reset_embedding_state() -> None:
    """Clear the provider circuit breaker (tests)."""
    _FAILURES.clear()
