"""Tests for mnemo Anthropic providers using a mocked SDK client."""
import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from mnemo.providers import (
    DEFAULT_CONFIDENCE,
    AnthropicExtractionProvider,
    AnthropicSummarizationProvider,
)
from mnemo.summarizer import truncation_summary

TURNS = [{"role": "user", "content": "Should we ship on Friday or wait until Monday?"}]


def _client(text=None, block_type="text", error=None, empty=False):
    client = MagicMock()
    if error is not None:
        client.messages.create.side_effect = error
    else:
        content = [] if empty else [SimpleNamespace(type=block_type, text=text)]
        client.messages.create.return_value = SimpleNamespace(content=content)
    return client


EXTRACTION_REPLY = json.dumps({
    "entities": [
        {"name": "Alice", "type": "person", "description": "engineer", "confidence": 1.7},
        {"name": "Atlas", "type": "project"},
        {"name": "Blob", "type": "spaceship", "confidence": 0.9},
        {"name": 42, "type": "topic"},
    ],
    "relationships": [
        {"sourceName": "Alice", "targetName": "Atlas", "type": "works_on"},
        {"sourceName": "Alice", "targetName": "Blob", "type": "owns"},
        {"sourceName": "Alice", "type": "broken"},
    ],
})


class TestExtractionProvider:
    @pytest.mark.asyncio
    async def test_parses_and_filters(self):
        client = _client("Here you go:\n" + EXTRACTION_REPLY + "\nDone.")
        provider = AnthropicExtractionProvider(client=client)
        result = await provider.extract_entities("Alice works on Atlas")

        assert [(e.name, e.type) for e in result.entities] == [("Alice", "person"), ("Atlas", "project")]
        assert result.entities[0].confidence == 1.0
        assert result.entities[0].description == "engineer"
        assert result.entities[1].confidence == DEFAULT_CONFIDENCE
        assert [(r.source_name, r.target_name, r.type) for r in result.relationships] == [
            ("Alice", "Atlas", "works_on")
        ]
        assert result.source_text == "Alice works on Atlas"

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == provider.model
        assert "Alice works on Atlas" in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("client", [
        _client(error=RuntimeError("rate limited")),
        _client("no json here"),
        _client("{broken json"),
        _client(EXTRACTION_REPLY, block_type="tool_use"),
        _client(empty=True),
    ])
    async def test_failures_yield_empty_result(self, client):
        result = await AnthropicExtractionProvider(client=client).extract_entities("text")
        assert result.entities == []
        assert result.relationships == []

    def test_negative_confidence_clamped(self):
        reply = json.dumps({"entities": [{"name": "X", "type": "topic", "confidence": -3}]})
        result = AnthropicExtractionProvider.parse_response(reply, "X")
        assert result.entities[0].confidence == 0.0


class TestSummarizationProvider:
    @pytest.mark.asyncio
    async def test_parses_summary(self):
        reply = json.dumps({"summary": "Team debated the ship date.", "keyTopics": ["release", 7, "schedule"]})
        out = await AnthropicSummarizationProvider(client=_client(reply)).summarize(TURNS)
        assert out == {"summary": "Team debated the ship date.", "key_topics": ["release", "schedule"]}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("client", [
        _client(error=ConnectionError("offline")),
        _client("not json"),
        _client(json.dumps({"summary": ""})),
        _client(json.dumps({"keyTopics": ["x"]})),
        _client("text", block_type="image"),
    ])
    async def test_failures_fall_back_to_truncation(self, client):
        out = await AnthropicSummarizationProvider(client=client).summarize(TURNS)
        assert out == truncation_summary(TURNS)

    @pytest.mark.asyncio
    async def test_missing_topics_default_empty(self):
        out = await AnthropicSummarizationProvider(client=_client('{"summary": "ok"}')).summarize(TURNS)
        assert out == {"summary": "ok", "key_topics": []}
