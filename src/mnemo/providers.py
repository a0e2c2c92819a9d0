"""
mnemo Anthropic providers -- LLM-backed entity extraction and summarization.

Both providers ask Claude for strict JSON and pull the first {...} block out
of the reply. Any failure (SDK error, non-text block, bad JSON) is absorbed:
extraction returns an empty result, summarization returns the truncation
fallback. Requires the optional ``anthropic`` extra.
"""

import asyncio
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

from mnemo.extractor import (
    ENTITY_TYPE_VALUES,
    ExtractedEntity,
    ExtractedRelationship,
    ExtractionResult,
)
from mnemo.summarizer import format_turns, truncation_summary

logger = logging.getLogger("mnemo.providers")

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_CONFIDENCE = 0.7

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")

EXTRACTION_PROMPT = """Extract entities and relationships from the following text. Return ONLY valid JSON with this exact structure:

{
  "entities": [
    {
      "name": "entity name",
      "type": "person|project|decision|task|date|place|organization|topic",
      "description": "brief description",
      "confidence": 0.9
    }
  ],
  "relationships": [
    {
      "sourceName": "entity A",
      "targetName": "entity B",
      "type": "relationship type (e.g. works_on, located_in, depends_on, mentioned_with)"
    }
  ]
}

Rules:
- Entity types must be one of: person, project, decision, task, date, place, organization, topic
- Confidence is 0-1 (1 = very certain)
- Only include clearly identifiable entities, not common words
- Relationships should connect entities you extracted
- Return empty arrays if no entities found"""

SUMMARIZATION_PROMPT = """Summarize the following conversation turns into a concise summary. Return ONLY valid JSON with this exact structure:

{
  "summary": "A concise summary of the conversation capturing key decisions, topics, and outcomes.",
  "keyTopics": ["topic1", "topic2", "topic3"]
}

Rules:
- Summary should be 2-4 sentences, capturing the most important information
- keyTopics should be 3-7 short phrases identifying the main subjects discussed
- Focus on decisions, actions, and information exchanged, not pleasantries
- Return valid JSON only, no markdown wrapping"""


def _make_client(api_key: Optional[str]):
    try:
        import anthropic
    except ImportError:
        raise ImportError(
            "anthropic package required. Install with: pip install 'mnemo[anthropic]'"
        )
    return anthropic.Anthropic(api_key=api_key or os.environ.get("ANTHROPIC_API_KEY"))


def _parse_json_block(text: str) -> Optional[Dict[str, Any]]:
    match = _JSON_BLOCK.search(text or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


class _AnthropicProvider:
    def __init__(self, model: str, max_tokens: int, api_key: Optional[str] = None, client=None):
        self.model = model
        self.max_tokens = max_tokens
        self._client = client if client is not None else _make_client(api_key)

    async def _complete(self, prompt: str) -> Optional[str]:
        """Run one user-turn completion. Returns the first text block or None."""
        response = await asyncio.to_thread(
            self._client.messages.create,
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        if not response.content:
            return None
        block = response.content[0]
        if getattr(block, "type", None) != "text":
            return None
        return block.text


class AnthropicExtractionProvider(_AnthropicProvider):
    def __init__(self, model: str = DEFAULT_MODEL, max_tokens: int = 2048, api_key=None, client=None):
        super().__init__(model, max_tokens, api_key=api_key, client=client)

    async def extract_entities(self, text: str) -> ExtractionResult:
        try:
            reply = await self._complete(f"{EXTRACTION_PROMPT}\n\nText to analyze:\n{text}")
        except Exception as e:
            logger.warning("Anthropic extraction failed: %s", e)
            return ExtractionResult(source_text=text)
        if reply is None:
            return ExtractionResult(source_text=text)
        return self.parse_response(reply, text)

    @staticmethod
    def parse_response(reply: str, source_text: str) -> ExtractionResult:
        parsed = _parse_json_block(reply)
        if parsed is None:
            logger.debug("No JSON object in extraction reply")
            return ExtractionResult(source_text=source_text)

        entities: List[ExtractedEntity] = []
        for item in parsed.get("entities") or []:
            if not isinstance(item, dict):
                continue
            name, etype = item.get("name"), item.get("type")
            if not isinstance(name, str) or not isinstance(etype, str):
                continue
            if etype not in ENTITY_TYPE_VALUES:
                continue
            confidence = item.get("confidence")
            if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
                confidence = min(1.0, max(0.0, float(confidence)))
            else:
                confidence = DEFAULT_CONFIDENCE
            description = item.get("description")
            entities.append(
                ExtractedEntity(
                    name=name,
                    type=etype,
                    confidence=confidence,
                    description=description if isinstance(description, str) else None,
                )
            )

        names = {e.name for e in entities}
        relationships = []
        for item in parsed.get("relationships") or []:
            if not isinstance(item, dict):
                continue
            src, tgt, rtype = item.get("sourceName"), item.get("targetName"), item.get("type")
            if not all(isinstance(v, str) for v in (src, tgt, rtype)):
                continue
            if src in names and tgt in names:
                relationships.append(ExtractedRelationship(source_name=src, target_name=tgt, type=rtype))

        return ExtractionResult(entities=entities, relationships=relationships, source_text=source_text)


class AnthropicSummarizationProvider(_AnthropicProvider):
    def __init__(self, model: str = DEFAULT_MODEL, max_tokens: int = 1024, api_key=None, client=None):
        super().__init__(model, max_tokens, api_key=api_key, client=client)

    async def summarize(self, turns: List[Dict[str, str]]) -> Dict[str, Any]:
        try:
            reply = await self._complete(
                f"{SUMMARIZATION_PROMPT}\n\nConversation:\n{format_turns(turns)}"
            )
        except Exception as e:
            logger.warning("Anthropic summarization failed: %s", e)
            return truncation_summary(turns)
        if reply is None:
            return truncation_summary(turns)

        parsed = _parse_json_block(reply)
        if parsed is None:
            return truncation_summary(turns)
        summary = parsed.get("summary")
        if not isinstance(summary, str) or not summary:
            return truncation_summary(turns)
        topics = parsed.get("keyTopics")
        key_topics = [t for t in topics if isinstance(t, str)] if isinstance(topics, list) else []
        return {"summary": summary, "key_topics": key_topics}
