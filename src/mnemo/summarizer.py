"""
mnemo Session Summarizer -- compresses conversation turns into a stored summary.

The provider is pluggable. Whatever it does (raise, return junk), summarize()
always persists and returns a non-empty summary: bad provider output is
replaced by the truncation fallback.
"""

import logging
import math
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from mnemo.sqlite_store import KnowledgeStore

logger = logging.getLogger("mnemo.summarizer")

FALLBACK_SUMMARY_CHARS = 500
FALLBACK_MAX_TOPICS = 5
EMPTY_SUMMARY = "(no turns)"


def estimate_tokens(text: str) -> int:
    """Roughly one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


@dataclass
class SummarizationResult:
    summary_id: str
    session_id: str
    summary: str
    key_topics: List[str] = field(default_factory=list)
    turns_consumed: int = 0
    tokens_saved: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SummarizationProvider(Protocol):
    async def summarize(self, turns: List[Dict[str, str]]) -> Dict[str, Any]: ...


def format_turns(turns: List[Dict[str, str]]) -> str:
    return "\n".join(f"{t.get('role', '')}: {t.get('content', '')}" for t in turns)


def truncation_summary(turns: List[Dict[str, str]]) -> Dict[str, Any]:
    """Deterministic fallback: truncated transcript plus leading words as topics."""
    if not turns:
        return {"summary": EMPTY_SUMMARY, "key_topics": []}
    combined = format_turns(turns)
    if len(combined) > FALLBACK_SUMMARY_CHARS:
        summary = combined[:FALLBACK_SUMMARY_CHARS] + "..."
    else:
        summary = combined
    topics = [" ".join(str(t.get("content", "")).split()[:3]) for t in turns]
    topics = [t for t in topics if len(t) > 2][:FALLBACK_MAX_TOPICS]
    return {"summary": summary or EMPTY_SUMMARY, "key_topics": topics}


class TruncationSummarizationProvider:
    async def summarize(self, turns: List[Dict[str, str]]) -> Dict[str, Any]:
        return truncation_summary(turns)


def _valid_output(output: Any) -> bool:
    if not isinstance(output, dict):
        return False
    summary = output.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        return False
    topics = output.get("key_topics", [])
    return isinstance(topics, list)


class SessionSummarizer:
    def __init__(self, store: KnowledgeStore, provider: Optional[SummarizationProvider] = None):
        self.store = store
        self.provider = provider or TruncationSummarizationProvider()

    async def summarize(
        self, session_id: str, turns: List[Dict[str, str]], channel: Optional[str] = None
    ) -> SummarizationResult:
        turns = list(turns or [])
        try:
            output = await self.provider.summarize(turns)
        except Exception as e:
            logger.warning("Summarization provider failed, using truncation: %s", e)
            output = None

        if not _valid_output(output):
            if output is not None:
                logger.warning("Summarization provider returned invalid output, using truncation")
            output = truncation_summary(turns)

        summary = output["summary"]
        key_topics = [t for t in output.get("key_topics", []) if isinstance(t, str)]

        original_tokens = sum(estimate_tokens(str(t.get("content", ""))) for t in turns)
        summary_id = str(uuid.uuid4())
        self.store.insert_session_summary(
            id=summary_id,
            session_id=session_id,
            summary=summary,
            key_topics=key_topics,
            channel=channel,
        )
        return SummarizationResult(
            summary_id=summary_id,
            session_id=session_id,
            summary=summary,
            key_topics=key_topics,
            turns_consumed=len(turns),
            tokens_saved=original_tokens - estimate_tokens(summary),
        )

    def get_latest_summary(self, session_id: str) -> Optional[Dict[str, Any]]:
        row = self.store.get_latest_session_summary(session_id)
        if row is None:
            return None
        return {"summary": row.summary, "key_topics": row.key_topics}
