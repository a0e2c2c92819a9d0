"""
mnemo Context Retriever -- rescoring and token-budgeted packing of search hits.
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from mnemo.search import hybrid_search
from mnemo.sqlite_store import KnowledgeStore, parse_dt
from mnemo.summarizer import estimate_tokens

logger = logging.getLogger("mnemo.retriever")

RETRIEVAL_SEARCH_LIMIT = 50
RECENCY_WINDOW_HOURS = 720  # 30 days
DEDUP_PREFIX_CHARS = 100


@dataclass
class ContextChunk:
    id: str
    content: str
    source: str  # "recent_turn" | "retrieval" | "summary"
    score: float
    token_count: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RetrievalStrategy:
    recency_weight: float = 0.3
    relevance_weight: float = 0.5
    entity_boost_weight: float = 0.2
    max_retrieval_tokens: int = 4000

    @classmethod
    def from_env(cls) -> "RetrievalStrategy":
        return cls(max_retrieval_tokens=int(os.environ.get("MNEMO_MAX_RETRIEVAL_TOKENS", "4000")))


def recency_score(created_at: Any, now: Optional[datetime] = None) -> float:
    """Linear decay from 1 (now) to 0 (30 days old). Missing or unparsable -> 0."""
    dt = parse_dt(created_at)
    if dt is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    age_hours = (now - dt).total_seconds() / 3600
    return min(1.0, max(0.0, 1 - age_hours / RECENCY_WINDOW_HOURS))


class ContextRetriever:
    def __init__(self, store: KnowledgeStore, strategy: Optional[RetrievalStrategy] = None):
        self.store = store
        self.strategy = strategy or RetrievalStrategy()

    def _score(self, result, boost_ids: set, now: datetime) -> float:
        s = self.strategy
        score = result.score * s.relevance_weight
        score += recency_score(result.metadata.get("created_at"), now) * s.recency_weight
        if boost_ids and boost_ids.intersection(self.store.get_mentions_for_chunk(result.id)):
            score += s.entity_boost_weight
        return score

    def retrieve(self, query: str, entity_ids: Optional[Iterable[str]] = None) -> List[ContextChunk]:
        """Search, rescore, dedup by content prefix, then pack into the token budget."""
        boost_ids = set(entity_ids or ())
        now = datetime.now(timezone.utc)
        hits = hybrid_search(self.store, query, limit=RETRIEVAL_SEARCH_LIMIT, min_score=0.0)

        scored = [
            ContextChunk(
                id=r.id,
                content=r.content,
                source="retrieval",
                score=self._score(r, boost_ids, now),
                token_count=estimate_tokens(r.content),
                metadata=r.metadata,
            )
            for r in hits
        ]
        scored.sort(key=lambda c: c.score, reverse=True)

        seen_prefixes = set()
        packed: List[ContextChunk] = []
        total = 0
        for chunk in scored:
            prefix = chunk.content[:DEDUP_PREFIX_CHARS]
            if prefix in seen_prefixes:
                continue
            seen_prefixes.add(prefix)
            # Skip, don't stop: a smaller later chunk may still fit
            if total + chunk.token_count > self.strategy.max_retrieval_tokens:
                continue
            packed.append(chunk)
            total += chunk.token_count

        logger.debug("retrieved %d/%d chunks (%d tokens) for %r", len(packed), len(hits), total, query)
        return packed
