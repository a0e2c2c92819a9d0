"""
mnemo Hybrid Search -- FTS5 lexical pass fused with an entity-name graph pass.

hybrid_search() never raises on query content: malformed FTS5 syntax
degrades the lexical pass to nothing while the graph pass still runs, and
characters that cannot be encoded as UTF-8 are dropped before either pass.
"""

import json
import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from mnemo.sqlite_store import KnowledgeStore

logger = logging.getLogger("mnemo.search")

DEFAULT_LIMIT = 20
GRAPH_MATCH_SCORE = 0.5


@dataclass
class SearchResult:
    id: str
    content: str
    score: float
    source: str  # "fts" | "graph"
    source_uri: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _metadata(raw: Optional[str]) -> Dict[str, Any]:
    try:
        value = json.loads(raw or "{}")
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _lexical_pass(store: KnowledgeStore, query: str, limit: int) -> List[SearchResult]:
    try:
        rows = store.fetch_all(
            """SELECT c.id, c.content, c.source_uri, c.metadata,
                      bm25(content_chunks_fts) * -1 AS raw_score
               FROM content_chunks_fts
               JOIN content_chunks c ON c.pk = content_chunks_fts.rowid
               WHERE content_chunks_fts MATCH ?
               ORDER BY bm25(content_chunks_fts)
               LIMIT ?""",
            (query, limit),
        )
    except sqlite3.Error as e:
        logger.debug("FTS pass failed for %r: %s", query, e)
        return []

    if not rows:
        return []
    max_raw = max(r["raw_score"] for r in rows)
    results = []
    for r in rows:
        if max_raw > 0:
            score = max(0.0, r["raw_score"] / max_raw)
        else:
            score = 1.0
        results.append(
            SearchResult(
                id=r["id"],
                content=r["content"],
                score=score,
                source="fts",
                source_uri=r["source_uri"],
                metadata=_metadata(r["metadata"]),
            )
        )
    return results


def _graph_pass(store: KnowledgeStore, query: str, limit: int) -> List[SearchResult]:
    pattern = f"%{_escape_like(query)}%"
    try:
        rows = store.fetch_all(
            """SELECT DISTINCT c.id, c.content, c.source_uri, c.metadata
               FROM entities e
               JOIN entity_mentions em ON em.entity_id = e.id
               JOIN content_chunks c ON c.id = em.chunk_id
               WHERE e.forgotten = 0
                 AND (e.name LIKE ? ESCAPE '\\' OR e.description LIKE ? ESCAPE '\\')
               LIMIT ?""",
            (pattern, pattern, limit),
        )
    except sqlite3.Error as e:
        logger.debug("Graph pass failed for %r: %s", query, e)
        return []
    return [
        SearchResult(
            id=r["id"],
            content=r["content"],
            score=GRAPH_MATCH_SCORE,
            source="graph",
            source_uri=r["source_uri"],
            metadata=_metadata(r["metadata"]),
        )
        for r in rows
    ]


def hybrid_search(
    store: KnowledgeStore,
    query: str,
    limit: int = DEFAULT_LIMIT,
    min_score: float = 0.0,
) -> List[SearchResult]:
    """Union of the lexical and graph passes, ranked by score.

    Chunks found by both passes keep their lexical entry. Output is stably
    sorted by score descending, filtered by ``min_score`` and cut to ``limit``.
    """
    if not isinstance(query, str) or not query.strip():
        return []
    # Lone surrogates cannot be bound as UTF-8
    query = query.encode("utf-8", "ignore").decode("utf-8")
    if not query.strip():
        return []
    limit = DEFAULT_LIMIT if limit is None else limit
    min_score = 0.0 if min_score is None else min_score

    merged: Dict[str, SearchResult] = {}
    for result in _lexical_pass(store, query, limit) + _graph_pass(store, query, limit):
        merged.setdefault(result.id, result)

    ranked = sorted(merged.values(), key=lambda r: r.score, reverse=True)
    return [r for r in ranked if r.score >= min_score][:limit]
