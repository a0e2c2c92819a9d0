"""
mnemo Memory Indexer -- chunk, extract, populate the graph, publish events.

index() is a per-window loop of independent writes. A crash part-way
leaves the windows already written in place; reindex() deletes the old
chunks before indexing and is not atomic either.
"""

import logging
import os
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from mnemo.embeddings import embed_or_zero
from mnemo.extractor import EntityExtractor
from mnemo.graph import EntityGraph
from mnemo.messages import ContentIndexed, EntityDiscovered, RelationshipCreated
from mnemo.sqlite_store import KnowledgeStore
from mnemo.summarizer import estimate_tokens

logger = logging.getLogger("mnemo.indexer")

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200


def chunk_text(text: str, size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_CHUNK_OVERLAP) -> List[str]:
    """Split text into fixed-size windows, each overlapping the previous by ``overlap``."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    if not 0 <= overlap < size:
        raise ValueError("chunk overlap must be >= 0 and smaller than the chunk size")
    if len(text) <= size:
        return [text]
    step = size - overlap
    return [text[start:start + size] for start in range(0, len(text) - overlap, step)]


@dataclass
class MemoryEntry:
    id: str
    source_uri: str
    content: str
    entity_ids: List[str] = field(default_factory=list)
    chunk_id: str = ""
    timestamp: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MemoryIndexer:
    def __init__(
        self,
        store: KnowledgeStore,
        graph: EntityGraph,
        extractor: EntityExtractor,
        mediator,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        embed: bool = False,
    ):
        self.store = store
        self.graph = graph
        self.extractor = extractor
        self.mediator = mediator
        self.chunk_size = chunk_size or int(os.environ.get("MNEMO_CHUNK_SIZE", DEFAULT_CHUNK_SIZE))
        if chunk_overlap is None:
            chunk_overlap = int(os.environ.get("MNEMO_CHUNK_OVERLAP", DEFAULT_CHUNK_OVERLAP))
        self.chunk_overlap = chunk_overlap
        self.embed = embed

    async def _resolve_entity(self, name: str, etype: str, description: Optional[str]) -> str:
        existing = self.graph.find_entity(name, etype)
        if existing:
            return existing.id
        entity_id = self.graph.add_entity(name=name, type=etype, description=description)
        await self.mediator.publish(EntityDiscovered(entity_id=entity_id, name=name, type=etype))
        return entity_id

    async def index(self, source_uri: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> MemoryEntry:
        now = datetime.now(timezone.utc).isoformat()
        chunk_metadata = dict(metadata or {})
        chunk_metadata.setdefault("created_at", now)

        windows = chunk_text(content, self.chunk_size, self.chunk_overlap)
        all_entity_ids: List[str] = []
        first_chunk_id = ""

        for i, window in enumerate(windows):
            chunk_id = str(uuid.uuid4())
            if i == 0:
                first_chunk_id = chunk_id
            embedding = await embed_or_zero(self.store.embeddings, window) if self.embed else None
            self.store.insert_chunk(
                id=chunk_id,
                source_uri=source_uri,
                content=window,
                chunk_index=i,
                embedding=embedding,
                token_count=estimate_tokens(window),
                metadata=chunk_metadata,
            )

            result = await self.extractor.extract(window)
            for entity in result.entities:
                entity_id = await self._resolve_entity(entity.name, entity.type, entity.description)
                all_entity_ids.append(entity_id)
                self.store.insert_mention(
                    id=str(uuid.uuid4()),
                    entity_id=entity_id,
                    chunk_id=chunk_id,
                    start_offset=entity.start_offset,
                    end_offset=entity.end_offset,
                )

            for rel in result.relationships:
                source = self.graph.find_entity(rel.source_name)
                target = self.graph.find_entity(rel.target_name)
                if not (source and target):
                    logger.debug("Skipping relationship %s -> %s: endpoint unresolved",
                                 rel.source_name, rel.target_name)
                    continue
                rel_id = self.graph.add_relationship(source.id, target.id, rel.type)
                await self.mediator.publish(
                    RelationshipCreated(
                        relationship_id=rel_id, source_id=source.id, target_id=target.id, type=rel.type
                    )
                )

            await self.mediator.publish(
                ContentIndexed(chunk_id=chunk_id, source_uri=source_uri, entity_ids=list(all_entity_ids))
            )

        logger.debug("Indexed %s: %d chunks, %d entity mentions", source_uri, len(windows), len(all_entity_ids))
        return MemoryEntry(
            id=str(uuid.uuid4()),
            source_uri=source_uri,
            content=content,
            entity_ids=list(dict.fromkeys(all_entity_ids)),
            chunk_id=first_chunk_id,
            timestamp=now,
        )

    async def reindex(self, source_uri: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> MemoryEntry:
        removed = self.store.delete_chunks_by_source(source_uri)
        logger.debug("Reindex %s: removed %d chunks", source_uri, removed)
        return await self.index(source_uri, content, metadata)
