"""
mnemo Entity Graph -- entity/relationship CRUD and traversal over the store.

Relationships are stored directionally (source -> target) but every read
treats them as undirected. The graph holds no state of its own.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from mnemo.errors import NotFoundError
from mnemo.sqlite_store import Entity, KnowledgeStore, Relationship, _utcnow

logger = logging.getLogger("mnemo.graph")

DEFAULT_MAX_DEPTH = 10


class EntityGraph:
    def __init__(self, store: KnowledgeStore):
        self.store = store

    def add_entity(
        self,
        name: str,
        type: str,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        id: Optional[str] = None,
    ) -> str:
        """Upsert an entity, returning its id (generated when omitted)."""
        entity_id = id or str(uuid.uuid4())
        return self.store.insert_entity(
            id=entity_id, name=name, type=type, description=description, metadata=metadata
        )

    def add_relationship(
        self,
        source_id: str,
        target_id: str,
        type: str,
        weight: float = 1.0,
        metadata: Optional[Dict[str, Any]] = None,
        id: Optional[str] = None,
    ) -> str:
        rel_id = id or str(uuid.uuid4())
        return self.store.insert_relationship(
            id=rel_id,
            source_id=source_id,
            target_id=target_id,
            type=type,
            weight=1.0 if weight is None else weight,
            metadata=metadata,
        )

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        return self.store.get_entity(entity_id)

    def find_entity(self, name: str, type: Optional[str] = None) -> Optional[Entity]:
        """First entity with this exact name. Empty or omitted type matches any type."""
        if type:
            row = self.store.fetch_one(
                "SELECT * FROM entities WHERE name = ? AND type = ? ORDER BY created_at, rowid LIMIT 1",
                (name, type),
            )
        else:
            row = self.store.fetch_one(
                "SELECT * FROM entities WHERE name = ? ORDER BY created_at, rowid LIMIT 1",
                (name,),
            )
        return KnowledgeStore.row_to_entity(row) if row else None

    def get_relationships(self, entity_id: str) -> List[Relationship]:
        """Relationships where the entity is source OR target."""
        rows = self.store.fetch_all(
            """SELECT * FROM relationships WHERE source_id = ? OR target_id = ?
               ORDER BY created_at, rowid""",
            (entity_id, entity_id),
        )
        return [KnowledgeStore.row_to_relationship(r) for r in rows]

    def _neighbor_ids(self, entity_id: str) -> List[str]:
        seen: Dict[str, None] = {}
        for rel in self.get_relationships(entity_id):
            other = rel.target_id if rel.source_id == entity_id else rel.source_id
            seen.setdefault(other, None)
        return list(seen)

    def get_neighbors(self, entity_id: str) -> List[Entity]:
        """Distinct entities one hop away in either direction."""
        neighbors = []
        for nid in self._neighbor_ids(entity_id):
            entity = self.store.get_entity(nid)
            if entity:
                neighbors.append(entity)
        return neighbors

    def find_path(self, start_id: str, end_id: str, max_depth: int = DEFAULT_MAX_DEPTH) -> List[str]:
        """Shortest path (entity ids, endpoints inclusive) by breadth-first search.

        Returns ``[start_id]`` when both ends are equal and ``[]`` when ``end_id``
        is not reachable within ``max_depth`` hops.
        """
        if start_id == end_id:
            return [start_id]

        parents: Dict[str, Optional[str]] = {start_id: None}
        frontier = [start_id]

        for _hop in range(max_depth):
            if not frontier:
                break
            next_frontier: List[str] = []
            for node_id in frontier:
                for neighbor in self._neighbor_ids(node_id):
                    if neighbor in parents:
                        continue
                    parents[neighbor] = node_id
                    if neighbor == end_id:
                        return self._walk_back(parents, end_id)
                    next_frontier.append(neighbor)
            frontier = next_frontier

        return []

    @staticmethod
    def _walk_back(parents: Dict[str, Optional[str]], end_id: str) -> List[str]:
        path = [end_id]
        node = parents[end_id]
        while node is not None:
            path.append(node)
            node = parents[node]
        path.reverse()
        return path

    def decay(self, factor: float) -> int:
        """Multiply every relationship weight by factor. Returns rows touched."""
        return self.store.execute_write(
            "UPDATE relationships SET weight = weight * ?, updated_at = ?", (factor, _utcnow())
        )

    def forget(self, entity_id: str) -> None:
        """Soft-delete an entity. Mentions and relationships are kept."""
        changed = self.store.execute_write(
            "UPDATE entities SET forgotten = 1, updated_at = ? WHERE id = ?",
            (_utcnow(), entity_id),
        )
        if changed == 0:
            raise NotFoundError(f"Entity not found: {entity_id}")
        logger.debug("Forgot entity %s", entity_id)

    def get_entity_context(self, entity_id: str, mention_limit: int = 10) -> Dict[str, Any]:
        """Entity, its relationships, and its most recent mentions."""
        entity = self.store.get_entity(entity_id)
        if entity is None:
            raise NotFoundError(f"Entity not found: {entity_id}")
        if entity.forgotten:
            raise NotFoundError(f"Entity has been forgotten: {entity_id}")

        rows = self.store.fetch_all(
            """SELECT em.chunk_id, c.content, c.created_at
               FROM entity_mentions em
               JOIN content_chunks c ON c.id = em.chunk_id
               WHERE em.entity_id = ?
               ORDER BY c.created_at DESC, c.pk DESC
               LIMIT ?""",
            (entity_id, mention_limit),
        )
        return {
            "entity": entity,
            "relationships": self.get_relationships(entity_id),
            "recent_mentions": [
                {"chunk_id": r["chunk_id"], "content": r["content"], "created_at": r["created_at"]}
                for r in rows
            ],
        }
