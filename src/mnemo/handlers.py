"""
mnemo request and notification handlers.

Each handler is a plain async function taking the runtime (``rt``: store,
graph, gate, extractor, summarizer, retriever, window, indexer, mediator)
and the message. register_all() binds them to a Mediator.
"""

import functools
import logging
import uuid
from typing import Any, Dict, List, Optional

from mnemo import messages as m
from mnemo.embeddings import embed_or_zero
from mnemo.indexer import MemoryEntry
from mnemo.search import SearchResult, hybrid_search
from mnemo.summarizer import SummarizationResult, estimate_tokens
from mnemo.window import ContextWindow

logger = logging.getLogger("mnemo.handlers")

SEARCH_MEMORY_BOOST = 1.5


# ============================================================================
# Knowledge store
# ============================================================================


async def handle_index_content(rt, req: m.IndexContent) -> str:
    chunk_id = str(uuid.uuid4())
    embedding = await embed_or_zero(rt.store.embeddings, req.content) if rt.indexer.embed else None
    rt.store.insert_chunk(
        id=chunk_id,
        source_uri=req.source_uri,
        content=req.content,
        chunk_index=req.chunk_index,
        embedding=embedding,
        token_count=estimate_tokens(req.content),
        metadata=req.attributes,
    )
    return chunk_id


async def handle_search_knowledge(rt, req: m.SearchKnowledge) -> List[SearchResult]:
    return hybrid_search(rt.store, req.query, limit=req.limit, min_score=req.min_score)


async def handle_store_entity(rt, req: m.StoreEntity) -> str:
    return rt.graph.add_entity(
        name=req.name, type=req.type, description=req.description, metadata=req.attributes
    )


async def handle_create_relationship(rt, req: m.CreateRelationship) -> str:
    return rt.graph.add_relationship(
        req.source_id, req.target_id, req.type, weight=req.weight, metadata=req.attributes
    )


async def handle_decay_relationships(rt, req: m.DecayRelationships) -> int:
    return rt.graph.decay(req.factor)


# ============================================================================
# Structured memory
# ============================================================================


async def handle_extract_entities(rt, req: m.ExtractEntities):
    return await rt.extractor.extract(req.text)


async def handle_link_entities(rt, req: m.LinkEntities) -> List[str]:
    ids = []
    for link in req.links:
        ids.append(
            rt.graph.add_relationship(
                link["source_id"],
                link["target_id"],
                link["type"],
                weight=link.get("weight", 1.0),
            )
        )
    return ids


async def handle_forget_entity(rt, req: m.ForgetEntity) -> None:
    rt.graph.forget(req.entity_id)


async def handle_index_message(rt, req: m.IndexMessage) -> MemoryEntry:
    return await rt.indexer.index(req.source_uri, req.content, req.attributes)


async def handle_reindex_source(rt, req: m.ReindexSource) -> MemoryEntry:
    return await rt.indexer.reindex(req.source_uri, req.content, req.attributes)


def _only_forgotten_mentions(rt, chunk_id: str) -> bool:
    """True when the chunk has mentions and every mentioned entity is forgotten."""
    entity_ids = rt.store.get_mentions_for_chunk(chunk_id)
    if not entity_ids:
        return False
    for entity_id in entity_ids:
        entity = rt.store.get_entity(entity_id)
        if entity is None or not entity.forgotten:
            return False
    return True


async def handle_search_memory(rt, req: m.SearchMemory) -> List[SearchResult]:
    """Hybrid search with optional entity boost, hiding chunks tied only to forgotten entities."""
    results = hybrid_search(rt.store, req.query, limit=req.limit * 2, min_score=req.min_score)

    if req.boost_entity_ids:
        boosted = set(req.boost_entity_ids)
        for result in results:
            if boosted.intersection(rt.store.get_mentions_for_chunk(result.id)):
                result.score *= SEARCH_MEMORY_BOOST
        results.sort(key=lambda r: r.score, reverse=True)

    visible = [r for r in results if not _only_forgotten_mentions(rt, r.id)]
    return visible[: req.limit]


async def handle_get_entity_context(rt, req: m.GetEntityContext) -> Dict[str, Any]:
    return rt.graph.get_entity_context(req.entity_id, mention_limit=req.mention_limit)


async def handle_get_relationship_path(rt, req: m.GetRelationshipPath) -> List[str]:
    return rt.graph.find_path(req.start_entity_id, req.end_entity_id, max_depth=req.max_depth)


# ============================================================================
# Smart context
# ============================================================================


async def handle_summarize_turns(rt, req: m.SummarizeTurns) -> SummarizationResult:
    return await rt.summarizer.summarize(req.session_id, req.turns, req.channel)


async def handle_compact_session(rt, req: m.CompactSession) -> SummarizationResult:
    result = await rt.summarizer.summarize(req.session_id, req.turns, req.channel)
    logger.info("Compacted session %s: %d turns, %d tokens saved",
                req.session_id, result.turns_consumed, result.tokens_saved)
    return result


async def handle_retrieve_relevant_context(rt, req: m.RetrieveRelevantContext) -> ContextWindow:
    return rt.window.build_window(req.session_id, req.recent_turns, req.current_query, req.entity_ids)


async def handle_get_session_summary(rt, req: m.GetSessionSummary) -> Optional[Dict[str, Any]]:
    return rt.summarizer.get_latest_summary(req.session_id)


async def handle_check_capability(rt, req: m.CheckCapability) -> str:
    return rt.gate.resolve(req.capability, req.context)


REQUEST_HANDLERS = {
    m.IndexContent: handle_index_content,
    m.SearchKnowledge: handle_search_knowledge,
    m.StoreEntity: handle_store_entity,
    m.CreateRelationship: handle_create_relationship,
    m.DecayRelationships: handle_decay_relationships,
    m.ExtractEntities: handle_extract_entities,
    m.LinkEntities: handle_link_entities,
    m.ForgetEntity: handle_forget_entity,
    m.IndexMessage: handle_index_message,
    m.ReindexSource: handle_reindex_source,
    m.SearchMemory: handle_search_memory,
    m.GetEntityContext: handle_get_entity_context,
    m.GetRelationshipPath: handle_get_relationship_path,
    m.SummarizeTurns: handle_summarize_turns,
    m.CompactSession: handle_compact_session,
    m.RetrieveRelevantContext: handle_retrieve_relevant_context,
    m.GetSessionSummary: handle_get_session_summary,
    m.CheckCapability: handle_check_capability,
}


# ============================================================================
# Notification handlers -- auto-index inbound events
# ============================================================================


async def on_message_received(rt, event: m.MessageReceived) -> None:
    attributes = dict(event.attributes or {})
    attributes.update({"author_id": event.author_id, "channel": event.channel})
    await rt.mediator.send(
        m.IndexMessage(
            source_uri=f"message://{event.channel}/{event.message_id}",
            content=event.content,
            attributes=attributes,
        )
    )


async def on_file_changed(rt, event: m.FileChanged) -> None:
    if event.change_type == "deleted" or not event.content:
        return
    await rt.mediator.send(
        m.IndexMessage(source_uri=f"file://{event.file_path}", content=event.content)
    )


async def on_task_completed(rt, event: m.TaskCompleted) -> None:
    content = f"Task completed: {event.title}"
    if event.description:
        content += f" - {event.description}"
    await rt.mediator.send(m.IndexMessage(source_uri=f"task://{event.task_id}", content=content))


async def on_email_received(rt, event: m.EmailReceived) -> None:
    content = f"From: {event.sender}\nSubject: {event.subject}\n\n{event.body}"
    await rt.mediator.send(
        m.IndexMessage(
            source_uri=f"email://{event.email_id}",
            content=content,
            attributes={"sender": event.sender, "subject": event.subject},
        )
    )


async def on_agent_turn_completed(rt, event: m.AgentTurnCompleted) -> None:
    """Summarize every ``compaction_threshold`` turns, then announce the window update."""
    threshold = rt.window.options.compaction_threshold
    if event.turn_index > 0 and threshold > 0 and event.turn_index % threshold == 0:
        turns = [
            {"role": "user", "content": event.user_message},
            {"role": "assistant", "content": event.assistant_message},
        ]
        await rt.mediator.send(m.SummarizeTurns(session_id=event.session_id, turns=turns))

    await rt.mediator.publish(m.ContextWindowUpdated(session_id=event.session_id))


NOTIFICATION_HANDLERS = {
    m.MessageReceived: on_message_received,
    m.FileChanged: on_file_changed,
    m.TaskCompleted: on_task_completed,
    m.EmailReceived: on_email_received,
    m.AgentTurnCompleted: on_agent_turn_completed,
}


def register_all(mediator, rt) -> None:
    """Register every request and notification handler against ``rt``."""
    for request_cls, fn in REQUEST_HANDLERS.items():
        mediator.register_handler(request_cls, functools.partial(fn, rt))
    for event_cls, fn in NOTIFICATION_HANDLERS.items():
        mediator.register_notification_handler(event_cls, functools.partial(fn, rt))
