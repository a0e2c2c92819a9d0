"""
mnemo Bridge -- high-level API over a lazily created runtime.

Provides the public interface used by the MCP server handlers and the CLI.
Every call goes through the mediator, so the behavior pipeline (logging,
metrics, validation, capability gate) applies uniformly.

Public API:
    Content:    index, reindex, index_chunk, search, search_memory
    Graph:      store_entity, link_entities, forget_entity, entity_context,
                relationship_path, decay
    Context:    summarize, compact, build_context, session_summary
    Policy:     add_policy, check_capability
    Events:     publish, on_hook
    Health:     status
    Testing:    reset_runtime
"""

import atexit
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from mnemo import messages as m
from mnemo.behaviors import (
    CapabilityGateBehavior,
    JsonSchemaValidator,
    LoggingBehavior,
    MetricsBehavior,
    ValidationBehavior,
)
from mnemo.extractor import EntityExtractor
from mnemo.gate import CapabilityContext, CapabilityGate
from mnemo.graph import EntityGraph
from mnemo.handlers import register_all
from mnemo.hooks import HookBridge, HookEvent
from mnemo.indexer import MemoryIndexer
from mnemo.mediator import Mediator
from mnemo.retriever import ContextRetriever, RetrievalStrategy
from mnemo.sqlite_store import KnowledgeStore
from mnemo.summarizer import SessionSummarizer
from mnemo.window import ContextWindowManager, WindowOptions

logger = logging.getLogger("mnemo.bridge")


# ---------------------------------------------------------------------------
# Storage configuration
# ---------------------------------------------------------------------------


def mnemo_home() -> Path:
    return Path(os.environ.get("MNEMO_HOME", str(Path.home() / ".mnemo")))


@dataclass
class Runtime:
    """Every collaborator, wired once. Handlers receive this as ``rt``."""

    store: KnowledgeStore
    graph: EntityGraph
    gate: CapabilityGate
    extractor: EntityExtractor
    summarizer: SessionSummarizer
    retriever: ContextRetriever
    window: ContextWindowManager
    indexer: MemoryIndexer
    mediator: Mediator
    hooks: HookBridge
    metrics: MetricsBehavior
    context: CapabilityContext = field(default_factory=CapabilityContext)

    def close(self) -> None:
        self.store.close()


def providers_from_env() -> Dict[str, Any]:
    """Hosted providers for whichever API keys are set. Missing SDKs are skipped."""
    providers: Dict[str, Any] = {}
    if os.environ.get("ANTHROPIC_API_KEY"):
        try:
            from mnemo.providers import AnthropicExtractionProvider, AnthropicSummarizationProvider

            providers["extraction_provider"] = AnthropicExtractionProvider()
            providers["summarization_provider"] = AnthropicSummarizationProvider()
        except ImportError as e:
            logger.warning("ANTHROPIC_API_KEY set but provider unavailable: %s", e)
    if os.environ.get("VOYAGE_API_KEY"):
        from mnemo.embeddings import VoyageEmbeddingProvider

        providers["embedding_provider"] = VoyageEmbeddingProvider()
    return providers


def create_runtime(
    db_path=None,
    extraction_provider=None,
    summarization_provider=None,
    embedding_provider=None,
    window_options: Optional[WindowOptions] = None,
    strategy: Optional[RetrievalStrategy] = None,
    log_sink=None,
) -> Runtime:
    """Build a fully wired runtime. Behavior order: logging, metrics, validation, gate."""
    store = KnowledgeStore(db_path=db_path, embedding_provider=embedding_provider)
    graph = EntityGraph(store)
    gate = CapabilityGate(store)
    extractor = EntityExtractor(extraction_provider)
    summarizer = SessionSummarizer(store, summarization_provider)
    retriever = ContextRetriever(store, strategy or RetrievalStrategy.from_env())
    window = ContextWindowManager(retriever, summarizer, window_options or WindowOptions.from_env())
    mediator = Mediator()
    indexer = MemoryIndexer(store, graph, extractor, mediator, embed=embedding_provider is not None)
    metrics = MetricsBehavior()

    rt = Runtime(
        store=store,
        graph=graph,
        gate=gate,
        extractor=extractor,
        summarizer=summarizer,
        retriever=retriever,
        window=window,
        indexer=indexer,
        mediator=mediator,
        hooks=HookBridge(mediator),
        metrics=metrics,
    )

    mediator.add_behavior(LoggingBehavior(log_sink))
    mediator.add_behavior(metrics)
    mediator.add_behavior(ValidationBehavior(JsonSchemaValidator()))
    mediator.add_behavior(CapabilityGateBehavior(gate, lambda: rt.context))
    register_all(mediator, rt)
    return rt


# ---------------------------------------------------------------------------
# Lazy singleton
# ---------------------------------------------------------------------------

_runtime_instance: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def _get_runtime() -> Runtime:
    """Get or create the Runtime singleton (thread-safe)."""
    global _runtime_instance
    if _runtime_instance is not None:
        return _runtime_instance
    with _runtime_lock:
        if _runtime_instance is not None:
            return _runtime_instance
        _runtime_instance = create_runtime(**providers_from_env())
        atexit.register(_close_runtime)
    return _runtime_instance


def _close_runtime():
    """Close the store on process exit."""
    global _runtime_instance
    if _runtime_instance is not None:
        _runtime_instance.close()


def reset_runtime():
    """Reset the singleton (useful for testing)."""
    global _runtime_instance
    with _runtime_lock:
        if _runtime_instance is not None:
            _runtime_instance.close()
        _runtime_instance = None


def _meta(required_capabilities: Optional[List[str]] = None, schema=None) -> m.RequestMetadata:
    return m.RequestMetadata(required_capabilities=list(required_capabilities or []), validation_schema=schema)


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


async def index(source_uri: str, content: str, metadata: Optional[Dict[str, Any]] = None,
                required_capabilities: Optional[List[str]] = None):
    """Run the full indexing pipeline for one source. Returns a MemoryEntry."""
    rt = _get_runtime()
    return await rt.mediator.send(
        m.IndexMessage(source_uri=source_uri, content=content, attributes=metadata,
                       metadata=_meta(required_capabilities))
    )


async def reindex(source_uri: str, content: str, metadata: Optional[Dict[str, Any]] = None):
    rt = _get_runtime()
    return await rt.mediator.send(m.ReindexSource(source_uri=source_uri, content=content, attributes=metadata))


async def index_chunk(source_uri: str, content: str, chunk_index: int = 0,
                      metadata: Optional[Dict[str, Any]] = None) -> str:
    """Store one chunk verbatim (no chunking, no extraction)."""
    rt = _get_runtime()
    return await rt.mediator.send(
        m.IndexContent(source_uri=source_uri, content=content, chunk_index=chunk_index, attributes=metadata)
    )


async def search(query: str, limit: int = 20, min_score: float = 0.0):
    rt = _get_runtime()
    return await rt.mediator.send(m.SearchKnowledge(query=query, limit=limit, min_score=min_score))


async def search_memory(query: str, limit: int = 20, min_score: float = 0.0,
                        boost_entity_ids: Optional[List[str]] = None):
    rt = _get_runtime()
    return await rt.mediator.send(
        m.SearchMemory(query=query, limit=limit, min_score=min_score,
                       boost_entity_ids=list(boost_entity_ids or []))
    )


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


async def store_entity(name: str, type: str, description: Optional[str] = None,
                       metadata: Optional[Dict[str, Any]] = None) -> str:
    rt = _get_runtime()
    return await rt.mediator.send(m.StoreEntity(name=name, type=type, description=description, attributes=metadata))


async def link_entities(links: List[Dict[str, Any]]) -> List[str]:
    rt = _get_runtime()
    return await rt.mediator.send(m.LinkEntities(links=links))


async def forget_entity(entity_id: str) -> None:
    rt = _get_runtime()
    await rt.mediator.send(m.ForgetEntity(entity_id=entity_id))


async def entity_context(entity_id: str, mention_limit: int = 10) -> Dict[str, Any]:
    rt = _get_runtime()
    return await rt.mediator.send(m.GetEntityContext(entity_id=entity_id, mention_limit=mention_limit))


async def relationship_path(start_entity_id: str, end_entity_id: str, max_depth: int = 10) -> List[str]:
    rt = _get_runtime()
    return await rt.mediator.send(
        m.GetRelationshipPath(start_entity_id=start_entity_id, end_entity_id=end_entity_id, max_depth=max_depth)
    )


async def decay(factor: float) -> int:
    rt = _get_runtime()
    return await rt.mediator.send(m.DecayRelationships(factor=factor))


# ---------------------------------------------------------------------------
# Smart context
# ---------------------------------------------------------------------------


async def summarize(session_id: str, turns: List[Dict[str, str]], channel: Optional[str] = None):
    rt = _get_runtime()
    return await rt.mediator.send(m.SummarizeTurns(session_id=session_id, turns=turns, channel=channel))


async def compact(session_id: str, turns: List[Dict[str, str]], channel: Optional[str] = None):
    rt = _get_runtime()
    return await rt.mediator.send(m.CompactSession(session_id=session_id, turns=turns, channel=channel))


async def build_context(session_id: str, recent_turns: List[Dict[str, str]], current_query: str,
                        entity_ids: Optional[List[str]] = None):
    rt = _get_runtime()
    return await rt.mediator.send(
        m.RetrieveRelevantContext(session_id=session_id, recent_turns=recent_turns,
                                  current_query=current_query, entity_ids=list(entity_ids or []))
    )


async def session_summary(session_id: str) -> Optional[Dict[str, Any]]:
    rt = _get_runtime()
    return await rt.mediator.send(m.GetSessionSummary(session_id=session_id))


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def add_policy(capability: str, effect: str, channel: Optional[str] = None, persona: Optional[str] = None,
               user_id: Optional[str] = None, conditions: Optional[Dict[str, Any]] = None) -> str:
    rt = _get_runtime()
    return rt.store.insert_policy(
        id=str(uuid.uuid4()), capability=capability, effect=effect, channel=channel,
        persona=persona, user_id=user_id, conditions=conditions,
    )


async def check_capability(capability: str, context: Optional[Dict[str, Any]] = None) -> str:
    rt = _get_runtime()
    return await rt.mediator.send(m.CheckCapability(capability=capability, context=dict(context or {})))


def set_context(channel: Optional[str] = None, persona: Optional[str] = None, user_id: Optional[str] = None) -> None:
    """Set the caller context the capability-gate behavior checks against."""
    _get_runtime().context = CapabilityContext(channel=channel, persona=persona, user_id=user_id)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


async def publish(notification) -> None:
    await _get_runtime().mediator.publish(notification)


async def on_hook(name: str, payload: Optional[Dict[str, Any]] = None, timestamp: Optional[str] = None) -> None:
    await _get_runtime().hooks.on_hook(HookEvent(name=name, payload=dict(payload or {}), timestamp=timestamp))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


def status() -> Dict[str, Any]:
    rt = _get_runtime()
    store = rt.store
    return {
        "db_path": str(store.db_path),
        "chunks": store.chunk_count(),
        "entities": store.fetch_one("SELECT COUNT(*) FROM entities WHERE forgotten = 0")[0],
        "relationships": store.fetch_one("SELECT COUNT(*) FROM relationships")[0],
        "vec_available": store.vec_available,
        "migrations": store.applied_migrations(),
        "request_types": rt.mediator.request_types,
        "metrics": rt.metrics.summary(),
    }
