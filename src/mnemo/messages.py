"""
mnemo messages -- typed requests (commands/queries) and notifications (events).

Every request class carries a ``request_type`` discriminant and every
notification class a ``notification_type``; the mediator's registries are
keyed by these strings. Request payload fields that end up as a stored
row's metadata map are named ``attributes`` so they never collide with the
pipeline's ``metadata``.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RequestMetadata:
    """Cross-cutting hints read by pipeline behaviors."""

    required_capabilities: List[str] = field(default_factory=list)
    validation_schema: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Request:
    request_type: ClassVar[str] = ""

    metadata: RequestMetadata = field(default_factory=RequestMetadata, kw_only=True)

    def payload(self) -> Dict[str, Any]:
        """Request fields without pipeline metadata (what validation sees)."""
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "metadata"}


@dataclass
class Notification:
    notification_type: ClassVar[str] = ""


# ---------------------------------------------------------------------------
# Knowledge store
# ---------------------------------------------------------------------------


@dataclass
class IndexContent(Request):
    request_type: ClassVar[str] = "IndexContent"
    source_uri: str
    content: str
    chunk_index: int = 0
    attributes: Optional[Dict[str, Any]] = None


@dataclass
class SearchKnowledge(Request):
    request_type: ClassVar[str] = "SearchKnowledge"
    query: str
    limit: int = 20
    min_score: float = 0.0


@dataclass
class StoreEntity(Request):
    request_type: ClassVar[str] = "StoreEntity"
    name: str
    type: str
    description: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None


@dataclass
class CreateRelationship(Request):
    request_type: ClassVar[str] = "CreateRelationship"
    source_id: str
    target_id: str
    type: str
    weight: float = 1.0
    attributes: Optional[Dict[str, Any]] = None


@dataclass
class DecayRelationships(Request):
    request_type: ClassVar[str] = "DecayRelationships"
    factor: float


# ---------------------------------------------------------------------------
# Structured memory
# ---------------------------------------------------------------------------


@dataclass
class ExtractEntities(Request):
    request_type: ClassVar[str] = "ExtractEntities"
    text: str


@dataclass
class LinkEntities(Request):
    """Each link: {"source_id", "target_id", "type", optional "weight"}."""

    request_type: ClassVar[str] = "LinkEntities"
    links: List[Dict[str, Any]]


@dataclass
class ForgetEntity(Request):
    request_type: ClassVar[str] = "ForgetEntity"
    entity_id: str


@dataclass
class IndexMessage(Request):
    request_type: ClassVar[str] = "IndexMessage"
    source_uri: str
    content: str
    attributes: Optional[Dict[str, Any]] = None


@dataclass
class ReindexSource(Request):
    request_type: ClassVar[str] = "ReindexSource"
    source_uri: str
    content: str
    attributes: Optional[Dict[str, Any]] = None


@dataclass
class SearchMemory(Request):
    request_type: ClassVar[str] = "SearchMemory"
    query: str
    limit: int = 20
    min_score: float = 0.0
    boost_entity_ids: List[str] = field(default_factory=list)


@dataclass
class GetEntityContext(Request):
    request_type: ClassVar[str] = "GetEntityContext"
    entity_id: str
    mention_limit: int = 10


@dataclass
class GetRelationshipPath(Request):
    request_type: ClassVar[str] = "GetRelationshipPath"
    start_entity_id: str
    end_entity_id: str
    max_depth: int = 10


# ---------------------------------------------------------------------------
# Smart context
# ---------------------------------------------------------------------------


@dataclass
class SummarizeTurns(Request):
    request_type: ClassVar[str] = "SummarizeTurns"
    session_id: str
    turns: List[Dict[str, str]]
    channel: Optional[str] = None


@dataclass
class CompactSession(Request):
    request_type: ClassVar[str] = "CompactSession"
    session_id: str
    turns: List[Dict[str, str]]
    channel: Optional[str] = None


@dataclass
class RetrieveRelevantContext(Request):
    request_type: ClassVar[str] = "RetrieveRelevantContext"
    session_id: str
    recent_turns: List[Dict[str, str]]
    current_query: str
    entity_ids: List[str] = field(default_factory=list)


@dataclass
class GetSessionSummary(Request):
    request_type: ClassVar[str] = "GetSessionSummary"
    session_id: str


# ---------------------------------------------------------------------------
# Capability gate
# ---------------------------------------------------------------------------


@dataclass
class CheckCapability(Request):
    """Resolve a capability without raising. Returns the effect string."""

    request_type: ClassVar[str] = "CheckCapability"
    capability: str
    context: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Domain events
# ---------------------------------------------------------------------------


@dataclass
class MessageReceived(Notification):
    notification_type: ClassVar[str] = "MessageReceived"
    message_id: str
    channel: str
    content: str
    author_id: Optional[str] = None
    timestamp: str = field(default_factory=_now_iso)
    attributes: Optional[Dict[str, Any]] = None


@dataclass
class FileChanged(Notification):
    notification_type: ClassVar[str] = "FileChanged"
    file_path: str
    change_type: str  # created | modified | deleted
    content: Optional[str] = None
    timestamp: str = field(default_factory=_now_iso)


@dataclass
class TaskCompleted(Notification):
    notification_type: ClassVar[str] = "TaskCompleted"
    task_id: str
    title: str
    description: Optional[str] = None
    timestamp: str = field(default_factory=_now_iso)


@dataclass
class EmailReceived(Notification):
    notification_type: ClassVar[str] = "EmailReceived"
    email_id: str
    subject: str
    sender: str
    body: str
    timestamp: str = field(default_factory=_now_iso)


@dataclass
class ContentIndexed(Notification):
    notification_type: ClassVar[str] = "ContentIndexed"
    chunk_id: str
    source_uri: str
    entity_ids: List[str] = field(default_factory=list)


@dataclass
class EntityDiscovered(Notification):
    notification_type: ClassVar[str] = "EntityDiscovered"
    entity_id: str
    name: str
    type: str


@dataclass
class RelationshipCreated(Notification):
    notification_type: ClassVar[str] = "RelationshipCreated"
    relationship_id: str
    source_id: str
    target_id: str
    type: str


@dataclass
class AgentTurnCompleted(Notification):
    notification_type: ClassVar[str] = "AgentTurnCompleted"
    session_id: str
    turn_index: int
    user_message: str
    assistant_message: str
    timestamp: str = field(default_factory=_now_iso)


@dataclass
class ContextWindowUpdated(Notification):
    notification_type: ClassVar[str] = "ContextWindowUpdated"
    session_id: str
    total_tokens: int = 0
    chunk_count: int = 0


@dataclass
class HookNotification(Notification):
    """External hook event. Its type is ``"hook:" + hook_name``."""

    hook_name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now_iso)

    @property
    def notification_type(self) -> str:
        return f"hook:{self.hook_name}"


REQUEST_TYPES = {
    cls.request_type: cls
    for cls in (
        IndexContent,
        SearchKnowledge,
        StoreEntity,
        CreateRelationship,
        DecayRelationships,
        ExtractEntities,
        LinkEntities,
        ForgetEntity,
        IndexMessage,
        ReindexSource,
        SearchMemory,
        GetEntityContext,
        GetRelationshipPath,
        SummarizeTurns,
        CompactSession,
        RetrieveRelevantContext,
        GetSessionSummary,
        CheckCapability,
    )
}
