"""mnemo -- local knowledge persistence and retrieval for autonomous agents.

Direct Python API -- no MCP server required::

    import asyncio
    from mnemo import index, search

    asyncio.run(index("file:///notes.md", "Alice Smith leads PROJ-42."))
    results = asyncio.run(search("Alice"))

For MCP integration run ``mnemo serve``.
"""

__version__ = "0.3.0"

from mnemo.sqlite_store import KnowledgeStore
from mnemo.mediator import Mediator
from mnemo.bridge import (
    Runtime,
    create_runtime,
    index,
    reindex,
    index_chunk,
    search,
    search_memory,
    store_entity,
    link_entities,
    forget_entity,
    entity_context,
    relationship_path,
    decay,
    summarize,
    compact,
    build_context,
    session_summary,
    add_policy,
    check_capability,
    set_context,
    publish,
    on_hook,
    status,
    reset_runtime,
)

__all__ = [
    "KnowledgeStore",
    "Mediator",
    "Runtime",
    "create_runtime",
    # Content
    "index",
    "reindex",
    "index_chunk",
    "search",
    "search_memory",
    # Graph
    "store_entity",
    "link_entities",
    "forget_entity",
    "entity_context",
    "relationship_path",
    "decay",
    # Context
    "summarize",
    "compact",
    "build_context",
    "session_summary",
    # Policy
    "add_policy",
    "check_capability",
    "set_context",
    # Events
    "publish",
    "on_hook",
    # Meta
    "status",
    "reset_runtime",
    "__version__",
]
