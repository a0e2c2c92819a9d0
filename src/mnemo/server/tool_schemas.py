"""mnemo MCP Tool Schemas -- action-discriminated tools over the mediator."""

_TURNS = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {"role": {"type": "string"}, "content": {"type": "string"}},
        "required": ["role", "content"],
    },
}

TOOL_SCHEMAS = [
    {
        "name": "mnemo_index",
        "description": "Index content under a source URI: chunk it, extract entities, link them into the graph. Set reindex=true to replace everything previously indexed for that URI.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "source_uri": {"type": "string", "description": "e.g. file:///notes.md, message://discord/123"},
                "content": {"type": "string"},
                "metadata": {"type": "object", "description": "Stored on every chunk"},
                "reindex": {"type": "boolean", "default": False},
            },
            "required": ["source_uri", "content"],
        },
    },
    {
        "name": "mnemo_search",
        "description": "Hybrid search (full-text + entity graph). mode='memory' (default) hides chunks tied only to forgotten entities and can boost chunks mentioning given entities; mode='knowledge' is the raw hybrid search.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "mode": {"type": "string", "enum": ["memory", "knowledge"], "default": "memory"},
                "limit": {"type": "integer", "default": 20},
                "min_score": {"type": "number", "default": 0},
                "boost_entity_ids": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["query"],
        },
    },
    {
        "name": "mnemo_entity",
        "description": "Entity operations. action='store' creates an entity, 'forget' soft-deletes one, 'context' returns the entity with its relationships and recent mentions.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": ["store", "forget", "context"]},
                "entity_id": {"type": "string", "description": "Required for forget/context"},
                "name": {"type": "string", "description": "Required for store"},
                "type": {
                    "type": "string",
                    "description": "person, project, decision, task, date, place, organization, topic",
                },
                "description": {"type": "string"},
                "metadata": {"type": "object"},
                "mention_limit": {"type": "integer", "default": 10},
            },
            "required": ["action"],
        },
    },
    {
        "name": "mnemo_link",
        "description": "Create relationships between existing entities. Returns the new relationship ids.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "links": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "source_id": {"type": "string"},
                            "target_id": {"type": "string"},
                            "type": {"type": "string"},
                            "weight": {"type": "number"},
                        },
                        "required": ["source_id", "target_id", "type"],
                    },
                },
            },
            "required": ["links"],
        },
    },
    {
        "name": "mnemo_path",
        "description": "Shortest relationship path between two entities (ids, endpoints included). Empty when unreachable within max_depth hops.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "start_entity_id": {"type": "string"},
                "end_entity_id": {"type": "string"},
                "max_depth": {"type": "integer", "default": 10},
            },
            "required": ["start_entity_id", "end_entity_id"],
        },
    },
    {
        "name": "mnemo_summarize",
        "description": "Session summaries. action='summarize' stores a summary of the given turns, 'compact' does the same for a compaction, 'latest' returns the most recent summary.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": ["summarize", "compact", "latest"], "default": "summarize"},
                "session_id": {"type": "string"},
                "turns": _TURNS,
                "channel": {"type": "string"},
            },
            "required": ["session_id"],
        },
    },
    {
        "name": "mnemo_context",
        "description": "Build a token-budgeted context window: latest summary, recent turns, then retrieved chunks relevant to the current query.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": {"type": "string"},
                "recent_turns": _TURNS,
                "current_query": {"type": "string"},
                "entity_ids": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["session_id", "current_query"],
        },
    },
    {
        "name": "mnemo_policy",
        "description": "Capability policies. action='add' stores a policy; 'check' resolves a capability for a context (allow, deny, approval_required) and audits the check.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": ["add", "check"]},
                "capability": {"type": "string"},
                "effect": {"type": "string", "enum": ["allow", "deny", "approval_required"]},
                "channel": {"type": "string"},
                "persona": {"type": "string"},
                "user_id": {"type": "string"},
                "conditions": {"type": "object"},
            },
            "required": ["action", "capability"],
        },
    },
    {
        "name": "mnemo_maintain",
        "description": "Maintenance. action='decay' multiplies every relationship weight by factor; 'status' reports store counts and request metrics.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": ["decay", "status"]},
                "factor": {"type": "number", "exclusiveMinimum": 0, "maximum": 1},
            },
            "required": ["action"],
        },
    },
]
