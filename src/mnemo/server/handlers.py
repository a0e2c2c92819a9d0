"""
mnemo MCP Handlers -- Maps tool names to async handler functions.

Each handler delegates to mnemo.bridge and returns an MCP-compatible
response dict. Typed mnemo errors become ``isError`` responses.
"""

import dataclasses
import json
import logging
from datetime import datetime
from typing import Any, Dict

from mnemo.errors import MnemoError, PolicyError, ValidationError

logger = logging.getLogger("mnemo.server.handlers")


def _clamp_int(value, default: int, min_val: int = 1, max_val: int = 10000) -> int:
    """Clamp a numeric argument to safe bounds."""
    try:
        v = int(value)
        return max(min_val, min(v, max_val))
    except (TypeError, ValueError):
        return default


# ============================================================================
# Response Helpers
# ============================================================================


def mcp_response(text: str) -> dict:
    """Build a successful MCP response."""
    return {"content": [{"type": "text", "text": str(text)}]}


def mcp_error(text: str) -> dict:
    """Build an error MCP response."""
    return {"content": [{"type": "text", "text": f"Error: {text}"}], "isError": True}


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _jsonable(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def mcp_json(value: Any) -> dict:
    return mcp_response(json.dumps(_jsonable(value), indent=2, default=str))


def _error_for(tool: str, e: Exception) -> dict:
    if isinstance(e, ValidationError):
        return mcp_error("; ".join(e.errors))
    if isinstance(e, (PolicyError, MnemoError)):
        return mcp_error(str(e))
    logger.error("%s failed: %s", tool, e)
    return mcp_error(f"{tool} failed: {e}")


# ============================================================================
# Handler: mnemo_index
# ============================================================================


async def handle_mnemo_index(arguments: dict) -> dict:
    source_uri = (arguments.get("source_uri") or "").strip()
    content = arguments.get("content") or ""
    if not source_uri:
        return mcp_error("source_uri is required")
    if not content.strip():
        return mcp_error("content is required")

    try:
        from mnemo import bridge

        if arguments.get("reindex"):
            entry = await bridge.reindex(source_uri, content, arguments.get("metadata"))
        else:
            entry = await bridge.index(source_uri, content, arguments.get("metadata"))
        return mcp_json(entry)
    except Exception as e:
        return _error_for("mnemo_index", e)


# ============================================================================
# Handler: mnemo_search
# ============================================================================


async def handle_mnemo_search(arguments: dict) -> dict:
    query = (arguments.get("query") or "").strip()
    if not query:
        return mcp_error("query is required")
    limit = _clamp_int(arguments.get("limit", 20), default=20, max_val=200)
    try:
        min_score = float(arguments.get("min_score", 0) or 0)
    except (TypeError, ValueError):
        min_score = 0.0

    try:
        from mnemo import bridge

        if arguments.get("mode", "memory") == "knowledge":
            results = await bridge.search(query, limit=limit, min_score=min_score)
        else:
            results = await bridge.search_memory(
                query, limit=limit, min_score=min_score,
                boost_entity_ids=arguments.get("boost_entity_ids") or [],
            )
        return mcp_json(results)
    except Exception as e:
        return _error_for("mnemo_search", e)


# ============================================================================
# Handler: mnemo_entity
# ============================================================================


async def handle_mnemo_entity(arguments: dict) -> dict:
    action = arguments.get("action")
    try:
        from mnemo import bridge

        if action == "store":
            name = (arguments.get("name") or "").strip()
            etype = (arguments.get("type") or "").strip()
            if not name or not etype:
                return mcp_error("name and type are required for action=store")
            entity_id = await bridge.store_entity(
                name, etype, arguments.get("description"), arguments.get("metadata")
            )
            return mcp_json({"entity_id": entity_id})

        entity_id = (arguments.get("entity_id") or "").strip()
        if not entity_id:
            return mcp_error(f"entity_id is required for action={action}")
        if action == "forget":
            await bridge.forget_entity(entity_id)
            return mcp_response(f"Forgot entity {entity_id}")
        if action == "context":
            limit = _clamp_int(arguments.get("mention_limit", 10), default=10, max_val=100)
            return mcp_json(await bridge.entity_context(entity_id, mention_limit=limit))
        return mcp_error(f"Unknown action: {action}")
    except Exception as e:
        return _error_for("mnemo_entity", e)


# ============================================================================
# Handlers: graph
# ============================================================================


async def handle_mnemo_link(arguments: dict) -> dict:
    links = arguments.get("links")
    if not isinstance(links, list) or not links:
        return mcp_error("links must be a non-empty list")
    try:
        from mnemo import bridge

        return mcp_json({"relationship_ids": await bridge.link_entities(links)})
    except Exception as e:
        return _error_for("mnemo_link", e)


async def handle_mnemo_path(arguments: dict) -> dict:
    start = arguments.get("start_entity_id")
    end = arguments.get("end_entity_id")
    if not start or not end:
        return mcp_error("start_entity_id and end_entity_id are required")
    max_depth = _clamp_int(arguments.get("max_depth", 10), default=10, max_val=50)
    try:
        from mnemo import bridge

        return mcp_json({"path": await bridge.relationship_path(start, end, max_depth=max_depth)})
    except Exception as e:
        return _error_for("mnemo_path", e)


# ============================================================================
# Handlers: smart context
# ============================================================================


async def handle_mnemo_summarize(arguments: dict) -> dict:
    session_id = (arguments.get("session_id") or "").strip()
    if not session_id:
        return mcp_error("session_id is required")
    action = arguments.get("action", "summarize")
    try:
        from mnemo import bridge

        if action == "latest":
            latest = await bridge.session_summary(session_id)
            if latest is None:
                return mcp_response(f"No summary for session {session_id}")
            return mcp_json(latest)
        turns = arguments.get("turns") or []
        if action == "compact":
            return mcp_json(await bridge.compact(session_id, turns, arguments.get("channel")))
        if action == "summarize":
            return mcp_json(await bridge.summarize(session_id, turns, arguments.get("channel")))
        return mcp_error(f"Unknown action: {action}")
    except Exception as e:
        return _error_for("mnemo_summarize", e)


async def handle_mnemo_context(arguments: dict) -> dict:
    session_id = (arguments.get("session_id") or "").strip()
    if not session_id:
        return mcp_error("session_id is required")
    try:
        from mnemo import bridge

        window = await bridge.build_context(
            session_id,
            arguments.get("recent_turns") or [],
            arguments.get("current_query") or "",
            arguments.get("entity_ids") or [],
        )
        return mcp_json(window)
    except Exception as e:
        return _error_for("mnemo_context", e)


# ============================================================================
# Handlers: policy + maintenance
# ============================================================================


async def handle_mnemo_policy(arguments: dict) -> dict:
    action = arguments.get("action")
    capability = (arguments.get("capability") or "").strip()
    if not capability:
        return mcp_error("capability is required")
    try:
        from mnemo import bridge

        if action == "add":
            effect = arguments.get("effect")
            if not effect:
                return mcp_error("effect is required for action=add")
            policy_id = bridge.add_policy(
                capability,
                effect,
                channel=arguments.get("channel"),
                persona=arguments.get("persona"),
                user_id=arguments.get("user_id"),
                conditions=arguments.get("conditions"),
            )
            return mcp_json({"policy_id": policy_id})
        if action == "check":
            context = {
                k: arguments[k] for k in ("channel", "persona", "user_id") if arguments.get(k)
            }
            effect = await bridge.check_capability(capability, context)
            return mcp_json({"capability": capability, "effect": effect})
        return mcp_error(f"Unknown action: {action}")
    except ValueError as e:
        return mcp_error(str(e))
    except Exception as e:
        return _error_for("mnemo_policy", e)


async def handle_mnemo_maintain(arguments: dict) -> dict:
    action = arguments.get("action")
    try:
        from mnemo import bridge

        if action == "status":
            return mcp_json(bridge.status())
        if action == "decay":
            try:
                factor = float(arguments.get("factor"))
            except (TypeError, ValueError):
                return mcp_error("factor must be a number")
            if not 0 < factor <= 1:
                return mcp_error("factor must be in (0, 1]")
            return mcp_json({"relationships_decayed": await bridge.decay(factor)})
        return mcp_error(f"Unknown action: {action}")
    except Exception as e:
        return _error_for("mnemo_maintain", e)


HANDLERS: Dict[str, Any] = {
    "mnemo_index": handle_mnemo_index,
    "mnemo_search": handle_mnemo_search,
    "mnemo_entity": handle_mnemo_entity,
    "mnemo_link": handle_mnemo_link,
    "mnemo_path": handle_mnemo_path,
    "mnemo_summarize": handle_mnemo_summarize,
    "mnemo_context": handle_mnemo_context,
    "mnemo_policy": handle_mnemo_policy,
    "mnemo_maintain": handle_mnemo_maintain,
}
