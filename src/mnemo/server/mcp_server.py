"""mnemo MCP Server -- stdio-based MCP server exposing the mnemo_* tools."""

import asyncio
import atexit
import collections
import logging
import os
import sys
import time

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from mnemo.server.handlers import HANDLERS
from mnemo.server.tool_schemas import TOOL_SCHEMAS

logger = logging.getLogger("mnemo.server")


def _close_on_exit():
    """Close the store when the MCP server process exits."""
    from mnemo.bridge import _close_runtime

    _close_runtime()


atexit.register(_close_on_exit)

server = Server("mnemo")

# ---------------------------------------------------------------------------
# Rate limiting -- sliding-window counter
# ---------------------------------------------------------------------------
_RATE_WINDOW_S = 60.0
_global_timestamps: collections.deque = collections.deque()


def _rate_limit() -> int:
    return int(os.environ.get("MNEMO_RATE_LIMIT_GLOBAL", "300"))  # per minute


def _check_rate_limit(tool_name: str) -> str | None:
    """Return an error message if the rate limit is exceeded, else None."""
    limit = _rate_limit()
    now = time.monotonic()
    cutoff = now - _RATE_WINDOW_S

    while _global_timestamps and _global_timestamps[0] < cutoff:
        _global_timestamps.popleft()

    if len(_global_timestamps) >= limit:
        return f"Rate limit exceeded: {limit} calls/min. Try again shortly."

    _global_timestamps.append(now)
    return None


@server.list_tools()
async def list_tools() -> list[Tool]:
    """Return all mnemo tools."""
    return [
        Tool(
            name=schema["name"],
            description=schema["description"],
            inputSchema=schema["inputSchema"],
        )
        for schema in TOOL_SCHEMAS
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Dispatch tool call to the appropriate handler."""
    rate_err = _check_rate_limit(name)
    if rate_err:
        return [TextContent(type="text", text=rate_err)]

    handler = HANDLERS.get(name)
    if not handler:
        return [TextContent(type="text", text=f"Unknown tool: {name}")]

    try:
        result = await handler(arguments or {})
        content_list = result.get("content", [{}])
        text = content_list[0].get("text", str(result)) if content_list else str(result)
        return [TextContent(type="text", text=text)]
    except Exception as e:
        logger.error("Tool %s failed: %s", name, e)
        return [TextContent(type="text", text=f"Error in {name}: {e}")]


async def main():
    """Entry point for the mnemo MCP server."""
    logging.basicConfig(level=logging.WARNING, stream=sys.stderr)
    logger.info("Starting mnemo MCP server...")

    from mnemo.server.hook_server import start_hook_server, stop_hook_server

    hook_srv = await start_hook_server()
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        await stop_hook_server(hook_srv)


if __name__ == "__main__":
    asyncio.run(main())
