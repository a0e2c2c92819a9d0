"""mnemo HTTP Server -- Streamable HTTP transport for the MCP server.

Routes:
- /mcp                   MCP over streamable HTTP (API key)
- /status                bridge.status(): store counts, migrations, metrics (API key)
- /health                store liveness: db path, row counts, schema version
- /.well-known/mcp.json  server card: tools, request types, transports

The API key is sent as ``X-API-Key`` or ``?api_key=``.
"""

import contextlib
import logging
import os
import secrets
import sqlite3
from collections.abc import AsyncIterator
from pathlib import Path

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route
from starlette.types import Receive, Scope, Send

from mcp.server.streamable_http_manager import StreamableHTTPSessionManager

logger = logging.getLogger("mnemo.server.http")

API_KEY_HEADER = "x-api-key"


def api_key_path() -> Path:
    from mnemo.bridge import mnemo_home

    return mnemo_home() / "api_key"


def get_or_create_api_key() -> str:
    """MNEMO_HTTP_API_KEY if set, else the key stored under MNEMO_HOME (generated once)."""
    env_key = os.environ.get("MNEMO_HTTP_API_KEY")
    if env_key:
        return env_key
    path = api_key_path()
    if path.exists():
        return path.read_text().strip()
    key = secrets.token_urlsafe(32)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(key + "\n")
    path.chmod(0o600)
    return key


def _authorized(request: Request, api_key: str | None) -> bool:
    if not api_key:
        return True
    provided = request.headers.get(API_KEY_HEADER) or request.query_params.get("api_key")
    return provided is not None and secrets.compare_digest(provided, api_key)


def _unauthorized() -> JSONResponse:
    return JSONResponse({"error": "Unauthorized"}, status_code=401)


def store_health() -> dict:
    """Liveness of the knowledge store behind the bridge runtime."""
    from mnemo.bridge import _get_runtime

    store = _get_runtime().store
    return {
        "db_path": str(store.db_path),
        "schema_version": len(store.applied_migrations()),
        "chunks": store.chunk_count(),
        "vec_available": store.vec_available,
    }


def server_card() -> dict:
    from mnemo import __version__
    from mnemo.bridge import _get_runtime
    from mnemo.server.tool_schemas import TOOL_SCHEMAS

    return {
        "name": "mnemo",
        "version": __version__,
        "description": "Local knowledge store, hybrid search and context windows for agents",
        "transports": [
            {"type": "streamable-http", "url": "/mcp", "auth": API_KEY_HEADER},
            {"type": "stdio", "command": "mnemo serve"},
        ],
        "tools": [{"name": s["name"], "description": s["description"]} for s in TOOL_SCHEMAS],
        "request_types": _get_runtime().mediator.request_types,
    }


def create_http_app(server, api_key: str | None = None) -> Starlette:
    """Create a Starlette ASGI app wrapping the MCP server.

    Args:
        server: The MCP Server instance from mcp_server.py.
        api_key: Optional API key for /mcp and /status. None disables auth.
    """
    session_manager = StreamableHTTPSessionManager(
        app=server,
        json_response=True,
        stateless=True,
    )

    async def mcp_asgi_app(scope: Scope, receive: Receive, send: Send) -> None:
        if not _authorized(Request(scope, receive), api_key):
            await _unauthorized()(scope, receive, send)
            return
        await session_manager.handle_request(scope, receive, send)

    async def health(request: Request):
        try:
            store = store_health()
        except sqlite3.Error as e:
            logger.error("Health check failed: %s", e)
            return JSONResponse({"status": "error", "server": "mnemo", "error": str(e)}, status_code=503)
        return JSONResponse({"status": "ok", "server": "mnemo", "store": store})

    async def status(request: Request):
        if not _authorized(request, api_key):
            return _unauthorized()
        from mnemo import bridge
        from mnemo.server.handlers import _jsonable

        return JSONResponse(_jsonable(bridge.status()))

    async def card(request: Request):
        return JSONResponse(server_card())

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with session_manager.run():
            yield

    return Starlette(
        routes=[
            Mount("/mcp", app=mcp_asgi_app),
            Route("/status", endpoint=status),
            Route("/health", endpoint=health),
            Route("/.well-known/mcp.json", endpoint=card),
        ],
        lifespan=lifespan,
    )


async def run_http(host: str, port: int, api_key: str | None) -> None:
    """Serve the MCP server over HTTP alongside the UDS hook server."""
    import uvicorn

    from mnemo.server.hook_server import start_hook_server, stop_hook_server
    from mnemo.server.mcp_server import server

    if api_key is None:
        logger.warning("HTTP API key disabled; /mcp and /status are open on %s:%d", host, port)

    hook_srv = await start_hook_server()
    try:
        app = create_http_app(server, api_key=api_key)
        config = uvicorn.Config(app, host=host, port=port, log_level="info")
        await uvicorn.Server(config).serve()
    finally:
        await stop_hook_server(hook_srv)
