"""mnemo Hook Server -- Unix Domain Socket listener feeding the hook bridge.

Runs inside the MCP server process and reuses the warm runtime. A client
connects to $MNEMO_HOME/hook.sock, writes one JSON request, shuts down its
write side, and reads one JSON response.

Requests:
    {"hook": "name", "payload": {...}, "timestamp": "..."}    -> publishes hook:name
    {"hooks": ["a", "b"], "payload": {...}}                   -> publishes each in order
    {"event": "MessageReceived", "fields": {...}}             -> publishes a domain event
"""

import asyncio
import json
import logging
import os
import time
import traceback
from datetime import datetime, timezone
from pathlib import Path

from mnemo import messages

logger = logging.getLogger("mnemo.hook_server")

_READ_TIMEOUT_S = 10.0

# Domain events a hook client may publish directly
INBOUND_EVENTS = {
    cls.notification_type: cls
    for cls in (
        messages.MessageReceived,
        messages.FileChanged,
        messages.TaskCompleted,
        messages.EmailReceived,
        messages.AgentTurnCompleted,
    )
}


def _home() -> Path:
    return Path(os.environ.get("MNEMO_HOME", str(Path.home() / ".mnemo")))


def sock_path() -> Path:
    return _home() / "hook.sock"


def _secure_append(log_path: Path, data: str):
    """Append to a file with secure permissions (0o600)."""
    log_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    fd = os.open(str(log_path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
    try:
        os.write(fd, data.encode("utf-8"))
    finally:
        os.close(fd)


def _log_hook_error(hook_name: str, error: Exception):
    """Log hook errors to $MNEMO_HOME/hooks.log."""
    logger.warning("hook %s failed: %s", hook_name, error)
    try:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        tb = traceback.format_exc()
        _secure_append(_home() / "hooks.log", f"[{timestamp}] hook_server/{hook_name}: {error}\n{tb}\n")
    except OSError as e:
        logger.debug("Could not write hooks.log: %s", e)


async def dispatch(request: dict) -> dict:
    """Route one decoded request through the bridge. Returns the JSON response."""
    from mnemo import bridge

    event_type = request.get("event")
    if event_type:
        cls = INBOUND_EVENTS.get(event_type)
        if cls is None:
            return {"ok": False, "error": f"Unknown event: {event_type}"}
        try:
            notification = cls(**(request.get("fields") or {}))
        except TypeError as e:
            return {"ok": False, "error": f"Bad fields for {event_type}: {e}"}
        await bridge.publish(notification)
        return {"ok": True, "published": [event_type]}

    payload = request.get("payload") or {}
    if not isinstance(payload, dict):
        return {"ok": False, "error": "payload must be an object"}
    names = request.get("hooks") or ([request["hook"]] if request.get("hook") else [])
    if not names:
        return {"ok": False, "error": "hook name is required"}

    published = []
    for name in names:
        await bridge.on_hook(name, payload, request.get("timestamp"))
        published.append(f"hook:{name}")
    return {"ok": True, "published": published}


async def handle_connection(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
    """Handle a single hook client connection."""
    t0 = time.monotonic()
    hook_name = "unknown"
    try:
        # Read until EOF; client calls shutdown(SHUT_WR) after sendall()
        chunks = []
        while True:
            chunk = await asyncio.wait_for(reader.read(65536), timeout=_READ_TIMEOUT_S)
            if not chunk:
                break
            chunks.append(chunk)
        data = b"".join(chunks)
        if not data:
            return

        request = json.loads(data.decode("utf-8").strip())
        if not isinstance(request, dict):
            raise ValueError("request must be a JSON object")
        hook_name = request.get("event") or request.get("hook") or "+".join(request.get("hooks") or [])
        response = await dispatch(request)
        writer.write(json.dumps(response).encode("utf-8"))
        await writer.drain()
    except asyncio.TimeoutError:
        writer.write(json.dumps({"ok": False, "error": "timeout"}).encode("utf-8"))
        await writer.drain()
    except Exception as e:
        _log_hook_error(hook_name, e)
        writer.write(json.dumps({"ok": False, "error": str(e)}).encode("utf-8"))
        await writer.drain()
    finally:
        logger.debug("hook %s handled in %.0fms", hook_name, (time.monotonic() - t0) * 1000)
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass


_hook_server: asyncio.Server | None = None


async def start_hook_server() -> asyncio.Server | None:
    """Start the UDS hook server. Returns the server instance, or None on failure."""
    global _hook_server
    path = sock_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    # Remove stale socket from previous run
    if path.exists():
        path.unlink()

    try:
        _hook_server = await asyncio.start_unix_server(handle_connection, path=str(path))
        path.chmod(0o600)
        logger.info("Hook server listening on %s", path)
        return _hook_server
    except OSError as e:
        logger.error("Failed to start hook server: %s", e)
        return None


async def stop_hook_server(srv: asyncio.Server | None = None):
    """Stop the hook server and remove the socket file it owns."""
    global _hook_server
    server = srv or _hook_server
    if server:
        server.close()
        await server.wait_closed()
        _hook_server = None

        path = sock_path()
        if path.exists():
            try:
                path.unlink()
            except OSError:
                pass
