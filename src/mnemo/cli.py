"""mnemo CLI -- index, search, graph, policy, summaries, and server management."""

import argparse
import asyncio
import json
import sys
import time
from pathlib import Path


def _print_json(value) -> None:
    from mnemo.server.handlers import _jsonable

    print(json.dumps(_jsonable(value), indent=2, default=str))


def _read_source(args) -> tuple:
    """(source_uri, content) from --text or a file path."""
    if args.text is not None:
        if not args.source_uri:
            print("--source-uri is required with --text", file=sys.stderr)
            sys.exit(1)
        return args.source_uri, args.text
    if not args.path:
        print("Usage: mnemo index <path> | --text TEXT --source-uri URI", file=sys.stderr)
        sys.exit(1)
    path = Path(args.path).expanduser()
    if not path.is_file():
        print(f"Not a file: {path}", file=sys.stderr)
        sys.exit(1)
    return args.source_uri or path.resolve().as_uri(), path.read_text(encoding="utf-8", errors="replace")


def cmd_index(args):
    """Index a file or a text snippet."""
    from mnemo import bridge

    source_uri, content = _read_source(args)
    if not content.strip():
        print("Nothing to index: content is empty", file=sys.stderr)
        sys.exit(1)

    start = time.monotonic()
    if args.reindex:
        entry = asyncio.run(bridge.reindex(source_uri, content))
    else:
        entry = asyncio.run(bridge.index(source_uri, content))
    elapsed = time.monotonic() - start

    if args.json:
        _print_json(entry)
        return
    print(f"Indexed {source_uri}")
    print(f"  chunk:    {entry.chunk_id}")
    print(f"  entities: {len(entry.entity_ids)}")
    print(f"  elapsed:  {elapsed:.2f}s")


def cmd_search(args):
    """Hybrid search over indexed content."""
    from mnemo import bridge

    query_text = " ".join(args.query_text)
    if not query_text.strip():
        print("Usage: mnemo search <search text>", file=sys.stderr)
        sys.exit(1)

    if args.mode == "knowledge":
        results = asyncio.run(bridge.search(query_text, limit=args.limit, min_score=args.min_score))
    else:
        results = asyncio.run(bridge.search_memory(query_text, limit=args.limit, min_score=args.min_score))

    if args.json:
        _print_json(results)
        return
    if not results:
        print("No results.")
        return
    for r in results:
        preview = r.content.replace("\n", " ")
        if len(preview) > 120:
            preview = preview[:117] + "..."
        print(f"[{r.score:.2f}] ({r.source}) {r.source_uri or r.id}")
        print(f"    {preview}")


def cmd_entity(args):
    """Show an entity with its relationships and recent mentions."""
    from mnemo import bridge
    from mnemo.errors import NotFoundError

    try:
        context = asyncio.run(bridge.entity_context(args.entity_id, mention_limit=args.mentions))
    except NotFoundError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    _print_json(context)


def cmd_path(args):
    """Shortest relationship path between two entities."""
    from mnemo import bridge

    path = asyncio.run(bridge.relationship_path(args.start, args.end, max_depth=args.max_depth))
    if not path:
        print(f"No path within {args.max_depth} hops.")
        return
    print(" -> ".join(path))


def cmd_policy(args):
    """Add a capability policy."""
    from mnemo import bridge

    conditions = json.loads(args.conditions) if args.conditions else None
    try:
        policy_id = bridge.add_policy(
            args.capability,
            args.effect,
            channel=args.channel,
            persona=args.persona,
            user_id=args.user_id,
            conditions=conditions,
        )
    except ValueError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    print(f"Added policy {policy_id}: {args.capability} -> {args.effect}")


def cmd_check(args):
    """Resolve a capability for a context (audited)."""
    from mnemo import bridge

    context = {k: v for k, v in (("channel", args.channel), ("persona", args.persona), ("user_id", args.user_id)) if v}
    effect = asyncio.run(bridge.check_capability(args.capability, context))
    print(effect)


def cmd_summarize(args):
    """Summarize a JSON file of turns ([{"role", "content"}, ...]) for a session."""
    from mnemo import bridge

    if args.latest:
        latest = asyncio.run(bridge.session_summary(args.session_id))
        if latest is None:
            print(f"No summary for session {args.session_id}")
            return
        _print_json(latest)
        return

    if not args.turns_file:
        print("--turns-file is required unless --latest is given", file=sys.stderr)
        sys.exit(1)
    turns = json.loads(Path(args.turns_file).expanduser().read_text())
    result = asyncio.run(bridge.summarize(args.session_id, turns, args.channel))
    _print_json(result)


def cmd_decay(args):
    """Multiply every relationship weight by a factor in (0, 1]."""
    from mnemo import bridge

    if not 0 < args.factor <= 1:
        print("factor must be in (0, 1]", file=sys.stderr)
        sys.exit(1)
    count = asyncio.run(bridge.decay(args.factor))
    print(f"Decayed {count} relationship(s)")


def cmd_status(args):
    """Show store counts, migrations and vector support."""
    from mnemo import bridge

    _print_json(bridge.status())


def cmd_logs(args):
    """Show recent entries from $MNEMO_HOME/hooks.log."""
    from mnemo.bridge import mnemo_home

    hooks_log = mnemo_home() / "hooks.log"
    if not hooks_log.exists():
        print("No hooks.log found, no hook errors recorded.")
        return

    lines = hooks_log.read_text().strip().split("\n")
    recent = lines[-args.lines:] if len(lines) > args.lines else lines
    print(f"--- Last {len(recent)} lines from {hooks_log} ---\n")
    for line in recent:
        print(line)


def cmd_serve(args):
    """Run the mnemo MCP server (stdio, or streamable HTTP with --http)."""
    if args.http:
        from mnemo.server.http_server import get_or_create_api_key, run_http

        api_key = None if args.no_auth else get_or_create_api_key()
        asyncio.run(run_http(args.host, args.port, api_key))
        return

    from mnemo.server.mcp_server import main

    asyncio.run(main())


def main():
    parser = argparse.ArgumentParser(
        prog="mnemo",
        description="mnemo: local knowledge store and context windows for agents",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- Content ---
    index_parser = subparsers.add_parser("index", help="Index a file or text snippet")
    index_parser.add_argument("path", nargs="?", help="File to index")
    index_parser.add_argument("--text", help="Index this text instead of a file")
    index_parser.add_argument("--source-uri", help="Source URI (default: file:// URI of path)")
    index_parser.add_argument("--reindex", action="store_true", help="Replace previous content for the source")
    index_parser.add_argument("--json", action="store_true", help="Output JSON")

    search_parser = subparsers.add_parser("search", help="Hybrid full-text + entity search")
    search_parser.add_argument("query_text", nargs="+", help="Search text")
    search_parser.add_argument("--mode", choices=["memory", "knowledge"], default="memory")
    search_parser.add_argument("--limit", type=int, default=10, help="Max results (default: 10)")
    search_parser.add_argument("--min-score", type=float, default=0.0, help="Drop results below this score")
    search_parser.add_argument("--json", action="store_true", help="Output JSON")

    # --- Graph ---
    entity_parser = subparsers.add_parser("entity", help="Show an entity's context")
    entity_parser.add_argument("entity_id")
    entity_parser.add_argument("--mentions", type=int, default=10, help="Max recent mentions (default: 10)")

    path_parser = subparsers.add_parser("path", help="Shortest relationship path between two entities")
    path_parser.add_argument("start")
    path_parser.add_argument("end")
    path_parser.add_argument("--max-depth", type=int, default=10)

    decay_parser = subparsers.add_parser("decay", help="Decay all relationship weights")
    decay_parser.add_argument("factor", type=float)

    # --- Policy ---
    policy_parser = subparsers.add_parser("policy", help="Add a capability policy")
    policy_parser.add_argument("capability")
    policy_parser.add_argument("effect", choices=["allow", "deny", "approval_required"])
    policy_parser.add_argument("--channel")
    policy_parser.add_argument("--persona")
    policy_parser.add_argument("--user-id")
    policy_parser.add_argument("--conditions", help="JSON object of extra conditions")

    check_parser = subparsers.add_parser("check", help="Resolve a capability for a context")
    check_parser.add_argument("capability")
    check_parser.add_argument("--channel")
    check_parser.add_argument("--persona")
    check_parser.add_argument("--user-id")

    # --- Smart context ---
    summarize_parser = subparsers.add_parser("summarize", help="Summarize session turns")
    summarize_parser.add_argument("session_id")
    summarize_parser.add_argument("--turns-file", help="JSON file with [{role, content}, ...]")
    summarize_parser.add_argument("--channel")
    summarize_parser.add_argument("--latest", action="store_true", help="Show the latest stored summary")

    # --- Admin ---
    subparsers.add_parser("status", help="Show store counts and health")
    logs_parser = subparsers.add_parser("logs", help="Show recent hook errors from hooks.log")
    logs_parser.add_argument("--lines", type=int, default=50)

    serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio by default)")
    serve_parser.add_argument("--http", action="store_true", help="Serve streamable HTTP instead of stdio")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8765, help="HTTP port (default: 8765)")
    serve_parser.add_argument("--no-auth", action="store_true", help="Disable the HTTP API key")

    args = parser.parse_args()

    commands = {
        "index": cmd_index,
        "search": cmd_search,
        "entity": cmd_entity,
        "path": cmd_path,
        "decay": cmd_decay,
        "policy": cmd_policy,
        "check": cmd_check,
        "summarize": cmd_summarize,
        "status": cmd_status,
        "logs": cmd_logs,
        "serve": cmd_serve,
    }

    if args.command in commands:
        commands[args.command](args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
