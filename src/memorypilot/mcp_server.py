"""MCP server: exposes recall / remember / status to AI assistants over stdio.

stdout carries the protocol stream, so logging must go to stderr only.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from memorypilot import __version__
from memorypilot.config import AgentConfig
from memorypilot.errors import MemoryPilotError, NotInitializedError
from memorypilot.models import MemoryScope, MemoryType, RecallResult
from memorypilot.service import MemoryService

logger = logging.getLogger(__name__)

SERVER_NAME = "memorypilot"

_TYPES = [t.value for t in MemoryType]
_SCOPES = [s.value for s in MemoryScope]


def tool_definitions() -> list[Tool]:
    return [
        Tool(
            name="memorypilot_recall",
            description=(
                "Search your memories for relevant context. Use this to "
                "remember past decisions, patterns, mistakes, and learnings "
                "about the codebase or user preferences."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "What to search for",
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum results (default: 5)",
                        "default": 5,
                    },
                    "type": {
                        "type": "string",
                        "enum": _TYPES,
                        "description": "Filter by memory type",
                    },
                    "scope": {
                        "type": "string",
                        "enum": _SCOPES,
                        "description": "Filter by scope",
                    },
                },
                "required": ["query"],
            },
        ),
        Tool(
            name="memorypilot_remember",
            description=(
                "Store a new memory. Use this to remember important decisions, "
                "patterns, or learnings for future reference."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "content": {
                        "type": "string",
                        "description": "What to remember",
                    },
                    "type": {
                        "type": "string",
                        "enum": _TYPES,
                        "description": "Type of memory (default: fact)",
                        "default": "fact",
                    },
                    "topics": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Related topics for better recall",
                    },
                },
                "required": ["content"],
            },
        ),
        Tool(
            name="memorypilot_status",
            description="Get MemoryPilot status and statistics",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


# ── Tool handlers ──────────────────────────────────────────────────────


def format_recall(result: RecallResult, query: str) -> str:
    if not result.memories:
        return f'No memories found for "{query}"'
    lines = [f'Found {result.total} memories for "{query}":', ""]
    if result.degraded:
        lines[1:1] = ["(semantic search unavailable, showing keyword matches)"]
    for i, mem in enumerate(result.memories, 1):
        lines.append(f"{i}. [{mem.type.value}] {mem.summary}")
        if mem.content and mem.content != mem.summary:
            lines.append(f"   {mem.content}")
        created = time.strftime("%Y-%m-%d", time.localtime(mem.created_at))
        lines.append(f"   {created} | {mem.confidence * 100:.0f}% confidence")
        if mem.topics:
            lines.append(f"   Topics: {', '.join(mem.topics)}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _recall(service: MemoryService, args: dict[str, Any]) -> str:
    query = str(args.get("query") or "")
    try:
        limit = int(args.get("limit") or 5)
    except (TypeError, ValueError):
        limit = 5
    types = [args["type"]] if args.get("type") else None
    scopes = [args["scope"]] if args.get("scope") else None
    result = service.recall(query, limit=limit, types=types, scopes=scopes,
                            semantic=True)
    return format_recall(result, query)


def _remember(service: MemoryService, args: dict[str, Any]) -> str:
    topics = args.get("topics") or []
    if isinstance(topics, str):
        topics = [topics]
    memory = service.remember(
        str(args.get("content") or ""),
        type=args.get("type") or MemoryType.FACT,
        topics=[str(t) for t in topics],
        reference="mcp",
    )
    return f"Remembered: [{memory.type.value}] {memory.summary}"


def _status(service: MemoryService, args: dict[str, Any]) -> str:
    stats = service.status()
    lines = [
        "MemoryPilot Status",
        "",
        f"Total memories: {stats.total_memories}",
        f"Projects: {stats.project_count}",
        f"Daemon: {'running' if stats.daemon_running else 'stopped'}",
    ]
    if stats.by_type:
        lines += ["", "By type:"]
        lines += [f"  {t}: {n}" for t, n in sorted(stats.by_type.items())]
    return "\n".join(lines)


_HANDLERS: dict[str, Callable[[MemoryService, dict[str, Any]], str]] = {
    "memorypilot_recall": _recall,
    "memorypilot_remember": _remember,
    "memorypilot_status": _status,
}


def call_tool_text(service: MemoryService | None, name: str,
                   arguments: dict[str, Any] | None) -> str:
    """Run one tool and render its result (or failure) as text.

    ``service`` is None when the store has not been initialized yet.
    """
    handler = _HANDLERS.get(name)
    if handler is None:
        return f"Error: unknown tool {name!r}"
    if service is None:
        return ("Error: MemoryPilot is not initialized. "
                "Run 'memorypilot init' to get started.")
    try:
        return handler(service, arguments or {})
    except ValueError as exc:
        return f"Error: {exc}"
    except MemoryPilotError as exc:
        logger.warning("Tool %s failed: %s", name, exc)
        return f"Error: {exc}"


def build_server(service: MemoryService | None) -> Server:
    app = Server(SERVER_NAME)

    @app.list_tools()
    async def handle_list_tools() -> list[Tool]:
        return tool_definitions()

    @app.call_tool()
    async def handle_call_tool(name: str, arguments: dict) -> list[TextContent]:
        text = await asyncio.to_thread(call_tool_text, service, name, arguments)
        return [TextContent(type="text", text=text)]

    return app


async def serve(service: MemoryService | None) -> None:
    app = build_server(service)
    logger.info("Starting MCP server...")
    async with stdio_server() as (read_stream, write_stream):
        await app.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name=SERVER_NAME,
                server_version=__version__,
                capabilities=app.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )


def run(config: AgentConfig) -> None:
    """Serve until stdin closes. An uninitialized store is reported per call."""
    try:
        service: MemoryService | None = MemoryService.open(config)
    except NotInitializedError as exc:
        logger.warning("%s", exc)
        service = None
    try:
        asyncio.run(serve(service))
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    finally:
        if service is not None:
            service.close()
