"""Command line interface: ``memorypilot <command>``."""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from typing import Any

from memorypilot import __version__
from memorypilot.agent import Agent
from memorypilot.config import AgentConfig, load_config, write_default_config
from memorypilot.errors import MemoryPilotError, NotInitializedError
from memorypilot.logging_utils import setup_logging
from memorypilot.models import Memory, MemoryScope, MemoryType
from memorypilot.service import (
    MemoryService,
    daemon_running,
    read_pid,
    remove_pid,
    write_pid,
)
from memorypilot.storage import Storage

logger = logging.getLogger(__name__)

TYPE_CHOICES = [t.value for t in MemoryType]
SCOPE_CHOICES = [s.value for s in MemoryScope]

MCP_SNIPPET = """\
  {
    "mcpServers": {
      "memorypilot": {
        "command": "memorypilot",
        "args": ["mcp"]
      }
    }
  }"""


def print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def print_not_initialized() -> None:
    print("MemoryPilot is not initialized")
    print("   Run 'memorypilot init' to get started")


def _config(args: argparse.Namespace) -> AgentConfig:
    return load_config(getattr(args, "home", None))


# ── init ───────────────────────────────────────────────────────────────


def cmd_init(args: argparse.Namespace) -> int:
    cfg = _config(args)
    print("Initializing MemoryPilot...")
    for path in (cfg.home, cfg.data_dir, cfg.logs_dir):
        path.mkdir(parents=True, exist_ok=True)
    print("   Created directories")

    if write_default_config(cfg):
        print(f"   Created {cfg.config_path.name}")
    else:
        print("   Config exists")

    Storage(cfg.db_path).close()
    print("   Initialized database")
    print()
    print("MemoryPilot initialized!")
    print()
    print("Next steps:")
    print("  1. Start the daemon:  memorypilot daemon start")
    print("  2. Check status:      memorypilot status")
    print('  3. Search memories:   memorypilot recall "your query"')
    print()
    print("For MCP integration, add to your MCP config:")
    print(MCP_SNIPPET)
    return 0


# ── daemon ─────────────────────────────────────────────────────────────


def cmd_daemon_start(args: argparse.Namespace) -> int:
    cfg = _config(args)
    if not cfg.db_path.exists():
        print_not_initialized()
        return 1
    if daemon_running(cfg.pid_path):
        print(f"MemoryPilot daemon is already running (pid {read_pid(cfg.pid_path)})")
        return 1

    setup_logging(cfg.log_level, cfg.logs_dir / "daemon.log")
    stop = threading.Event()

    def _on_signal(signum, frame) -> None:
        logger.info("Received signal %d", signum)
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    agent = Agent(cfg)
    agent.start()
    write_pid(cfg.pid_path)
    print("MemoryPilot daemon started")
    print("   Watching for events...")
    print("   Press Ctrl+C to stop")
    try:
        stop.wait()
    finally:
        print("\nShutting down...")
        agent.stop()
        remove_pid(cfg.pid_path)
    print("MemoryPilot daemon stopped")
    return 0


def cmd_daemon_stop(args: argparse.Namespace) -> int:
    cfg = _config(args)
    pid = read_pid(cfg.pid_path)
    if pid is None or not daemon_running(cfg.pid_path):
        remove_pid(cfg.pid_path)
        print("MemoryPilot daemon is not running")
        return 1
    os.kill(pid, signal.SIGTERM)
    deadline = time.monotonic() + args.timeout
    while time.monotonic() < deadline and daemon_running(cfg.pid_path):
        time.sleep(0.1)
    if daemon_running(cfg.pid_path):
        print(f"Sent SIGTERM to {pid}, still shutting down")
        return 1
    print("MemoryPilot daemon stopped")
    return 0


def cmd_daemon_status(args: argparse.Namespace) -> int:
    cfg = _config(args)
    if daemon_running(cfg.pid_path):
        print(f"MemoryPilot daemon is running (pid {read_pid(cfg.pid_path)})")
        return 0
    print("MemoryPilot daemon is stopped")
    return 1


# ── status / recall / remember ─────────────────────────────────────────


def cmd_status(args: argparse.Namespace) -> int:
    with MemoryService.open(_config(args)) as service:
        stats = service.status()
    if args.json:
        print_json(stats.to_dict())
        return 0
    print("MemoryPilot Status")
    print(f"   Version:     {__version__}")
    print(f"   Daemon:      {'running' if stats.daemon_running else 'stopped'}")
    print()
    print("Memory Statistics")
    print(f"   Total:       {stats.total_memories}")
    for mem_type in TYPE_CHOICES:
        print(f"   {mem_type + ':':<13}{stats.by_type.get(mem_type, 0)}")
    print()
    print("Projects")
    print(f"   Tracked:     {stats.project_count}")
    return 0


def format_memory(mem: Memory) -> list[str]:
    lines = [f"[{mem.type.value}] {mem.summary}", f"   {mem.content}"]
    created = time.strftime("%Y-%m-%d", time.localtime(mem.created_at))
    lines.append(f"   {created} | {mem.confidence * 100:.0f}% confidence")
    if mem.topics:
        lines.append(f"   topics: {', '.join(mem.topics)}")
    return lines


def cmd_recall(args: argparse.Namespace) -> int:
    query = " ".join(args.query).strip()
    with MemoryService.open(_config(args)) as service:
        result = service.recall(
            query,
            limit=args.limit,
            types=[args.type] if args.type else None,
            scopes=args.scope,
            semantic=args.semantic,
        )
    if result.degraded:
        print("Warning: semantic search unavailable, falling back to keyword search",
              file=sys.stderr)
    if args.json:
        print_json([m.to_recall_dict() for m in result.memories])
        return 0
    if not result.memories:
        print(f"No memories found for: {query!r}")
        return 0
    print(f"Found {result.total} memories for: {query!r}")
    for mem in result.memories:
        print()
        print("\n".join(format_memory(mem)))
    return 0


def cmd_remember(args: argparse.Namespace) -> int:
    content = " ".join(args.content)
    with MemoryService.open(_config(args)) as service:
        memory = service.remember(content, type=args.type, topics=args.topics)
    print(f"Memory created: {memory.id}")
    print(f"   Type: {memory.type.value}")
    print(f"   {memory.content}")
    return 0


def cmd_mcp(args: argparse.Namespace) -> int:
    from memorypilot import mcp_server

    cfg = _config(args)
    setup_logging(cfg.log_level)
    mcp_server.run(cfg)
    return 0


# ── parser ─────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="memorypilot",
        description="Local memory for coding assistants.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--home", help="data home (default: $MEMORYPILOT_HOME or ~/.memorypilot)")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_init = sub.add_parser("init", help="create the data home, config and database")
    p_init.set_defaults(func=cmd_init)

    p_daemon = sub.add_parser("daemon", help="manage the background agent")
    daemon_sub = p_daemon.add_subparsers(dest="daemon_cmd", required=True)
    p_start = daemon_sub.add_parser("start", help="run the agent in the foreground")
    p_start.set_defaults(func=cmd_daemon_start)
    p_stop = daemon_sub.add_parser("stop", help="stop a running agent")
    p_stop.add_argument("--timeout", type=float, default=10.0)
    p_stop.set_defaults(func=cmd_daemon_stop)
    p_dstatus = daemon_sub.add_parser("status", help="check whether the agent runs")
    p_dstatus.set_defaults(func=cmd_daemon_status)

    p_status = sub.add_parser("status", help="show statistics")
    p_status.add_argument("--json", action="store_true", help="output as JSON")
    p_status.set_defaults(func=cmd_status)

    p_recall = sub.add_parser("recall", help="search your memories")
    p_recall.add_argument("query", nargs="+")
    p_recall.add_argument("-l", "--limit", type=int, default=5)
    p_recall.add_argument("-t", "--type", choices=TYPE_CHOICES)
    p_recall.add_argument("-s", "--scope", action="append", choices=SCOPE_CHOICES,
                          help="filter by scope (repeatable)")
    p_recall.add_argument("--json", action="store_true", help="output as JSON")
    p_recall.add_argument("--semantic", action=argparse.BooleanOptionalAction,
                          default=True, help="blend in embedding similarity")
    p_recall.set_defaults(func=cmd_recall)

    p_remember = sub.add_parser("remember", help="store a memory by hand")
    p_remember.add_argument("content", nargs="+")
    p_remember.add_argument("-t", "--type", choices=TYPE_CHOICES, default="fact")
    p_remember.add_argument("-T", "--topic", dest="topics", action="append",
                            default=[], help="topic (repeatable)")
    p_remember.set_defaults(func=cmd_remember)

    p_mcp = sub.add_parser("mcp", help="serve the MCP tools over stdio")
    p_mcp.set_defaults(func=cmd_mcp)
    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except NotInitializedError:
        print_not_initialized()
        return 1
    except (MemoryPilotError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
