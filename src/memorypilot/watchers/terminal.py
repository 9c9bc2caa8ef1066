"""Terminal watcher: tails shell history files for interesting commands."""

from __future__ import annotations

import logging
import os

from memorypilot.models import CommandPayload, Event
from memorypilot.watchers.base import EventSink, Watcher

logger = logging.getLogger(__name__)

# May carry secrets.
SENSITIVE_PREFIXES = (
    "export ", "set ", "unset ",
    "curl ", "wget ",
    "mysql ", "psql ", "redis-cli ",
    "ssh ", "scp ",
    "echo $", "cat ~/.",
)

NOISE_COMMANDS = frozenset({
    "ls", "cd", "pwd", "clear", "exit", "history", "which", "whoami", "date",
})

INTERESTING_PREFIXES = (
    "git ", "npm ", "yarn ", "pnpm ",
    "go ", "cargo ", "python ", "pip ",
    "docker ", "kubectl ", "terraform ",
    "make ", "brew ",
)


def parse_history_line(line: str, history_file: str) -> str:
    # zsh extended history: ": 1700000000:0;git status"
    if "zsh" in os.path.basename(history_file) and line.startswith(":"):
        _, sep, command = line.partition(";")
        if sep:
            return command.strip()
    return line.strip()


def is_interesting(command: str) -> bool:
    if len(command) < 3:
        return False
    if command.startswith(SENSITIVE_PREFIXES):
        return False
    parts = command.split()
    if parts and parts[0] in NOISE_COMMANDS:
        return False
    return command.startswith(INTERESTING_PREFIXES)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit - 3] + "..."


class TerminalWatcher(Watcher):
    """Emits a terminal_cmd event per interesting command appended to a
    history file. Only lines written after start are considered.
    """

    name = "terminal"

    def __init__(self, sink: EventSink, history_files: list[str],
                 interval: float = 5.0) -> None:
        super().__init__(sink, interval)
        self.history_files = history_files
        self.positions: dict[str, int] = {}

    def setup(self) -> None:
        for path in self.history_files:
            if os.path.exists(path):
                self.positions[path] = os.path.getsize(path)

    def poll(self) -> None:
        for path in self.history_files:
            if not os.path.exists(path):
                continue
            size = os.path.getsize(path)
            last = self.positions.get(path, 0)
            if size < last:
                # history rewritten or truncated; start over from its end
                self.positions[path] = size
                continue
            if size == last:
                continue
            with open(path, "rb") as fh:
                fh.seek(last)
                data = fh.read(size - last)
            self.positions[path] = size
            shell = os.path.basename(path).lstrip(".").split("_")[0]
            for raw in data.decode("utf-8", errors="replace").splitlines():
                command = parse_history_line(raw, path)
                if command and is_interesting(command):
                    logger.info("Terminal event: %s", _truncate(command, 50))
                    self.emit(Event.create(CommandPayload(command=command,
                                                          shell=shell)))

    def close(self) -> None:
        self.positions.clear()
