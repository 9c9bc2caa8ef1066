"""File watcher: polls code roots for edited source files, debounced."""

from __future__ import annotations

import logging
import os
import time

from memorypilot.models import Event, FileChangePayload
from memorypilot.watchers.base import EventSink, Watcher

logger = logging.getLogger(__name__)

MAX_DEPTH = 4
MAX_CONTENT_BYTES = 10_000

IGNORED_DIRS = frozenset({
    "node_modules", ".git", "dist", "build", "vendor", "__pycache__",
    ".venv", "venv", ".next", ".nuxt", "target", "coverage", ".cache",
})

INTERESTING_EXTS = frozenset({
    ".go", ".py", ".js", ".ts", ".tsx", ".jsx", ".rs", ".java", ".kt",
    ".swift", ".c", ".cpp", ".yaml", ".yml", ".json", ".toml", ".md",
    ".sql", ".graphql", ".dockerfile", ".env",
})

INTERESTING_NAMES = frozenset({
    "Makefile", "Dockerfile", "docker-compose.yml", "package.json", "go.mod",
    "requirements.txt", "Cargo.toml", "pom.xml", "build.gradle",
})


def is_interesting(path: str) -> bool:
    name = os.path.basename(path)
    return os.path.splitext(name)[1] in INTERESTING_EXTS or name in INTERESTING_NAMES


class FileWatcher(Watcher):
    """Emits a file_change event once a file has stopped changing for
    ``debounce`` seconds.

    The first scan only records modification times.
    """

    name = "file"

    def __init__(self, sink: EventSink, roots: list[str],
                 debounce: float = 0.5, interval: float = 1.0) -> None:
        super().__init__(sink, interval)
        self.roots = roots
        self.debounce = debounce
        self.mtimes: dict[str, float] = {}
        self.pending: dict[str, float] = {}

    def scan(self) -> dict[str, float]:
        found: dict[str, float] = {}
        for root in self.roots:
            if not os.path.isdir(root):
                continue
            root = os.path.normpath(root)
            base_depth = root.count(os.sep)
            for dirpath, dirnames, filenames in os.walk(root):
                if dirpath.count(os.sep) - base_depth >= MAX_DEPTH:
                    dirnames[:] = []
                else:
                    dirnames[:] = [d for d in dirnames if d not in IGNORED_DIRS]
                for filename in filenames:
                    path = os.path.join(dirpath, filename)
                    if not is_interesting(path):
                        continue
                    try:
                        found[path] = os.stat(path).st_mtime
                    except FileNotFoundError:
                        continue
        return found

    def setup(self) -> None:
        self.mtimes = self.scan()

    def poll(self) -> None:
        now = time.monotonic()
        current = self.scan()
        for path, mtime in current.items():
            if self.mtimes.get(path) != mtime:
                self.pending[path] = now
        self.mtimes = current
        self.flush_pending(now)

    def flush_pending(self, now: float) -> None:
        for path, last_seen in list(self.pending.items()):
            if now - last_seen >= self.debounce:
                del self.pending[path]
                self.emit_change(path)

    def emit_change(self, path: str) -> None:
        try:
            size = os.stat(path).st_size
        except FileNotFoundError:
            return
        content = ""
        if size < MAX_CONTENT_BYTES:
            try:
                with open(path, encoding="utf-8", errors="replace") as fh:
                    content = fh.read()
            except OSError:
                content = ""
        logger.info("File event: %s", os.path.basename(path))
        self.emit(Event.create(FileChangePayload(
            path=path,
            filename=os.path.basename(path),
            ext=os.path.splitext(path)[1],
            size=size,
            content=content,
        )))

    def close(self) -> None:
        self.pending.clear()
        self.mtimes.clear()
