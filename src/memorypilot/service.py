"""Recall / remember / status. Shared by the CLI and the MCP server."""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path

from memorypilot.config import AgentConfig
from memorypilot.embeddings import Embedder, NullEmbedder, build_embedder
from memorypilot.errors import EmbeddingError, NotInitializedError
from memorypilot.models import (
    Memory,
    MemoryScope,
    MemoryType,
    RecallRequest,
    RecallResult,
    Source,
    SourceType,
    Stats,
)
from memorypilot.pipeline import attach_embedding
from memorypilot.storage import Storage

logger = logging.getLogger(__name__)

SUMMARY_LENGTH = 100


def truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len - 3] + "..."


def write_pid(pid_path: Path, pid: int | None = None) -> None:
    pid_path.parent.mkdir(parents=True, exist_ok=True)
    pid_path.write_text(f"{os.getpid() if pid is None else pid}\n")


def read_pid(pid_path: Path) -> int | None:
    try:
        return int(pid_path.read_text().strip())
    except (OSError, ValueError):
        return None


def remove_pid(pid_path: Path) -> None:
    try:
        pid_path.unlink()
    except FileNotFoundError:
        pass


def daemon_running(pid_path: Path) -> bool:
    """True if the pid file names a live process."""
    pid = read_pid(pid_path)
    if pid is None:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class MemoryService:
    """The three operations assistants and humans get."""

    def __init__(self, storage: Storage, embedder: Embedder | None = None,
                 pid_path: Path | None = None) -> None:
        self.storage = storage
        self.embedder = embedder or NullEmbedder()
        self.pid_path = pid_path

    @classmethod
    def open(cls, config: AgentConfig,
             embedder: Embedder | None = None) -> MemoryService:
        if not config.db_path.exists():
            raise NotInitializedError(str(config.db_path))
        return cls(
            Storage(config.db_path),
            embedder if embedder is not None else build_embedder(config),
            pid_path=config.pid_path,
        )

    def recall(self, query: str = "", limit: int = 5,
               types: list[str | MemoryType] | None = None,
               scopes: list[str | MemoryScope] | None = None,
               project_id: str | None = None,
               semantic: bool = False) -> RecallResult:
        req = RecallRequest(query=query, limit=limit, types=types or [],
                            scopes=scopes or [], project_id=project_id)
        degraded = False
        if semantic and query:
            query_embedding = None
            try:
                query_embedding = self.embedder.embed(query)
            except EmbeddingError as exc:
                logger.warning("Semantic search unavailable: %s", exc)
                degraded = True
            else:
                degraded = query_embedding is None
            if query_embedding is not None:
                memories = self.storage.hybrid_search(req, query_embedding)
                return RecallResult(memories=memories, query=query)
        memories = self.storage.recall(req)
        return RecallResult(memories=memories, query=query, degraded=degraded)

    def remember(self, content: str, type: str | MemoryType = MemoryType.FACT,
                 topics: list[str] | None = None,
                 reference: str = "cli") -> Memory:
        content = content.strip()
        if not content:
            raise ValueError("nothing to remember: content is empty")
        now = time.time()
        memory = Memory(
            type=type,
            content=content,
            summary=truncate(content, SUMMARY_LENGTH),
            scope=MemoryScope.PERSONAL,
            source=Source(type=SourceType.MANUAL, reference=reference,
                          timestamp=now),
            confidence=1.0,
            importance=1.0,
            topics=list(topics or []),
            created_at=now,
            last_accessed=now,
        )
        self.storage.create_memory(memory)
        attach_embedding(self.storage, self.embedder, memory)
        return memory

    def status(self) -> Stats:
        stats = self.storage.stats()
        if self.pid_path is not None:
            stats.daemon_running = daemon_running(self.pid_path)
        return stats

    def close(self) -> None:
        self.storage.close()

    def __enter__(self) -> MemoryService:
        return self

    def __exit__(self, *args) -> None:
        self.close()
