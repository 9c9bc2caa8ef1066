"""SQLite storage. One file holds memories, projects and the event log."""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from memorypilot.decay import BOOST_FACTOR, DECAY_FACTOR, DECAY_FLOOR, STALE_AFTER
from memorypilot.embeddings import hybrid_rank
from memorypilot.errors import StorageError
from memorypilot.models import (
    Event,
    Memory,
    MemoryScope,
    MemoryType,
    Project,
    RecallRequest,
    Source,
    Stats,
    payload_from_dict,
    payload_to_dict,
)

_TYPES = ",".join(f"'{t.value}'" for t in MemoryType)
_SCOPES = ",".join(f"'{s.value}'" for s in MemoryScope)

_MEMORY_COLUMNS = """id, type, content, summary, scope, project_id, team_id,
    source_type, source_reference, source_timestamp,
    confidence, importance, topics, related_memories, embedding,
    created_at, last_accessed_at, access_count, expires_at"""

# Semantic candidates pulled from the filtered set before re-ranking.
HYBRID_CANDIDATES = 200


def _like_term(query: str) -> str:
    escaped = (query.replace("\\", "\\\\")
               .replace("%", "\\%")
               .replace("_", "\\_"))
    return f"%{escaped}%"


class Storage:
    """SQLite backend. WAL mode, one connection per thread.

    SQLite serializes conflicting writers itself (busy timeout), so callers
    never need their own locks around store methods.
    """

    def __init__(self, path: str | Path, busy_timeout: float = 5.0) -> None:
        self.path = Path(path)
        self._busy_timeout = busy_timeout
        self._local = threading.local()
        self._conns: list[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()
        self._closed = False
        self._init_schema()

    @property
    def conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            return conn
        if self._closed:
            raise StorageError(f"store {self.path} is closed")
        try:
            conn = sqlite3.connect(
                str(self.path), timeout=self._busy_timeout,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open {self.path}: {exc}") from exc
        self._local.conn = conn
        with self._conns_lock:
            self._conns.append(conn)
        return conn

    @contextmanager
    def _tx(self, action: str) -> Iterator[sqlite3.Connection]:
        """Run a block in a transaction, translating sqlite errors."""
        conn = self.conn
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageError(f"{action} failed: {exc}") from exc

    def _init_schema(self) -> None:
        with self._tx("schema migration") as conn:
            conn.executescript(f"""
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    path TEXT UNIQUE NOT NULL,
                    git_remote TEXT,
                    created_at REAL NOT NULL,
                    last_seen REAL NOT NULL
                );

                CREATE TABLE IF NOT EXISTS memories (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL CHECK (type IN ({_TYPES})),
                    content TEXT NOT NULL,
                    summary TEXT NOT NULL,
                    scope TEXT NOT NULL DEFAULT 'personal'
                        CHECK (scope IN ({_SCOPES})),
                    project_id TEXT REFERENCES projects(id),
                    team_id TEXT,

                    source_type TEXT NOT NULL,
                    source_reference TEXT,
                    source_timestamp REAL,

                    confidence REAL NOT NULL DEFAULT 0.8
                        CHECK (confidence >= 0 AND confidence <= 1),
                    importance REAL NOT NULL DEFAULT 1.0
                        CHECK (importance >= 0 AND importance <= 1),

                    topics TEXT NOT NULL DEFAULT '[]',
                    related_memories TEXT NOT NULL DEFAULT '[]',
                    embedding BLOB,

                    created_at REAL NOT NULL,
                    last_accessed_at REAL NOT NULL,
                    access_count INTEGER NOT NULL DEFAULT 0,
                    expires_at REAL
                );

                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    timestamp REAL NOT NULL,
                    data TEXT NOT NULL DEFAULT '{{}}',
                    project_id TEXT REFERENCES projects(id),
                    processed_at REAL
                );

                CREATE INDEX IF NOT EXISTS idx_memories_project
                    ON memories(project_id);
                CREATE INDEX IF NOT EXISTS idx_memories_type
                    ON memories(type);
                CREATE INDEX IF NOT EXISTS idx_memories_scope
                    ON memories(scope);
                CREATE INDEX IF NOT EXISTS idx_memories_importance
                    ON memories(importance DESC);
                CREATE INDEX IF NOT EXISTS idx_memories_created
                    ON memories(created_at DESC);
                CREATE INDEX IF NOT EXISTS idx_events_unprocessed
                    ON events(processed_at, timestamp);
            """)

    # ── Memories ───────────────────────────────────────────────────────

    def create_memory(self, mem: Memory) -> None:
        with self._tx(f"create memory {mem.id}") as conn:
            conn.execute(
                f"INSERT INTO memories ({_MEMORY_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    mem.id, mem.type.value, mem.content, mem.summary,
                    mem.scope.value, mem.project_id, mem.team_id,
                    mem.source.type.value, mem.source.reference,
                    mem.source.timestamp,
                    mem.confidence, mem.importance,
                    json.dumps(mem.topics), json.dumps(mem.related_memories),
                    mem.embedding,
                    mem.created_at, mem.last_accessed, mem.access_count,
                    mem.expires_at,
                ),
            )

    def load_memory(self, memory_id: str) -> Memory | None:
        with self._tx("load memory") as conn:
            row = conn.execute(
                f"SELECT {_MEMORY_COLUMNS} FROM memories WHERE id = ?",
                (memory_id,),
            ).fetchone()
        return None if row is None else self._row_to_memory(row)

    def update_memory_embedding(self, memory_id: str, embedding: bytes) -> None:
        with self._tx("store embedding") as conn:
            conn.execute(
                "UPDATE memories SET embedding = ? WHERE id = ?",
                (embedding, memory_id),
            )

    def set_related(self, memory_id: str, related: list[str]) -> None:
        with self._tx("store related memories") as conn:
            conn.execute(
                "UPDATE memories SET related_memories = ? WHERE id = ?",
                (json.dumps(related), memory_id),
            )

    def memories_with_embeddings(self, limit: int = 500,
                                 exclude_id: str | None = None) -> list[Memory]:
        with self._tx("load embedded memories") as conn:
            rows = conn.execute(
                f"""SELECT {_MEMORY_COLUMNS} FROM memories
                    WHERE embedding IS NOT NULL AND id != ?
                    ORDER BY importance DESC, last_accessed_at DESC
                    LIMIT ?""",
                (exclude_id or "", limit),
            ).fetchall()
        return [self._row_to_memory(r) for r in rows]

    def all_memories(self) -> list[Memory]:
        with self._tx("load memories") as conn:
            rows = conn.execute(
                f"SELECT {_MEMORY_COLUMNS} FROM memories "
                "ORDER BY importance DESC, last_accessed_at DESC"
            ).fetchall()
        return [self._row_to_memory(r) for r in rows]

    def count(self) -> int:
        with self._tx("count memories") as conn:
            return conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]

    # ── Recall ─────────────────────────────────────────────────────────

    @staticmethod
    def _filters(req: RecallRequest) -> tuple[str, list]:
        where = " WHERE 1=1"
        args: list = []
        if req.scopes:
            where += f" AND scope IN ({','.join('?' * len(req.scopes))})"
            args.extend(s.value for s in req.scopes)
        if req.types:
            where += f" AND type IN ({','.join('?' * len(req.types))})"
            args.extend(t.value for t in req.types)
        if req.project_id is not None:
            where += " AND (project_id = ? OR project_id IS NULL)"
            args.append(req.project_id)
        if req.query:
            # LIKE is case-insensitive for ASCII in SQLite
            where += (" AND (content LIKE ? ESCAPE '\\'"
                      " OR summary LIKE ? ESCAPE '\\'"
                      " OR topics LIKE ? ESCAPE '\\')")
            term = _like_term(req.query)
            args.extend([term, term, term])
        return where, args

    def recall(self, req: RecallRequest) -> list[Memory]:
        """Keyword recall ranked by importance, then recency.

        Every returned memory is touched: access count +1, last accessed now,
        importance boosted. The returned objects carry the updated values.
        """
        where, args = self._filters(req)
        with self._tx("recall") as conn:
            rows = conn.execute(
                f"SELECT {_MEMORY_COLUMNS} FROM memories{where}"
                " ORDER BY importance DESC, last_accessed_at DESC LIMIT ?",
                (*args, req.limit),
            ).fetchall()
        memories = [self._row_to_memory(r) for r in rows]
        self._record_access(memories)
        return memories

    def hybrid_search(self, req: RecallRequest,
                      query_embedding: bytes) -> list[Memory]:
        """Semantic recall: cosine similarity blended with importance.

        Candidates pass the same filters as keyword recall, query text
        included, so similarity reorders matches but never adds one.
        """
        where, args = self._filters(req)
        with self._tx("hybrid search") as conn:
            rows = conn.execute(
                f"SELECT {_MEMORY_COLUMNS} FROM memories{where}"
                " ORDER BY importance DESC, last_accessed_at DESC LIMIT ?",
                (*args, HYBRID_CANDIDATES),
            ).fetchall()
        candidates = [self._row_to_memory(r) for r in rows]
        memories = hybrid_rank(query_embedding, candidates, req.query,
                               limit=req.limit)
        self._record_access(memories)
        return memories

    def _record_access(self, memories: list[Memory]) -> None:
        if not memories:
            return
        now = time.time()
        with self._tx("record access") as conn:
            conn.executemany(
                """UPDATE memories
                   SET last_accessed_at = ?,
                       access_count = access_count + 1,
                       importance = MIN(1.0, importance * ?)
                   WHERE id = ?""",
                [(now, BOOST_FACTOR, m.id) for m in memories],
            )
        for mem in memories:
            mem.access(now)

    # ── Decay ──────────────────────────────────────────────────────────

    def decay_importance(self, now: float | None = None) -> int:
        """Apply one decay step to stale memories above the floor."""
        if now is None:
            now = time.time()
        with self._tx("decay importance") as conn:
            cursor = conn.execute(
                """UPDATE memories
                   SET importance = importance * ?
                   WHERE importance > ?
                     AND last_accessed_at < ?""",
                (DECAY_FACTOR, DECAY_FLOOR, now - STALE_AFTER),
            )
            return cursor.rowcount

    # ── Projects ───────────────────────────────────────────────────────

    def upsert_project(self, project: Project) -> Project:
        """Insert or refresh a project by path. First-seen time is kept."""
        with self._tx(f"upsert project {project.path}") as conn:
            conn.execute(
                """INSERT INTO projects
                   (id, name, path, git_remote, created_at, last_seen)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(path) DO UPDATE SET
                       name = excluded.name,
                       git_remote = COALESCE(excluded.git_remote,
                                             projects.git_remote),
                       last_seen = excluded.last_seen""",
                (project.id, project.name, project.path, project.git_remote,
                 project.created_at, project.last_seen),
            )
        stored = self.find_project_by_path(project.path)
        if stored is None:
            raise StorageError(f"project {project.path} vanished after upsert")
        return stored

    def find_project_by_path(self, path: str) -> Project | None:
        with self._tx("find project") as conn:
            row = conn.execute(
                """SELECT id, name, path, git_remote, created_at, last_seen
                   FROM projects WHERE path = ?""",
                (path,),
            ).fetchone()
        if row is None:
            return None
        return Project(
            id=row["id"], name=row["name"], path=row["path"],
            git_remote=row["git_remote"], created_at=row["created_at"],
            last_seen=row["last_seen"],
        )

    # ── Events ─────────────────────────────────────────────────────────

    def create_event(self, event: Event) -> None:
        with self._tx(f"store event {event.id}") as conn:
            conn.execute(
                """INSERT INTO events (id, type, timestamp, data, project_id)
                   VALUES (?, ?, ?, ?, ?)""",
                (event.id, event.kind, event.timestamp,
                 json.dumps(payload_to_dict(event.payload)),
                 event.project_id),
            )

    def unprocessed_events(self, limit: int = 100) -> list[Event]:
        with self._tx("load unprocessed events") as conn:
            rows = conn.execute(
                """SELECT id, type, timestamp, data, project_id
                   FROM events WHERE processed_at IS NULL
                   ORDER BY timestamp ASC, id ASC LIMIT ?""",
                (limit,),
            ).fetchall()
        return [
            Event(
                id=r["id"], kind=r["type"], timestamp=r["timestamp"],
                payload=payload_from_dict(r["type"], json.loads(r["data"] or "{}")),
                project_id=r["project_id"],
            )
            for r in rows
        ]

    def mark_event_processed(self, event_id: str,
                             now: float | None = None) -> None:
        with self._tx("mark event processed") as conn:
            conn.execute(
                "UPDATE events SET processed_at = ? WHERE id = ?",
                (time.time() if now is None else now, event_id),
            )

    def count_events(self, processed: bool | None = None) -> int:
        query = "SELECT COUNT(*) FROM events"
        if processed is True:
            query += " WHERE processed_at IS NOT NULL"
        elif processed is False:
            query += " WHERE processed_at IS NULL"
        with self._tx("count events") as conn:
            return conn.execute(query).fetchone()[0]

    # ── Stats ──────────────────────────────────────────────────────────

    def stats(self) -> Stats:
        with self._tx("read stats") as conn:
            total = conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]
            by_type = {
                r[0]: r[1] for r in conn.execute(
                    "SELECT type, COUNT(*) FROM memories GROUP BY type"
                )
            }
            projects = conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0]
        return Stats(total_memories=total, by_type=by_type,
                     project_count=projects)

    # ── Close ──────────────────────────────────────────────────────────

    def close(self) -> None:
        with self._conns_lock:
            self._closed = True
            for conn in self._conns:
                conn.close()
            self._conns.clear()
        self._local = threading.local()

    # ── Row mappers ────────────────────────────────────────────────────

    @staticmethod
    def _row_to_memory(row: sqlite3.Row) -> Memory:
        return Memory(
            id=row["id"],
            type=MemoryType(row["type"]),
            content=row["content"],
            summary=row["summary"],
            scope=MemoryScope(row["scope"]),
            project_id=row["project_id"],
            team_id=row["team_id"],
            source=Source(
                type=row["source_type"],
                reference=row["source_reference"] or "",
                timestamp=row["source_timestamp"] or 0.0,
            ),
            confidence=row["confidence"],
            importance=row["importance"],
            topics=json.loads(row["topics"] or "[]"),
            related_memories=json.loads(row["related_memories"] or "[]"),
            embedding=row["embedding"],
            created_at=row["created_at"],
            last_accessed=row["last_accessed_at"],
            access_count=row["access_count"],
            expires_at=row["expires_at"],
        )
