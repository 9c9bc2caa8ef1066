"""Core data models. Events go in, Memories come out."""

from __future__ import annotations

import dataclasses
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union

from memorypilot.decay import boost, clamp


def new_id() -> str:
    """Time-sortable id: 48-bit millisecond clock + 80 random bits, hex."""
    millis = int(time.time() * 1000) & 0xFFFFFFFFFFFF
    return f"{millis:012x}{os.urandom(10).hex()}"


class MemoryType(str, Enum):
    DECISION = "decision"
    PATTERN = "pattern"
    FACT = "fact"
    PREFERENCE = "preference"
    MISTAKE = "mistake"
    LEARNING = "learning"


class MemoryScope(str, Enum):
    PERSONAL = "personal"
    PROJECT = "project"
    TEAM = "team"
    ORG = "org"


class SourceType(str, Enum):
    GIT = "git"
    FILE = "file"
    TERMINAL = "terminal"
    CHAT = "chat"
    MANUAL = "manual"
    IMPORT = "import"


class EventKind(str, Enum):
    GIT_COMMIT = "git_commit"
    FILE_CHANGE = "file_change"
    TERMINAL_CMD = "terminal_cmd"


# ── Event payloads ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class CommitPayload:
    repo: str
    hash: str
    message: str
    author: str = ""
    diff: str = ""
    files: tuple[str, ...] = ()
    remote: str = ""

    kind: ClassVar[str] = EventKind.GIT_COMMIT.value


@dataclass(frozen=True)
class FileChangePayload:
    path: str
    filename: str = ""
    ext: str = ""
    size: int = 0
    content: str = ""

    kind: ClassVar[str] = EventKind.FILE_CHANGE.value


@dataclass(frozen=True)
class CommandPayload:
    command: str
    shell: str = ""

    kind: ClassVar[str] = EventKind.TERMINAL_CMD.value


@dataclass(frozen=True)
class RawPayload:
    """Payload of a kind this version does not know about."""

    kind: str
    data: dict[str, Any] = field(default_factory=dict)


Payload = Union[CommitPayload, FileChangePayload, CommandPayload, RawPayload]

_PAYLOAD_TYPES: dict[str, type] = {
    EventKind.GIT_COMMIT.value: CommitPayload,
    EventKind.FILE_CHANGE.value: FileChangePayload,
    EventKind.TERMINAL_CMD.value: CommandPayload,
}


def payload_from_dict(kind: str, data: dict[str, Any]) -> Payload:
    cls = _PAYLOAD_TYPES.get(kind)
    if cls is None:
        return RawPayload(kind=kind, data=dict(data))
    names = {f.name for f in dataclasses.fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in names}
    if cls is CommitPayload and "files" in kwargs:
        kwargs["files"] = tuple(kwargs["files"] or ())
    try:
        return cls(**kwargs)
    except TypeError:
        # required field missing: keep the data rather than lose the event
        return RawPayload(kind=kind, data=dict(data))


def payload_to_dict(payload: Payload) -> dict[str, Any]:
    if isinstance(payload, RawPayload):
        return dict(payload.data)
    data = dataclasses.asdict(payload)
    if "files" in data:
        data["files"] = list(data["files"])
    return data


@dataclass(frozen=True)
class Event:
    """Something a producer saw. Immutable once created."""

    kind: str
    payload: Payload
    timestamp: float = field(default_factory=time.time)
    project_id: str | None = None
    id: str = field(default_factory=new_id)

    @classmethod
    def create(cls, payload: Payload, project_id: str | None = None) -> Event:
        return cls(kind=payload.kind, payload=payload, project_id=project_id)


# ── Memories ───────────────────────────────────────────────────────────


@dataclass
class Source:
    type: SourceType = SourceType.MANUAL
    reference: str = ""
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if isinstance(self.type, str):
            self.type = SourceType(self.type)


@dataclass
class Memory:
    """A remembered fact. Importance decays when unused and grows when recalled."""

    content: str
    type: MemoryType = MemoryType.FACT
    summary: str = ""
    scope: MemoryScope = MemoryScope.PERSONAL
    project_id: str | None = None
    team_id: str | None = None
    source: Source = field(default_factory=Source)
    confidence: float = 1.0     # fixed at creation
    importance: float = 1.0     # 0.0-1.0, decays / boosts
    embedding: bytes | None = None  # float32 .tobytes()
    topics: list[str] = field(default_factory=list)
    related_memories: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    last_accessed: float = field(default_factory=time.time)
    access_count: int = 0
    expires_at: float | None = None
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        if isinstance(self.type, str):
            self.type = MemoryType(self.type)
        if isinstance(self.scope, str):
            self.scope = MemoryScope(self.scope)
        self.confidence = clamp(self.confidence)
        self.importance = clamp(self.importance)

    def access(self, now: float | None = None) -> None:
        """Being recalled reinforces a memory."""
        self.access_count += 1
        self.last_accessed = time.time() if now is None else now
        self.importance = boost(self.importance)

    def to_recall_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "summary": self.summary,
            "content": self.content,
            "topics": list(self.topics),
            "createdAt": self.created_at,
            "confidence": self.confidence,
        }


@dataclass
class Project:
    path: str
    name: str = ""
    git_remote: str | None = None
    created_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = os.path.basename(os.path.normpath(self.path))


@dataclass
class ExtractedMemory:
    """A candidate memory as returned by an extractor. Never stored as-is."""

    type: MemoryType
    content: str
    summary: str = ""
    confidence: float = 0.0
    topics: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> ExtractedMemory:
        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")
        content = str(data.get("content") or "").strip()
        if not content:
            raise ValueError("memory has no content")
        try:
            mem_type = MemoryType(str(data.get("type", "")).strip().lower())
        except ValueError:
            raise ValueError(f"unknown memory type: {data.get('type')!r}") from None
        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            raise ValueError(f"bad confidence: {data.get('confidence')!r}") from None
        if confidence != confidence:  # NaN
            raise ValueError("confidence is NaN")
        topics = data.get("topics") or []
        if isinstance(topics, str):
            topics = [topics]
        elif not isinstance(topics, list):
            raise ValueError(f"bad topics: {topics!r}")
        return cls(
            type=mem_type,
            content=content,
            summary=str(data.get("summary") or "").strip() or content[:80],
            confidence=clamp(confidence),
            topics=[str(t) for t in topics],
        )


@dataclass
class RecallRequest:
    query: str = ""
    scopes: list[MemoryScope] = field(default_factory=list)
    project_id: str | None = None
    types: list[MemoryType] = field(default_factory=list)
    limit: int = 5

    def __post_init__(self) -> None:
        self.scopes = [MemoryScope(s) for s in self.scopes]
        self.types = [MemoryType(t) for t in self.types]
        if self.limit is None or self.limit <= 0:
            self.limit = 5


@dataclass
class RecallResult:
    memories: list[Memory]
    query: str = ""
    degraded: bool = False

    @property
    def total(self) -> int:
        return len(self.memories)


@dataclass
class Stats:
    total_memories: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    project_count: int = 0
    daemon_running: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalMemories": self.total_memories,
            "byType": dict(self.by_type),
            "projectCount": self.project_count,
            "daemonRunning": self.daemon_running,
        }
