"""Batch -> extractor -> new memories. Failures degrade, never stop."""

from __future__ import annotations

import logging
import time

from memorypilot.embeddings import Embedder, NullEmbedder, find_related
from memorypilot.errors import EmbeddingError, ExtractionError, StorageError
from memorypilot.extractor import Extractor
from memorypilot.models import (
    CommitPayload,
    Event,
    EventKind,
    ExtractedMemory,
    Memory,
    MemoryScope,
    Source,
    SourceType,
)
from memorypilot.storage import Storage

logger = logging.getLogger(__name__)

ACCEPT_THRESHOLD = 0.6
RELATED_CANDIDATES = 500

_KIND_SOURCES = {
    EventKind.GIT_COMMIT.value: SourceType.GIT,
    EventKind.FILE_CHANGE.value: SourceType.FILE,
    EventKind.TERMINAL_CMD.value: SourceType.TERMINAL,
}


def batch_source(events: list[Event], now: float) -> Source:
    """Provenance for memories extracted from ``events``."""
    kinds = {e.kind for e in events}
    source_type = SourceType.GIT
    if len(kinds) == 1:
        source_type = _KIND_SOURCES.get(next(iter(kinds)), SourceType.GIT)
    commits = [e.payload for e in events if isinstance(e.payload, CommitPayload)]
    reference = commits[0].hash if len(events) == 1 and commits else "batch"
    return Source(type=source_type, reference=reference, timestamp=now)


def batch_project(events: list[Event]) -> str | None:
    projects = {e.project_id for e in events if e.project_id}
    return projects.pop() if len(projects) == 1 else None


def attach_embedding(storage: Storage, embedder: Embedder, memory: Memory) -> None:
    """Embed a stored memory and link its near neighbours.

    No vector (service down or disabled) just leaves the memory
    keyword-searchable.
    """
    try:
        embedding = embedder.embed(memory.content)
    except EmbeddingError as exc:
        logger.warning("Failed to generate embedding: %s", exc)
        return
    if embedding is None:
        return
    try:
        storage.update_memory_embedding(memory.id, embedding)
        memory.embedding = embedding
        neighbours = storage.memories_with_embeddings(
            limit=RELATED_CANDIDATES, exclude_id=memory.id,
        )
        related = find_related(embedding, neighbours)
        if related:
            storage.set_related(memory.id, related)
            memory.related_memories = related
    except StorageError as exc:
        logger.warning("Failed to store embedding for %s: %s", memory.id, exc)


class ExtractionPipeline:
    """Turns one batch of events into memories.

    Extraction is attempted once per batch. Whatever the outcome, every
    event of the batch is marked processed afterwards, so an outage loses
    that batch's extraction rather than retrying it.
    """

    def __init__(self, storage: Storage, extractor: Extractor,
                 embedder: Embedder | None = None) -> None:
        self.storage = storage
        self.extractor = extractor
        self.embedder = embedder or NullEmbedder()

    def process_batch(self, events: list[Event]) -> list[Memory]:
        if not events:
            return []
        logger.info("Processing batch of %d events", len(events))
        created: list[Memory] = []
        try:
            extracted = self.extractor.extract(events)
        except ExtractionError as exc:
            logger.warning("Extraction failed: %s", exc)
            extracted = []
        else:
            accepted = [x for x in extracted if x.confidence >= ACCEPT_THRESHOLD]
            logger.info("Extracted %d memories (%d accepted)",
                        len(extracted), len(accepted))
            now = time.time()
            source = batch_source(events, now)
            project_id = batch_project(events)
            for candidate in accepted:
                memory = self._create(candidate, source, project_id, now)
                if memory is not None:
                    created.append(memory)

        for event in events:
            try:
                self.storage.mark_event_processed(event.id)
            except StorageError as exc:
                logger.warning("Failed to mark event %s processed: %s",
                               event.id, exc)
        return created

    def _create(self, candidate: ExtractedMemory, source: Source,
                project_id: str | None, now: float) -> Memory | None:
        memory = Memory(
            type=candidate.type,
            content=candidate.content,
            summary=candidate.summary,
            scope=MemoryScope.PERSONAL,
            project_id=project_id,
            source=Source(source.type, source.reference, source.timestamp),
            confidence=candidate.confidence,
            importance=1.0,
            topics=list(candidate.topics),
            created_at=now,
            last_accessed=now,
        )
        try:
            self.storage.create_memory(memory)
        except StorageError as exc:
            logger.warning("Failed to save memory: %s", exc)
            return None
        attach_embedding(self.storage, self.embedder, memory)
        logger.info("Created memory: [%s] %s", memory.type.value, memory.summary)
        return memory

    def recover(self, batch_size: int = 10) -> int:
        """Re-run extraction for events left unprocessed by a crash.

        Returns the number of events replayed.
        """
        replayed = 0
        seen: set[str] = set()
        while True:
            pending = self.storage.unprocessed_events(limit=batch_size)
            if not pending:
                return replayed
            if pending[0].id in seen:
                logger.warning("Events are not being marked processed, "
                               "stopping recovery")
                return replayed
            seen.update(e.id for e in pending)
            logger.info("Recovering %d unprocessed events", len(pending))
            self.process_batch(pending)
            replayed += len(pending)
