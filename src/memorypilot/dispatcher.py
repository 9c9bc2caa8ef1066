"""Dispatcher: drains the event queue into batches for extraction."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from typing import Protocol

from memorypilot.errors import MemoryPilotError, StorageError
from memorypilot.events import EventQueue
from memorypilot.models import CommitPayload, Event, Project
from memorypilot.storage import Storage

logger = logging.getLogger(__name__)


class BatchProcessor(Protocol):
    def process_batch(self, events: list[Event]) -> object: ...


class Dispatcher:
    """Single consumer of the event queue.

    Each event is written to the event log as soon as it is dequeued, then
    batched. A batch flushes when it reaches ``batch_size`` or when
    ``batch_wait`` seconds pass since the last flush, whichever comes
    first. Flushes run inline on the dispatcher thread, so batches never
    overlap. On stop the partial batch is flushed once and the queue is not
    read again.
    """

    def __init__(self, storage: Storage, events: EventQueue,
                 processor: BatchProcessor, batch_size: int = 10,
                 batch_wait: float = 5.0, poll_interval: float = 0.1) -> None:
        self.storage = storage
        self.events = events
        self.processor = processor
        self.batch_size = max(1, batch_size)
        self.batch_wait = batch_wait
        self.poll_interval = poll_interval
        self.flushes = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self.run, name="memorypilot-dispatcher", daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Dispatcher did not stop within %ss", timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        batch: list[Event] = []
        deadline = time.monotonic() + self.batch_wait

        while not self._stop.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._flush(batch)
                batch = []
                deadline = time.monotonic() + self.batch_wait
                continue

            event = self.events.get(timeout=min(remaining, self.poll_interval))
            if event is None:
                continue
            event = self._persist(event)
            if event is None:
                continue

            batch.append(event)
            if len(batch) >= self.batch_size:
                self._flush(batch)
                batch = []
                deadline = time.monotonic() + self.batch_wait

        self._flush(batch)

    def _persist(self, event: Event) -> Event | None:
        """Record the event (and its project) before it joins a batch."""
        try:
            payload = event.payload
            if (isinstance(payload, CommitPayload) and payload.repo
                    and event.project_id is None):
                project = self.storage.upsert_project(
                    Project(path=payload.repo, git_remote=payload.remote or None)
                )
                event = dataclasses.replace(event, project_id=project.id)
            self.storage.create_event(event)
        except StorageError as exc:
            logger.warning("Failed to store event %s: %s", event.id, exc)
            return None
        return event

    def _flush(self, batch: list[Event]) -> None:
        if not batch:
            return
        self.flushes += 1
        try:
            self.processor.process_batch(list(batch))
        except MemoryPilotError as exc:
            logger.warning("Batch of %d events failed: %s", len(batch), exc)
        except Exception:
            # the dispatcher thread must outlive any one batch
            logger.exception("Unexpected error processing batch of %d events",
                             len(batch))
