"""Bounded event queue shared by every producer and the dispatcher."""

from __future__ import annotations

import logging
import queue
import threading

from memorypilot.models import Event

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 10_000


class EventQueue:
    """Many producers, one consumer.

    ``submit`` never blocks and never raises: when the queue is full the
    incoming event is dropped and counted. Producers run on timers and
    filesystem callbacks and must not stall on downstream work.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self.capacity = capacity
        self._queue: queue.Queue[Event] = queue.Queue(maxsize=capacity)
        self.dropped = 0
        self._dropped_lock = threading.Lock()

    def submit(self, event: Event) -> bool:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            with self._dropped_lock:
                self.dropped += 1
            logger.warning("Event queue full, dropping %s event %s",
                           event.kind, event.id)
            return False
        return True

    def get(self, timeout: float | None = None) -> Event | None:
        """Next event, or None if nothing arrived within ``timeout``."""
        try:
            if timeout is not None and timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def __len__(self) -> int:
        return self._queue.qsize()
