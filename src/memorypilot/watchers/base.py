"""Polling watcher base class."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from memorypilot.models import Event

logger = logging.getLogger(__name__)

# Non-blocking, never raises (EventQueue.submit).
EventSink = Callable[[Event], bool]


class Watcher:
    """A producer running ``poll()`` every ``interval`` seconds on its own thread.

    An OSError escaping ``poll`` (unreadable directory, vanished file) stops
    this watcher only; the rest of the agent keeps going.
    """

    name = "watcher"

    def __init__(self, sink: EventSink, interval: float) -> None:
        self.sink = sink
        self.interval = interval
        self.failed = False
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def setup(self) -> None:
        """Take the initial snapshot. Errors here mean the watcher never starts."""

    def poll(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release whatever the watcher holds open."""

    def start(self) -> None:
        self.setup()
        self._thread = threading.Thread(
            target=self._run, name=f"memorypilot-{self.name}", daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self.close()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def emit(self, event: Event) -> None:
        if self._stop.is_set():
            return
        self.sink(event)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.poll()
            except OSError as exc:
                self.failed = True
                logger.warning("%s watcher stopped: %s", self.name, exc)
                return
