"""The background agent: watchers -> queue -> dispatcher -> store, plus decay."""

from __future__ import annotations

import logging
import threading

from memorypilot.config import AgentConfig
from memorypilot.decay import DECAY_INTERVAL
from memorypilot.dispatcher import Dispatcher
from memorypilot.embeddings import Embedder, build_embedder
from memorypilot.errors import StorageError
from memorypilot.events import EventQueue
from memorypilot.extractor import Extractor, build_extractor
from memorypilot.pipeline import ExtractionPipeline
from memorypilot.storage import Storage
from memorypilot.watchers import FileWatcher, GitWatcher, TerminalWatcher, Watcher

logger = logging.getLogger(__name__)


class DecayScheduler:
    """Applies importance decay once per ``interval``.

    Stopping never triggers a partial cycle; a failed cycle is logged and
    the next one runs as usual.
    """

    def __init__(self, storage: Storage, interval: float = DECAY_INTERVAL) -> None:
        self.storage = storage
        self.interval = interval
        self.cycles = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name="memorypilot-decay", daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        self.cycles += 1
        try:
            decayed = self.storage.decay_importance()
        except StorageError as exc:
            logger.warning("Failed to decay importance: %s", exc)
            return 0
        logger.info("Decayed importance of %d memories", decayed)
        return decayed

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.run_once()


class Agent:
    """Owns every worker and the store they share.

    ``stop()`` waits for all workers before closing the store, so nothing
    writes to a closed database.
    """

    def __init__(self, config: AgentConfig, storage: Storage | None = None,
                 extractor: Extractor | None = None,
                 embedder: Embedder | None = None,
                 watchers: list[Watcher] | None = None) -> None:
        self.config = config
        if storage is None:
            config.data_dir.mkdir(parents=True, exist_ok=True)
            storage = Storage(config.db_path)
        self.storage = storage
        self.queue = EventQueue(config.queue_capacity)
        self.pipeline = ExtractionPipeline(
            storage,
            extractor if extractor is not None else build_extractor(config),
            embedder if embedder is not None else build_embedder(config),
        )
        self.dispatcher = Dispatcher(
            storage, self.queue, self.pipeline,
            batch_size=config.batch_size, batch_wait=config.batch_wait,
        )
        self.scheduler = DecayScheduler(storage, config.decay_interval)
        self._candidates = watchers if watchers is not None else self._default_watchers()
        self.watchers: list[Watcher] = []

    def _default_watchers(self) -> list[Watcher]:
        cfg = self.config
        sink = self.queue.submit
        watchers: list[Watcher] = []
        if cfg.git_enabled:
            watchers.append(GitWatcher(sink, cfg.watch_roots, cfg.git_interval))
        if cfg.file_enabled:
            watchers.append(FileWatcher(sink, cfg.watch_roots,
                                        cfg.file_debounce, cfg.file_interval))
        if cfg.terminal_enabled:
            watchers.append(TerminalWatcher(sink, cfg.history_files,
                                            cfg.terminal_interval))
        return watchers

    @property
    def active_watchers(self) -> list[Watcher]:
        return [w for w in self.watchers if w.running]

    def start(self) -> None:
        logger.info("Starting MemoryPilot agent...")
        try:
            recovered = self.pipeline.recover(self.config.batch_size)
        except StorageError as exc:
            logger.warning("Could not replay unprocessed events: %s", exc)
        else:
            if recovered:
                logger.info("Replayed %d unprocessed events", recovered)

        self.dispatcher.start()
        for watcher in self._candidates:
            try:
                watcher.start()
            except OSError as exc:
                logger.warning("%s watcher failed to start: %s", watcher.name, exc)
                continue
            self.watchers.append(watcher)
        self.scheduler.start()
        logger.info("MemoryPilot agent started with watchers: %s",
                    ", ".join(w.name for w in self.watchers) or "none")

    def stop(self) -> None:
        logger.info("Stopping MemoryPilot agent...")
        for watcher in self.watchers:
            watcher.stop()
        self.dispatcher.stop()
        self.scheduler.stop()
        self.storage.close()
        logger.info("MemoryPilot agent stopped")

    def __enter__(self) -> Agent:
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()
