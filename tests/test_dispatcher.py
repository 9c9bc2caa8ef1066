"""Tests for batching in the dispatcher."""

import json
import os
import tempfile
import threading
import time

import pytest

from memorypilot.dispatcher import Dispatcher
from memorypilot.errors import ExtractionError
from memorypilot.events import EventQueue
from memorypilot.extractor import parse_extraction
from memorypilot.models import CommandPayload, CommitPayload, Event
from memorypilot.pipeline import ExtractionPipeline
from memorypilot.storage import Storage


@pytest.fixture
def store():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    s = Storage(path)
    yield s
    s.close()
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


class RecordingProcessor:
    def __init__(self, fail=False):
        self.batches = []
        self.fail = fail
        self.lock = threading.Lock()

    def process_batch(self, events):
        with self.lock:
            self.batches.append([e.id for e in events])
        if self.fail:
            raise ExtractionError("model offline")
        return []


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def cmd(text):
    return Event.create(CommandPayload(command=text))


class TestDispatcher:
    def test_flush_on_size_preserves_order(self, store):
        q = EventQueue()
        proc = RecordingProcessor()
        d = Dispatcher(store, q, proc, batch_size=3, batch_wait=60)
        events = [cmd(f"npm run build {i}") for i in range(3)]
        for e in events:
            q.submit(e)
        d.start()
        try:
            assert wait_for(lambda: len(proc.batches) == 1)
        finally:
            d.stop(timeout=5)
        assert proc.batches[0] == [e.id for e in events]

    def test_flush_on_time(self, store):
        q = EventQueue()
        proc = RecordingProcessor()
        d = Dispatcher(store, q, proc, batch_size=10, batch_wait=0.2)
        d.start()
        try:
            q.submit(cmd("cargo build"))
            q.submit(cmd("cargo test"))
            assert wait_for(lambda: len(proc.batches) == 1)
        finally:
            d.stop(timeout=5)
        assert len(proc.batches[0]) == 2

    def test_empty_batches_are_not_flushed(self, store):
        proc = RecordingProcessor()
        d = Dispatcher(store, EventQueue(), proc, batch_size=10, batch_wait=0.05)
        d.start()
        time.sleep(0.3)
        d.stop(timeout=5)
        assert proc.batches == []
        assert d.flushes == 0

    def test_shutdown_flushes_partial_batch(self, store):
        q = EventQueue()
        proc = RecordingProcessor()
        d = Dispatcher(store, q, proc, batch_size=10, batch_wait=60)
        d.start()
        q.submit(cmd("make lint"))
        q.submit(cmd("make test"))
        assert wait_for(lambda: store.count_events() == 2)
        d.stop(timeout=5)
        assert not d.running
        assert [len(b) for b in proc.batches] == [2]

    def test_events_persisted_before_processing(self, store):
        q = EventQueue()
        seen = []

        class Checking:
            def process_batch(self, events):
                seen.append(store.count_events(processed=False))

        d = Dispatcher(store, q, Checking(), batch_size=2, batch_wait=60)
        q.submit(cmd("git pull"))
        q.submit(cmd("git push"))
        d.start()
        try:
            assert wait_for(lambda: seen)
        finally:
            d.stop(timeout=5)
        assert seen == [2]

    def test_commit_links_project(self, store):
        q = EventQueue()
        proc = RecordingProcessor()
        d = Dispatcher(store, q, proc, batch_size=1, batch_wait=60)
        q.submit(Event.create(CommitPayload(repo="/code/shop", hash="abc123",
                                            message="Add cart",
                                            remote="git@host:shop.git")))
        d.start()
        try:
            assert wait_for(lambda: proc.batches)
        finally:
            d.stop(timeout=5)
        project = store.find_project_by_path("/code/shop")
        assert project is not None
        assert project.git_remote == "git@host:shop.git"
        [event] = store.unprocessed_events()
        assert event.project_id == project.id

    def test_processor_failure_keeps_running(self, store):
        q = EventQueue()
        proc = RecordingProcessor(fail=True)
        d = Dispatcher(store, q, proc, batch_size=1, batch_wait=60)
        d.start()
        try:
            q.submit(cmd("go test ./..."))
            assert wait_for(lambda: len(proc.batches) == 1)
            q.submit(cmd("go vet ./..."))
            assert wait_for(lambda: len(proc.batches) == 2)
            assert d.running
        finally:
            d.stop(timeout=5)

    def test_unexpected_error_keeps_running(self, store):
        q = EventQueue()
        calls = []

        class Exploding:
            def process_batch(self, events):
                calls.append(len(events))
                raise TypeError("'int' object is not iterable")

        d = Dispatcher(store, q, Exploding(), batch_size=1, batch_wait=60)
        d.start()
        try:
            q.submit(cmd("npm ci"))
            assert wait_for(lambda: len(calls) == 1)
            q.submit(cmd("npm test"))
            assert wait_for(lambda: len(calls) == 2)
            assert d.running
        finally:
            d.stop(timeout=5)

    def test_malformed_model_reply_marks_batch_processed(self, store):
        reply = json.dumps({"memories": [
            {"type": "fact", "content": "x", "confidence": 0.9, "topics": 5},
        ]})

        class ReplyExtractor:
            def extract(self, events):
                return parse_extraction(reply)

        q = EventQueue()
        pipeline = ExtractionPipeline(store, ReplyExtractor())
        d = Dispatcher(store, q, pipeline, batch_size=1, batch_wait=60)
        d.start()
        try:
            q.submit(cmd("pip install -e ."))
            assert wait_for(lambda: store.count_events() == 1
                            and store.count_events(processed=False) == 0)
            assert d.running
            assert len(q) == 0
        finally:
            d.stop(timeout=5)
        assert store.stats().total_memories == 0
