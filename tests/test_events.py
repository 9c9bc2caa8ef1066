"""Tests for the bounded event queue."""

from memorypilot.events import EventQueue
from memorypilot.models import CommandPayload, Event


def cmd(text):
    return Event.create(CommandPayload(command=text))


class TestEventQueue:
    def test_fifo(self):
        q = EventQueue(capacity=10)
        events = [cmd(f"git commit -m {i}") for i in range(3)]
        for e in events:
            assert q.submit(e)
        assert [q.get(timeout=0.1).id for _ in range(3)] == [e.id for e in events]

    def test_overflow_drops_and_never_raises(self):
        q = EventQueue(capacity=3)
        accepted = [q.submit(cmd(f"make {i}")) for i in range(5)]
        assert accepted == [True, True, True, False, False]
        assert len(q) == 3
        assert q.dropped == 2

    def test_get_empty_returns_none(self):
        q = EventQueue(capacity=1)
        assert q.get(timeout=0.01) is None

    def test_drained_queue_accepts_again(self):
        q = EventQueue(capacity=1)
        assert q.submit(cmd("go build"))
        assert not q.submit(cmd("go test"))
        q.get(timeout=0.1)
        assert q.submit(cmd("go vet"))
