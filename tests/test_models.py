"""Tests for the data model."""

import dataclasses
import math

import pytest

from memorypilot.models import (
    CommandPayload,
    CommitPayload,
    Event,
    EventKind,
    ExtractedMemory,
    Memory,
    MemoryScope,
    MemoryType,
    Project,
    RawPayload,
    RecallRequest,
    Stats,
    new_id,
    payload_from_dict,
    payload_to_dict,
)


class TestIds:
    def test_unique(self):
        assert len({new_id() for _ in range(1000)}) == 1000

    def test_time_sortable(self):
        a = new_id()
        b = new_id()
        assert a[:12] <= b[:12]


class TestEvent:
    def test_kind_from_payload(self):
        e = Event.create(CommandPayload(command="make"))
        assert e.kind == EventKind.TERMINAL_CMD.value

    def test_immutable(self):
        e = Event.create(CommandPayload(command="make"))
        with pytest.raises(dataclasses.FrozenInstanceError):
            e.kind = "other"

    def test_payload_dict(self):
        p = CommitPayload(repo="/r", hash="h", message="m", files=("a",))
        data = payload_to_dict(p)
        assert data["files"] == ["a"]
        assert payload_from_dict("git_commit", data) == p

    def test_missing_required_field_kept_raw(self):
        p = payload_from_dict("git_commit", {"message": "no repo"})
        assert isinstance(p, RawPayload)
        assert p.data == {"message": "no repo"}


class TestMemory:
    def test_coerces_and_clamps(self):
        m = Memory(content="x", type="mistake", scope="team",
                   confidence=1.7, importance=-0.2)
        assert m.type == MemoryType.MISTAKE
        assert m.scope == MemoryScope.TEAM
        assert m.confidence == 1.0
        assert m.importance == 0.0

    def test_access(self):
        m = Memory(content="x", importance=0.5)
        m.access(now=123.0)
        assert m.access_count == 1
        assert m.last_accessed == 123.0
        assert m.importance == pytest.approx(0.525)

    def test_recall_dict(self):
        m = Memory(content="c", summary="s", topics=["t"])
        assert set(m.to_recall_dict()) == {
            "id", "type", "summary", "content", "topics", "createdAt", "confidence",
        }


class TestExtractedMemory:
    def test_summary_defaults_to_content(self):
        x = ExtractedMemory.from_dict({"type": "fact", "content": "c" * 100,
                                       "confidence": 0.7})
        assert x.summary == "c" * 80

    def test_topics_string(self):
        x = ExtractedMemory.from_dict({"type": "fact", "content": "c",
                                       "confidence": 0.7, "topics": "go"})
        assert x.topics == ["go"]

    @pytest.mark.parametrize("data", [
        "not a dict",
        {"type": "fact", "content": "", "confidence": 0.9},
        {"type": "gossip", "content": "x", "confidence": 0.9},
        {"type": "fact", "content": "x", "confidence": "very"},
        {"type": "fact", "content": "x", "confidence": math.nan},
    ])
    def test_rejects(self, data):
        with pytest.raises(ValueError):
            ExtractedMemory.from_dict(data)


class TestRecallRequest:
    def test_default_limit(self):
        assert RecallRequest(limit=0).limit == 5
        assert RecallRequest(limit=-3).limit == 5
        assert RecallRequest(limit=2).limit == 2

    def test_coerces_filters(self):
        req = RecallRequest(scopes=["team"], types=["decision"])
        assert req.scopes == [MemoryScope.TEAM]
        assert req.types == [MemoryType.DECISION]

    def test_unknown_filter(self):
        with pytest.raises(ValueError):
            RecallRequest(types=["rumor"])


def test_project_name_from_path():
    assert Project(path="/home/ada/code/shop/").name == "shop"


def test_stats_dict():
    assert Stats(total_memories=2, by_type={"fact": 2}).to_dict() == {
        "totalMemories": 2, "byType": {"fact": 2},
        "projectCount": 0, "daemonRunning": False,
    }
