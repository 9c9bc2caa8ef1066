"""Tests for the MCP tool surface."""

import asyncio
import time

import pytest

from memorypilot.config import AgentConfig
from memorypilot.embeddings import HashingEmbedder
from memorypilot.mcp_server import build_server, call_tool_text, tool_definitions
from memorypilot.service import MemoryService
from memorypilot.storage import Storage


@pytest.fixture
def service(tmp_path):
    cfg = AgentConfig(home=tmp_path)
    cfg.data_dir.mkdir(parents=True)
    Storage(cfg.db_path).close()
    s = MemoryService.open(cfg, embedder=HashingEmbedder())
    yield s
    s.close()


def test_tool_names():
    names = [t.name for t in tool_definitions()]
    assert names == ["memorypilot_recall", "memorypilot_remember", "memorypilot_status"]


def test_recall_requires_query():
    [recall] = [t for t in tool_definitions() if t.name == "memorypilot_recall"]
    assert recall.inputSchema["required"] == ["query"]
    assert "decision" in recall.inputSchema["properties"]["type"]["enum"]


class TestCallTool:
    def test_remember_then_recall(self, service):
        text = call_tool_text(service, "memorypilot_remember", {
            "content": "Use PKCE for OAuth", "type": "decision", "topics": ["oauth"],
        })
        assert text == "Remembered: [decision] Use PKCE for OAuth"
        [mem] = service.storage.all_memories()
        assert mem.source.reference == "mcp"

        text = call_tool_text(service, "memorypilot_recall", {"query": "PKCE"})
        assert 'Found 1 memories for "PKCE"' in text
        assert "[decision] Use PKCE for OAuth" in text
        assert "Topics: oauth" in text
        created = time.strftime("%Y-%m-%d", time.localtime(mem.created_at))
        assert f"{created} | 100% confidence" in text

    def test_recall_empty(self, service):
        text = call_tool_text(service, "memorypilot_recall", {"query": "nothing"})
        assert text == 'No memories found for "nothing"'

    def test_status(self, service):
        call_tool_text(service, "memorypilot_remember", {"content": "a fact"})
        text = call_tool_text(service, "memorypilot_status", {})
        assert "Total memories: 1" in text
        assert "fact: 1" in text
        assert "Daemon: stopped" in text

    def test_invalid_arguments(self, service):
        text = call_tool_text(service, "memorypilot_remember", {"content": ""})
        assert text.startswith("Error:")
        text = call_tool_text(service, "memorypilot_recall",
                              {"query": "x", "type": "rumor"})
        assert text.startswith("Error:")

    def test_storage_error_is_text(self, service):
        service.close()
        text = call_tool_text(service, "memorypilot_status", {})
        assert text.startswith("Error:")
        assert "closed" in text

    def test_not_initialized(self):
        text = call_tool_text(None, "memorypilot_status", {})
        assert "not initialized" in text
        assert "memorypilot init" in text

    def test_unknown_tool(self, service):
        assert "unknown tool" in call_tool_text(service, "drop_tables", {})


def test_server_registers_handlers(service):
    from mcp import types

    app = build_server(service)
    assert types.ListToolsRequest in app.request_handlers
    assert types.CallToolRequest in app.request_handlers
