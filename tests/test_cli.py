"""Tests for the command line interface."""

import json

import pytest

from memorypilot.cli import build_parser, main


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("MEMORYPILOT_HOME", str(tmp_path))
    monkeypatch.setenv("MEMORYPILOT_EMBEDDING_PROVIDER", "hashing")
    monkeypatch.setenv("MEMORYPILOT_EXTRACTION_PROVIDER", "none")
    return tmp_path


@pytest.fixture
def initialized(home, capsys):
    assert main(["init"]) == 0
    capsys.readouterr()
    return home


class TestInit:
    def test_creates_layout(self, home, capsys):
        assert main(["init"]) == 0
        assert (home / "data" / "memories.db").exists()
        assert (home / "logs").is_dir()
        config = json.loads((home / "config.json").read_text())
        assert config["batch_size"] == 10
        assert "anthropic_api_key" not in config
        assert "memorypilot daemon start" in capsys.readouterr().out

    def test_idempotent(self, initialized, capsys):
        assert main(["init"]) == 0
        assert "Config exists" in capsys.readouterr().out


class TestNotInitialized:
    @pytest.mark.parametrize("argv", [
        ["status"], ["recall", "anything"], ["remember", "something"],
        ["daemon", "start"],
    ])
    def test_hint(self, home, capsys, argv):
        assert main(argv) == 1
        assert "memorypilot init" in capsys.readouterr().out


class TestRememberRecall:
    def test_round_trip(self, initialized, capsys):
        assert main(["remember", "Use", "PKCE", "for", "OAuth",
                     "-t", "decision", "-T", "oauth", "-T", "security"]) == 0
        out = capsys.readouterr().out
        assert "Memory created:" in out
        assert "Type: decision" in out

        assert main(["recall", "PKCE", "--json"]) == 0
        [mem] = json.loads(capsys.readouterr().out)
        assert mem["content"] == "Use PKCE for OAuth"
        assert mem["type"] == "decision"
        assert mem["topics"] == ["oauth", "security"]
        assert mem["confidence"] == 1.0

    def test_recall_pretty(self, initialized, capsys):
        main(["remember", "Redis runs on port 6379"])
        capsys.readouterr()
        assert main(["recall", "redis", "--no-semantic"]) == 0
        out = capsys.readouterr().out
        assert "Found 1 memories" in out
        assert "[fact] Redis runs on port 6379" in out
        assert "100% confidence" in out

    def test_recall_nothing(self, initialized, capsys):
        assert main(["recall", "kubernetes"]) == 0
        assert "No memories found" in capsys.readouterr().out

    def test_recall_filters(self, initialized, capsys):
        main(["remember", "-t", "decision", "Chose Postgres"])
        main(["remember", "-t", "fact", "Postgres listens on 5432"])
        capsys.readouterr()
        assert main(["recall", "postgres", "-t", "fact", "--json"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert [m["type"] for m in result] == ["fact"]

    def test_degraded_notice(self, initialized, capsys, monkeypatch):
        monkeypatch.setenv("MEMORYPILOT_EMBEDDING_PROVIDER", "none")
        main(["remember", "Always pin dependencies"])
        capsys.readouterr()
        assert main(["recall", "pin"]) == 0
        captured = capsys.readouterr()
        assert "semantic search unavailable" in captured.err
        assert "Found 1 memories" in captured.out


class TestStatus:
    def test_json(self, initialized, capsys):
        main(["remember", "-t", "mistake", "Never store money as float"])
        capsys.readouterr()
        assert main(["status", "--json"]) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats == {
            "totalMemories": 1,
            "byType": {"mistake": 1},
            "projectCount": 0,
            "daemonRunning": False,
        }

    def test_pretty(self, initialized, capsys):
        assert main(["status"]) == 0
        out = capsys.readouterr().out
        assert "Total:       0" in out
        assert "stopped" in out


class TestDaemonControl:
    def test_status_when_stopped(self, initialized, capsys):
        assert main(["daemon", "status"]) == 1
        assert "stopped" in capsys.readouterr().out

    def test_stop_when_not_running(self, initialized, capsys):
        (initialized / "data" / "daemon.pid").write_text("999999999\n")
        assert main(["daemon", "stop"]) == 1
        assert "not running" in capsys.readouterr().out
        assert not (initialized / "data" / "daemon.pid").exists()


class TestParser:
    def test_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_rejects_unknown_type(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["remember", "-t", "rumor", "x"])

    def test_scope_is_repeatable(self):
        args = build_parser().parse_args(["recall", "q", "-s", "team", "-s", "org"])
        assert args.scope == ["team", "org"]
        assert args.semantic is True
