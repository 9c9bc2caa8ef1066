"""Tests for the git, file and terminal watchers."""

import os
import subprocess
from unittest import mock

import pytest

from memorypilot.models import CommandPayload, CommitPayload, FileChangePayload
from memorypilot.watchers import FileWatcher, GitWatcher, TerminalWatcher, Watcher
from memorypilot.watchers import files, terminal
from memorypilot.watchers.git import find_repos, parse_log_line


class Sink:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)
        return True


# ── Terminal ───────────────────────────────────────────────────────────


class TestTerminalFiltering:
    @pytest.mark.parametrize("command", [
        "git commit -m 'fix login'", "npm install react", "docker compose up",
        "terraform plan", "make test",
    ])
    def test_interesting(self, command):
        assert terminal.is_interesting(command)

    @pytest.mark.parametrize("command", [
        "export API_KEY=secret", "curl -H 'Authorization: x' api", "ssh prod",
        "echo $TOKEN", "ls -la", "cd src", "vim main.go", "ab",
    ])
    def test_not_interesting(self, command):
        assert not terminal.is_interesting(command)

    def test_zsh_extended_format(self):
        line = ": 1700000000:0;git push origin main"
        assert terminal.parse_history_line(line, "/home/u/.zsh_history") == \
            "git push origin main"

    def test_bash_plain(self):
        assert terminal.parse_history_line("git status\n", "/home/u/.bash_history") == \
            "git status"


class TestTerminalWatcher:
    def test_only_new_lines(self, tmp_path):
        history = tmp_path / ".bash_history"
        history.write_text("git commit -m old\n")
        sink = Sink()
        w = TerminalWatcher(sink, [str(history)])
        w.setup()
        with open(history, "a") as fh:
            fh.write("ls\ngit commit -m new\ncargo build --release\n")
        w.poll()
        commands = [e.payload.command for e in sink.events]
        assert commands == ["git commit -m new", "cargo build --release"]
        assert all(isinstance(e.payload, CommandPayload) for e in sink.events)
        assert sink.events[0].payload.shell == "bash"
        w.poll()
        assert len(sink.events) == 2

    def test_truncated_history_resets(self, tmp_path):
        history = tmp_path / ".zsh_history"
        history.write_text(": 1:0;git status\n" * 10)
        sink = Sink()
        w = TerminalWatcher(sink, [str(history)])
        w.setup()
        history.write_text("")
        w.poll()
        with open(history, "a") as fh:
            fh.write(": 2:0;go test ./...\n")
        w.poll()
        assert [e.payload.command for e in sink.events] == ["go test ./..."]
        assert sink.events[0].payload.shell == "zsh"

    def test_missing_file_ignored(self, tmp_path):
        sink = Sink()
        w = TerminalWatcher(sink, [str(tmp_path / "nope")])
        w.setup()
        w.poll()
        assert sink.events == []


# ── Files ──────────────────────────────────────────────────────────────


class TestFileFiltering:
    def test_interesting(self):
        assert files.is_interesting("/x/main.py")
        assert files.is_interesting("/x/Dockerfile")
        assert files.is_interesting("/x/go.mod")
        assert not files.is_interesting("/x/photo.png")
        assert not files.is_interesting("/x/notes.txt")


class TestFileWatcher:
    def test_debounced_change(self, tmp_path):
        src = tmp_path / "app.py"
        src.write_text("print('v1')\n")
        sink = Sink()
        w = FileWatcher(sink, [str(tmp_path)], debounce=0.5)
        w.setup()
        src.write_text("print('v2')\n")
        os.utime(src, (1, 1))
        w.poll()
        assert sink.events == []
        assert str(src) in w.pending
        w.flush_pending(w.pending[str(src)] + 0.6)
        [event] = sink.events
        assert isinstance(event.payload, FileChangePayload)
        assert event.payload.filename == "app.py"
        assert event.payload.ext == ".py"
        assert event.payload.content == "print('v2')\n"

    def test_ignored_dirs_and_extensions(self, tmp_path):
        (tmp_path / "node_modules").mkdir()
        (tmp_path / "node_modules" / "lib.js").write_text("x")
        (tmp_path / "image.png").write_bytes(b"\x89PNG")
        (tmp_path / "main.go").write_text("package main")
        w = FileWatcher(Sink(), [str(tmp_path)])
        assert list(w.scan()) == [str(tmp_path / "main.go")]

    def test_large_file_has_no_content(self, tmp_path):
        big = tmp_path / "data.json"
        big.write_text("1" * (files.MAX_CONTENT_BYTES + 1))
        sink = Sink()
        w = FileWatcher(sink, [str(tmp_path)])
        w.emit_change(str(big))
        assert sink.events[0].payload.content == ""
        assert sink.events[0].payload.size == files.MAX_CONTENT_BYTES + 1

    def test_deleted_before_flush(self, tmp_path):
        sink = Sink()
        w = FileWatcher(sink, [str(tmp_path)])
        w.emit_change(str(tmp_path / "gone.py"))
        assert sink.events == []


# ── Git ────────────────────────────────────────────────────────────────


class TestGitParsing:
    def test_log_line(self):
        line = "abc123|Add login|page|Ada|ada@x.io|2024-01-01 10:00:00 +0000\n"
        assert parse_log_line(line) == ("abc123", "Add login|page", "Ada")

    def test_short_line(self):
        assert parse_log_line("") is None
        assert parse_log_line("abc|msg") is None

    def test_find_repos(self, tmp_path):
        (tmp_path / "a" / ".git").mkdir(parents=True)
        (tmp_path / "group" / "b" / ".git").mkdir(parents=True)
        (tmp_path / "a" / "nested" / ".git").mkdir(parents=True)
        (tmp_path / "w" / "x" / "y" / "z" / ".git").mkdir(parents=True)
        found = sorted(find_repos(str(tmp_path)))
        assert found == [str(tmp_path / "a"), str(tmp_path / "group" / "b")]


class TestGitWatcher:
    def _watcher(self, outputs):
        sink = Sink()
        w = GitWatcher(sink, [])

        def run_git(repo, *args):
            return outputs[args[0]]() if callable(outputs[args[0]]) else outputs[args[0]]

        w._run_git = run_git
        return sink, w

    def test_first_sighting_records_only(self):
        sink, w = self._watcher({"log": "h1|init|Ada|a@x|2024-01-01\n"})
        w.check_repo("/code/app")
        assert sink.events == []
        assert w.last_commit == {"/code/app": "h1"}

    def test_new_commit_emits(self):
        heads = iter(["h1|init|Ada|a@x|d\n", "h2|Add cache|Ada|a@x|d\n"])
        sink, w = self._watcher({
            "log": lambda: next(heads),
            "diff": "a.py | 2 +-\nb.py\n",
            "config": "git@host:app.git\n",
        })
        w.check_repo("/code/app")
        w.check_repo("/code/app")
        [event] = sink.events
        assert isinstance(event.payload, CommitPayload)
        assert event.payload.hash == "h2"
        assert event.payload.message == "Add cache"
        assert event.payload.author == "Ada"
        assert event.payload.remote == "git@host:app.git"

    def test_setup_without_git(self):
        w = GitWatcher(Sink(), [], git="definitely-not-git-binary")
        with pytest.raises(OSError):
            w.setup()

    def test_setup_failing_git(self):
        error = subprocess.CalledProcessError(1, ["git", "--version"])
        with mock.patch("subprocess.run", side_effect=error):
            with pytest.raises(OSError):
                GitWatcher(Sink(), []).setup()


# ── Base ───────────────────────────────────────────────────────────────


class Exploding(Watcher):
    name = "exploding"

    def poll(self):
        raise PermissionError("denied")


def test_poll_oserror_stops_only_that_watcher():
    w = Exploding(Sink(), interval=0.01)
    w.start()
    w._thread.join(timeout=2)
    assert w.failed
    assert not w.running
    w.stop()


def test_stopped_watcher_does_not_emit():
    sink = Sink()
    w = TerminalWatcher(sink, [])
    w.stop()
    w.emit(object())
    assert sink.events == []
