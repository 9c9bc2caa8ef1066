"""Git watcher: polls repositories under the code roots for new commits."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from memorypilot.models import CommitPayload, Event
from memorypilot.watchers.base import EventSink, Watcher

logger = logging.getLogger(__name__)

MAX_DEPTH = 3
LOG_FORMAT = "%H|%s|%an|%ae|%ai"


def parse_log_line(output: str) -> tuple[str, str, str] | None:
    """(hash, subject, author) from one ``git log --format`` line."""
    parts = output.strip().split("|")
    if len(parts) < 5:
        return None
    # the subject may itself contain '|'
    commit_hash, author = parts[0], parts[-3]
    subject = "|".join(parts[1:-3])
    return commit_hash, subject, author


def find_repos(root: str, max_depth: int = MAX_DEPTH) -> list[str]:
    repos = []
    root = os.path.normpath(root)
    base_depth = root.count(os.sep)
    for dirpath, dirnames, _ in os.walk(root):
        if ".git" in dirnames:
            repos.append(dirpath)
            dirnames[:] = []
            continue
        if dirpath.count(os.sep) - base_depth >= max_depth:
            dirnames[:] = []
    return repos


class GitWatcher(Watcher):
    """Emits a git_commit event whenever a known repository's HEAD moves.

    The first sighting of a repository only records its HEAD.
    """

    name = "git"

    def __init__(self, sink: EventSink, roots: list[str],
                 interval: float = 30.0, git: str = "git") -> None:
        super().__init__(sink, interval)
        self.roots = roots
        self.git = git
        self.last_commit: dict[str, str] = {}

    def _run_git(self, repo: str, *args: str) -> str | None:
        try:
            proc = subprocess.run(
                [self.git, "-C", repo, *args],
                capture_output=True, text=True, timeout=10, check=True,
            )
        except subprocess.SubprocessError:
            return None
        return proc.stdout

    def setup(self) -> None:
        # FileNotFoundError when git is not installed
        try:
            subprocess.run([self.git, "--version"], capture_output=True,
                           timeout=10, check=True)
        except subprocess.SubprocessError as exc:
            raise OSError(f"git is not usable: {exc}") from exc
        self.poll()

    def poll(self) -> None:
        for root in self.roots:
            if not os.path.isdir(root):
                continue
            for repo in find_repos(root):
                if self._stop.is_set():
                    return
                self.check_repo(repo)

    def check_repo(self, repo: str) -> None:
        output = self._run_git(repo, "log", "-1", f"--format={LOG_FORMAT}")
        parsed = parse_log_line(output or "")
        if parsed is None:
            return
        commit_hash, message, author = parsed

        last = self.last_commit.get(repo)
        if last == commit_hash:
            return
        self.last_commit[repo] = commit_hash
        if last is None:
            return

        span = f"{last}..{commit_hash}"
        diff = self._run_git(repo, "diff", "--stat", span) or ""
        names = self._run_git(repo, "diff", "--name-only", span) or ""
        remote = self._run_git(repo, "config", "--get", "remote.origin.url") or ""

        logger.info("Git event: %s - %s", Path(repo).name, message)
        self.emit(Event.create(CommitPayload(
            repo=repo,
            hash=commit_hash,
            message=message,
            author=author,
            diff=diff,
            files=tuple(line for line in names.splitlines() if line),
            remote=remote.strip(),
        )))
