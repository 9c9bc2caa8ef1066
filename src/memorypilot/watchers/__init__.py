"""Event producers. Each one owns its state and only talks to a sink."""

from memorypilot.watchers.base import EventSink, Watcher
from memorypilot.watchers.files import FileWatcher
from memorypilot.watchers.git import GitWatcher
from memorypilot.watchers.terminal import TerminalWatcher

__all__ = ["EventSink", "Watcher", "FileWatcher", "GitWatcher", "TerminalWatcher"]
