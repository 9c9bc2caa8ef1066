"""memorypilot: local memory agent for coding assistants."""

from memorypilot.models import (
    Event, EventKind, Memory, MemoryScope, MemoryType, Project,
    RecallRequest, RecallResult, SourceType, Stats,
)
from memorypilot.storage import Storage
from memorypilot.service import MemoryService
from memorypilot.agent import Agent
from memorypilot.config import AgentConfig, load_config

__version__ = "0.1.0"
__all__ = [
    "Agent", "AgentConfig", "load_config", "MemoryService", "Storage",
    "Event", "EventKind", "Memory", "MemoryScope", "MemoryType", "Project",
    "RecallRequest", "RecallResult", "SourceType", "Stats",
]
