"""Exception hierarchy."""

from __future__ import annotations


class MemoryPilotError(Exception):
    """Base class for every error raised by memorypilot."""


class StorageError(MemoryPilotError):
    """The database rejected or failed an operation."""


class ExtractionError(MemoryPilotError):
    """The extraction model was unreachable, slow or returned garbage."""


class EmbeddingError(MemoryPilotError):
    """The embedding service could not produce a vector."""


class NotInitializedError(MemoryPilotError):
    """No memory database exists yet."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(
            f"MemoryPilot is not initialized ({path} not found). "
            "Run 'memorypilot init' to get started."
        )
