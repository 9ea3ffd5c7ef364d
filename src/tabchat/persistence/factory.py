"""Factory for creating transcript stores."""

from typing import Any

from .base import TranscriptStore


def create_transcript_store(
    backend: str = "json",
    **kwargs: Any
) -> TranscriptStore:
    """Create a transcript store.

    Args:
        backend: Backend type ("json", "sqlite" or "memory")
        **kwargs: Backend-specific configuration (``path`` for file backends)

    Returns:
        TranscriptStore instance

    Raises:
        ValueError: If backend type is not supported
    """
    if backend == "json":
        from .json_file import JSONFileTranscriptStore
        return JSONFileTranscriptStore(**kwargs)

    elif backend == "sqlite":
        from .sqlite import SQLiteTranscriptStore
        return SQLiteTranscriptStore(**kwargs)

    elif backend == "memory":
        from .in_memory import InMemoryTranscriptStore
        return InMemoryTranscriptStore()

    raise ValueError(
        f"Unsupported store backend: {backend}. "
        f"Supported backends: json, sqlite, memory"
    )
