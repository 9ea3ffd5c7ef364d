"""Abstract base class for transcript stores.

This module defines the interface for saving and restoring sessions.
The abstraction hides:
- Storage format (JSON file, SQLite, in-memory)
- Persistence mechanism and atomicity
- Connection management
"""

from abc import ABC, abstractmethod
from typing import Any

from .models import SessionRecord


class TranscriptStore(ABC):
    """Abstract transcript store.

    All backend failures (I/O, corrupt data, database errors) surface as
    PersistenceError.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the store. Calling it twice is harmless."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the store gracefully."""

    @abstractmethod
    async def save(self, record: SessionRecord) -> None:
        """Insert or replace the record for ``record.session_id``."""

    @abstractmethod
    async def load(self, session_id: str) -> SessionRecord:
        """Load a stored session.

        Raises:
            PersistenceError: If no session with this id is stored
        """

    @abstractmethod
    async def list_sessions(self) -> list[str]:
        """Ids of stored sessions, sorted."""

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Delete a stored session. Returns False if it wasn't stored."""

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Get the backend type identifier."""

    async def __aenter__(self) -> "TranscriptStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()
