"""In-memory transcript store.

Simple dict-based storage. Data is lost when the application exits.
"""

from ..errors import PersistenceError
from .base import TranscriptStore
from .models import SessionRecord


class InMemoryTranscriptStore(TranscriptStore):
    """In-memory transcript store (process lifetime only).

    Suitable for single-run use or testing. Records are copied on the way in
    and out so callers can't mutate stored state.
    """

    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}

    async def connect(self) -> None:
        """Initialize store (no-op for in-memory)."""
        pass

    async def disconnect(self) -> None:
        """Close store (no-op for in-memory)."""
        pass

    async def save(self, record: SessionRecord) -> None:
        self._records[record.session_id] = record.model_copy(deep=True)

    async def load(self, session_id: str) -> SessionRecord:
        try:
            return self._records[session_id].model_copy(deep=True)
        except KeyError:
            raise PersistenceError(f"No stored session {session_id!r}") from None

    async def list_sessions(self) -> list[str]:
        return sorted(self._records)

    async def delete(self, session_id: str) -> bool:
        return self._records.pop(session_id, None) is not None

    @property
    def backend_type(self) -> str:
        return "memory"
