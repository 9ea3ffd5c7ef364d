"""Session persistence for tabchat.

Saves closed sessions and restores them into new tabs.
"""

from .base import TranscriptStore
from .factory import create_transcript_store
from .in_memory import InMemoryTranscriptStore
from .models import SessionRecord, StoredMessage

__all__ = [
    "InMemoryTranscriptStore",
    "SessionRecord",
    "StoredMessage",
    "TranscriptStore",
    "create_transcript_store",
]
