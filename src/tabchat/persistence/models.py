"""Data models for stored sessions.

A SessionRecord is the persisted form of one session: its parameters and
either its finished messages (chat) or its document (completion). A message still streaming is never stored, and every
message comes back as complete, so a loaded session can send at once.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from ..models import Message, MessageStatus, ModelParameters, Role, SessionKind, Transcript

if TYPE_CHECKING:
    from ..chat.session import StreamingSession


class StoredMessage(BaseModel):
    """A single message as stored."""

    role: Role
    content: str = ""
    status: MessageStatus = Field(
        default=MessageStatus.COMPLETE,
        description="Status when saved (complete or aborted)",
    )


class SessionRecord(BaseModel):
    """Persisted state of one session."""

    session_id: str = Field(min_length=1)
    kind: SessionKind = Field(default=SessionKind.CHAT)
    parameters: ModelParameters = Field(default_factory=ModelParameters)
    messages: list[StoredMessage] = Field(default_factory=list)
    prompt: str = Field(default="", description="Document of a completion session")
    updated_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_session(cls, session: "StreamingSession") -> "SessionRecord":
        """Capture a session, leaving out anything still streaming."""
        if session.kind is SessionKind.COMPLETE:
            return cls(
                session_id=session.session_id,
                kind=SessionKind.COMPLETE,
                parameters=session.parameters,
                prompt=session.document,
            )
        return cls(
            session_id=session.session_id,
            parameters=session.parameters,
            messages=[
                StoredMessage(role=m.role, content=m.content, status=m.status)
                for m in session.transcript
                if m.status is not MessageStatus.STREAMING
            ],
        )

    def to_transcript(self) -> Transcript:
        """Rebuild the transcript; every message is restored as complete."""
        return Transcript([
            Message(role=m.role, content=m.content, status=MessageStatus.COMPLETE)
            for m in self.messages
        ])

    @property
    def title(self) -> str:
        """First user message (or document line), shortened, for listings."""
        if self.kind is SessionKind.COMPLETE:
            return self.prompt.strip().splitlines()[0][:60] if self.prompt.strip() else ""
        for m in self.messages:
            if m.role is Role.USER:
                first_line = m.content.strip().splitlines()[0] if m.content.strip() else ""
                return first_line[:60]
        return ""
