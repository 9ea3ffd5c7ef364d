"""Conversation data models.

These models define messages, sampling parameters and the transcript of one
session, independent of how they are streamed, rendered or stored.
"""

from collections.abc import Iterator
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_MODEL
from .errors import InvalidSessionStateError, MessageFinalizedError


class Role(str, Enum):
    """Author of a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class MessageStatus(str, Enum):
    """Lifecycle of a message."""

    COMPLETE = "complete"
    STREAMING = "streaming"
    ABORTED = "aborted"


class SessionKind(str, Enum):
    """What a session streams: chat replies or plain text completions."""

    CHAT = "chat"
    COMPLETE = "complete"


class SessionState(str, Enum):
    """States of a session's stream state machine."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_busy(self) -> bool:
        return self in (SessionState.SENDING, SessionState.STREAMING)


# Allowed transitions; terminal sub-states always lead back to IDLE.
STATE_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.SENDING}),
    SessionState.SENDING: frozenset({
        SessionState.STREAMING,
        SessionState.CANCELLED,
        SessionState.FAILED,
    }),
    SessionState.STREAMING: frozenset({
        SessionState.COMPLETED,
        SessionState.CANCELLED,
        SessionState.FAILED,
    }),
    SessionState.COMPLETED: frozenset({SessionState.IDLE}),
    SessionState.CANCELLED: frozenset({SessionState.IDLE}),
    SessionState.FAILED: frozenset({SessionState.IDLE}),
}


class Message(BaseModel):
    """A single role-tagged message in a transcript."""

    role: Role = Field(description="Author of the message")
    content: str = Field(default="", description="Message text, grows while streaming")
    status: MessageStatus = Field(default=MessageStatus.COMPLETE)
    partial: bool = Field(default=False, description="A decode error was seen while assembling")
    created_at: datetime = Field(default_factory=datetime.now)

    def append(self, fragment: str) -> None:
        """Append a streamed fragment. Only valid while streaming."""
        if self.status is not MessageStatus.STREAMING:
            raise MessageFinalizedError(f"Cannot append to a {self.status.value} message")
        self.content += fragment

    def to_wire(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ModelParameters(BaseModel):
    """Sampling parameters for a completion request.

    Frozen: a session replaces its snapshot rather than mutating it, so a
    request already in flight keeps the values it was built with.
    """

    model_config = ConfigDict(frozen=True)

    model: str = Field(default=DEFAULT_MODEL, min_length=1)
    temperature: float = Field(default=1.0, ge=0.0, le=2.0)
    top_p: float = Field(default=1.0, ge=0.0, le=1.0)
    max_tokens: int | None = Field(default=None, ge=1)
    presence_penalty: float = Field(default=0.0, ge=-2.0, le=2.0)
    frequency_penalty: float = Field(default=0.0, ge=-2.0, le=2.0)
    system_message: str | None = Field(default=None)

    def with_changes(self, **changes: Any) -> "ModelParameters":
        """Return a validated copy with the given fields replaced."""
        return ModelParameters(**{**self.model_dump(), **changes})


class Transcript:
    """Ordered messages of one session.

    Append-only, except that the trailing assistant message is mutated in
    place while it streams.
    """

    def __init__(self, messages: list[Message] | None = None):
        self.messages: list[Message] = list(messages or [])

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    def __getitem__(self, index: int) -> Message:
        return self.messages[index]

    @property
    def last(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    @property
    def is_streaming(self) -> bool:
        last = self.last
        return last is not None and last.status is MessageStatus.STREAMING

    def append(self, message: Message) -> int:
        """Append a message and return its index."""
        if self.is_streaming:
            raise InvalidSessionStateError("Cannot append while a message is streaming")
        self.messages.append(message)
        return len(self.messages) - 1

    def pop_last(self) -> Message:
        if not self.messages:
            raise InvalidSessionStateError("Transcript is empty")
        if self.is_streaming:
            raise InvalidSessionStateError("Cannot remove a streaming message")
        return self.messages.pop()

    def clear(self, keep_system: bool = True) -> None:
        """Remove messages, keeping a leading system message if asked."""
        if keep_system and self.messages and self.messages[0].role is Role.SYSTEM:
            self.messages = self.messages[:1]
        else:
            self.messages = []

    def to_wire(self) -> list[dict[str, str]]:
        return [m.to_wire() for m in self.messages]


def build_request_body(transcript: Transcript, params: ModelParameters) -> dict[str, Any]:
    """Build the JSON body of a streaming chat-completion request.

    Args:
        transcript: Full conversation, in order
        params: Parameter snapshot taken for this request

    Returns:
        JSON-ready request body with the stream flag set
    """
    body: dict[str, Any] = {
        "model": params.model,
        "messages": transcript.to_wire(),
        "temperature": params.temperature,
        "top_p": params.top_p,
        "presence_penalty": params.presence_penalty,
        "frequency_penalty": params.frequency_penalty,
        "n": 1,
        "stream": True,
    }
    if params.max_tokens is not None:
        body["max_tokens"] = params.max_tokens
    return body


def build_completion_body(prompt: str, params: ModelParameters, suffix: str | None = None) -> dict[str, Any]:
    """Build the JSON body of a streaming text-completion request.

    ``suffix`` is the text after the insertion point when inserting.
    """
    body: dict[str, Any] = {
        "model": params.model,
        "prompt": prompt,
        "temperature": params.temperature,
        "top_p": params.top_p,
        "presence_penalty": params.presence_penalty,
        "frequency_penalty": params.frequency_penalty,
        "n": 1,
        "stream": True,
    }
    if suffix:
        body["suffix"] = suffix
    if params.max_tokens is not None:
        body["max_tokens"] = params.max_tokens
    return body
