"""Stream event types.

ServerEvent is one raw record of the event-stream protocol. StreamEvent is
what the decoder hands to the assembler: a content delta, the end-of-stream
marker, or a per-event decode failure. None of these are persisted.
"""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..models import Role

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True, slots=True)
class ServerEvent:
    """A single dispatched event-stream record."""

    data: str
    event: str = "message"
    id: str = ""
    retry: int | None = None


@dataclass(frozen=True, slots=True)
class ContentDelta:
    """An incremental text fragment for one choice."""

    text: str
    index: int = 0
    role: Role | None = None
    finish_reason: str | None = None


@dataclass(frozen=True, slots=True)
class StreamDone:
    """The sentinel was received; the stream ended normally."""


@dataclass(frozen=True, slots=True)
class DecodeFailure:
    """A record whose payload could not be decoded."""

    reason: str
    payload: str = ""


StreamEvent = ContentDelta | StreamDone | DecodeFailure


# ---------------------------------------------------------------------------
# Wire payloads
# ---------------------------------------------------------------------------


class ChunkDelta(BaseModel):
    """Partial message carried by one choice."""

    model_config = ConfigDict(extra="ignore")

    role: Role | None = None
    content: str | None = None


class ChunkChoice(BaseModel):
    """One incremental choice in a streamed chunk."""

    model_config = ConfigDict(extra="ignore")

    index: int = 0
    delta: ChunkDelta = Field(default_factory=ChunkDelta)
    text: str | None = Field(default=None, description="Text completions carry text instead of a delta")
    finish_reason: str | None = None


class ChatChunk(BaseModel):
    """Payload of one event in a streamed chat or text completion."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    model: str | None = None
    choices: list[ChunkChoice]
    usage: dict[str, Any] | None = None
