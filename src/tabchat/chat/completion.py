"""Text-completion sessions.

A CompletionSession edits one document instead of a transcript. Generating
streams text after the end of the document; inserting splits the document
at a character offset and streams text between the two halves, sending the
tail as the request's suffix. When the stream ends, on any path, whatever
was generated is folded into the document.
"""

import asyncio
from typing import Any

from loguru import logger

from ..models import Message, MessageStatus, Role, SessionKind, build_completion_body
from ..transport.base import Endpoint, Transport
from .notifications import DocumentChanged
from .session import StreamHandle, StreamingSession, _Turn


class CompletionSession(StreamingSession):
    """A text document extended by the completion service.

    Example:
        session = CompletionSession("complete_1", transport, prompt="Once upon a time")
        await session.generate().wait()
        print(session.document)
    """

    kind = SessionKind.COMPLETE
    endpoint = Endpoint.COMPLETIONS

    def __init__(self, session_id: str, transport: Transport, *, prompt: str = "", **kwargs: Any):
        super().__init__(session_id, transport, **kwargs)
        self._prompt = prompt
        self._suffix: str | None = None
        self._pending: Message | None = None

    @property
    def document(self) -> str:
        """The committed text, without a generation still in flight."""
        return self._prompt + (self._suffix or "")

    @property
    def text(self) -> str:
        """The document with the in-flight generation spliced in."""
        generated = self._pending.content if self._pending is not None else ""
        return self._prompt + generated + (self._suffix or "")

    def set_prompt(self, text: str) -> None:
        """Replace the document.

        Raises:
            SessionBusyError: If a stream is in flight
        """
        self._ensure_idle("edit")
        self._prompt = text
        self._suffix = None
        self._publish(DocumentChanged(session_id=self.session_id, length=len(text)))

    def generate(self) -> StreamHandle:
        """Stream a continuation of the document.

        Raises:
            SessionBusyError: If a stream is already in flight
            RuntimeError: If no event loop is running
        """
        self._ensure_idle("generate")
        asyncio.get_running_loop()
        logger.info("session.generate session_id={} chars={}", self.session_id, len(self._prompt))
        return self._start()

    def insert(self, index: int) -> StreamHandle:
        """Stream text into the document at character offset ``index``.

        Raises:
            SessionBusyError: If a stream is already in flight
            ValueError: If the offset is outside the document
        """
        self._ensure_idle("insert")
        if not 0 <= index <= len(self._prompt):
            raise ValueError(f"Insert position {index} is outside the document (0..{len(self._prompt)})")
        asyncio.get_running_loop()

        self._prompt, suffix = self._prompt[:index], self._prompt[index:]
        self._suffix = suffix or None
        logger.info(
            "session.insert session_id={} index={} suffix_chars={}",
            self.session_id,
            index,
            len(suffix),
        )
        return self._start()

    def _build_body(self) -> dict[str, Any]:
        return build_completion_body(self._prompt, self._parameters, self._suffix)

    def _create_reply(self) -> tuple[int, Message]:
        self._pending = Message(role=Role.ASSISTANT, status=MessageStatus.STREAMING)
        return len(self._prompt), self._pending

    def _turn_settled(self, turn: _Turn) -> None:
        self._prompt = self.text
        self._suffix = None
        self._pending = None
        self._publish(DocumentChanged(session_id=self.session_id, length=len(self._prompt)))
