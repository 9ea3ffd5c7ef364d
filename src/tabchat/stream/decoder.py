"""Incremental decoder for the server-push event-stream protocol.

The decoder is a pure, synchronous transformation: feed it byte chunks as
they arrive and it returns the events completed by each chunk. It keeps
any incomplete trailing bytes (a split UTF-8 character, half a line, half a
record) until the next chunk, so the result never depends on where the
network split the body.
"""

import json
from collections.abc import AsyncIterable, AsyncIterator

from loguru import logger
from pydantic import ValidationError

from ..errors import TruncatedStreamError
from .models import (
    DONE_SENTINEL,
    ChatChunk,
    ContentDelta,
    DecodeFailure,
    ServerEvent,
    StreamDone,
    StreamEvent,
)

# Event types carrying completion payloads. Anything else (e.g. "ping") is skipped.
_PAYLOAD_EVENT_TYPES = frozenset({"message", ""})


class SSEDecoder:
    """Decode ``text/event-stream`` bytes into stream events.

    Records are ``field: value`` lines terminated by a blank line. Multiple
    ``data`` lines in one record are joined with a newline. Lines may end
    in LF, CRLF or CR. The sentinel payload ends decoding; anything fed after
    it is ignored. Lines are decoded as strict UTF-8; a record holding
    invalid bytes becomes a DecodeFailure instead of text.

    Usage:
        decoder = SSEDecoder()
        for chunk in chunks:
            for event in decoder.feed(chunk):
                handle(event)
        trailing = decoder.finish()
        if not decoder.done:
            ...  # connection closed before the sentinel
    """

    def __init__(self, sentinel: str = DONE_SENTINEL):
        self._sentinel = sentinel
        self._buffer = b""
        self._data_lines: list[str] = []
        self._invalid_utf8 = False
        self._event_type = "message"
        self._last_id = ""
        self._retry: int | None = None
        self._done = False
        self._records = 0

    @property
    def done(self) -> bool:
        """True once the end-of-stream sentinel has been decoded."""
        return self._done

    @property
    def records(self) -> int:
        """Number of records dispatched so far."""
        return self._records

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Consume one chunk and return the events it completed."""
        if self._done:
            return []
        self._buffer += chunk
        return self._drain(final=False)

    def finish(self) -> list[StreamEvent]:
        """Flush at end of input.

        A trailing record that is complete except for its final blank line is
        still dispatched. Callers check ``done`` afterwards to tell a normal
        end from a truncated one.
        """
        if self._done:
            return []
        events = self._drain(final=True)
        if not self._done and self._buffer:
            events.extend(self._process_line(self._buffer))
            self._buffer = b""
        if not self._done:
            events.extend(self._dispatch())
        return events

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _drain(self, final: bool) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        while not self._done:
            cut = self._next_line_end(final)
            if cut is None:
                break
            end, width = cut
            line = self._buffer[:end]
            self._buffer = self._buffer[end + width:]
            events.extend(self._process_line(line))
        if self._done:
            self._buffer = b""
        return events

    def _next_line_end(self, final: bool) -> tuple[int, int] | None:
        """Locate the first line terminator as (offset, width)."""
        lf = self._buffer.find(b"\n")
        cr = self._buffer.find(b"\r")
        if cr == -1 and lf == -1:
            return None
        if cr == -1 or (lf != -1 and lf < cr):
            return lf, 1
        if cr + 1 < len(self._buffer):
            return cr, 2 if self._buffer[cr + 1:cr + 2] == b"\n" else 1
        # A CR at the end of the buffer may be the first half of a CRLF.
        return (cr, 1) if final else None

    def _process_line(self, raw: bytes) -> list[StreamEvent]:
        if raw == b"":
            return self._dispatch()
        if raw.startswith(b":"):
            return []
        try:
            line = raw.decode("utf-8")
        except UnicodeDecodeError:
            # Poisons the record; it is reported when dispatched.
            self._invalid_utf8 = True
            line = raw.decode("utf-8", errors="replace")

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data_lines.append(value)
        elif field == "event":
            self._event_type = value
        elif field == "id":
            if "\0" not in value:
                self._last_id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)
        return []

    def _dispatch(self) -> list[StreamEvent]:
        if not self._data_lines:
            self._event_type = "message"
            self._invalid_utf8 = False
            return []

        record = ServerEvent(
            data="\n".join(self._data_lines),
            event=self._event_type,
            id=self._last_id,
            retry=self._retry,
        )
        self._data_lines = []
        self._event_type = "message"
        self._records += 1
        if self._invalid_utf8:
            self._invalid_utf8 = False
            return [DecodeFailure(reason="invalid UTF-8 in payload", payload=record.data)]
        return self._interpret(record)

    def _interpret(self, record: ServerEvent) -> list[StreamEvent]:
        if record.event not in _PAYLOAD_EVENT_TYPES:
            logger.debug("sse.skip event={} bytes={}", record.event, len(record.data))
            return []

        if record.data.strip() == self._sentinel:
            self._done = True
            return [StreamDone()]

        try:
            payload = json.loads(record.data)
        except json.JSONDecodeError as e:
            return [DecodeFailure(reason=f"invalid JSON payload: {e.msg}", payload=record.data)]

        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            message = payload["error"].get("message") or "unknown error"
            return [DecodeFailure(reason=f"service error: {message}", payload=record.data)]

        try:
            chunk = ChatChunk.model_validate(payload)
        except ValidationError as e:
            return [DecodeFailure(
                reason=f"unexpected payload shape ({e.error_count()} validation errors)",
                payload=record.data,
            )]

        events: list[StreamEvent] = []
        for choice in chunk.choices:
            text = choice.delta.content or choice.text or ""
            if text or choice.delta.role is not None or choice.finish_reason:
                events.append(ContentDelta(
                    text=text,
                    index=choice.index,
                    role=choice.delta.role,
                    finish_reason=choice.finish_reason,
                ))
        return events


async def decode_stream(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Decode an async byte-chunk sequence into stream events.

    The sequence ends after ``StreamDone``. If the bytes run out before the
    sentinel, the events decoded so far are yielded and then
    ``TruncatedStreamError`` is raised.

    Args:
        chunks: Single-pass async iterator of body chunks

    Yields:
        Stream events in arrival order

    Raises:
        TruncatedStreamError: If the input ends without the sentinel
    """
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
        if decoder.done:
            return

    for event in decoder.finish():
        yield event
    if not decoder.done:
        raise TruncatedStreamError("stream closed before the end-of-stream marker")
