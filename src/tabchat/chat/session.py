"""Sessions and their stream state machine.

A session owns its parameters and at most one in-flight stream. The stream
runs in its own asyncio task; the only places that task waits are the next
body chunk (bounded by the idle timeout) and the backoff sleep between
connection attempts. Decoding and assembly in between are synchronous, so
deltas of one session are applied strictly in order.

StreamingSession holds the machinery shared by both kinds of session:
ChatSession (here) streams replies into a transcript, CompletionSession
(completion.py) streams text into a document.
"""

import asyncio
from dataclasses import dataclass
from typing import Any

from loguru import logger

from ..config import DEFAULT_IDLE_TIMEOUT
from ..errors import (
    InvalidSessionStateError,
    SessionBusyError,
    TabchatError,
    TruncatedStreamError,
)
from ..models import (
    STATE_TRANSITIONS,
    Message,
    MessageStatus,
    ModelParameters,
    Role,
    SessionKind,
    SessionState,
    Transcript,
    build_request_body,
)
from ..persistence.models import SessionRecord
from ..stream import DeltaAssembler, SSEDecoder, StreamEvent
from ..transport.base import Endpoint, Transport
from .notifications import (
    DeltaApplied,
    ErrorRaised,
    MessageAppended,
    Notification,
    NotificationHub,
    RetryScheduled,
    StateChanged,
    Subscription,
    TranscriptChanged,
)
from .retry import RetryPolicy


class CancellationToken:
    """Cooperative cancellation flag shared by a session and its stream task."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError()


@dataclass(frozen=True)
class StreamOutcome:
    """How one stream ended.

    Attributes:
        state: COMPLETED, CANCELLED or FAILED
        message: The streamed message, or None if no chunk ever arrived
        error: The terminal error for FAILED outcomes
        attempts: Connection attempts made
    """

    state: SessionState
    message: Message | None = None
    error: BaseException | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.state is SessionState.COMPLETED


class StreamHandle:
    """Handle on one in-flight stream, returned by the commands that start one."""

    def __init__(self, session: "StreamingSession", task: "asyncio.Task[StreamOutcome]"):
        self._session = session
        self._task = task
        self._cancelled_outcome: StreamOutcome | None = None

    @property
    def session_id(self) -> str:
        return self._session.session_id

    def done(self) -> bool:
        return self._task.done() or self._cancelled_outcome is not None

    def cancel(self) -> bool:
        """Cancel this stream. Returns False if it already finished."""
        if self.done():
            return False
        self._session.cancel()
        return True

    async def wait(self) -> StreamOutcome:
        """Wait for the stream to end.

        Never raises the stream's error; the outcome carries it.
        """
        await asyncio.wait({self._task})
        if self._task.cancelled():
            return self._cancelled_outcome or StreamOutcome(SessionState.CANCELLED)
        return self._task.result()

    def _resolve_cancelled(self, outcome: StreamOutcome) -> None:
        self._cancelled_outcome = outcome


class _Turn:
    """Book-keeping for one stream; never shared between turns."""

    def __init__(self, token: CancellationToken):
        self.token = token
        self.handle: StreamHandle | None = None
        self.assembler: DeltaAssembler | None = None
        self.index = -1
        self.attempts = 0


class StreamingSession:
    """State machine and stream task shared by every kind of session.

    Subclasses set ``kind`` and ``endpoint``, build the request body and
    decide where the streamed message lives. All public methods are called
    from the event loop thread.
    """

    kind: SessionKind
    endpoint: Endpoint

    def __init__(
        self,
        session_id: str,
        transport: Transport,
        *,
        parameters: ModelParameters | None = None,
        retry_policy: RetryPolicy | None = None,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        hub: NotificationHub | None = None,
    ):
        self.session_id = session_id
        self._transport = transport
        self._parameters = parameters or ModelParameters()
        self._retry = retry_policy or RetryPolicy()
        self._idle_timeout = idle_timeout
        self._hub = hub or NotificationHub()
        self._state = SessionState.IDLE
        self._turn: _Turn | None = None
        self._last_error: BaseException | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state.is_busy

    @property
    def parameters(self) -> ModelParameters:
        return self._parameters

    @property
    def last_error(self) -> BaseException | None:
        """Terminal error of the most recent stream, if it failed."""
        return self._last_error

    @property
    def active(self) -> StreamHandle | None:
        """Handle of the in-flight stream, if any."""
        return self._turn.handle if self._turn is not None else None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Cancel the in-flight stream.

        Synchronous: when this returns the session is idle, the streamed
        message is aborted with its content kept, and no further delta of
        the cancelled stream will be published.

        Raises:
            InvalidSessionStateError: If nothing is in flight
        """
        turn = self._turn
        if turn is None or not self._state.is_busy:
            raise InvalidSessionStateError(f"Nothing to cancel in state {self._state.value}")
        turn.token.cancel()
        self._finish_cancelled(turn, "cancelled by user")
        if turn.handle is not None:
            turn.handle._task.cancel()

    def update_parameters(self, **changes: Any) -> ModelParameters:
        """Replace the parameters used by future requests.

        A stream already in flight keeps the snapshot it was started with.

        Raises:
            pydantic.ValidationError: If a value is out of range
        """
        self._parameters = self._parameters.with_changes(**changes)
        logger.debug("session.parameters session_id={} changes={}", self.session_id, sorted(changes))
        return self._parameters

    def subscribe(self, max_pending: int | None = None) -> Subscription:
        return self._hub.subscribe(self.session_id, max_pending)

    def snapshot(self) -> SessionRecord:
        """Capture the session for persistence."""
        return SessionRecord.from_session(self)

    async def aclose(self) -> None:
        """Cancel any in-flight stream and wait for its task to unwind."""
        turn = self._turn
        if turn is None or turn.handle is None:
            return
        handle = turn.handle
        self.cancel()
        await handle.wait()

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _build_body(self) -> dict[str, Any]:
        raise NotImplementedError

    def _create_reply(self) -> tuple[int, Message]:
        """Create the streaming message; returns its index and the message."""
        raise NotImplementedError

    def _reply_started(self, index: int) -> None:
        pass

    def _turn_settled(self, turn: _Turn) -> None:
        pass

    # ------------------------------------------------------------------
    # Stream task
    # ------------------------------------------------------------------

    def _start(self) -> StreamHandle:
        body = self._build_body()
        turn = _Turn(CancellationToken())
        self._turn = turn
        self._last_error = None
        self._set_state(SessionState.SENDING)

        task = asyncio.get_running_loop().create_task(
            self._run(turn, body),
            name=f"tabchat-stream-{self.session_id}",
        )
        turn.handle = StreamHandle(self, task)
        return turn.handle

    async def _run(self, turn: _Turn, body: dict[str, Any]) -> StreamOutcome:
        try:
            while True:
                turn.attempts += 1
                try:
                    await self._stream_once(turn, body)
                except TabchatError as e:
                    self._check_current(turn)
                    if turn.assembler is None and self._retry.should_retry(e, turn.attempts):
                        await self._backoff(turn, e)
                        self._check_current(turn)
                        continue
                    return self._finish_failed(turn, e)
                except Exception as e:
                    self._check_current(turn)
                    logger.exception("session.stream.crashed session_id={}", self.session_id)
                    return self._finish_failed(turn, e)
                self._check_current(turn)
                return self._finish_completed(turn)
        except asyncio.CancelledError:
            if not turn.token.cancelled:
                # Cancelled from outside (e.g. loop shutdown), not via cancel().
                turn.token.cancel()
                self._finish_cancelled(turn, "stream task cancelled")
            raise

    async def _stream_once(self, turn: _Turn, body: dict[str, Any]) -> None:
        decoder = SSEDecoder()
        async with self._transport.open_stream(body, self.endpoint) as chunks:
            self._check_current(turn)
            stream = aiter(chunks)
            while not decoder.done:
                try:
                    chunk = await asyncio.wait_for(anext(stream), timeout=self._idle_timeout)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    raise TruncatedStreamError(
                        f"no data received for {self._idle_timeout:g}s"
                    ) from None
                self._check_current(turn)
                if turn.assembler is None:
                    self._begin_streaming(turn)
                self._apply(turn, decoder.feed(chunk))
            self._apply(turn, decoder.finish())

        if not decoder.done:
            raise TruncatedStreamError("stream closed before the end-of-stream marker")

    async def _backoff(self, turn: _Turn, error: TabchatError) -> None:
        delay = self._retry.delay(turn.attempts, error)
        logger.warning(
            "session.retry_scheduled session_id={} attempt={} delay={:.2f} error={}",
            self.session_id,
            turn.attempts + 1,
            delay,
            error,
        )
        self._publish(RetryScheduled(session_id=self.session_id, attempt=turn.attempts + 1, delay=delay))
        await asyncio.sleep(delay)

    def _check_current(self, turn: _Turn) -> None:
        # wait_for can swallow a task cancel when its inner await already
        # finished, so every resume re-checks the turn before touching state.
        turn.token.raise_if_cancelled()
        if self._turn is not turn:
            raise asyncio.CancelledError()

    def _begin_streaming(self, turn: _Turn) -> None:
        if self._turn is not turn:
            return
        turn.index, message = self._create_reply()
        turn.assembler = DeltaAssembler(message)
        self._set_state(SessionState.STREAMING)
        self._reply_started(turn.index)

    def _apply(self, turn: _Turn, events: list[StreamEvent]) -> None:
        for event in events:
            self._check_current(turn)
            step = turn.assembler.apply(event)
            if step.fragment:
                self._publish(DeltaApplied(session_id=self.session_id, index=turn.index, text=step.fragment))
            if step.error is not None:
                logger.warning(
                    "session.decode_error session_id={} reason={}",
                    self.session_id,
                    step.error.reason,
                )
                self._publish(ErrorRaised(
                    session_id=self.session_id,
                    error_type=type(step.error).__name__,
                    message=str(step.error),
                    recoverable=True,
                ))

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _finish_completed(self, turn: _Turn) -> StreamOutcome:
        message = turn.assembler.message
        logger.info(
            "session.completed session_id={} chars={} attempts={} partial={}",
            self.session_id,
            len(message.content),
            turn.attempts,
            message.partial,
        )
        self._settle(turn, SessionState.COMPLETED)
        return StreamOutcome(SessionState.COMPLETED, message, None, turn.attempts)

    def _finish_failed(self, turn: _Turn, error: BaseException) -> StreamOutcome:
        message = None
        if turn.assembler is not None:
            turn.assembler.abort()
            message = turn.assembler.message
        self._last_error = error
        recoverable = bool(getattr(error, "retryable", False)) or isinstance(error, TruncatedStreamError)
        logger.error(
            "session.failed session_id={} attempts={} error_type={} error={}",
            self.session_id,
            turn.attempts,
            type(error).__name__,
            error,
        )
        self._publish(ErrorRaised(
            session_id=self.session_id,
            error_type=type(error).__name__,
            message=str(error),
            recoverable=recoverable,
        ))
        self._settle(turn, SessionState.FAILED)
        return StreamOutcome(SessionState.FAILED, message, error, turn.attempts)

    def _finish_cancelled(self, turn: _Turn, reason: str) -> None:
        message = None
        if turn.assembler is not None:
            turn.assembler.abort()
            message = turn.assembler.message
        logger.info("session.cancelled session_id={} reason={}", self.session_id, reason)
        self._settle(turn, SessionState.CANCELLED)
        if turn.handle is not None:
            turn.handle._resolve_cancelled(
                StreamOutcome(SessionState.CANCELLED, message, None, turn.attempts)
            )

    def _settle(self, turn: _Turn, terminal: SessionState) -> None:
        if self._turn is not turn:
            return
        self._turn_settled(turn)
        self._set_state(terminal)
        self._turn = None
        self._set_state(SessionState.IDLE)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_idle(self, action: str) -> None:
        if self._state is not SessionState.IDLE:
            raise SessionBusyError(
                f"Cannot {action}: session {self.session_id} is {self._state.value}"
            )

    def _set_state(self, new: SessionState) -> None:
        if new not in STATE_TRANSITIONS[self._state]:
            raise InvalidSessionStateError(f"Illegal transition {self._state.value} -> {new.value}")
        logger.debug("session.state session_id={} {} -> {}", self.session_id, self._state.value, new.value)
        self._state = new
        self._publish(StateChanged(session_id=self.session_id, state=new))

    def _publish(self, notification: Notification) -> None:
        self._hub.publish(notification)


class ChatSession(StreamingSession):
    """A single conversation with its own transcript, parameters and stream.

    ``send`` and ``retry`` need a running loop because they start the
    stream task.

    Example:
        session = ChatSession("chat_1", transport)
        handle = session.send("Hello")
        outcome = await handle.wait()
        print(outcome.message.content)
    """

    kind = SessionKind.CHAT
    endpoint = Endpoint.CHAT

    def __init__(
        self,
        session_id: str,
        transport: Transport,
        *,
        transcript: Transcript | None = None,
        **kwargs: Any,
    ):
        super().__init__(session_id, transport, **kwargs)
        self._transcript = transcript if transcript is not None else Transcript()

    @property
    def transcript(self) -> Transcript:
        return self._transcript

    def send(self, text: str) -> StreamHandle:
        """Append a user message and stream the assistant's reply.

        Raises:
            SessionBusyError: If a stream is already in flight
            ValueError: If the text is empty
            RuntimeError: If no event loop is running
        """
        self._ensure_idle("send")
        if not text or not text.strip():
            raise ValueError("Message text must not be empty")
        asyncio.get_running_loop()

        index = self._transcript.append(Message(role=Role.USER, content=text))
        self._publish_appended(index)
        logger.info("session.send session_id={} chars={}", self.session_id, len(text))
        return self._start()

    def retry(self) -> StreamHandle:
        """Stream a new reply to the last user message.

        A trailing aborted or partial assistant message is dropped first.

        Raises:
            SessionBusyError: If a stream is already in flight
            InvalidSessionStateError: If the transcript doesn't end with a user message
        """
        self._ensure_idle("retry")
        asyncio.get_running_loop()

        last = self._transcript.last
        if (
            last is not None
            and last.role is Role.ASSISTANT
            and (last.status is MessageStatus.ABORTED or last.partial)
        ):
            self._transcript.pop_last()
            self._publish(TranscriptChanged(session_id=self.session_id, length=len(self._transcript)))

        last = self._transcript.last
        if last is None or last.role is not Role.USER:
            raise InvalidSessionStateError("Nothing to retry: the last message is not a user message")

        logger.info("session.retry session_id={}", self.session_id)
        return self._start()

    def remove_last(self) -> Message:
        """Remove the last message.

        Raises:
            SessionBusyError: If a stream is in flight
            InvalidSessionStateError: If the transcript is empty
        """
        self._ensure_idle("remove a message")
        message = self._transcript.pop_last()
        self._publish(TranscriptChanged(session_id=self.session_id, length=len(self._transcript)))
        return message

    def clear(self) -> None:
        """Remove all messages except a leading system message."""
        self._ensure_idle("clear")
        self._transcript.clear(keep_system=True)
        self._publish(TranscriptChanged(session_id=self.session_id, length=len(self._transcript)))

    def _build_body(self) -> dict[str, Any]:
        return build_request_body(self._transcript, self._parameters)

    def _create_reply(self) -> tuple[int, Message]:
        message = Message(role=Role.ASSISTANT, status=MessageStatus.STREAMING)
        return self._transcript.append(message), message

    def _reply_started(self, index: int) -> None:
        self._publish_appended(index)

    def _publish_appended(self, index: int) -> None:
        message = self._transcript[index]
        self._publish(MessageAppended(
            session_id=self.session_id,
            index=index,
            role=message.role,
            content=message.content,
            status=message.status,
        ))
