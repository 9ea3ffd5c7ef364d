"""Registry of open sessions.

The manager owns every session (one per tab, chat or completion), the shared transport and
the notification hub. Commands from the UI are routed to exactly one
session; sessions never reference each other, so a failure or cancellation
in one leaves the others untouched.
"""

from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..config import DEFAULT_COMPLETION_MAX_TOKENS, ChatConfig
from ..errors import InvalidSessionStateError, PersistenceError, SessionNotFoundError
from ..models import Message, ModelParameters, Role, SessionKind, Transcript
from ..persistence.base import TranscriptStore
from ..persistence.models import SessionRecord
from ..transport.base import Transport
from .notifications import DEFAULT_MAX_PENDING, NotificationHub, Subscription
from .retry import RetryPolicy
from .completion import CompletionSession
from .session import ChatSession, StreamHandle, StreamingSession


class SendCommand(BaseModel):
    """Send a user message."""

    model_config = ConfigDict(frozen=True)

    text: str


class CancelCommand(BaseModel):
    """Cancel the in-flight stream."""

    model_config = ConfigDict(frozen=True)


class RetryCommand(BaseModel):
    """Stream a new reply to the last user message."""

    model_config = ConfigDict(frozen=True)


class GenerateCommand(BaseModel):
    """Extend a completion document, or insert at ``insert_at``."""

    model_config = ConfigDict(frozen=True)

    insert_at: int | None = Field(default=None, ge=0)


SessionCommand = SendCommand | CancelCommand | RetryCommand | GenerateCommand


class SessionManager:
    """Open, route to, persist and close sessions.

    Supports async context manager protocol:
        async with SessionManager(config, transport, store=store) as manager:
            session = manager.open()
            handle = manager.dispatch(session.session_id, SendCommand(text="Hi"))
            await handle.wait()
        # Sessions closed (and persisted), store and transport closed
    """

    def __init__(
        self,
        config: ChatConfig,
        transport: Transport,
        store: TranscriptStore | None = None,
        max_pending: int = DEFAULT_MAX_PENDING,
    ):
        self._config = config
        self._transport = transport
        self._store = store
        self._retry = RetryPolicy.from_config(config)
        self._hub = NotificationHub(max_pending)
        self._sessions: dict[str, StreamingSession] = {}
        self._counters = {kind: 0 for kind in SessionKind}

    @property
    def sessions(self) -> list[str]:
        """Ids of open sessions, in the order they were opened."""
        return list(self._sessions)

    @property
    def store(self) -> TranscriptStore | None:
        return self._store

    def default_parameters(self, kind: SessionKind = SessionKind.CHAT) -> ModelParameters:
        if kind is SessionKind.COMPLETE:
            return ModelParameters(
                model=self._config.completion_model,
                max_tokens=DEFAULT_COMPLETION_MAX_TOKENS,
            )
        return ModelParameters(
            model=self._config.default_model,
            system_message=self._config.system_message,
        )

    def open(
        self,
        session_id: str | None = None,
        parameters: ModelParameters | None = None,
        transcript: Transcript | None = None,
    ) -> ChatSession:
        """Open a new chat session.

        Args:
            session_id: Id to use; ``chat_<n>`` is generated when omitted
            parameters: Sampling parameters (configured defaults otherwise)
            transcript: Existing transcript; a new one is seeded with the
                system message when one is configured

        Raises:
            ValueError: If a session with this id is already open
        """
        session_id = self._claim_id(session_id, SessionKind.CHAT)
        parameters = parameters or self.default_parameters()
        if transcript is None:
            transcript = Transcript()
            if parameters.system_message:
                transcript.append(Message(role=Role.SYSTEM, content=parameters.system_message))

        session = ChatSession(
            session_id,
            self._transport,
            parameters=parameters,
            transcript=transcript,
            retry_policy=self._retry,
            idle_timeout=self._config.idle_timeout,
            hub=self._hub,
        )
        self._sessions[session_id] = session
        logger.info("manager.open session_id={} kind=chat open_sessions={}", session_id, len(self._sessions))
        return session

    def open_completion(
        self,
        session_id: str | None = None,
        parameters: ModelParameters | None = None,
        prompt: str = "",
    ) -> CompletionSession:
        """Open a new text-completion session.

        Args:
            session_id: Id to use; ``complete_<n>`` is generated when omitted
            parameters: Sampling parameters (completion defaults otherwise)
            prompt: Initial document

        Raises:
            ValueError: If a session with this id is already open
        """
        session_id = self._claim_id(session_id, SessionKind.COMPLETE)
        session = CompletionSession(
            session_id,
            self._transport,
            prompt=prompt,
            parameters=parameters or self.default_parameters(SessionKind.COMPLETE),
            retry_policy=self._retry,
            idle_timeout=self._config.idle_timeout,
            hub=self._hub,
        )
        self._sessions[session_id] = session
        logger.info("manager.open session_id={} kind=complete open_sessions={}", session_id, len(self._sessions))
        return session

    def get(self, session_id: str) -> StreamingSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(f"No open session {session_id!r}") from None

    def dispatch(self, session_id: str, command: SessionCommand) -> StreamHandle | None:
        """Route a command to one session.

        Returns:
            The stream handle for send, retry and generate, None for cancel

        Raises:
            InvalidSessionStateError: If the command doesn't fit the session kind
        """
        session = self.get(session_id)
        if isinstance(command, CancelCommand):
            session.cancel()
            return None
        if isinstance(command, (SendCommand, RetryCommand)):
            chat = self._require_kind(session, ChatSession)
            return chat.send(command.text) if isinstance(command, SendCommand) else chat.retry()
        if isinstance(command, GenerateCommand):
            completion = self._require_kind(session, CompletionSession)
            if command.insert_at is None:
                return completion.generate()
            return completion.insert(command.insert_at)
        raise TypeError(f"Unknown command: {command!r}")

    def subscribe(self, session_id: str, max_pending: int | None = None) -> Subscription:
        """Subscribe to a session's notifications."""
        self.get(session_id)
        return self._hub.subscribe(session_id, max_pending)

    async def close(self, session_id: str) -> None:
        """Close a session.

        Cancels its stream, saves it when a store is configured and
        ``persist_on_close`` is set, then closes its subscriptions. If saving
        fails the session stays open and the error propagates.
        """
        session = self.get(session_id)
        await session.aclose()

        if self._store is not None and self._config.persist_on_close and self._has_content(session):
            await self._store.save(session.snapshot())

        self._hub.close_session(session_id)
        del self._sessions[session_id]
        logger.info("manager.close session_id={} open_sessions={}", session_id, len(self._sessions))

    async def save(self, session_id: str) -> SessionRecord:
        record = self.get(session_id).snapshot()
        await self._require_store().save(record)
        logger.info(
            "manager.save session_id={} kind={} messages={}",
            session_id,
            record.kind.value,
            len(record.messages),
        )
        return record

    async def load(self, session_id: str) -> StreamingSession:
        """Open a stored session.

        Raises:
            ValueError: If the session is already open
            PersistenceError: If it isn't stored or no store is configured
        """
        if session_id in self._sessions:
            raise ValueError(f"Session {session_id!r} is already open")
        record = await self._require_store().load(session_id)
        if record.kind is SessionKind.COMPLETE:
            return self.open_completion(record.session_id, record.parameters, record.prompt)
        return self.open(record.session_id, record.parameters, record.to_transcript())

    async def saved_sessions(self) -> list[str]:
        return await self._require_store().list_sessions()

    async def aclose(self) -> None:
        """Close every session, then the store and the transport.

        Every session is closed even if one of them fails to save; the first
        error is re-raised afterwards.
        """
        first_error: Exception | None = None
        for session_id in list(self._sessions):
            try:
                await self.close(session_id)
            except PersistenceError as e:
                logger.error("manager.close_failed session_id={} error={}", session_id, e)
                self._hub.close_session(session_id)
                self._sessions.pop(session_id, None)
                first_error = first_error or e

        self._hub.close_all()
        if self._store is not None:
            await self._store.disconnect()
        await self._transport.close()
        if first_error is not None:
            raise first_error

    async def __aenter__(self) -> "SessionManager":
        if self._store is not None:
            await self._store.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    def _claim_id(self, session_id: str | None, kind: SessionKind) -> str:
        if session_id is None:
            while True:
                self._counters[kind] += 1
                candidate = f"{kind.value}_{self._counters[kind]}"
                if candidate not in self._sessions:
                    return candidate
        if session_id in self._sessions:
            raise ValueError(f"Session {session_id!r} is already open")
        return session_id

    @staticmethod
    def _require_kind(session: StreamingSession, cls: type) -> Any:
        if not isinstance(session, cls):
            raise InvalidSessionStateError(
                f"Session {session.session_id} is a {session.kind.value} session"
            )
        return session

    def _require_store(self) -> TranscriptStore:
        if self._store is None:
            raise PersistenceError("No transcript store is configured")
        return self._store

    @staticmethod
    def _has_content(session: StreamingSession) -> bool:
        if isinstance(session, CompletionSession):
            return bool(session.document.strip())
        return any(m.role is not Role.SYSTEM for m in session.transcript)
