"""Notifications from sessions to the rendering layer.

The hub is the only channel a UI observes. Publishing is synchronous and
never waits on a subscriber: each subscription has a bounded queue, and a
subscriber that lets it fill up is cut off (lagged) rather than allowed to
stall the stream that feeds it. A lagged UI resyncs by re-reading the
transcript and subscribing again.
"""

import asyncio

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..errors import SubscriptionLaggedError
from ..models import MessageStatus, Role, SessionState

DEFAULT_MAX_PENDING = 1024


class Notification(BaseModel):
    """Base class for everything published by a session."""

    model_config = ConfigDict(frozen=True)

    session_id: str


class MessageAppended(Notification):
    """A message was added to the transcript."""

    index: int
    role: Role
    content: str = ""
    status: MessageStatus = MessageStatus.COMPLETE


class DeltaApplied(Notification):
    """A fragment was appended to the streaming message at ``index``.

    In a completion session ``index`` is the character offset in the
    document where generated text is being inserted.
    """

    index: int
    text: str


class StateChanged(Notification):
    state: SessionState


class ErrorRaised(Notification):
    """An error occurred; ``recoverable`` means a resend may succeed."""

    error_type: str
    message: str
    recoverable: bool = False


class RetryScheduled(Notification):
    """A failed connection attempt will be repeated after ``delay`` seconds."""

    attempt: int = Field(description="Number of the upcoming attempt")
    delay: float


class TranscriptChanged(Notification):
    """Messages were removed; the UI should re-read the transcript."""

    length: int


class DocumentChanged(Notification):
    """A completion document was edited or rewritten; re-read it."""

    length: int = Field(description="Characters in the document")


_CLOSED = object()


class Subscription:
    """Bounded, single-consumer stream of notifications for one session.

    Iterate with ``async for``. Iteration ends after ``close()`` once the
    pending notifications are drained; a lagged subscription raises
    SubscriptionLaggedError at that point instead.
    """

    def __init__(self, session_id: str, max_pending: int = DEFAULT_MAX_PENDING):
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self.session_id = session_id
        self._max_pending = max_pending
        # One spare slot so the close marker always fits.
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=max_pending + 1)
        self._closed = False
        self._lagged = False
        self._exhausted = False
        self._lag_reported = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def lagged(self) -> bool:
        return self._lagged

    @property
    def pending(self) -> int:
        """Notifications queued and not yet consumed."""
        size = self._queue.qsize()
        return size - 1 if self._closed and not self._exhausted else size

    def push(self, notification: Notification) -> bool:
        """Queue a notification without blocking.

        Returns:
            False if the subscription is closed, including when this push
            found the queue full and closed it as lagged
        """
        if self._closed:
            return False
        if self._queue.qsize() >= self._max_pending:
            self._lagged = True
            logger.warning(
                "notifications.lagged session_id={} max_pending={}",
                self.session_id,
                self._max_pending,
            )
            self.close()
            return False
        self._queue.put_nowait(notification)
        return True

    def close(self) -> None:
        """End the subscription after the pending notifications."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def drain(self) -> list[Notification]:
        """Return every notification queued right now, without waiting."""
        items: list[Notification] = []
        while not self._exhausted and not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._exhausted = True
                break
            items.append(item)
        return items

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Notification:
        if not self._exhausted:
            item = await self._queue.get()
            if item is not _CLOSED:
                return item
            self._exhausted = True
        if self._lagged and not self._lag_reported:
            self._lag_reported = True
            raise SubscriptionLaggedError(
                f"Subscriber to {self.session_id} fell more than {self._max_pending} notifications behind"
            )
        raise StopAsyncIteration


class NotificationHub:
    """Fan notifications out to the subscribers of each session."""

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING):
        self._max_pending = max_pending
        self._subscriptions: dict[str, list[Subscription]] = {}

    def subscribe(self, session_id: str, max_pending: int | None = None) -> Subscription:
        subscription = Subscription(session_id, max_pending or self._max_pending)
        self._subscriptions.setdefault(session_id, []).append(subscription)
        return subscription

    def subscriber_count(self, session_id: str) -> int:
        return sum(1 for s in self._subscriptions.get(session_id, []) if not s.closed)

    def publish(self, notification: Notification) -> None:
        """Deliver to every live subscriber of the notification's session."""
        subscriptions = self._subscriptions.get(notification.session_id)
        if not subscriptions:
            return
        live = [s for s in subscriptions if s.push(notification)]
        if live:
            self._subscriptions[notification.session_id] = live
        else:
            del self._subscriptions[notification.session_id]

    def close_session(self, session_id: str) -> None:
        """Close all subscriptions of one session."""
        for subscription in self._subscriptions.pop(session_id, []):
            subscription.close()

    def close_all(self) -> None:
        for session_id in list(self._subscriptions):
            self.close_session(session_id)
