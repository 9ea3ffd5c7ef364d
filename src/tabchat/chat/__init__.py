"""Conversation sessions.

- session.py: stream state machine shared by all sessions, and chat sessions
- completion.py: text-completion sessions editing one document
- manager.py: registry of open sessions and command routing
- notifications.py: bounded notification channel to the UI
- retry.py: backoff policy for connection attempts
"""

from .completion import CompletionSession
from .manager import (
    CancelCommand,
    GenerateCommand,
    RetryCommand,
    SendCommand,
    SessionCommand,
    SessionManager,
)
from .notifications import (
    DeltaApplied,
    DocumentChanged,
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
from .session import (
    CancellationToken,
    ChatSession,
    StreamHandle,
    StreamingSession,
    StreamOutcome,
)

__all__ = [
    "CancelCommand",
    "CancellationToken",
    "ChatSession",
    "CompletionSession",
    "DeltaApplied",
    "DocumentChanged",
    "ErrorRaised",
    "GenerateCommand",
    "MessageAppended",
    "Notification",
    "NotificationHub",
    "RetryCommand",
    "RetryPolicy",
    "RetryScheduled",
    "SendCommand",
    "SessionCommand",
    "SessionManager",
    "StateChanged",
    "StreamHandle",
    "StreamOutcome",
    "StreamingSession",
    "Subscription",
    "TranscriptChanged",
]
