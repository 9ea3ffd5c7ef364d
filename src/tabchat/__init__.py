"""
Tabchat: a tabbed client for concurrent streaming chat and completion sessions.

This package follows Parnas's information hiding principles,
where each module hides a specific design decision.
"""

__version__ = "0.1.0"

from .chat import (
    CancelCommand,
    ChatSession,
    CompletionSession,
    GenerateCommand,
    RetryCommand,
    SendCommand,
    SessionManager,
    StreamHandle,
    StreamOutcome,
)
from .config import ChatConfig
from .models import (
    Message,
    MessageStatus,
    ModelParameters,
    Role,
    SessionKind,
    SessionState,
    Transcript,
)

__all__ = [
    "CancelCommand",
    "ChatConfig",
    "ChatSession",
    "CompletionSession",
    "GenerateCommand",
    "Message",
    "MessageStatus",
    "ModelParameters",
    "RetryCommand",
    "Role",
    "SendCommand",
    "SessionKind",
    "SessionManager",
    "SessionState",
    "StreamHandle",
    "StreamOutcome",
    "Transcript",
]
