"""Terminal UI module for tabchat.

Provides a Textual-based TUI with one tab per session, chat or completion.

Module structure (Parnas principle - each module hides a design decision):
- widgets.py: Custom widgets (input history, message rendering, document editor, log panel)
- styles.py: CSS styling (layout decisions)
- config.py: UI constants
- app.py: Application orchestration (tabs, notification pumps, log sink, key bindings)
"""

from .app import TabChatApp, run_textual_tui
from .widgets import (
    ChatInputBar,
    DocumentPane,
    LogPanel,
    MessageView,
    SessionPane,
    SessionStatus,
    TranscriptView,
    format_log_record,
)

__all__ = [
    "ChatInputBar",
    "DocumentPane",
    "LogPanel",
    "MessageView",
    "SessionPane",
    "SessionStatus",
    "TabChatApp",
    "TranscriptView",
    "format_log_record",
    "run_textual_tui",
]
