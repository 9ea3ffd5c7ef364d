"""CSS styles for the TUI.

Hides layout and styling decisions from the application logic.
Uses Textual CSS features: nesting, pseudo-classes, variables.
"""

APP_CSS = """
Screen {
    layout: vertical;
    background: $background;
}

/* Tabs fill everything between header and input bar */
#tabs {
    height: 1fr;
}

TabPane {
    padding: 0;
}

SessionPane, DocumentPane {
    height: 100%;
    layout: vertical;
}

/* Completion document */
.document-editor {
    height: 1fr;
    background: $panel;
    border: round $primary 60%;
    border-title-color: $primary;
    border-title-style: bold;
    border-subtitle-color: $text-muted;
    border-subtitle-align: right;

    &:focus {
        border: round $primary;
    }

    &.-streaming {
        border: round $warning;
    }
}

/* Log panel, hidden until toggled */
#log-panel {
    height: auto;
    min-height: 6;
    max-height: 14;
    background: $surface;
    border: round $warning 60%;
    border-title-color: $warning;
    border-subtitle-color: $text-muted;
    border-subtitle-align: right;
    padding: 0 1;
    scrollbar-gutter: stable;
}

/* Transcript */
TranscriptView {
    height: 1fr;
    background: $panel;
    border: round $primary 60%;
    border-title-color: $primary;
    border-title-style: bold;
    border-subtitle-color: $text-muted;
    border-subtitle-align: right;
    padding: 0 1;
    scrollbar-gutter: stable;

    &:focus-within {
        border: round $primary;
    }
}

.chat-message {
    height: auto;
    margin: 0 0 1 0;
    padding: 0 1;
    border-left: thick $border;

    &.user-message {
        border-left: thick $secondary;
    }

    &.assistant-message {
        border-left: thick $success;
    }

    &.system-message {
        border-left: thick $accent;
        color: $text-muted;
    }

    &.-streaming {
        border-left: thick $warning;
    }

    &.-aborted {
        border-left: thick $error;
    }
}

.message-header {
    color: $text-muted;
    text-style: bold;
}

.message-content {
    height: auto;
}

/* Session status line */
SessionStatus {
    height: 1;
    padding: 0 1;
    color: $text-muted;
    background: $surface;

    &.-busy {
        color: $warning;
    }

    &.-failed {
        color: $error;
    }
}

/* Input bar */
ChatInputBar {
    height: auto;
    max-height: 8;
    padding: 0 1;
}

#chat-input {
    width: 1fr;
    height: auto;
    min-height: 3;
    max-height: 8;
    border: round $border;

    &:focus {
        border: round $primary;
    }
}

#send-btn {
    width: 10;
    margin-left: 1;
}
"""
