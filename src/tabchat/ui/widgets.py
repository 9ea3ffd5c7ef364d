"""Custom Textual widgets for the TUI.

Hides widget implementation details:
- Input history management
- Message rendering while streaming and after completion
- Per-session status line
- Completion document editing
- Log panel rendering
"""

from datetime import datetime

from rich.text import Text
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.message import Message as TextualMessage
from textual.widgets import Button, Markdown, RichLog, Static, TextArea

from ..models import Message, MessageStatus, ModelParameters, Role, SessionState, Transcript
from .config import (
    INPUT_HISTORY_MAX_SIZE,
    LOG_LEVEL_STYLES,
    LOG_PANEL_MAX_LINES,
    MESSAGE_TIMESTAMP_FORMAT,
)

_ROLE_LABELS = {
    Role.SYSTEM: ("*", "System"),
    Role.USER: (">", "You"),
    Role.ASSISTANT: ("<", "Assistant"),
}


class ChatInputBar(Horizontal):
    """Chat input bar with TextArea and Send button."""

    class Submitted(TextualMessage):
        """Posted when the user submits input."""

        def __init__(self, value: str) -> None:
            super().__init__()
            self.value = value

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._history: list[str] = []
        self._history_index: int = -1

    def compose(self):
        text_area = TextArea(id="chat-input", show_line_numbers=False)
        text_area.cursor_blink = False
        yield text_area
        yield Button("Send", id="send-btn", variant="success").with_tooltip(
            "Send message (Ctrl+J)"
        )

    def on_mount(self) -> None:
        text_area = self.query_one("#chat-input", TextArea)
        text_area.highlight_cursor_line = False
        text_area.focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "send-btn":
            self._submit()

    def on_key(self, event) -> None:
        """Handle keyboard shortcuts.

        Note: terminals don't pass modifiers with Enter, so Ctrl+J submits.
        Up/Down at the edges of the text walk the input history.
        """
        text_area = self.query_one("#chat-input", TextArea)
        if event.key == "ctrl+j":
            self._submit()
        elif event.key == "up" and text_area.cursor_location == (0, 0):
            self._recall(-1)
        elif event.key == "down" and text_area.cursor_location == text_area.document.end:
            self._recall(1)
        else:
            return
        event.prevent_default()
        event.stop()

    def _recall(self, direction: int) -> None:
        if not self._history:
            return
        text_area = self.query_one("#chat-input", TextArea)
        if direction < 0:
            if self._history_index == -1:
                self._history_index = len(self._history) - 1
            elif self._history_index > 0:
                self._history_index -= 1
        elif self._history_index == -1:
            return
        elif self._history_index < len(self._history) - 1:
            self._history_index += 1
        else:
            self._history_index = -1
            text_area.text = ""
            return
        text_area.text = self._history[self._history_index]

    def _submit(self) -> None:
        text_area = self.query_one("#chat-input", TextArea)
        value = text_area.text.strip()
        if not value:
            return
        if not self._history or self._history[-1] != value:
            self._history.append(value)
            del self._history[:-INPUT_HISTORY_MAX_SIZE]
        self._history_index = -1
        text_area.text = ""
        self.post_message(self.Submitted(value))

    def focus_input(self) -> None:
        """Focus the text input."""
        self.query_one("#chat-input", TextArea).focus()


class MessageView(Vertical):
    """One transcript message.

    While streaming, content is plain text grown fragment by fragment.
    Once finished, assistant replies are re-rendered as Markdown.
    """

    def __init__(self, role: Role, content: str, status: MessageStatus, timestamp: str = "") -> None:
        super().__init__(classes=f"chat-message {role.value}-message")
        self.role = role
        self.status = status
        self._content = content
        self._timestamp = timestamp
        self._body: Static | Markdown | None = None

    @property
    def content(self) -> str:
        return self._content

    def compose(self):
        yield Static(self._header(), classes="message-header")
        self._body = self._make_body()
        yield self._body

    def on_mount(self) -> None:
        self._sync_classes()

    def append(self, fragment: str) -> None:
        self._content += fragment
        if isinstance(self._body, Static):
            self._body.update(Text(self._content))

    def set_status(self, status: MessageStatus) -> None:
        """Record the final status and switch to rich rendering."""
        self.status = status
        if not self.is_mounted:
            return
        self._sync_classes()
        self.query_one(".message-header", Static).update(self._header())
        if self._body is not None:
            self._body.remove()
            self._body = self._make_body()
            self.mount(self._body)

    def _make_body(self) -> Static | Markdown:
        if self.role is Role.ASSISTANT and self.status is MessageStatus.COMPLETE:
            return Markdown(self._content, classes="message-content")
        return Static(Text(self._content), classes="message-content")

    def _header(self) -> str:
        icon, label = _ROLE_LABELS[self.role]
        header = f"{icon} {label}"
        if self._timestamp:
            header += f" [{self._timestamp}]"
        if self.status is MessageStatus.STREAMING:
            header += " ..."
        elif self.status is MessageStatus.ABORTED:
            header += " (aborted)"
        return header

    def _sync_classes(self) -> None:
        self.set_class(self.status is MessageStatus.STREAMING, "-streaming")
        self.set_class(self.status is MessageStatus.ABORTED, "-aborted")


class TranscriptView(VerticalScroll):
    """Scrollable view of one session's transcript."""

    BORDER_TITLE = "Chat"
    ALLOW_SELECT = True

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._views: list[MessageView] = []

    def render_transcript(self, transcript: Transcript) -> None:
        """Rebuild the view from the transcript (initial load or resync)."""
        self.remove_children()
        self._views = []
        for message in transcript:
            self._mount_message(message.role, message.content, message.status, message)
        self._update_subtitle()
        self.scroll_end(animate=False)

    def add_message(self, index: int, role: Role, content: str, status: MessageStatus) -> None:
        if index < len(self._views):
            # Already rendered by a resync.
            return
        self._mount_message(role, content, status)
        self._update_subtitle()
        self.scroll_end(animate=False)

    def apply_delta(self, index: int, text: str) -> None:
        if 0 <= index < len(self._views):
            self._views[index].append(text)
            self.scroll_end(animate=False)

    def finish_last(self, status: MessageStatus) -> None:
        """Finalize the trailing message if it is still streaming."""
        if self._views and self._views[-1].status is MessageStatus.STREAMING:
            self._views[-1].set_status(status)

    def last_assistant_text(self) -> str | None:
        for view in reversed(self._views):
            if view.role is Role.ASSISTANT:
                return view.content
        return None

    def _mount_message(
        self,
        role: Role,
        content: str,
        status: MessageStatus,
        message: Message | None = None,
    ) -> None:
        timestamp = message.created_at.strftime(MESSAGE_TIMESTAMP_FORMAT) if message else ""
        view = MessageView(role, content, status, timestamp)
        self._views.append(view)
        self.mount(view)

    def _update_subtitle(self) -> None:
        self.border_subtitle = f"{len(self._views)} messages"


class SessionStatus(Static):
    """One-line summary of a session's state and parameters."""

    def show(self, state: SessionState, params: ModelParameters, detail: str = "") -> None:
        parts = [
            state.value,
            params.model,
            f"temp {params.temperature:g}",
            f"top_p {params.top_p:g}",
        ]
        if params.max_tokens is not None:
            parts.append(f"max {params.max_tokens}")
        if detail:
            parts.append(detail)
        self.update(" | ".join(parts))
        self.set_class(state.is_busy, "-busy")
        self.set_class(state is SessionState.FAILED, "-failed")


class SessionPane(Vertical):
    """Transcript and status line for one session tab."""

    def __init__(self, session_id: str, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.session_id = session_id

    def compose(self):
        transcript = TranscriptView()
        transcript.border_title = self.session_id
        yield transcript
        yield SessionStatus()

    @property
    def transcript_view(self) -> TranscriptView:
        return self.query_one(TranscriptView)

    @property
    def status(self) -> SessionStatus:
        return self.query_one(SessionStatus)


class DocumentPane(Vertical):
    """Editable document and status line for one completion tab.

    The editor is read-only while text is streaming into it. User edits
    are posted as ``Edited`` so the app can hand them to the session.
    """

    class Edited(TextualMessage):
        """Posted when the user changes the document."""

        def __init__(self, session_id: str, text: str) -> None:
            super().__init__()
            self.session_id = session_id
            self.text = text

    def __init__(self, session_id: str, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.session_id = session_id
        self._shown = ""

    def compose(self):
        editor = TextArea(show_line_numbers=False, soft_wrap=True, classes="document-editor")
        editor.border_title = self.session_id
        yield editor
        yield SessionStatus()

    @property
    def editor(self) -> TextArea:
        return self.query_one(".document-editor", TextArea)

    @property
    def status(self) -> SessionStatus:
        return self.query_one(SessionStatus)

    def show_text(self, text: str, streaming: bool = False) -> None:
        editor = self.editor
        editor.read_only = streaming
        editor.set_class(streaming, "-streaming")
        self._shown = text
        if editor.text != text:
            editor.load_text(text)
        editor.border_subtitle = f"{len(text)} chars"

    def cursor_offset(self) -> int:
        """Character offset of the cursor in the document."""
        row, column = self.editor.cursor_location
        lines = self.editor.text.split("\n")
        return sum(len(line) + 1 for line in lines[:row]) + column

    def on_text_area_changed(self, event: TextArea.Changed) -> None:
        event.stop()
        # Loading text posts Changed too; only edits away from it count.
        if not event.text_area.read_only and event.text_area.text != self._shown:
            self.post_message(self.Edited(self.session_id, event.text_area.text))


def format_log_record(record: dict) -> Text:
    """Render a loguru record as one styled line."""
    level = record["level"].name
    time: datetime = record["time"]
    return Text.assemble(
        (time.strftime(MESSAGE_TIMESTAMP_FORMAT), "dim"),
        " ",
        (f"{level:<8}", LOG_LEVEL_STYLES.get(level, "white")),
        " ",
        record["message"],
    )


class LogPanel(RichLog):
    """Log panel fed by a loguru sink.

    Hidden by default, toggled with Ctrl+L. Records are written as Rich
    text, so log messages are never parsed as markup.
    """

    BORDER_TITLE = "Log"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(
            *args,
            markup=False,
            highlight=False,
            auto_scroll=True,
            wrap=False,
            max_lines=LOG_PANEL_MAX_LINES,
            **kwargs,
        )

    def on_mount(self) -> None:
        self.display = False
        self.border_subtitle = "Hidden"

    def write_record(self, record: dict) -> None:
        self.write(format_log_record(record))

    def toggle(self) -> bool:
        """Toggle visibility. Returns the new state."""
        self.display = not self.display
        self.border_subtitle = "" if self.display else "Hidden"
        return self.display
